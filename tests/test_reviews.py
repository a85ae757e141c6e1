async def submit(client, headers, product_id, rating=4, comment="Nice"):
    return await client.post("/reviews", json={"product_id": product_id, "rating": rating, "comment": comment}, headers=headers)


async def test_new_review_is_pending(client, shopper, make_product):
    _, headers = shopper
    pid = await make_product()
    resp = await submit(client, headers, pid)
    assert resp.status_code == 201
    review = (await resp.get_json())["review"]
    assert review["status"] == "pending"
    assert review["product"]["id"] == pid


async def test_resubmitting_updates_in_place(client, shopper, admin, make_product):
    _, headers = shopper
    _, admin_headers = admin
    pid = await make_product()
    first = (await (await submit(client, headers, pid, rating=5)).get_json())["review"]
    await client.post(f"/admin/reviews/{first['id']}/approve", json={"admin_notes": "ok"}, headers=admin_headers)

    resp = await submit(client, headers, pid, rating=2, comment="Changed my mind")
    assert resp.status_code == 200
    review = (await resp.get_json())["review"]
    assert review["id"] == first["id"]
    assert review["status"] == "pending"
    assert review["rating"] == 2
    assert review["admin_notes"] is None


async def test_edit_rejected_review_goes_back_to_pending(client, shopper, admin, make_product):
    _, headers = shopper
    _, admin_headers = admin
    pid = await make_product()
    review = (await (await submit(client, headers, pid)).get_json())["review"]
    resp = await client.post(f"/admin/reviews/{review['id']}/reject", json={"admin_notes": "spam"}, headers=admin_headers)
    assert (await resp.get_json())["review"]["status"] == "rejected"

    resp = await client.put(f"/reviews/{review['id']}", json={"rating": 3, "comment": "Better"}, headers=headers)
    assert resp.status_code == 200
    edited = (await resp.get_json())["review"]
    assert edited["status"] == "pending"
    assert (edited["rating"], edited["comment"], edited["admin_notes"]) == (3, "Better", None)


async def test_approved_review_cannot_be_edited(client, shopper, admin, make_product):
    _, headers = shopper
    _, admin_headers = admin
    pid = await make_product()
    review = (await (await submit(client, headers, pid)).get_json())["review"]
    await client.post(f"/admin/reviews/{review['id']}/approve", json={}, headers=admin_headers)

    resp = await client.put(f"/reviews/{review['id']}", json={"rating": 1}, headers=headers)
    assert resp.status_code == 400


async def test_only_owner_edits_but_moderator_may_delete(client, shopper, register, admin, make_product):
    _, headers = shopper
    _, other_headers = await register("other@example.com", "Other")
    _, admin_headers = admin
    pid = await make_product()
    review = (await (await submit(client, headers, pid)).get_json())["review"]

    assert (await client.put(f"/reviews/{review['id']}", json={"rating": 1}, headers=other_headers)).status_code == 403
    assert (await client.delete(f"/reviews/{review['id']}", headers=other_headers)).status_code == 403
    assert (await client.delete(f"/reviews/{review['id']}", headers=admin_headers)).status_code == 200
    assert (await client.delete(f"/reviews/{review['id']}", headers=headers)).status_code == 404


async def test_validation(client, shopper, make_product):
    _, headers = shopper
    pid = await make_product()
    assert (await submit(client, headers, pid, rating=6)).status_code == 422
    assert (await submit(client, headers, 999)).status_code == 422
    resp = await submit(client, headers, pid, comment="x" * 1001)
    assert resp.status_code == 422
    assert "comment" in (await resp.get_json())["errors"]


async def test_moderation_rules(client, shopper, admin, make_product):
    _, headers = shopper
    _, admin_headers = admin
    pid = await make_product()
    review = (await (await submit(client, headers, pid)).get_json())["review"]

    # reject needs a reason
    assert (await client.post(f"/admin/reviews/{review['id']}/reject", json={}, headers=admin_headers)).status_code == 422
    assert (await client.post(f"/admin/reviews/{review['id']}/approve", json={}, headers=admin_headers)).status_code == 200
    assert (await client.post(f"/admin/reviews/{review['id']}/approve", json={}, headers=admin_headers)).status_code == 400
    assert (await client.post(f"/admin/reviews/{review['id']}/approve", json={}, headers=headers)).status_code == 403


async def test_bulk_moderation(client, register, admin, make_product):
    _, admin_headers = admin
    pid = await make_product()
    ids = []
    for n in range(3):
        _, headers = await register(f"u{n}@example.com", f"U{n}")
        ids.append((await (await submit(client, headers, pid)).get_json())["review"]["id"])
    await client.post(f"/admin/reviews/{ids[0]}/approve", json={}, headers=admin_headers)

    body = await (await client.post("/admin/reviews/bulk-approve", json={"review_ids": ids}, headers=admin_headers)).get_json()
    assert body["approved_count"] == 2

    resp = await client.post("/admin/reviews/bulk-reject", json={"review_ids": ids}, headers=admin_headers)
    assert resp.status_code == 422
    resp = await client.post(
        "/admin/reviews/bulk-reject", json={"review_ids": ids + [999], "admin_notes": "no"}, headers=admin_headers
    )
    assert resp.status_code == 422
    body = await (
        await client.post("/admin/reviews/bulk-reject", json={"review_ids": ids[:2], "admin_notes": "no"}, headers=admin_headers)
    ).get_json()
    assert body["rejected_count"] == 2

    listing = await (await client.get("/admin/reviews?status=rejected", headers=admin_headers)).get_json()
    assert listing["pagination"]["total"] == 2
    assert listing["stats"]["approved_reviews"] == 1


async def test_product_reviews_hide_unapproved_from_shoppers(client, register, admin, make_product):
    _, admin_headers = admin
    pid = await make_product()
    ids = []
    for n, rating in enumerate((5, 3, 1)):
        _, headers = await register(f"r{n}@example.com", f"R{n}")
        ids.append((await (await submit(client, headers, pid, rating=rating)).get_json())["review"]["id"])
    for review_id in ids[:2]:
        await client.post(f"/admin/reviews/{review_id}/approve", json={}, headers=admin_headers)

    public = await (await client.get(f"/products/{pid}/reviews")).get_json()
    assert public["pagination"]["total"] == 2
    assert public["product"]["average_rating"] == 4.0
    assert public["product"]["total_reviews"] == 2
    assert [b["rating"] for b in public["rating_distribution"]] == [5, 4, 3, 2, 1]
    assert [b["percentage"] for b in public["rating_distribution"]] == [50.0, 0.0, 50.0, 0.0, 0.0]

    moderated = await (await client.get(f"/products/{pid}/reviews", headers=admin_headers)).get_json()
    assert moderated["pagination"]["total"] == 3
    pending = await (await client.get(f"/products/{pid}/reviews?status=pending", headers=admin_headers)).get_json()
    assert [r["id"] for r in pending["data"]] == [ids[2]]


async def test_my_reviews(client, shopper, make_product):
    _, headers = shopper
    for name in ("One", "Two"):
        await submit(client, headers, await make_product(name))
    body = await (await client.get("/reviews/my-reviews", headers=headers)).get_json()
    assert body["pagination"]["total"] == 2
    assert body["stats"]["pending_reviews"] == 2
    assert body["stats"]["average_rating"] == 0
