from quart import Blueprint, jsonify, request

from ..common.policy import Capability, current_token_id, current_user, public, requires
from ..common.validation import parse_body
from . import service
from .schemas import (
    AdminPasswordUpdate,
    AdminUserCreate,
    AdminUserUpdate,
    LoginRequest,
    PasswordUpdate,
    ProfileUpdate,
    RegisterRequest,
    ensure_confirmed,
)
from .tokens import revoke_token

bp = Blueprint("users", __name__)

# fields that may be omitted but never cleared
_REQUIRED_ON_UPDATE = ("name", "email", "role")


def _changes(body) -> dict:
    changes = body.model_dump(exclude_unset=True)
    for field in _REQUIRED_ON_UPDATE:
        if field in changes and changes[field] is None:
            changes.pop(field)
    return changes


@bp.post("/register")
@public
async def register():
    body = await parse_body(RegisterRequest)
    ensure_confirmed(body.password, body.password_confirmation, "password")
    result = await service.register(body.model_dump())
    return jsonify({"message": "User registered successfully", **result}), 201


@bp.post("/login")
@public
async def login():
    body = await parse_body(LoginRequest)
    result = await service.login(body.email, body.password)
    return jsonify({"message": "Login successful", **result})


@bp.post("/logout")
async def logout():
    await revoke_token(current_token_id())
    return jsonify({"message": "Logged out successfully"})


@bp.get("/user")
async def user_get():
    return jsonify(await service.current_user(current_user().id))


@bp.get("/profile")
async def profile_get():
    return jsonify(await service.get_profile(current_user().id))


@bp.put("/profile")
async def profile_put():
    body = await parse_body(ProfileUpdate)
    result = await service.update_profile(current_user().id, _changes(body))
    return jsonify({"message": "Profile updated successfully", **result})


@bp.put("/profile/password")
async def profile_password_put():
    body = await parse_body(PasswordUpdate)
    ensure_confirmed(body.new_password, body.new_password_confirmation, "new_password")
    await service.update_password(current_user().id, body.current_password, body.new_password)
    return jsonify({"message": "Password updated successfully"})


@bp.get("/profile/stats")
async def profile_stats_get():
    return jsonify(await service.profile_stats(current_user().id))


@bp.get("/admin/users")
@requires(Capability.MANAGE_USERS)
async def admin_users_list():
    return jsonify(await service.admin_list_users(request.args))


@bp.get("/admin/users/stats")
@requires(Capability.MANAGE_USERS)
async def admin_users_stats():
    return jsonify(await service.admin_user_stats())


@bp.post("/admin/users")
@requires(Capability.MANAGE_USERS)
async def admin_users_create():
    body = await parse_body(AdminUserCreate)
    user = await service.admin_create_user(body.model_dump())
    return jsonify({"message": "User created successfully", "user": user}), 201


@bp.get("/admin/users/<int:user_id>")
@requires(Capability.MANAGE_USERS)
async def admin_users_get(user_id: int):
    return jsonify(await service.admin_get_user(user_id))


@bp.put("/admin/users/<int:user_id>")
@requires(Capability.MANAGE_USERS)
async def admin_users_update(user_id: int):
    body = await parse_body(AdminUserUpdate)
    user = await service.admin_update_user(user_id, _changes(body))
    return jsonify({"message": "User updated successfully", "user": user})


@bp.put("/admin/users/<int:user_id>/password")
@requires(Capability.MANAGE_USERS)
async def admin_users_password(user_id: int):
    body = await parse_body(AdminPasswordUpdate)
    ensure_confirmed(body.new_password, body.new_password_confirmation, "new_password")
    await service.admin_update_password(user_id, body.new_password)
    return jsonify({"message": "User password updated successfully"})


@bp.delete("/admin/users/<int:user_id>")
@requires(Capability.MANAGE_USERS)
async def admin_users_delete(user_id: int):
    await service.admin_delete_user(current_user().id, user_id)
    return jsonify({"message": "User deleted successfully"})
