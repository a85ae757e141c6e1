"""
Capability-based authorization.

Every view declares the capability it needs with ``requires``. The app runs
``enforce`` once in ``before_request`` for whatever endpoint matched, so no
handler has to repeat its own role comparison. Views that declare nothing need
an authenticated caller.

Resource ownership ("the order's owner, or anybody allowed to manage orders")
is checked inside the services through ``ensure_owner_or``.
"""
from enum import Enum
from typing import Callable, Dict, FrozenSet, Optional

from quart import g

from .errors import Forbidden, Unauthenticated


class Capability(str, Enum):
    PUBLIC = "public"
    AUTHENTICATED = "authenticated"
    MANAGE_CATALOG = "manage_catalog"
    MANAGE_USERS = "manage_users"
    MODERATE_REVIEWS = "moderate_reviews"
    MANAGE_ORDERS = "manage_orders"


ROLE_ADMIN = "admin"
ROLE_USER = "user"

ROLE_CAPABILITIES: Dict[str, FrozenSet[Capability]] = {
    ROLE_ADMIN: frozenset(Capability),
    ROLE_USER: frozenset({Capability.PUBLIC, Capability.AUTHENTICATED}),
}

_ATTR = "_required_capability"


def requires(capability: Capability) -> Callable:
    def decorator(view):
        setattr(view, _ATTR, capability)
        return view

    return decorator


public = requires(Capability.PUBLIC)


def required_capability(view: Optional[Callable]) -> Capability:
    if view is None:
        return Capability.PUBLIC
    return getattr(view, _ATTR, Capability.AUTHENTICATED)


def has_capability(user, capability: Capability) -> bool:
    if capability is Capability.PUBLIC:
        return True
    if user is None:
        return False
    return capability in ROLE_CAPABILITIES.get(user.role, frozenset())


def enforce(user, capability: Capability) -> None:
    if capability is Capability.PUBLIC:
        return
    if user is None:
        raise Unauthenticated()
    if not has_capability(user, capability):
        raise Forbidden()


def current_user():
    return getattr(g, "user", None)


def current_token_id() -> Optional[int]:
    return getattr(g, "token_id", None)


def ensure_owner_or(user, owner_id: Optional[int], capability: Capability) -> None:
    if user is not None and owner_id is not None and user.id == owner_id:
        return
    if has_capability(user, capability):
        return
    raise Forbidden()
