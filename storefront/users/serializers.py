from typing import Any, Dict

from ..common.db import isoformat
from .model import User


def user_brief(user: User) -> Dict[str, Any]:
    return {"id": user.id, "name": user.name, "email": user.email}


def user_to_dict(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "phone": user.phone,
        "address": user.address,
        "city": user.city,
        "state": user.state,
        "country": user.country,
        "zip_code": user.zip_code,
        "avatar": user.avatar,
        "date_of_birth": isoformat(user.date_of_birth),
        "last_login_at": isoformat(user.last_login_at),
        "created_at": isoformat(user.created_at),
        "updated_at": isoformat(user.updated_at),
    }
