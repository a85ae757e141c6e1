import hashlib
import hmac
import logging
import secrets
from datetime import timedelta
from typing import Optional, Tuple

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..common.database import AsyncSessionLocal
from ..common.db import utcnow
from .model import AccessToken, User

_logger = logging.getLogger(__name__)

TOKEN_NAME = "auth_token"

# last_used_at is only rewritten once it is older than this
TOUCH_INTERVAL = timedelta(minutes=1)


def _digest(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


async def issue_token(session: AsyncSession, user: User, name: str = TOKEN_NAME) -> str:
    """Add a token row to ``session``; the caller commits. Returns ``"<id>|<secret>"``."""
    secret = secrets.token_hex(20)
    token = AccessToken(user_id=user.id, name=name, token_hash=_digest(secret))
    session.add(token)
    await session.flush()  # assign PK
    return f"{token.id}|{secret}"


def bearer_token(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    scheme, _, value = header.strip().partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


async def resolve_token(raw: str) -> Optional[Tuple[User, int]]:
    token_id, sep, secret = raw.partition("|")
    if not sep or not token_id.isdigit() or not secret:
        return None
    async with AsyncSessionLocal() as session:
        token = await session.get(AccessToken, int(token_id), options=[selectinload(AccessToken.user)])
        if token is None or not hmac.compare_digest(token.token_hash, _digest(secret)):
            return None
        now = utcnow()
        if token.last_used_at is None or now - token.last_used_at >= TOUCH_INTERVAL:
            token.last_used_at = now
            await session.commit()
        return token.user, token.id


async def revoke_token(token_id: int) -> None:
    async with AsyncSessionLocal() as session:
        await session.execute(sa.delete(AccessToken).where(AccessToken.id == token_id))
        await session.commit()
    _logger.info("Token revoked | token_id=%s", token_id)
