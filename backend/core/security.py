"""Request identity.

Authentication happens upstream; the gateway forwards the authenticated
user id in the ``X-User-ID`` header.
"""
from uuid import UUID

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_db
from core.errors import insufficient_permissions, invalid_uuid, raise_error, token_missing
from models.user import User

USER_ID_HEADER = "X-User-ID"


def parse_user_id(raw: str | None) -> UUID:
    if not raw:
        raise_error(token_missing(origin="security").error)
    try:
        return UUID(raw)
    except ValueError:
        raise_error(invalid_uuid(raw, field=USER_ID_HEADER, origin="security").error)


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> UUID:
    """FastAPI dependency resolving the authenticated user id."""
    return parse_user_id(x_user_id)


async def get_author_id(
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> UUID:
    """Authenticated user allowed to edit the catalogue (teachers and admins)."""
    user = await db.get(User, user_id)
    if user is None or not user.can_author:
        raise_error(insufficient_permissions("edit the course catalogue", user_id=str(user_id), origin="security").error)
    return user_id
