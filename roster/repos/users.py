from __future__ import annotations
import uuid
from typing import Any, Mapping, Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from ..models import User
from ..domain.profile import normalize_profile


async def get_by_id(db: AsyncSession, user_id: uuid.UUID) -> Optional[User]:
    res = await db.execute(select(User).where(User.id == user_id))
    return res.scalar_one_or_none()


async def get_many(db: AsyncSession, user_ids: Sequence[uuid.UUID]) -> dict[uuid.UUID, User]:
    if not user_ids:
        return {}
    res = await db.execute(select(User).where(User.id.in_(list(user_ids))))
    return {u.id: u for u in res.scalars().all()}


async def upsert_from_claims(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    claims: Mapping[str, Any],
    email: Optional[str] = None,
) -> User:
    """Create or refresh the local projection of an identity-provider user."""
    prof = normalize_profile(claims, fallback_name=email.split("@")[0] if email else None)
    raw = {k: v for k, v in claims.items() if isinstance(v, (str, int, float, bool)) or v is None}

    user = await get_by_id(db, user_id)
    if user:
        changed = False
        if user.name != prof.name:
            user.name = prof.name
            changed = True
        if prof.photo_url and user.photo_url != prof.photo_url:
            user.photo_url = prof.photo_url
            changed = True
        if email and user.email != email:
            user.email = email
            changed = True
        if user.profile != raw:
            user.profile = raw
            changed = True
        if changed:
            await db.flush()
        return user

    user = User(id=user_id, name=prof.name, photo_url=prof.photo_url, email=email, profile=raw)
    db.add(user)
    await db.flush()
    return user
