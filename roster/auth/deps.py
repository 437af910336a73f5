from __future__ import annotations
import uuid
from typing import Optional

import jwt  # PyJWT
from fastapi import Depends, HTTPException, Request
from fastapi import status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..db import get_db
from ..models import User
from ..repos import users as users_repo
from .jwt import verify_jwt

S = get_settings()

# claims that describe the token, not the person
_TOKEN_CLAIMS = {"iss", "aud", "iat", "exp", "nbf", "sub"}


def _cookie_opts():
    return {
        "key": S.SESSION_COOKIE_NAME,
        "httponly": True,
        "secure": S.ENV == "prod",
        "samesite": "lax",
        "max_age": S.JWT_EXPIRE_MINUTES * 60,
        "path": "/",
    }


async def get_current_user(request: Request, db: AsyncSession = Depends(get_db)) -> User:
    token: Optional[str] = request.cookies.get(S.SESSION_COOKIE_NAME)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    try:
        claims = verify_jwt(token)
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session")

    try:
        user_id = uuid.UUID(str(claims.get("sub")))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session")

    profile = {k: v for k, v in claims.items() if k not in _TOKEN_CLAIMS}
    user = await users_repo.upsert_from_claims(db, user_id=user_id, claims=profile, email=claims.get("email"))
    # services open their own transaction; keep the projection
    await db.commit()
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin only")
    return user
