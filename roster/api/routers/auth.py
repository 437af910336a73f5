from __future__ import annotations
from fastapi import APIRouter, Depends, Response

from ...auth.deps import get_current_user, _cookie_opts
from ...models import User

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me")
async def me(current: User = Depends(get_current_user)):
    return {
        "id": str(current.id),
        "name": current.name,
        "email": current.email,
        "photo_url": current.photo_url,
        "is_admin": current.is_admin,
    }


@router.post("/logout")
async def logout(response: Response):
    opts = _cookie_opts()
    response.delete_cookie(key=opts["key"], path=opts["path"])
    return {"ok": True}
