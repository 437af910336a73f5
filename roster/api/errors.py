from __future__ import annotations
from fastapi import HTTPException, status

from ..services.errors import ResultCode, RosterError

# one place to translate service outcomes into HTTP
HTTP_STATUS: dict[ResultCode, int] = {
    ResultCode.ACTIVITY_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ResultCode.ALREADY_REGISTERED: status.HTTP_409_CONFLICT,
    ResultCode.ALREADY_INVITED: status.HTTP_409_CONFLICT,
    ResultCode.ALREADY_RESPONDED: status.HTTP_409_CONFLICT,
    ResultCode.CAPACITY_CONFLICT: status.HTTP_409_CONFLICT,
    ResultCode.INVITE_NO_LONGER_VALID: status.HTTP_410_GONE,
    ResultCode.NOT_TEAM_MEMBER: status.HTTP_403_FORBIDDEN,
    ResultCode.INVALID_INVITE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ResultCode.NOT_TEAM_ACTIVITY: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ResultCode.ACTIVITY_CLOSED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ResultCode.NOT_REGISTERED: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def to_http(e: RosterError) -> HTTPException:
    code = HTTP_STATUS.get(e.code, status.HTTP_400_BAD_REQUEST)
    headers = {"Retry-After": "1"} if e.retryable else None
    return HTTPException(
        status_code=code,
        detail={"code": e.code.value, "message": e.detail, "retryable": e.retryable},
        headers=headers,
    )
