from __future__ import annotations
import logging
import time
from datetime import datetime, timezone
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from ..observability.logging import get_request_id, request_id_var
from ..config import get_settings
from ..auth.jwt import verify_jwt

S = get_settings()
log = logging.getLogger("roster.request")


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        rid = get_request_id(request)
        token_var = request_id_var.set(rid)
        start = time.perf_counter()
        timestamp = datetime.now(timezone.utc).isoformat()

        # user id from the session cookie, if any; auth itself happens in deps
        user_id = None
        token = request.cookies.get(S.SESSION_COOKIE_NAME)
        if token:
            try:
                user_id = verify_jwt(token).get("sub")
            except Exception:
                # Invalid/expired token - logged as anonymous
                pass
        user_info = f"user_id={user_id or 'anonymous'}"

        try:
            try:
                response = await call_next(request)
            except Exception:
                dur_ms = int((time.perf_counter() - start) * 1000)
                log.error(
                    "unhandled_error",
                    extra={"extra": f"timestamp={timestamp} path={request.url.path} method={request.method} "
                                    f"ms={dur_ms} {user_info}"},
                )
                raise

            dur_ms = int((time.perf_counter() - start) * 1000)
            response.headers[S.REQUEST_ID_HEADER] = rid
            log.info(
                "request",
                extra={"extra": f"timestamp={timestamp} path={request.url.path} method={request.method} "
                                f"status={response.status_code} ms={dur_ms} {user_info}"},
            )
            return response
        finally:
            request_id_var.reset(token_var)
