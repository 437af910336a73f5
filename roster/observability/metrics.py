from __future__ import annotations
import time
from fastapi import Response, Request
from prometheus_client import (
    Counter, Histogram, CollectorRegistry,
    CONTENT_TYPE_LATEST, generate_latest
)
from ..config import get_settings

S = get_settings()

REGISTRY = CollectorRegistry(auto_describe=True)

# ---------- Metric definitions ----------
HTTP_REQS = Counter("http_requests_total", "HTTP requests", ["method", "path", "status"], registry=REGISTRY)
HTTP_LATENCY = Histogram("http_request_duration_seconds", "HTTP request latency", ["method", "path"], registry=REGISTRY)

REG_CONFIRMED  = Counter("reg_confirmed_total",  "Registrations confirmed",  ["activity_id"], registry=REGISTRY)
REG_WAITLISTED = Counter("reg_waitlisted_total", "Registrations waitlisted", ["activity_id"], registry=REGISTRY)
REG_CANCELLED  = Counter("reg_cancelled_total",  "Registrations cancelled",  ["activity_id"], registry=REGISTRY)
PROMOTED       = Counter("reg_promoted_total",   "Waitlist units promoted",  ["activity_id"], registry=REGISTRY)
SLOT_OPENED    = Counter("slot_opened_total",    "Vacated slots with no waitlist candidate", ["activity_id"], registry=REGISTRY)

TEAM_INVITES   = Counter("team_invites_total",   "Team invites sent",        ["activity_id"], registry=REGISTRY)
TEAM_ACCEPTED  = Counter("team_accepted_total",  "Team invites accepted",    ["activity_id"], registry=REGISTRY)
TEAM_DISSOLVED = Counter("team_dissolved_total", "Teams dissolved",          ["activity_id", "reason"], registry=REGISTRY)

TX_RETRIES   = Counter("tx_retries_total",   "Transactions retried after a conflict", ["op"], registry=REGISTRY)
TX_CONFLICTS = Counter("tx_conflicts_total", "Transactions that exhausted retries",   ["op"], registry=REGISTRY)

ACTIVITIES_AUTOCLOSED = Counter("activities_autoclosed_total", "Activities auto-closed after start", registry=REGISTRY)
NOTIFICATIONS_SENT    = Counter("notifications_dispatched_total", "Notifications published to pub/sub", registry=REGISTRY)

# ---------- /metrics endpoint factory ----------
def metrics_app():
    async def _metrics(_: Request):
        if not S.METRICS_ENABLED:
            return Response(status_code=404)
        data = generate_latest(REGISTRY)
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)
    return _metrics

# ---------- HTTP middleware for latency/counters ----------
class MetricsHTTPMiddleware:
    def __init__(self, app):
        self.app = app
    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            return await self.app(scope, receive, send)
        method = scope["method"]
        # route template keeps label cardinality bounded
        t0 = time.perf_counter()

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                route = scope.get("route")
                path = getattr(route, "path", scope["path"])
                HTTP_REQS.labels(method=method, path=path, status=message["status"]).inc()
                HTTP_LATENCY.labels(method=method, path=path).observe(time.perf_counter() - t0)
            await send(message)

        await self.app(scope, receive, send_wrapper)
