from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .config import get_settings
from .db import lifespan_db
from .api.routers import health as health_router
from .api.routers import auth as auth_router
from .api.routers import activities as activities_router
from .api.routers import registrations as registrations_router
from .api.routers import teams as teams_router
from .api.routers import notifications as notifications_router
from .api.routers import events as events_router
from .api.routers import metrics as metrics_router
from .observability.logging import setup_logging
from .middleware.request_context import RequestContextMiddleware
from .observability.metrics import MetricsHTTPMiddleware
import uvicorn

settings = get_settings()
setup_logging()
ALLOWED_ORIGINS = [
    settings.FRONTEND_ORIGIN,
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with lifespan_db():
        yield


def create_app() -> FastAPI:
    app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(dict.fromkeys(ALLOWED_ORIGINS)),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[settings.REQUEST_ID_HEADER],
    )

    # then your custom middlewares
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(MetricsHTTPMiddleware)

    app.include_router(health_router.router)
    app.include_router(auth_router.router)
    app.include_router(activities_router.router)
    app.include_router(registrations_router.router)
    app.include_router(teams_router.router)
    app.include_router(notifications_router.router)
    app.include_router(events_router.router)
    app.include_router(metrics_router.router)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("roster.main:app", host=settings.APP_HOST, port=settings.APP_PORT, reload=settings.DEBUG)
