import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from negosyo.core.async_tasks import run_periodic
from negosyo.database import init_db

APP_VERSION = "0.1.0"
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup: create tables
    await init_db()
    from negosyo.config import settings
    from negosyo.services import analytics_service, outbox_service

    # Deliver notifications, transcriptions and enrichment pushes
    outbox_task = asyncio.create_task(run_periodic(
        outbox_service.dispatch_pending,
        interval_seconds=settings.outbox_poll_interval_seconds,
        initial_delay_seconds=5,
        name="outbox dispatch",
    ))

    # Nightly analytics reconciliation, once per UTC day at the configured hour
    last_reconciled: dict[str, date | None] = {"day": None}

    async def _reconcile_if_due() -> None:
        now = datetime.now(timezone.utc)
        if now.hour != settings.analytics_reconcile_hour_utc or last_reconciled["day"] == now.date():
            return
        await analytics_service.reconcile_recent_months(now)
        last_reconciled["day"] = now.date()

    reconcile_task = asyncio.create_task(run_periodic(
        _reconcile_if_due, interval_seconds=600, initial_delay_seconds=60, name="analytics reconciliation",
    ))

    yield

    # Shutdown: cancel background tasks and dispose connection pool
    outbox_task.cancel()
    reconcile_task.cancel()

    from negosyo.database import dispose_engine

    await dispose_engine()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


def create_app() -> FastAPI:
    app = FastAPI(
        title="Negosyo Digital",
        description="Field capture of small businesses, from offline draft to paid website",
        version=APP_VERSION,
        lifespan=lifespan,
    )

    # CORS configurable via CORS_ORIGINS env var
    from negosyo.config import settings

    allowed_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(SecurityHeadersMiddleware)

    from negosyo.api import API_PREFIX, API_ROUTERS

    for router in API_ROUTERS:
        app.include_router(router, prefix=API_PREFIX)

    @app.get("/")
    async def root() -> dict[str, str]:
        return {
            "name": "Negosyo Digital",
            "version": APP_VERSION,
            "docs": "/docs",
            "health": f"{API_PREFIX}/health",
        }

    return app


app = create_app()
