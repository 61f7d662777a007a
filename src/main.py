"""Engineering request portal: FastAPI app assembly.

Usage:
    python -m src.main

Mounts the staff API (/api), the admin API (/admin) and /health. The audit
trail subscribes to the event bus for the lifetime of the app.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from src.admin.web import router as admin_router
from src.config import settings
from src.db.engine import db_lifespan, ping_cache
from src.events import start_event_system, stop_event_system, subscribe, unsubscribe
from src.portal.web import router as portal_router
from src.security.audit import audit_on_event

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Stdlib logging for every module, structlog rendering on top of it."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        stream=sys.stdout,
    )
    renderer = structlog.processors.JSONRenderer() if settings.is_production else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )
    # SQL echo goes through the engine logger, not basicConfig's level
    if not settings.db.database_echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info(
        "Request portal starting (env=%s, global access=%s, booking rules=%s)",
        settings.environment,
        sorted(settings.routing.global_departments),
        "on" if settings.routing.routing_use_booking_rules else "off",
    )
    async with db_lifespan():
        subscribe(audit_on_event)
        await start_event_system()
        try:
            yield
        finally:
            # Flush queued events into the audit trail before the DB closes
            await stop_event_system()
            unsubscribe(audit_on_event)
    logger.info("Request portal stopped")


configure_logging()

app = FastAPI(
    title="Engineering Request Portal API",
    description="Site-visit and shop-drawing requests routed to engineering PICs",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(portal_router)
app.include_router(admin_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Liveness plus directory cache reachability."""
    return {
        "status": "ok",
        "environment": settings.environment,
        "directory_cache": "ok" if await ping_cache() else "unavailable",
    }


if __name__ == "__main__":
    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
