"""Application lifespan management.

Startup Order:
1. Core (logging, application info metric)
2. Database (optional table creation)
3. Event registry (handler modules, configuration check)
4. Outbox publisher (requires database)

Shutdown Order: Reverse of startup
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from commerce_outbox.core.events.registry import event_registry, import_handler_modules
from commerce_outbox.core.settings import (
    get_app_settings,
    get_db_settings,
    get_logging_settings,
    get_outbox_settings,
)
from commerce_outbox.infra.logging.config import setup_logging
from commerce_outbox.infra.metrics.prometheus import application_info

# Lazy imports inside functions:
# - commerce_outbox.infra.database.session
# - commerce_outbox.infra.events.outbox.processor

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

    from commerce_outbox.core.events.registry import EventRegistry

logger = logging.getLogger(__name__)


async def _startup_core() -> None:
    """Configure logging and publish application info."""
    app = get_app_settings()

    setup_logging(log_settings=get_logging_settings(), force=True)
    logger.info(
        "Application starting",
        extra={"service": app.service_name, "environment": app.environment},
    )

    application_info.info(
        {
            "version": app.version,
            "service": app.service_name,
            "environment": app.environment,
        }
    )


async def _startup_database() -> None:
    """Create tables when configured to (development only)."""
    from commerce_outbox.infra.database.session import ensure_tables

    db = get_db_settings()
    if not db.is_configured:
        logger.warning("Database disabled, outbox unavailable")
        return

    if db.create_tables:
        await ensure_tables()


async def _startup_registry(registry: EventRegistry) -> None:
    """Import handler modules and check every event type has a subscriber.

    With ``OUTBOX_STRICT_REGISTRY`` an unhandled type fails startup.
    """
    outbox = get_outbox_settings()
    import_handler_modules(outbox.handler_modules)
    registry.validate(strict=outbox.strict_registry)


async def _startup_outbox(registry: EventRegistry) -> None:
    """Start the background outbox publisher."""
    from commerce_outbox.infra.events.outbox.processor import start_outbox_processor

    if not get_db_settings().is_configured:
        return

    try:
        processor = await start_outbox_processor(get_outbox_settings(), registry=registry)
    except Exception as e:
        logger.warning(
            "Failed to start outbox processor, events will not be delivered",
            extra={"error": str(e)},
        )
        return

    if processor is not None:
        logger.info("Outbox processor running", extra={"instance_id": processor.instance_id})


async def _shutdown_outbox() -> None:
    from commerce_outbox.infra.events.outbox.processor import stop_outbox_processor

    await stop_outbox_processor()


async def _shutdown_database() -> None:
    from commerce_outbox.infra.database.session import close_database

    await close_database()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle.

    Args:
        app: FastAPI application instance; ``app.state.event_registry``
            selects the registry the publisher dispatches with.

    Yields:
        None during application runtime.
    """
    registry: EventRegistry = getattr(app.state, "event_registry", event_registry)

    await _startup_core()
    await _startup_database()
    await _startup_registry(registry)
    await _startup_outbox(registry)

    app_settings = get_app_settings()
    logger.info(
        "Application startup complete",
        extra={
            "service": app_settings.service_name,
            "environment": app_settings.environment,
            "event_types": len(registry),
            "outbox_enabled": get_outbox_settings().enabled,
        },
    )

    yield

    logger.info("Application shutting down", extra={"service": app_settings.service_name})

    await _shutdown_outbox()
    await _shutdown_database()

    logger.info("Application shutdown complete")


__all__ = ["lifespan"]
