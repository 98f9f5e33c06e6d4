"""FastAPI application factory."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import FastAPI

from commerce_outbox.app.exception_handlers import configure_exception_handlers
from commerce_outbox.app.lifespan import lifespan
from commerce_outbox.app.router import setup_routers
from commerce_outbox.core.events.registry import event_registry
from commerce_outbox.core.settings import get_app_settings

if TYPE_CHECKING:
    from commerce_outbox.core.events.registry import EventRegistry


def create_app(registry: EventRegistry | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        registry: Event registry the publisher dispatches with; the
            process-wide registry if omitted.

    Returns:
        Configured FastAPI application instance.
    """
    app_settings = get_app_settings()

    app = FastAPI(
        title=app_settings.title,
        version=app_settings.version,
        debug=app_settings.debug,
        lifespan=lifespan,
    )
    app.state.event_registry = registry if registry is not None else event_registry

    configure_exception_handlers(app)
    setup_routers(app, app_settings)

    return app


# Application instance for uvicorn
app = create_app()
