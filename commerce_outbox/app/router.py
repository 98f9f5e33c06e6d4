"""Router registry and setup."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from commerce_outbox.core.settings import get_app_settings
from commerce_outbox.features.metrics.router import router as metrics_router
from commerce_outbox.features.outbox.router import router as outbox_router

if TYPE_CHECKING:
    from fastapi import FastAPI

    from commerce_outbox.core.settings.app import AppSettings

logger = logging.getLogger(__name__)


def setup_routers(app: FastAPI, app_settings: AppSettings | None = None) -> None:
    """Register all feature routers with the application."""
    app_settings = app_settings or get_app_settings()
    api_prefix = app_settings.api_prefix

    # Metrics endpoint without prefix, accessible at /metrics
    app.include_router(metrics_router, tags=["observability"])

    app.include_router(outbox_router, prefix=api_prefix, tags=["outbox"])
    logger.debug("Outbox operations router registered at %s/outbox", api_prefix)
