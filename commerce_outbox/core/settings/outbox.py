"""Outbox publisher settings.

Controls how the background publisher polls the ``event_outbox`` table,
how many records it claims per iteration, and how failed deliveries are
retried and eventually quarantined.
"""

from __future__ import annotations

import os
import socket
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _default_instance_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class OutboxSettings(BaseSettings):
    """Outbox publisher configuration.

    Environment variables use OUTBOX_ prefix.
    Example: OUTBOX_POLL_INTERVAL=2.5, OUTBOX_MAX_RETRIES=5
    """

    enabled: bool = Field(
        default=True,
        description="Run the background publisher inside the application process.",
    )
    poll_interval: float = Field(
        default=5.0,
        gt=0,
        le=3600.0,
        description="Seconds between polls when the previous batch was not full.",
    )
    batch_size: int = Field(
        default=20,
        ge=1,
        le=10_000,
        description="Maximum records claimed per iteration.",
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        le=1000,
        description="Failed attempts after which a record is quarantined.",
    )
    handler_timeout: float = Field(
        default=30.0,
        ge=0,
        le=3600.0,
        description="Per-handler timeout in seconds (0 disables the timeout).",
    )
    retry_backoff_seconds: float = Field(
        default=0.0,
        ge=0,
        le=86_400.0,
        description=(
            "Base delay for exponential retry backoff. "
            "0 retries a failed record on the next poll."
        ),
    )
    lease_seconds: float = Field(
        default=60.0,
        gt=0,
        le=86_400.0,
        description="How long a claimed record stays invisible to other publishers.",
    )
    shutdown_timeout: float = Field(
        default=30.0,
        gt=0,
        le=600.0,
        description="Seconds to wait for the current batch on shutdown before cancelling.",
    )
    instance_id: str = Field(
        default_factory=_default_instance_id,
        min_length=1,
        max_length=100,
        description="Publisher identity written to the lease column.",
    )
    error_max_length: int = Field(
        default=1000,
        ge=50,
        le=100_000,
        description="Maximum stored length of last_error.",
    )
    strict_registry: bool = Field(
        default=False,
        description="Fail startup when a registered event type has no handlers.",
    )
    handler_modules: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description=(
            "Modules imported at startup to register event types and handlers. "
            "Comma-separated in the environment."
        ),
    )

    model_config = SettingsConfigDict(
        env_prefix="OUTBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    @property
    def effective_handler_timeout(self) -> float | None:
        """Handler timeout, or None when disabled."""
        return self.handler_timeout or None

    @field_validator("handler_modules", mode="before")
    @classmethod
    def _split_modules(cls, value: object) -> object:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value
