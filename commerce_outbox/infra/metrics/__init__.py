"""Prometheus metrics."""

from commerce_outbox.infra.metrics.prometheus import REGISTRY

__all__ = ["REGISTRY"]
