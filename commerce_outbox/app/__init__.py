"""FastAPI application hosting the outbox publisher and its operations API."""
