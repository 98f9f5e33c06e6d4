"""Infrastructure: database sessions, the outbox publisher, logging and metrics."""
