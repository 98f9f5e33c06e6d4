"""Command line interface for the outbox service."""
