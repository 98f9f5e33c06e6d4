"""Event infrastructure for reliable event delivery.

This package provides the infrastructure for the transactional outbox pattern:
- EventOutbox model for storing undelivered events
- OutboxProcessor for delivering events to in-process handlers
- OutboxRepository for claiming and recording delivery outcomes
"""
