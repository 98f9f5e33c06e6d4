"""Outbox operations API: backlog statistics, quarantine inspection and requeue."""
