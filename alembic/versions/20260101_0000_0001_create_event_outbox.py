"""create event_outbox

Revision ID: 0001
Revises:
Create Date: 2026-01-01 00:00:00

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "event_outbox",
        sa.Column("id", sa.Uuid(), nullable=False, comment="UUID v7 primary key (time-sortable)"),
        sa.Column("event_type", sa.String(length=100), nullable=False, comment="Event type tag"),
        sa.Column("event_version", sa.Integer(), nullable=False, comment="Event schema version"),
        sa.Column("payload", sa.Text(), nullable=False, comment="JSON-serialized event data"),
        sa.Column(
            "occurred_at",
            sa.DateTime(timezone=True),
            nullable=False,
            comment="When the event was captured",
        ),
        sa.Column(
            "sequence",
            sa.Integer(),
            nullable=False,
            comment="Position within the originating transaction",
        ),
        sa.Column(
            "correlation_id",
            sa.String(length=36),
            nullable=True,
            comment="Distributed tracing correlation ID",
        ),
        sa.Column(
            "aggregate_type",
            sa.String(length=100),
            nullable=True,
            comment="Aggregate type (e.g., Order, Cart)",
        ),
        sa.Column("aggregate_id", sa.String(length=100), nullable=True, comment="Aggregate ID"),
        sa.Column(
            "processed_at",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="When the event was delivered to all subscribers",
        ),
        sa.Column(
            "retry_count",
            sa.Integer(),
            server_default="0",
            nullable=False,
            comment="Number of failed delivery attempts",
        ),
        sa.Column("last_error", sa.Text(), nullable=True, comment="Last delivery error"),
        sa.Column(
            "next_retry_at",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="Scheduled time for next retry attempt",
        ),
        sa.Column(
            "dead_lettered_at",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="When the event exhausted its retries",
        ),
        sa.Column(
            "locked_by",
            sa.String(length=100),
            nullable=True,
            comment="Publisher instance holding the claim",
        ),
        sa.Column(
            "locked_until",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="Claim expiry",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("(CURRENT_TIMESTAMP)"),
            nullable=False,
            comment="Timestamp of record creation",
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("(CURRENT_TIMESTAMP)"),
            nullable=False,
            comment="Timestamp of last update",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_event_outbox")),
    )
    op.create_index(
        op.f("ix_event_outbox_event_type"), "event_outbox", ["event_type"], unique=False
    )
    op.create_index(
        op.f("ix_event_outbox_correlation_id"), "event_outbox", ["correlation_id"], unique=False
    )
    op.create_index(
        op.f("ix_event_outbox_dead_lettered_at"),
        "event_outbox",
        ["dead_lettered_at"],
        unique=False,
    )
    op.create_index(
        "ix_event_outbox_pending",
        "event_outbox",
        ["processed_at", "occurred_at", "sequence"],
        unique=False,
        postgresql_where=sa.text("processed_at IS NULL"),
    )
    op.create_index(
        "ix_event_outbox_aggregate",
        "event_outbox",
        ["aggregate_type", "aggregate_id", "occurred_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_event_outbox_aggregate", table_name="event_outbox")
    op.drop_index("ix_event_outbox_pending", table_name="event_outbox")
    op.drop_index(op.f("ix_event_outbox_dead_lettered_at"), table_name="event_outbox")
    op.drop_index(op.f("ix_event_outbox_correlation_id"), table_name="event_outbox")
    op.drop_index(op.f("ix_event_outbox_event_type"), table_name="event_outbox")
    op.drop_table("event_outbox")
