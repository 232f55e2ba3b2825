"""create_intake_tables

Revision ID: d4e5f6a7b8c9
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "d4e5f6a7b8c9"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Add intake_sessions, chat_messages and intake_events tables."""
    op.create_table(
        "intake_sessions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("connection_id", sa.String(100), nullable=False),
        sa.Column(
            "status",
            sa.String(20),
            server_default="not_started",
            nullable=False,
        ),
        sa.Column(
            "medical_data",
            postgresql.JSONB(),
            server_default="{}",
            nullable=False,
        ),
        sa.Column("clinical_handover", postgresql.JSONB()),
        sa.Column("doctor_thought", postgresql.JSONB()),
        sa.Column("completeness", sa.Integer(), server_default="0", nullable=False),
        sa.Column(
            "current_agent",
            sa.String(40),
            server_default="Triage",
            nullable=False,
        ),
        sa.Column(
            "follow_up_counts",
            postgresql.JSONB(),
            server_default="{}",
            nullable=False,
        ),
        sa.Column(
            "answered_topics",
            postgresql.JSONB(),
            server_default="[]",
            nullable=False,
        ),
        sa.Column("consecutive_errors", sa.Integer(), server_default="0", nullable=False),
        sa.Column("ai_message_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column(
            "has_offered_conclusion",
            sa.Boolean(),
            server_default="false",
            nullable=False,
        ),
        sa.Column("termination_reason", sa.String(30)),
        sa.Column("started_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("reviewed_at", sa.DateTime(timezone=True)),
        sa.Column("reviewed_by", sa.String(100)),
        sa.Column("version", sa.Integer(), server_default="0", nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.CheckConstraint(
            "completeness >= 0 AND completeness <= 100",
            name="ck_intake_sessions_completeness_range",
        ),
    )
    op.create_index(
        "ix_intake_sessions_connection_id",
        "intake_sessions",
        ["connection_id"],
    )
    op.create_index(
        "ix_intake_sessions_connection_status",
        "intake_sessions",
        ["connection_id", "status"],
    )

    op.create_table(
        "chat_messages",
        sa.Column("message_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "session_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("intake_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.String(10), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("agent", sa.String(40)),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_chat_messages_session_created",
        "chat_messages",
        ["session_id", "created_at"],
    )

    op.create_table(
        "intake_events",
        sa.Column("event_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("session_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("connection_id", sa.String(100)),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("payload", postgresql.JSONB(), server_default="{}"),
        sa.Column("actor_id", sa.String(100)),
        sa.Column("idempotency_key", sa.String(200), unique=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    )
    op.create_index("ix_intake_events_session_id", "intake_events", ["session_id"])
    op.create_index("ix_intake_events_event_type", "intake_events", ["event_type"])
    op.create_index(
        "ix_intake_events_session_type_created",
        "intake_events",
        ["session_id", "event_type", "created_at"],
    )


def downgrade() -> None:
    """Remove intake tables."""
    op.drop_table("intake_events")
    op.drop_table("chat_messages")
    op.drop_table("intake_sessions")
