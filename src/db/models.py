"""SQLAlchemy ORM models for the intake operational database."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from src.shared.types import INITIAL_AGENT, IntakeStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class IntakeSession(Base):
    """One patient intake conversation and its structured record.

    Document columns hold camelCase JSON written by
    src.shared.intake_models.encode_document.

    Attributes:
        id: Primary key UUID.
        connection_id: Patient-provider connection the intake belongs to.
        version: Optimistic concurrency counter, bumped on every write.
    """

    __tablename__ = "intake_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    connection_id: Mapped[str] = mapped_column(String(100), index=True)
    status: Mapped[str] = mapped_column(String(20), default=IntakeStatus.NOT_STARTED.value)
    medical_data: Mapped[dict] = mapped_column(JSONB, default=dict)
    clinical_handover: Mapped[dict | None] = mapped_column(JSONB)
    doctor_thought: Mapped[dict | None] = mapped_column(JSONB)
    completeness: Mapped[int] = mapped_column(Integer, default=0)
    current_agent: Mapped[str] = mapped_column(String(40), default=INITIAL_AGENT.value)
    follow_up_counts: Mapped[dict] = mapped_column(JSONB, default=dict)
    answered_topics: Mapped[list] = mapped_column(JSONB, default=list)
    consecutive_errors: Mapped[int] = mapped_column(Integer, default=0)
    ai_message_count: Mapped[int] = mapped_column(Integer, default=0)
    has_offered_conclusion: Mapped[bool] = mapped_column(Boolean, default=False)
    termination_reason: Mapped[str | None] = mapped_column(String(30))
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reviewed_by: Mapped[str | None] = mapped_column(String(100))
    version: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_intake_sessions_connection_status", "connection_id", "status"),
    )

    messages: Mapped[list["ChatMessage"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class ChatMessage(Base):
    """One patient or model message in an intake conversation.

    Attributes:
        message_id: Primary key UUID.
        role: "user" or "model".
        agent: Persona that authored a model message.
    """

    __tablename__ = "chat_messages"

    message_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("intake_sessions.id", ondelete="CASCADE"),
    )
    role: Mapped[str] = mapped_column(String(10))
    content: Mapped[str] = mapped_column(Text)
    agent: Mapped[str | None] = mapped_column(String(40))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_chat_messages_session_created", "session_id", "created_at"),
    )

    session: Mapped["IntakeSession"] = relationship(back_populates="messages")


class IntakeEvent(Base):
    """Append-only audit log of intake intents with idempotency.

    Rows outlive the session they describe, so session_id carries no
    foreign key.

    Attributes:
        event_id: Primary key UUID.
        idempotency_key: Prevents duplicate audit rows on redelivery.
    """

    __tablename__ = "intake_events"

    event_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    session_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True)
    connection_id: Mapped[str | None] = mapped_column(String(100))
    event_type: Mapped[str] = mapped_column(String(50), index=True)
    payload: Mapped[dict | None] = mapped_column(JSONB, default=dict)
    actor_id: Mapped[str | None] = mapped_column(String(100))
    idempotency_key: Mapped[str | None] = mapped_column(String(200), unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index(
            "ix_intake_events_session_type_created",
            "session_id",
            "event_type",
            "created_at",
        ),
    )
