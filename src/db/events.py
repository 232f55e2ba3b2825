"""Audit trail for intake sessions in the append-only intake_events table."""

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models import IntakeEvent


async def _already_logged(session: AsyncSession, idempotency_key: str) -> bool:
    result = await session.execute(
        select(IntakeEvent.event_id).where(IntakeEvent.idempotency_key == idempotency_key)
    )
    return result.first() is not None


async def log_event(
    session: AsyncSession,
    *,
    session_id: uuid.UUID,
    event_type: str,
    idempotency_key: str | None = None,
    connection_id: str | None = None,
    actor_id: str | None = None,
    payload: dict[str, Any] | None = None,
) -> IntakeEvent | None:
    """Append one audit row for an intake session.

    Rows are never updated or deleted. A redelivered intent carries the
    same idempotency key and is skipped.

    Args:
        session: Session of the surrounding unit of work.
        session_id: Intake session the event is about.
        event_type: Intent name, e.g. "intake_completed".
        idempotency_key: Dedupe key; skipped when already present.
        connection_id: Patient-provider connection of the session.
        actor_id: User behind the event, if any.
        payload: Intent payload.

    Returns:
        The new IntakeEvent, or None when the key was already logged.
    """
    if idempotency_key and await _already_logged(session, idempotency_key):
        return None

    event = IntakeEvent(
        event_id=uuid.uuid4(),
        session_id=session_id,
        connection_id=connection_id,
        event_type=event_type,
        actor_id=actor_id,
        idempotency_key=idempotency_key,
        payload=dict(payload or {}),
        created_at=datetime.now(timezone.utc),
    )
    session.add(event)
    await session.flush()
    return event
