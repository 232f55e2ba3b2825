"""Tests for append-only intake event logging."""

import uuid
from unittest.mock import AsyncMock, MagicMock

from src.db.events import log_event
from src.db.models import IntakeEvent


def _session_with_existing(existing: object | None) -> AsyncMock:
    session = AsyncMock()
    session.add = MagicMock()
    result = MagicMock()
    result.first.return_value = existing
    session.execute.return_value = result
    return session


class TestLogEvent:
    """Event insertion and deduplication."""

    async def test_creates_event(self) -> None:
        """A new event is added and flushed."""
        session = _session_with_existing(None)
        session_id = uuid.uuid4()

        event = await log_event(
            session,
            session_id=session_id,
            event_type="intake_reset",
            idempotency_key="intake_reset:abc:3",
            actor_id="dr-1",
            payload={"previous_status": "ready"},
        )

        assert isinstance(event, IntakeEvent)
        assert event.session_id == session_id
        assert event.payload == {"previous_status": "ready"}
        session.add.assert_called_once_with(event)
        session.flush.assert_awaited_once()

    async def test_duplicate_key_skipped(self) -> None:
        """An existing idempotency key returns None without inserting."""
        session = _session_with_existing(MagicMock())

        event = await log_event(
            session,
            session_id=uuid.uuid4(),
            event_type="intake_completed",
            idempotency_key="intake_completed:abc:5",
        )

        assert event is None
        session.add.assert_not_called()

    async def test_no_key_skips_lookup(self) -> None:
        """Without a key there is no dedup query."""
        session = _session_with_existing(None)

        event = await log_event(session, session_id=uuid.uuid4(), event_type="intake_reset")

        assert event is not None
        assert event.payload == {}
        session.execute.assert_not_awaited()
