"""Shared test fixtures for the intake engine test suite."""

import copy
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from src.config.settings import Settings
from src.services.intake_service import IntakeService
from src.shared.intake_models import ChatTurn, IntakeSessionState
from src.shared.types import AgentRole, IntakeIntent, MessageRole


class InMemoryIntakeTransaction:
    """IntakeTransaction over plain dicts, shaped like the SQL rows."""

    def __init__(self, store: "InMemoryIntakeStore") -> None:
        self._store = store

    def _check(self, operation: str) -> None:
        if self._store.fail_on == operation:
            raise RuntimeError("database unavailable")

    async def get_session(self, session_id: str) -> IntakeSessionState | None:
        self._check("get_session")
        row = self._store.sessions.get(session_id)
        return IntakeSessionState.model_validate(row) if row is not None else None

    async def create_session(
        self, connection_id: str, values: dict[str, Any]
    ) -> IntakeSessionState:
        self._check("create_session")
        now = self._store.tick()
        row = {
            "id": str(uuid.uuid4()),
            "connection_id": connection_id,
            "created_at": now,
            "updated_at": now,
            "version": 0,
            **values,
        }
        self._store.sessions[row["id"]] = row
        return IntakeSessionState.model_validate(row)

    async def compare_and_update(
        self, session_id: str, expected_version: int, values: dict[str, Any]
    ) -> IntakeSessionState | None:
        self._check("compare_and_update")
        row = self._store.sessions.get(session_id)
        if row is None or self._store.stale_writes or row["version"] != expected_version:
            return None
        row.update(copy.deepcopy(values))
        row["version"] = expected_version + 1
        return IntakeSessionState.model_validate(row)

    async def add_message(
        self,
        session_id: str,
        role: MessageRole,
        content: str,
        agent: AgentRole | None = None,
    ) -> None:
        self._check("add_message")
        self._store.messages.setdefault(session_id, []).append(
            ChatTurn(role=role, content=content, agent=agent, created_at=self._store.tick())
        )

    async def list_messages(
        self, session_id: str, limit: int | None = None
    ) -> list[ChatTurn]:
        turns = list(self._store.messages.get(session_id, []))
        return turns[-limit:] if limit is not None else turns

    async def delete_messages(self, session_id: str) -> int:
        self._check("delete_messages")
        return len(self._store.messages.pop(session_id, []))

    async def list_sessions_for_connection(
        self, connection_id: str
    ) -> list[IntakeSessionState]:
        rows = [r for r in self._store.sessions.values() if r["connection_id"] == connection_id]
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        return [IntakeSessionState.model_validate(r) for r in rows]


class InMemoryIntakeStore:
    """IntakeStore fake with commit/rollback semantics.

    Attributes:
        fail_on: Transaction method name that raises when called.
        stale_writes: Make every compare_and_update lose the race.
    """

    def __init__(self) -> None:
        self.sessions: dict[str, dict[str, Any]] = {}
        self.messages: dict[str, list[ChatTurn]] = {}
        self.fail_on: str | None = None
        self.stale_writes = False
        self._clock = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    @asynccontextmanager
    async def transaction(self):
        snapshot = copy.deepcopy((self.sessions, self.messages))
        try:
            yield InMemoryIntakeTransaction(self)
        except BaseException:
            self.sessions, self.messages = snapshot
            raise


class RecordingIntentSink:
    """Intent sink that keeps every intent it receives."""

    def __init__(self) -> None:
        self.sent: list[tuple[IntakeIntent, dict[str, Any]]] = []

    async def send(self, intent: IntakeIntent, payload: dict[str, Any]) -> None:
        self.sent.append((intent, payload))


@pytest.fixture
def settings() -> Settings:
    """Provide test settings with safe defaults.

    Returns:
        Settings configured for testing (no real API calls).
    """
    return Settings(
        cloud_sql_password="test-password",
        cloud_sql_database="intake_test",
        openai_api_key="sk-test-fake-key",
        ai_timeout_seconds=0.5,
        ai_retry_backoff_seconds=0,
    )


@pytest.fixture
def store() -> InMemoryIntakeStore:
    """Empty in-memory intake store."""
    return InMemoryIntakeStore()


@pytest.fixture
def sink() -> RecordingIntentSink:
    """Intent sink that records deliveries."""
    return RecordingIntentSink()


@pytest.fixture
def service(
    store: InMemoryIntakeStore,
    sink: RecordingIntentSink,
    settings: Settings,
) -> IntakeService:
    """IntakeService wired to the in-memory store and recording sink."""
    return IntakeService(store, sinks=[sink], settings=settings)
