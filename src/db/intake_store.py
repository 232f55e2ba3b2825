"""Intake session store: transactional access to sessions and messages.

The sequencer only talks to the IntakeStore / IntakeTransaction
protocols. SqlIntakeStore is the Postgres implementation; every
``transaction()`` block is one database transaction that commits on
exit and rolls back on any exception.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.models import ChatMessage, IntakeSession
from src.db.session import session_scope
from src.shared.intake_models import (
    SBAR,
    ChatTurn,
    DoctorThought,
    IntakeSessionState,
    MedicalData,
    decode_document,
)
from src.shared.types import AgentRole, MessageRole


class IntakeTransaction(Protocol):
    """Operations available inside one store transaction."""

    async def get_session(self, session_id: str) -> IntakeSessionState | None: ...

    async def create_session(
        self, connection_id: str, values: dict[str, Any]
    ) -> IntakeSessionState: ...

    async def compare_and_update(
        self, session_id: str, expected_version: int, values: dict[str, Any]
    ) -> IntakeSessionState | None: ...

    async def add_message(
        self,
        session_id: str,
        role: MessageRole,
        content: str,
        agent: AgentRole | None = None,
    ) -> None: ...

    async def list_messages(
        self, session_id: str, limit: int | None = None
    ) -> list[ChatTurn]: ...

    async def delete_messages(self, session_id: str) -> int: ...

    async def list_sessions_for_connection(
        self, connection_id: str
    ) -> list[IntakeSessionState]: ...


class IntakeStore(Protocol):
    """Factory for store transactions."""

    def transaction(self) -> AbstractAsyncContextManager[IntakeTransaction]: ...


def _parse_id(session_id: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(session_id))
    except ValueError:
        return None


def to_state(row: IntakeSession) -> IntakeSessionState:
    """Convert an intake_sessions row into a session snapshot.

    Args:
        row: ORM row.

    Returns:
        IntakeSessionState with decoded documents.
    """
    return IntakeSessionState(
        id=str(row.id),
        connection_id=row.connection_id,
        status=row.status,
        medical_data=decode_document(MedicalData, row.medical_data) or MedicalData(),
        clinical_handover=decode_document(SBAR, row.clinical_handover),
        doctor_thought=decode_document(DoctorThought, row.doctor_thought),
        completeness=row.completeness,
        current_agent=row.current_agent,
        follow_up_counts=row.follow_up_counts or {},
        answered_topics=row.answered_topics or [],
        consecutive_errors=row.consecutive_errors,
        ai_message_count=row.ai_message_count,
        has_offered_conclusion=row.has_offered_conclusion,
        termination_reason=row.termination_reason,
        started_at=row.started_at,
        completed_at=row.completed_at,
        reviewed_at=row.reviewed_at,
        reviewed_by=row.reviewed_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
        version=row.version,
    )


class SqlIntakeTransaction:
    """IntakeTransaction bound to one SQLAlchemy AsyncSession."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_session(self, session_id: str) -> IntakeSessionState | None:
        """Load a session snapshot by id.

        Args:
            session_id: Intake session UUID string.

        Returns:
            Snapshot if found, else None (malformed ids included).
        """
        uid = _parse_id(session_id)
        if uid is None:
            return None
        row = await self._session.get(IntakeSession, uid, populate_existing=True)
        return to_state(row) if row is not None else None

    async def create_session(
        self,
        connection_id: str,
        values: dict[str, Any],
    ) -> IntakeSessionState:
        """Insert a new session row.

        Args:
            connection_id: Owning patient-provider connection.
            values: Initial column values.

        Returns:
            Snapshot of the created session.
        """
        now = datetime.now(timezone.utc)
        columns = {"updated_at": now, **values}
        row = IntakeSession(
            id=uuid.uuid4(),
            connection_id=connection_id,
            version=0,
            created_at=now,
            **columns,
        )
        self._session.add(row)
        await self._session.flush()
        return to_state(row)

    async def compare_and_update(
        self,
        session_id: str,
        expected_version: int,
        values: dict[str, Any],
    ) -> IntakeSessionState | None:
        """Write column values only if the row is still at expected_version.

        The version column is bumped as part of the same UPDATE.

        Args:
            session_id: Intake session UUID string.
            expected_version: Version read before computing values.
            values: Column values to write.

        Returns:
            Updated snapshot, or None if the row is missing or another
            writer got there first.
        """
        uid = _parse_id(session_id)
        if uid is None:
            return None
        result = await self._session.execute(
            update(IntakeSession)
            .where(
                IntakeSession.id == uid,
                IntakeSession.version == expected_version,
            )
            .values(**values, version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        row = await self._session.get(IntakeSession, uid, populate_existing=True)
        return to_state(row) if row is not None else None

    async def add_message(
        self,
        session_id: str,
        role: MessageRole,
        content: str,
        agent: AgentRole | None = None,
    ) -> None:
        """Append a chat message to a session."""
        self._session.add(
            ChatMessage(
                message_id=uuid.uuid4(),
                session_id=uuid.UUID(session_id),
                role=MessageRole(role).value,
                content=content,
                agent=agent.value if agent is not None else None,
                created_at=datetime.now(timezone.utc),
            )
        )
        await self._session.flush()

    async def list_messages(
        self,
        session_id: str,
        limit: int | None = None,
    ) -> list[ChatTurn]:
        """List a session's messages oldest first.

        Args:
            session_id: Intake session UUID string.
            limit: Keep only the most recent messages when set.

        Returns:
            Chat turns in chronological order.
        """
        uid = _parse_id(session_id)
        if uid is None:
            return []
        stmt = (
            select(ChatMessage)
            .where(ChatMessage.session_id == uid)
            .order_by(ChatMessage.created_at.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        rows = list(result.scalars().all())
        rows.reverse()
        return [
            ChatTurn(
                role=row.role,
                content=row.content,
                agent=row.agent,
                created_at=row.created_at,
            )
            for row in rows
        ]

    async def delete_messages(self, session_id: str) -> int:
        """Delete every message of a session.

        Returns:
            Number of deleted rows.
        """
        uid = _parse_id(session_id)
        if uid is None:
            return 0
        result = await self._session.execute(
            delete(ChatMessage).where(ChatMessage.session_id == uid)
        )
        return result.rowcount or 0

    async def list_sessions_for_connection(
        self,
        connection_id: str,
    ) -> list[IntakeSessionState]:
        """List a connection's sessions, newest first."""
        result = await self._session.execute(
            select(IntakeSession)
            .where(IntakeSession.connection_id == connection_id)
            .order_by(IntakeSession.created_at.desc())
        )
        return [to_state(row) for row in result.scalars().all()]


class SqlIntakeStore:
    """IntakeStore backed by Cloud SQL Postgres."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SqlIntakeTransaction]:
        """Open one database transaction.

        Yields:
            SqlIntakeTransaction; commits on exit, rolls back on error.
        """
        async with session_scope(self._session_factory) as session:
            yield SqlIntakeTransaction(session)
