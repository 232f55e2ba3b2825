"""Fire-and-forget intake intents (notifications and audit).

Intents are dispatched only after the intake transaction has committed.
A failing sink is logged and skipped; it never undoes the committed
intake state.
"""

import logging
import uuid
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config.settings import Settings
from src.db.events import log_event
from src.db.session import session_scope
from src.shared.types import IntakeIntent

logger = logging.getLogger(__name__)


class IntentSink(Protocol):
    """Receiver of committed intake intents."""

    async def send(self, intent: IntakeIntent, payload: dict[str, Any]) -> None: ...


def build_intent_payload(
    *,
    session_id: str,
    connection_id: str,
    version: int,
    intent: IntakeIntent,
    actor_id: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Build the payload for an intent.

    The idempotency key is derived from the session version written by
    the transaction, so redelivery of the same intent is deduplicated.

    Args:
        session_id: Intake session id.
        connection_id: Owning connection id.
        version: Session version after the committed write.
        intent: Intent being emitted.
        actor_id: User who triggered the intent, if any.
        **extra: Additional payload fields.

    Returns:
        JSON-safe payload dict.
    """
    return {
        "session_id": session_id,
        "connection_id": connection_id,
        "actor_id": actor_id,
        "idempotency_key": f"{intent.value}:{session_id}:{version}",
        **extra,
    }


class LoggingIntentSink:
    """Writes intents to the application log."""

    async def send(self, intent: IntakeIntent, payload: dict[str, Any]) -> None:
        logger.info(
            "intake_intent",
            extra={"intent": intent.value, "session_id": payload.get("session_id")},
        )


class AuditEventSink:
    """Records intents in the append-only intake_events table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self._session_factory = session_factory

    async def send(self, intent: IntakeIntent, payload: dict[str, Any]) -> None:
        """Log the intent as an intake event.

        Args:
            intent: Intent being recorded.
            payload: Payload from build_intent_payload.
        """
        async with session_scope(self._session_factory) as session:
            await log_event(
                session,
                session_id=uuid.UUID(payload["session_id"]),
                event_type=intent.value,
                idempotency_key=payload.get("idempotency_key"),
                connection_id=payload.get("connection_id"),
                actor_id=payload.get("actor_id"),
                payload=payload,
            )


def default_sinks(settings: Settings) -> list[IntentSink]:
    """Sinks used when the service is built without explicit ones.

    Args:
        settings: Application settings.

    Returns:
        Logging sink, plus the audit sink when audit events are enabled.
    """
    sinks: list[IntentSink] = [LoggingIntentSink()]
    if settings.audit_events_enabled:
        sinks.append(AuditEventSink())
    return sinks


async def dispatch_intent(
    sinks: list[IntentSink],
    intent: IntakeIntent,
    payload: dict[str, Any],
) -> None:
    """Deliver an intent to every sink.

    Args:
        sinks: Receivers, called in order.
        intent: Intent to deliver.
        payload: Intent payload.
    """
    for sink in sinks:
        try:
            await sink.send(intent, payload)
        except Exception:
            logger.exception(
                "intent_dispatch_failed",
                extra={
                    "intent": intent.value,
                    "sink": type(sink).__name__,
                    "session_id": payload.get("session_id"),
                },
            )
