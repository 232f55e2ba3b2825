"""Intake sequencer applying model turns, vitals and resets to sessions.

Every mutating operation runs as one store transaction under a
per-session asyncio.Lock, and writes through compare-and-swap on the
session version so writers in other processes are detected too.
Intents are dispatched only after the transaction commits.

Per-turn pipeline:
  validate raw text → advance stage from the patient message
  → merge updatedData → resolve persona
  → update tracking → recompute completeness → advance status
  → persist messages and session
"""

from __future__ import annotations

import asyncio
import json
import logging
import weakref
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from src.agents.personas import build_system_prompt, determine_agent
from src.config.settings import Settings, get_settings
from src.db.intake_store import IntakeStore, IntakeTransaction
from src.services.intents import (
    IntentSink,
    build_intent_payload,
    default_sinks,
    dispatch_intent,
)
from src.services.llm_client import OpenAITextGenerator, TextGenerator
from src.shared.completeness import calculate_completeness, is_linkable
from src.shared.errors import (
    ConcurrentUpdateError,
    IntakeError,
    IntakeTransactionError,
    InvalidTransitionError,
    SessionNotFoundError,
)
from src.shared.intake_models import (
    ChatTurn,
    DoctorThought,
    IntakeSessionState,
    MedicalData,
    encode_document,
)
from src.shared.merge import merge_medical_data, merge_vitals_data
from src.shared.question_tracking import (
    StageAdvance,
    advance_stage,
    get_fallback_message,
    increment_follow_up_count,
    should_offer_conclusion,
)
from src.shared.response_models import TurnResult, VitalsUpdateResult
from src.shared.response_validator import validate_ai_response
from src.shared.state_machine import advance_toward, initial_session_values, transition
from src.shared.triage import triage_vitals
from src.shared.types import (
    AGENT_ROSTER,
    HANDOVER_AGENT,
    VALID_AGENT_NAMES,
    AgentRole,
    BookingStatus,
    IntakeIntent,
    IntakeStatus,
    MessageRole,
    TerminationReason,
)

logger = logging.getLogger(__name__)

VITALS_UPDATE_KEYS = ("vitalsData", "vitals_data")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _strip_vitals(update: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in update.items() if key not in VITALS_UPDATE_KEYS}


def _resolve_agent(current: AgentRole, declared: Any) -> AgentRole:
    """Adopt a declared persona only when it is on the roster."""
    if isinstance(declared, str) and declared in VALID_AGENT_NAMES:
        return AgentRole(declared)
    if declared is not None:
        logger.warning("invalid_active_agent_ignored", extra={"declared": str(declared)[:50]})
    return current


def _precedes(agent: AgentRole, other: AgentRole) -> bool:
    return AGENT_ROSTER.index(agent) < AGENT_ROSTER.index(other)


def _advance(session: IntakeSessionState, patient_message: str | None) -> StageAdvance:
    """Plan the stage for the next model message from the stored session."""
    return advance_stage(
        session.current_agent,
        session.medical_data,
        session.answered_topics,
        session.follow_up_counts,
        patient_message,
        session.ai_message_count + 1,
    )


def _acknowledgment_envelope(reply: str, agent: AgentRole) -> str:
    return json.dumps({"reply": reply, "updatedData": {}, "activeAgent": agent.value})


def _auto_ready(data: MedicalData) -> bool:
    """Check whether routing says the record is complete enough to hand over.

    Routing only reaches the handover persona once the chief complaint
    is present, the HPI is long enough and the records check is done.
    """
    return determine_agent(data) == HANDOVER_AGENT


def _parse_doctor_thought(thought: Any) -> DoctorThought | None:
    if not isinstance(thought, Mapping):
        return None
    try:
        return DoctorThought.model_validate(dict(thought))
    except ValidationError:
        logger.warning("doctor_thought_ignored")
        return None


class IntakeService:
    """Orchestrates intake sessions on top of an IntakeStore.

    Args:
        store: Session store.
        generator: Text generator for process_message; an OpenAI
            generator is created on first use when omitted.
        sinks: Intent receivers; default_sinks(settings) when omitted.
        settings: Application settings.
    """

    def __init__(
        self,
        store: IntakeStore,
        generator: TextGenerator | None = None,
        sinks: list[IntentSink] | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._store = store
        self._generator = generator
        self._settings = settings or get_settings()
        self._sinks: list[IntentSink] = (
            sinks if sinks is not None else default_sinks(self._settings)
        )
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def generator(self) -> TextGenerator:
        if self._generator is None:
            self._generator = OpenAITextGenerator(self._settings)
        return self._generator

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    @asynccontextmanager
    async def _transaction(
        self,
        operation: str,
        session_id: str,
    ) -> AsyncIterator[IntakeTransaction]:
        """Run one store transaction, wrapping unexpected failures.

        Raises:
            IntakeTransactionError: On any non-intake failure; the
                store has already rolled back.
        """
        try:
            async with self._store.transaction() as tx:
                yield tx
        except IntakeError:
            raise
        except Exception as exc:
            logger.exception(
                "intake_transaction_failed",
                extra={"operation": operation, "session_id": session_id},
            )
            raise IntakeTransactionError(operation, session_id) from exc

    @asynccontextmanager
    async def _write(
        self,
        operation: str,
        session_id: str,
    ) -> AsyncIterator[IntakeTransaction]:
        async with self._lock_for(session_id):
            async with self._transaction(operation, session_id) as tx:
                yield tx

    async def _load(self, tx: IntakeTransaction, session_id: str) -> IntakeSessionState:
        session = await tx.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def _save(
        self,
        tx: IntakeTransaction,
        operation: str,
        session: IntakeSessionState,
        values: dict[str, Any],
    ) -> IntakeSessionState:
        updated = await tx.compare_and_update(session.id, session.version, values)
        if updated is None:
            logger.warning(
                "intake_concurrent_update",
                extra={
                    "operation": operation,
                    "session_id": session.id,
                    "expected_version": session.version,
                },
            )
            raise ConcurrentUpdateError(operation, session.id)
        return updated

    async def start_session(self, connection_id: str) -> IntakeSessionState:
        """Create an empty intake session for a connection.

        Args:
            connection_id: Patient-provider connection id.

        Returns:
            New not_started session.
        """
        async with self._transaction("start_session", connection_id) as tx:
            session = await tx.create_session(connection_id, initial_session_values(_utcnow()))
        logger.info(
            "intake_session_started",
            extra={"session_id": session.id, "connection_id": connection_id},
        )
        return session

    async def get_session(self, session_id: str) -> IntakeSessionState:
        """Load a session snapshot.

        Raises:
            SessionNotFoundError: If the session does not exist.
        """
        async with self._transaction("get_session", session_id) as tx:
            return await self._load(tx, session_id)

    async def apply_turn(
        self,
        session_id: str,
        raw_text: str | None,
        patient_message: str | None = None,
    ) -> TurnResult:
        """Apply one raw model turn to a session.

        Args:
            session_id: Intake session id.
            raw_text: Raw model output; None when the model call failed.
            patient_message: Patient message the model answered, stored
                alongside the reply.

        Returns:
            TurnResult with the reply to show and the committed session.

        Raises:
            SessionNotFoundError: If the session does not exist.
            InvalidTransitionError: If the session was already reviewed.
            IntakeTransactionError: If persisting failed (rolled back).
        """
        validation = validate_ai_response(raw_text)
        parsed = validation.parsed_data or {}

        async with self._write("apply_turn", session_id) as tx:
            session = await self._load(tx, session_id)
            if session.status == IntakeStatus.REVIEWED:
                raise InvalidTransitionError(
                    session.status.value, IntakeStatus.IN_PROGRESS.value
                )

            ai_message_count = session.ai_message_count + 1
            stage = _advance(session, patient_message)
            medical = stage.data
            update = parsed.get("updatedData")
            if isinstance(update, dict):
                medical = merge_medical_data(medical, _strip_vitals(update))

            agent = _resolve_agent(stage.agent, parsed.get("activeAgent"))
            if stage.agent != session.current_agent and _precedes(agent, stage.agent):
                agent = stage.agent
            termination_reason = session.termination_reason
            has_offered_conclusion = (
                session.has_offered_conclusion or should_offer_conclusion(ai_message_count)
            )
            if stage.signal is not None:
                logger.info(
                    "intake_termination_signal",
                    extra={
                        "session_id": session_id,
                        "reason": stage.signal.reason.value,
                        "agent": stage.agent.value,
                        "ai_message_count": ai_message_count,
                    },
                )
                termination_reason = stage.signal.reason.value
                if stage.signal.reason == TerminationReason.COMPLETENESS_THRESHOLD:
                    has_offered_conclusion = True
            elif stage.agent != session.current_agent:
                logger.info(
                    "intake_stage_advanced",
                    extra={
                        "session_id": session_id,
                        "from_agent": session.current_agent.value,
                        "agent": stage.agent.value,
                    },
                )

            if _auto_ready(medical) and medical.booking_status == BookingStatus.COLLECTING:
                medical = medical.model_copy(update={"booking_status": BookingStatus.READY})
            medical = medical.model_copy(update={"current_agent": agent})
            completeness = calculate_completeness(medical)

            if validation.is_valid:
                reply = validation.reply
                consecutive_errors = 0
                follow_up_counts = (
                    dict(session.follow_up_counts)
                    if stage.signal is not None and stage.signal.is_immediate
                    else increment_follow_up_count(session.follow_up_counts, agent)
                )
            else:
                consecutive_errors = session.consecutive_errors + 1
                reply = get_fallback_message(agent, patient_message, consecutive_errors)
                follow_up_counts = dict(session.follow_up_counts)

            clinical_handover = session.clinical_handover
            doctor_thought = session.doctor_thought
            if agent == HANDOVER_AGENT:
                clinical_handover = medical.clinical_handover or clinical_handover
                doctor_thought = _parse_doctor_thought(parsed.get("thought")) or doctor_thought

            target = (
                IntakeStatus.READY
                if medical.booking_status != BookingStatus.COLLECTING or agent == HANDOVER_AGENT
                else IntakeStatus.IN_PROGRESS
            )
            status = advance_toward(session.status, target)
            now = _utcnow()
            became_ready = status == IntakeStatus.READY and session.status != IntakeStatus.READY

            if patient_message:
                await tx.add_message(session_id, MessageRole.USER, patient_message)
            await tx.add_message(session_id, MessageRole.MODEL, reply, agent)

            updated = await self._save(tx, "apply_turn", session, {
                "status": status.value,
                "medical_data": encode_document(medical),
                "clinical_handover": encode_document(clinical_handover),
                "doctor_thought": encode_document(doctor_thought),
                "completeness": completeness,
                "current_agent": agent.value,
                "follow_up_counts": follow_up_counts,
                "answered_topics": stage.answered_topics,
                "consecutive_errors": consecutive_errors,
                "ai_message_count": ai_message_count,
                "has_offered_conclusion": has_offered_conclusion,
                "termination_reason": termination_reason,
                "started_at": session.started_at or (
                    now if status != IntakeStatus.NOT_STARTED else None
                ),
                "completed_at": now if became_ready else session.completed_at,
                "updated_at": now,
            })

        logger.info(
            "intake_turn_applied",
            extra={
                "session_id": session_id,
                "agent": agent.value,
                "status": status.value,
                "completeness": completeness,
                "used_fallback": not validation.is_valid,
                "was_recovered": validation.was_recovered,
            },
        )
        if became_ready:
            await dispatch_intent(
                self._sinks,
                IntakeIntent.INTAKE_COMPLETED,
                build_intent_payload(
                    session_id=updated.id,
                    connection_id=updated.connection_id,
                    version=updated.version,
                    intent=IntakeIntent.INTAKE_COMPLETED,
                    completeness=updated.completeness,
                    triage_decision=updated.medical_data.vitals_data.triage_decision.value,
                ),
            )

        return TurnResult(
            reply=reply,
            session=updated,
            validation=validation,
            used_fallback=not validation.is_valid,
            agent_changed=agent != session.current_agent,
            became_ready=became_ready,
        )

    async def _generate(self, system_prompt: str, history: list[ChatTurn]) -> str | None:
        """Ask the model for a reply, retrying empty or unusable ones.

        Retries up to ai_max_retries times with exponential backoff. The
        last reply is returned even when still unusable, so apply_turn
        falls back.
        """
        raw_text: str | None = None
        for attempt in range(self._settings.ai_max_retries + 1):
            if attempt:
                delay = self._settings.ai_retry_backoff_seconds * 2 ** (attempt - 1)
                logger.warning(
                    "llm_generation_retry",
                    extra={"attempt": attempt + 1, "delay_seconds": delay},
                )
                await asyncio.sleep(delay)
            raw_text = await self._generate_once(system_prompt, history)
            if validate_ai_response(raw_text).is_valid:
                return raw_text
        return raw_text

    async def _generate_once(self, system_prompt: str, history: list[ChatTurn]) -> str | None:
        """Call the text generator; failures become an empty response."""
        try:
            return await asyncio.wait_for(
                self.generator.generate(system_prompt, history),
                timeout=self._settings.ai_timeout_seconds,
            )
        except Exception:
            logger.exception(
                "llm_generation_failed",
                extra={"timeout_seconds": self._settings.ai_timeout_seconds},
            )
            return None

    async def process_message(self, session_id: str, patient_message: str) -> TurnResult:
        """Run one full conversational turn for a patient message.

        Plans the stage from the patient message, builds the prompt for
        the persona in charge, asks the model for a reply, then applies
        the reply with apply_turn. Skip and done commands are acknowledged
        without calling the model. A model timeout or error is handled as
        an empty response, so the patient still gets a fallback reply.

        Args:
            session_id: Intake session id.
            patient_message: What the patient just wrote.

        Returns:
            TurnResult from apply_turn.

        Raises:
            SessionNotFoundError: If the session does not exist.
            InvalidTransitionError: If the session was already reviewed.
        """
        async with self._transaction("process_message", session_id) as tx:
            session = await self._load(tx, session_id)
            history = await tx.list_messages(
                session_id, limit=self._settings.ai_max_history_messages
            )
        if session.status == IntakeStatus.REVIEWED:
            raise InvalidTransitionError(session.status.value, IntakeStatus.IN_PROGRESS.value)

        stage = _advance(session, patient_message)
        if stage.signal is not None and stage.signal.is_immediate:
            raw_text = _acknowledgment_envelope(stage.signal.acknowledgment or "", stage.agent)
        else:
            system_prompt = build_system_prompt(
                stage.agent,
                answered_topics=stage.answered_topics,
                follow_up_counts=session.follow_up_counts,
                ai_message_count=session.ai_message_count,
                completeness=calculate_completeness(stage.data),
            )
            history.append(ChatTurn(role=MessageRole.USER, content=patient_message))
            raw_text = await self._generate(system_prompt, history)
        return await self.apply_turn(session_id, raw_text, patient_message=patient_message)

    async def record_vitals(
        self,
        session_id: str,
        vitals_update: Mapping[str, Any],
    ) -> VitalsUpdateResult:
        """Record vitals readings and re-run triage.

        Args:
            session_id: Intake session id.
            vitals_update: Partial vitals (camelCase or snake_case keys).

        Returns:
            VitalsUpdateResult with the committed session and the
            triage decision recorded.

        Raises:
            VitalsValidationError: If a reading is out of physiologic
                bounds; nothing is written.
            SessionNotFoundError: If the session does not exist.
            InvalidTransitionError: If the session was already reviewed.
        """
        async with self._write("record_vitals", session_id) as tx:
            session = await self._load(tx, session_id)
            if session.status == IntakeStatus.REVIEWED:
                raise InvalidTransitionError(
                    session.status.value, IntakeStatus.IN_PROGRESS.value
                )

            now = _utcnow()
            vitals = merge_vitals_data(
                session.medical_data.vitals_data, vitals_update, now.isoformat()
            )
            vitals, triage = triage_vitals(vitals)
            medical = session.medical_data.model_copy(update={"vitals_data": vitals})
            status = advance_toward(session.status, IntakeStatus.IN_PROGRESS)

            updated = await self._save(tx, "record_vitals", session, {
                "status": status.value,
                "medical_data": encode_document(medical),
                "completeness": calculate_completeness(medical),
                "started_at": session.started_at or now,
                "updated_at": now,
            })

        return VitalsUpdateResult(session=updated, triage=triage)

    async def reset_session(
        self,
        session_id: str,
        actor_id: str | None = None,
    ) -> IntakeSessionState:
        """Clear a session back to its initial state.

        Deletes every chat message and resets the record, tracking and
        status in one transaction. Id, connection and creation time are
        kept.

        Args:
            session_id: Intake session id.
            actor_id: User requesting the reset.

        Returns:
            The reset session.

        Raises:
            SessionNotFoundError: If the session does not exist.
            IntakeTransactionError: If the reset failed; the session is
                unchanged and the call may be retried.
        """
        async with self._write("reset_session", session_id) as tx:
            session = await self._load(tx, session_id)
            deleted = await tx.delete_messages(session_id)
            updated = await self._save(
                tx, "reset_session", session, initial_session_values(_utcnow())
            )

        logger.info(
            "intake_session_reset",
            extra={
                "session_id": session_id,
                "previous_status": session.status.value,
                "deleted_messages": deleted,
                "actor_id": actor_id,
            },
        )
        await dispatch_intent(
            self._sinks,
            IntakeIntent.INTAKE_RESET,
            build_intent_payload(
                session_id=updated.id,
                connection_id=updated.connection_id,
                version=updated.version,
                intent=IntakeIntent.INTAKE_RESET,
                actor_id=actor_id,
                previous_status=session.status.value,
            ),
        )
        return updated

    async def mark_reviewed(self, session_id: str, reviewer_id: str) -> IntakeSessionState:
        """Mark a ready session as reviewed by a clinician.

        Args:
            session_id: Intake session id.
            reviewer_id: Clinician who reviewed the intake.

        Returns:
            The reviewed session; unchanged if it was already reviewed.

        Raises:
            InvalidTransitionError: If the session is not ready.
        """
        async with self._write("mark_reviewed", session_id) as tx:
            session = await self._load(tx, session_id)
            if session.status == IntakeStatus.REVIEWED:
                return session
            status = transition(session.status, IntakeStatus.REVIEWED)
            now = _utcnow()
            updated = await self._save(tx, "mark_reviewed", session, {
                "status": status.value,
                "reviewed_at": now,
                "reviewed_by": reviewer_id,
                "updated_at": now,
            })

        logger.info(
            "intake_session_reviewed",
            extra={"session_id": session_id, "reviewer_id": reviewer_id},
        )
        return updated

    async def list_linkable(self, connection_id: str) -> list[IntakeSessionState]:
        """List a connection's sessions that can be attached to a booking.

        Args:
            connection_id: Patient-provider connection id.

        Returns:
            Linkable sessions, newest first.
        """
        async with self._transaction("list_linkable", connection_id) as tx:
            sessions = await tx.list_sessions_for_connection(connection_id)
        return [s for s in sessions if is_linkable(s.status, s.completeness)]
