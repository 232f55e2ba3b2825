"""Intake session state machine.

Status only moves forward:
  not_started → in_progress → ready → reviewed
Reset is the single way back and is allowed from every state.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from src.shared.errors import InvalidTransitionError
from src.shared.intake_models import MedicalData, encode_document
from src.shared.types import INITIAL_AGENT, IntakeStatus

_ORDER = [
    IntakeStatus.NOT_STARTED,
    IntakeStatus.IN_PROGRESS,
    IntakeStatus.READY,
    IntakeStatus.REVIEWED,
]

ALLOWED_TRANSITIONS: dict[IntakeStatus, set[IntakeStatus]] = {
    IntakeStatus.NOT_STARTED: {IntakeStatus.IN_PROGRESS, IntakeStatus.READY},
    IntakeStatus.IN_PROGRESS: {IntakeStatus.READY},
    IntakeStatus.READY: {IntakeStatus.REVIEWED},
    IntakeStatus.REVIEWED: set(),
}


def can_transition(current: IntakeStatus, target: IntakeStatus) -> bool:
    """Check whether a status change is permitted.

    Staying in the same status is always permitted.
    """
    current, target = IntakeStatus(current), IntakeStatus(target)
    return current == target or target in ALLOWED_TRANSITIONS[current]


def transition(current: IntakeStatus, target: IntakeStatus) -> IntakeStatus:
    """Move to a new status.

    Args:
        current: Current session status.
        target: Desired status.

    Returns:
        The target status.

    Raises:
        InvalidTransitionError: If the move is not permitted.
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(IntakeStatus(current).value, IntakeStatus(target).value)
    return IntakeStatus(target)


def advance_toward(current: IntakeStatus, target: IntakeStatus) -> IntakeStatus:
    """Advance toward a target without ever moving backwards.

    Returns the current status when it is already at or past the target.
    """
    current, target = IntakeStatus(current), IntakeStatus(target)
    if _ORDER.index(current) >= _ORDER.index(target):
        return current
    return transition(current, target)


def initial_session_values(now: datetime) -> dict[str, Any]:
    """Column values for a freshly started or reset session.

    Identity columns (id, connection id, created at) are not included.

    Args:
        now: Timestamp to record as updated_at.

    Returns:
        Column name to value, documents already JSON-encoded.
    """
    return {
        "status": IntakeStatus.NOT_STARTED.value,
        "medical_data": encode_document(MedicalData()),
        "clinical_handover": None,
        "doctor_thought": None,
        "completeness": 0,
        "current_agent": INITIAL_AGENT.value,
        "follow_up_counts": {},
        "answered_topics": [],
        "consecutive_errors": 0,
        "ai_message_count": 0,
        "has_offered_conclusion": False,
        "termination_reason": None,
        "started_at": None,
        "completed_at": None,
        "reviewed_at": None,
        "reviewed_by": None,
        "updated_at": now,
    }
