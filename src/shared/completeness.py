"""Intake completeness scoring and session linkability."""

from __future__ import annotations

from collections.abc import Callable

from src.shared.intake_models import MedicalData
from src.shared.types import IntakeStatus
from src.shared.validators import validate_vitals

LINKABLE_THRESHOLD = 50


def _has_text(value: str | None) -> bool:
    return bool(value and value.strip())


def _history_or_none(items: list[str], data: MedicalData) -> bool:
    return bool(items) or data.history_check_completed


COMPLETENESS_CRITERIA: list[tuple[str, int, Callable[[MedicalData], bool]]] = [
    ("chief_complaint", 20, lambda d: _has_text(d.chief_complaint)),
    ("hpi", 20, lambda d: _has_text(d.hpi)),
    ("records_check", 10, lambda d: d.records_check_completed),
    ("medications", 10, lambda d: _history_or_none(d.medications, d)),
    ("allergies", 10, lambda d: _history_or_none(d.allergies, d)),
    ("past_medical_history", 10, lambda d: _history_or_none(d.past_medical_history, d)),
    ("review_of_systems", 5, lambda d: bool(d.review_of_systems)),
    (
        "family_social_history",
        5,
        lambda d: _has_text(d.family_history) or _has_text(d.social_history),
    ),
    ("clinical_handover", 10, lambda d: d.clinical_handover is not None),
]


def calculate_completeness(data: MedicalData | None) -> int:
    """Score how much of the intake record has been captured.

    A present vitals reading that fails range validation collapses the
    whole score to 0 rather than only dropping one criterion.

    Args:
        data: Medical record to score.

    Returns:
        Integer in [0, 100].
    """
    if data is None:
        return 0
    if validate_vitals(data.vitals_data):
        return 0
    score = sum(weight for _, weight, check in COMPLETENESS_CRITERIA if check(data))
    return max(0, min(score, 100))


def is_linkable(status: IntakeStatus | str, completeness: int) -> bool:
    """Check whether a session can be attached to a bookable appointment.

    Args:
        status: Session status.
        completeness: Session completeness score.

    Returns:
        True if ready, or in progress with at least 50% completeness.
    """
    status = IntakeStatus(status)
    if status == IntakeStatus.READY:
        return True
    return status == IntakeStatus.IN_PROGRESS and completeness >= LINKABLE_THRESHOLD
