"""Medical data merge engine.

Folds a partial update, usually the ``updatedData`` object a model
emitted, into an existing MedicalData record. Each field is either
replaced outright or left untouched; nothing is deep-merged.

A field that is absent, null, or of the wrong shape keeps its existing
value, so adversarial or malformed model output can never erase data
that was already collected.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import BaseModel, ValidationError

from src.shared.intake_models import SBAR, MedicalData, VitalsData
from src.shared.types import AgentRole, BookingStatus, TemperatureUnit, WeightUnit

logger = logging.getLogger(__name__)


class _Missing:
    """Sentinel for an update field that must be ignored."""

    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()


def _as_text(value: Any) -> Any:
    return value if isinstance(value, str) else MISSING


def _as_text_list(value: Any) -> Any:
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return list(value)
    return MISSING


def _as_flag(value: Any) -> Any:
    return value if isinstance(value, bool) else MISSING


def _as_agent(value: Any) -> Any:
    if isinstance(value, AgentRole):
        return value
    try:
        return AgentRole(value)
    except (ValueError, TypeError):
        return MISSING


def _as_booking_status(value: Any) -> Any:
    if isinstance(value, BookingStatus):
        return value
    try:
        return BookingStatus(value)
    except (ValueError, TypeError):
        return MISSING


def _as_sbar(value: Any) -> Any:
    if isinstance(value, SBAR):
        return value
    if not isinstance(value, Mapping):
        return MISSING
    try:
        return SBAR.model_validate(dict(value))
    except ValidationError:
        return MISSING


def _as_vitals(value: Any) -> Any:
    if isinstance(value, VitalsData):
        return value
    if not isinstance(value, Mapping):
        return MISSING
    try:
        return VitalsData.model_validate(dict(value))
    except ValidationError:
        return MISSING


FIELD_COERCERS: dict[str, Callable[[Any], Any]] = {
    "chief_complaint": _as_text,
    "hpi": _as_text,
    "medical_records": _as_text_list,
    "records_check_completed": _as_flag,
    "history_check_completed": _as_flag,
    "medications": _as_text_list,
    "allergies": _as_text_list,
    "past_medical_history": _as_text_list,
    "family_history": _as_text,
    "social_history": _as_text,
    "review_of_systems": _as_text_list,
    "current_agent": _as_agent,
    "clinical_handover": _as_sbar,
    "ucg_recommendations": _as_text,
    "booking_status": _as_booking_status,
    "appointment_date": _as_text,
    "vitals_data": _as_vitals,
}


def _lookup(model: type[BaseModel], update: Mapping[str, Any], field_name: str) -> Any:
    """Find a field in the update under its camelCase or snake_case key."""
    alias = model.model_fields[field_name].alias or field_name
    if alias in update:
        return update[alias]
    if field_name in update:
        return update[field_name]
    return MISSING


def extract_update(update: Any) -> dict[str, Any]:
    """Reduce a raw update to its well-typed fields.

    Args:
        update: Raw partial record, typically parsed model JSON.

    Returns:
        Snake_case field name to coerced value, for every field that
        was supplied with an acceptable value.
    """
    if not isinstance(update, Mapping):
        return {}

    changes: dict[str, Any] = {}
    ignored: list[str] = []
    for field_name, coerce in FIELD_COERCERS.items():
        raw = _lookup(MedicalData, update, field_name)
        if raw is MISSING or raw is None:
            continue
        value = coerce(raw)
        if value is MISSING:
            ignored.append(field_name)
            continue
        changes[field_name] = value

    if ignored:
        logger.warning("merge_fields_ignored", extra={"fields": ignored})
    return changes


def merge_medical_data(existing: MedicalData, update: Any) -> MedicalData:
    """Merge a partial update into an existing record.

    Supplied fields replace the existing value outright, including
    empty strings, empty lists and False. Lists, the SBAR handover and
    the vitals document are replaced wholesale. The existing record is
    not mutated.

    Args:
        existing: Current medical record.
        update: Partial record with camelCase or snake_case keys.

    Returns:
        New MedicalData with the update applied.
    """
    changes = extract_update(update)
    if not changes:
        return existing.model_copy()
    return existing.model_copy(update=changes)


def _as_number(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return MISSING
    try:
        return float(value)
    except OverflowError:
        # Kept as infinity so range validation rejects it.
        return math.inf if value > 0 else -math.inf


def _as_enum(enum_type: type) -> Callable[[Any], Any]:
    def coerce(value: Any) -> Any:
        try:
            return enum_type(value)
        except (ValueError, TypeError):
            return MISSING

    return coerce


READING_FIELDS: dict[str, dict[str, Callable[[Any], Any]]] = {
    "temperature": {"value": _as_number, "unit": _as_enum(TemperatureUnit)},
    "weight": {"value": _as_number, "unit": _as_enum(WeightUnit)},
    "blood_pressure": {"systolic": _as_number, "diastolic": _as_number},
}

VITALS_SCALAR_FIELDS: dict[str, Callable[[Any], Any]] = {
    "patient_name": _as_text,
    "patient_age": _as_number,
    "patient_gender": _as_text,
    "current_status": _as_text,
    "vitals_stage_completed": _as_flag,
}


def merge_vitals_data(
    existing: VitalsData,
    update: Any,
    collected_at: str,
) -> VitalsData:
    """Merge newly entered readings into a vitals record.

    Works like merge_medical_data one level deeper: each reading
    sub-field that is supplied replaces the stored one, the rest are
    kept. A reading that received any new sub-field is stamped with
    collected_at. Triage fields are never taken from the update.

    Args:
        existing: Current vitals record.
        update: Partial vitals with camelCase or snake_case keys.
        collected_at: ISO timestamp for updated readings.

    Returns:
        New VitalsData with the update applied.
    """
    if not isinstance(update, Mapping):
        return existing.model_copy()

    changes: dict[str, Any] = {}
    ignored: list[str] = []
    for field_name, coerce in VITALS_SCALAR_FIELDS.items():
        raw = _lookup(VitalsData, update, field_name)
        if raw is MISSING or raw is None:
            continue
        value = coerce(raw)
        if value is MISSING:
            ignored.append(field_name)
            continue
        changes[field_name] = value

    for reading_name, sub_fields in READING_FIELDS.items():
        raw_reading = _lookup(VitalsData, update, reading_name)
        if raw_reading is MISSING or raw_reading is None:
            continue
        if not isinstance(raw_reading, Mapping):
            ignored.append(reading_name)
            continue
        reading_changes: dict[str, Any] = {}
        for sub_name, coerce in sub_fields.items():
            raw = raw_reading.get(sub_name)
            if raw is None:
                continue
            value = coerce(raw)
            if value is MISSING:
                ignored.append(f"{reading_name}.{sub_name}")
                continue
            reading_changes[sub_name] = value
        if reading_changes:
            reading_changes["collected_at"] = collected_at
            current = getattr(existing, reading_name)
            changes[reading_name] = current.model_copy(update=reading_changes)

    if ignored:
        logger.warning("vitals_fields_ignored", extra={"fields": ignored})
    if not changes:
        return existing.model_copy()
    return existing.model_copy(update=changes)
