"""Vitals triage engine — deterministic emergency screening.

Combines an age-adjusted vitals assessment with an emergency-phrase scan
of the patient's own description. Every rule is a fixed threshold or a
fixed phrase so each decision can be audited from its reason string.

Decision rules:
  - emergency on either side wins unconditionally
  - otherwise pending if either side is incomplete
  - normal only when both sides are complete and clear
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from src.safety.triggers import match_emergency_phrases
from src.shared.errors import VitalsValidationError
from src.shared.intake_models import VitalsData
from src.shared.response_models import TriageResult
from src.shared.types import TemperatureUnit, TriageDecision, WeightUnit
from src.shared.validators import validate_vitals

logger = logging.getLogger(__name__)

LBS_PER_KG = 2.20462


@dataclass(frozen=True)
class AgeBand:
    """Emergency thresholds for one age group.

    Attributes:
        name: Band label used in reason strings.
        min_age: Inclusive lower age bound in years.
        temperature_c: (low, high) safe body temperature in Celsius.
        systolic: (low, high) safe systolic pressure in mmHg.
        diastolic: (low, high) safe diastolic pressure in mmHg.
        min_weight_kg: Weight below which the patient is flagged.
    """

    name: str
    min_age: float
    temperature_c: tuple[float, float]
    systolic: tuple[float, float]
    diastolic: tuple[float, float]
    min_weight_kg: float


AGE_BANDS: list[AgeBand] = [
    AgeBand("older adult", 65, (35.5, 38.5), (100, 180), (60, 120), 30.0),
    AgeBand("adult", 18, (35.0, 39.5), (90, 180), (60, 120), 30.0),
    AgeBand("adolescent", 13, (35.0, 39.5), (90, 160), (55, 100), 25.0),
    AgeBand("child", 1, (35.0, 39.5), (80, 130), (45, 90), 8.0),
    AgeBand("infant", 0, (36.0, 38.0), (60, 110), (35, 75), 2.0),
]

DEFAULT_BAND = AGE_BANDS[1]


def band_for_age(age: float | None) -> AgeBand:
    """Pick the threshold band for a patient age.

    Args:
        age: Age in years, or None when unknown.

    Returns:
        Matching AgeBand; adult thresholds when age is unknown.
    """
    if age is None:
        return DEFAULT_BAND
    for band in AGE_BANDS:
        if age >= band.min_age:
            return band
    return AGE_BANDS[-1]


def _temperature_celsius(vitals: VitalsData) -> float | None:
    value = vitals.temperature.value
    if value is None:
        return None
    if vitals.temperature.unit == TemperatureUnit.FAHRENHEIT:
        return (value - 32) * 5 / 9
    return value


def _weight_kg(vitals: VitalsData) -> float | None:
    value = vitals.weight.value
    if value is None:
        return None
    if vitals.weight.unit == WeightUnit.LBS:
        return value / LBS_PER_KG
    return value


def _missing_readings(vitals: VitalsData) -> list[str]:
    readings = {
        "age": vitals.patient_age,
        "temperature": vitals.temperature.value,
        "weight": vitals.weight.value,
        "systolic pressure": vitals.blood_pressure.systolic,
        "diastolic pressure": vitals.blood_pressure.diastolic,
    }
    return [name for name, value in readings.items() if value is None]


def assess_vitals(vitals: VitalsData) -> TriageResult:
    """Assess vital signs against age-adjusted emergency thresholds.

    Out-of-range readings are flagged even when other readings are still
    missing.

    Args:
        vitals: Vitals record (already range-validated).

    Returns:
        TriageResult: emergency, pending (incomplete), or normal.
    """
    band = band_for_age(vitals.patient_age)
    issues: list[str] = []
    recommendations: list[str] = []

    temperature = _temperature_celsius(vitals)
    if temperature is not None:
        low, high = band.temperature_c
        if temperature < low:
            issues.append("Temperature below safe range (hypothermia risk)")
            recommendations.append("Seek immediate medical attention for low body temperature")
        elif temperature > high:
            issues.append("High fever detected")
            recommendations.append("Seek immediate medical attention for high fever")

    systolic = vitals.blood_pressure.systolic
    if systolic is not None:
        low, high = band.systolic
        if systolic < low:
            issues.append("Blood pressure too low (hypotension)")
            recommendations.append("Seek immediate medical attention for low blood pressure")
        elif systolic > high:
            issues.append("Blood pressure critically high (hypertensive crisis)")
            recommendations.append("Seek immediate medical attention for high blood pressure")

    diastolic = vitals.blood_pressure.diastolic
    if diastolic is not None:
        low, high = band.diastolic
        if diastolic < low:
            issues.append("Diastolic pressure too low")
            recommendations.append("Seek immediate medical attention for low diastolic pressure")
        elif diastolic > high:
            issues.append("Diastolic pressure critically high (hypertensive emergency)")
            recommendations.append("Seek immediate medical attention for high diastolic pressure")

    weight = _weight_kg(vitals)
    if weight is not None and weight < band.min_weight_kg:
        issues.append(f"Weight critically low for {band.name}")
        recommendations.append("Seek prompt medical assessment for low body weight")

    if issues:
        return TriageResult(
            decision=TriageDecision.EMERGENCY,
            reason="; ".join(issues),
            recommendations=recommendations,
        )

    missing = _missing_readings(vitals)
    if missing:
        return TriageResult(
            decision=TriageDecision.PENDING,
            reason=f"Vitals incomplete: missing {', '.join(missing)}",
        )

    return TriageResult(
        decision=TriageDecision.NORMAL,
        reason="All vital signs within normal ranges",
    )


def assess_symptoms(status_text: str | None) -> TriageResult:
    """Scan the patient's description for emergency phrases.

    Args:
        status_text: Free-text description of the current status.

    Returns:
        TriageResult: pending when nothing was reported yet, emergency
        on any phrase match, otherwise normal.
    """
    if status_text is None or not status_text.strip():
        return TriageResult(
            decision=TriageDecision.PENDING,
            reason="No symptoms reported yet",
        )

    matches = match_emergency_phrases(status_text)
    if not matches:
        return TriageResult(
            decision=TriageDecision.NORMAL,
            reason="No emergency symptoms detected",
        )

    phrases = list(dict.fromkeys(phrase for _, phrase in matches))
    recommendations = list(dict.fromkeys(
        trigger.recommendation for trigger, _ in matches
    ))
    recommendations.append("Do not delay treatment")
    return TriageResult(
        decision=TriageDecision.EMERGENCY,
        reason=f"Emergency symptoms detected: {', '.join(phrases)}",
        recommendations=recommendations,
    )


def combine_assessments(
    vitals_result: TriageResult,
    symptoms_result: TriageResult,
) -> TriageResult:
    """Combine the vitals and symptom assessments into one decision.

    Args:
        vitals_result: Result of assess_vitals.
        symptoms_result: Result of assess_symptoms.

    Returns:
        Combined TriageResult.
    """
    results = (vitals_result, symptoms_result)
    emergencies = [r for r in results if r.decision == TriageDecision.EMERGENCY]
    if emergencies:
        recommendations: list[str] = []
        for result in emergencies:
            recommendations.extend(result.recommendations)
        return TriageResult(
            decision=TriageDecision.EMERGENCY,
            reason="; ".join(r.reason for r in emergencies),
            recommendations=list(dict.fromkeys(recommendations)),
        )

    pending = [r for r in results if r.decision == TriageDecision.PENDING]
    if pending:
        return TriageResult(
            decision=TriageDecision.PENDING,
            reason="; ".join(r.reason for r in pending),
        )

    return TriageResult(
        decision=TriageDecision.NORMAL,
        reason="No emergency conditions detected",
    )


def triage_vitals(vitals: VitalsData) -> tuple[VitalsData, TriageResult]:
    """Validate, assess, and record a triage decision on a vitals record.

    A previous emergency decision is never downgraded.

    Args:
        vitals: Vitals record with the latest readings.

    Returns:
        (updated vitals record, triage result actually recorded).

    Raises:
        VitalsValidationError: If any present reading is out of
            physiologic bounds. Raised before any assessment runs.
    """
    errors = validate_vitals(vitals)
    if errors:
        raise VitalsValidationError(errors)

    result = combine_assessments(
        assess_vitals(vitals),
        assess_symptoms(vitals.current_status),
    )

    if (
        vitals.triage_decision == TriageDecision.EMERGENCY
        and result.decision != TriageDecision.EMERGENCY
    ):
        logger.warning(
            "triage_downgrade_blocked",
            extra={"computed_decision": result.decision.value},
        )
        result = TriageResult(
            decision=TriageDecision.EMERGENCY,
            reason=vitals.triage_reason or "Emergency previously recorded in this session",
            recommendations=vitals.triage_recommendations,
        )

    logger.info(
        "triage_decision",
        extra={"decision": result.decision.value, "reason": result.reason},
    )

    updated = vitals.model_copy(
        update={
            "triage_decision": result.decision,
            "triage_reason": result.reason,
            "triage_recommendations": list(result.recommendations),
            "vitals_collected": not _missing_readings(vitals),
        }
    )
    return updated, result
