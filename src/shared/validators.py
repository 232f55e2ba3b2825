"""Range validators for patient-entered vitals.

These reject readings that cannot be physiologic (typos, unit mix-ups,
negative values). They are not triage thresholds: a valid reading can
still be an emergency.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from src.shared.types import TemperatureUnit, WeightUnit

if TYPE_CHECKING:
    from src.shared.intake_models import VitalsData

AGE_RANGE = (0, 120)
TEMPERATURE_RANGES = {
    TemperatureUnit.CELSIUS: (25.0, 45.0),
    TemperatureUnit.FAHRENHEIT: (77.0, 113.0),
}
WEIGHT_RANGES = {
    WeightUnit.KG: (0.5, 500.0),
    WeightUnit.LBS: (1.0, 1100.0),
}
SYSTOLIC_RANGE = (50, 250)
DIASTOLIC_RANGE = (30, 150)


def _in_range(value: float, bounds: tuple[float, float]) -> bool:
    low, high = bounds
    return math.isfinite(value) and low <= value <= high


def validate_age(age: float) -> str | None:
    """Validate a patient age in whole years.

    Args:
        age: Age in years.

    Returns:
        Error message, or None if valid.
    """
    if not _in_range(age, AGE_RANGE) or age != int(age):
        return f"age must be a whole number between {AGE_RANGE[0]} and {AGE_RANGE[1]}"
    return None


def validate_temperature(value: float, unit: TemperatureUnit) -> str | None:
    """Validate a body temperature reading.

    Args:
        value: Temperature value.
        unit: Unit the value is expressed in.

    Returns:
        Error message, or None if valid.
    """
    low, high = TEMPERATURE_RANGES[TemperatureUnit(unit)]
    if not _in_range(value, (low, high)):
        return f"temperature must be between {low} and {high} {TemperatureUnit(unit).value}"
    return None


def validate_weight(value: float, unit: WeightUnit) -> str | None:
    """Validate a body weight reading.

    Args:
        value: Weight value.
        unit: Unit the value is expressed in.

    Returns:
        Error message, or None if valid.
    """
    low, high = WEIGHT_RANGES[WeightUnit(unit)]
    if not _in_range(value, (low, high)):
        return f"weight must be between {low} and {high} {WeightUnit(unit).value}"
    return None


def validate_blood_pressure(
    systolic: float | None,
    diastolic: float | None,
) -> str | None:
    """Validate a blood pressure pair; either side may be missing.

    Args:
        systolic: Systolic pressure in mmHg.
        diastolic: Diastolic pressure in mmHg.

    Returns:
        Error message, or None if valid.
    """
    if systolic is not None and not _in_range(systolic, SYSTOLIC_RANGE):
        return f"systolic must be between {SYSTOLIC_RANGE[0]} and {SYSTOLIC_RANGE[1]} mmHg"
    if diastolic is not None and not _in_range(diastolic, DIASTOLIC_RANGE):
        return f"diastolic must be between {DIASTOLIC_RANGE[0]} and {DIASTOLIC_RANGE[1]} mmHg"
    if systolic is not None and diastolic is not None and systolic <= diastolic:
        return "systolic must be greater than diastolic"
    return None


def validate_vitals(vitals: VitalsData) -> dict[str, str]:
    """Run every range check on the readings that are present.

    Args:
        vitals: Vitals record to check.

    Returns:
        Field name to error message; empty when all present readings
        are valid.
    """
    errors: dict[str, str] = {}
    if vitals.patient_age is not None:
        error = validate_age(vitals.patient_age)
        if error:
            errors["patientAge"] = error
    if vitals.temperature.value is not None:
        error = validate_temperature(vitals.temperature.value, vitals.temperature.unit)
        if error:
            errors["temperature"] = error
    if vitals.weight.value is not None:
        error = validate_weight(vitals.weight.value, vitals.weight.unit)
        if error:
            errors["weight"] = error
    error = validate_blood_pressure(
        vitals.blood_pressure.systolic,
        vitals.blood_pressure.diastolic,
    )
    if error:
        errors["bloodPressure"] = error
    return errors
