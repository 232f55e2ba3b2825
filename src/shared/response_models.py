"""Pydantic result models for engine and service return types.

Each model defines the typed contract for an engine or service call.
"""

from typing import Any

from pydantic import BaseModel, Field

from src.shared.intake_models import IntakeSessionState
from src.shared.types import TriageDecision


class ValidationDetails(BaseModel):
    """Which parts of a model envelope passed validation."""

    has_valid_reply: bool = False
    has_valid_updated_data: bool = False
    has_valid_active_agent: bool = False


class ResponseValidationResult(BaseModel):
    """Result of validating and recovering raw model output."""

    is_valid: bool
    reply: str
    error: str | None = None
    was_recovered: bool = False
    parsed_data: dict[str, Any] | None = None
    validation_details: ValidationDetails = Field(default_factory=ValidationDetails)


class TriageResult(BaseModel):
    """Result of a vitals, symptom, or combined triage assessment."""

    decision: TriageDecision
    reason: str
    recommendations: list[str] = []


class TurnResult(BaseModel):
    """Result of applying one model turn to a session."""

    reply: str
    session: IntakeSessionState
    validation: ResponseValidationResult
    used_fallback: bool = False
    agent_changed: bool = False
    became_ready: bool = False


class VitalsUpdateResult(BaseModel):
    """Result of recording vitals and re-running triage."""

    session: IntakeSessionState
    triage: TriageResult
