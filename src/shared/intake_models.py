"""Pydantic documents for the intake record and session snapshot.

External keys (model output and persisted JSONB) are camelCase; Python
attributes are snake_case. Both spellings are accepted on input.
"""

from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.shared.types import (
    INITIAL_AGENT,
    AgentRole,
    BookingStatus,
    IntakeStatus,
    MessageRole,
    TemperatureUnit,
    TriageDecision,
    WeightUnit,
)

DocumentT = TypeVar("DocumentT", bound=BaseModel)


class IntakeDocument(BaseModel):
    """Base for every camelCase-aliased intake document."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class SBAR(IntakeDocument):
    """Situation-Background-Assessment-Recommendation handover note."""

    situation: str
    background: str
    assessment: str
    recommendation: str


class TemperatureReading(IntakeDocument):
    """Body temperature reading."""

    value: float | None = None
    unit: TemperatureUnit = TemperatureUnit.CELSIUS
    collected_at: str | None = None


class WeightReading(IntakeDocument):
    """Body weight reading."""

    value: float | None = None
    unit: WeightUnit = WeightUnit.KG
    collected_at: str | None = None


class BloodPressureReading(IntakeDocument):
    """Blood pressure reading in mmHg."""

    systolic: float | None = None
    diastolic: float | None = None
    collected_at: str | None = None


class VitalsData(IntakeDocument):
    """Vitals stage record and its triage outcome.

    Readings are not range-constrained here; range checks run in
    src.shared.validators so they surface as field-level errors.
    """

    patient_name: str | None = None
    patient_age: float | None = None
    patient_gender: str | None = None
    temperature: TemperatureReading = Field(default_factory=TemperatureReading)
    weight: WeightReading = Field(default_factory=WeightReading)
    blood_pressure: BloodPressureReading = Field(default_factory=BloodPressureReading)
    current_status: str | None = None
    vitals_collected: bool = False
    triage_decision: TriageDecision = TriageDecision.PENDING
    triage_reason: str | None = None
    triage_recommendations: list[str] = Field(default_factory=list)
    vitals_stage_completed: bool = False


class MedicalData(IntakeDocument):
    """Structured medical record filled in over the intake conversation."""

    chief_complaint: str | None = None
    hpi: str | None = None
    medical_records: list[str] = Field(default_factory=list)
    records_check_completed: bool = False
    history_check_completed: bool = False
    medications: list[str] = Field(default_factory=list)
    allergies: list[str] = Field(default_factory=list)
    past_medical_history: list[str] = Field(default_factory=list)
    family_history: str | None = None
    social_history: str | None = None
    review_of_systems: list[str] = Field(default_factory=list)
    current_agent: AgentRole = INITIAL_AGENT
    clinical_handover: SBAR | None = None
    ucg_recommendations: str | None = None
    booking_status: BookingStatus = BookingStatus.COLLECTING
    appointment_date: str | None = None
    vitals_data: VitalsData = Field(default_factory=VitalsData)


class DiagnosisEntry(IntakeDocument):
    """One differential diagnosis line."""

    condition: str = ""
    probability: str = ""
    reasoning: str = ""


class DoctorThought(IntakeDocument):
    """Clinical reasoning the handover persona leaves for the clinician."""

    differential_diagnosis: list[DiagnosisEntry] = Field(default_factory=list)
    missing_information: list[str] = Field(default_factory=list)
    strategy: str = ""
    next_move: str = ""


class IntakeSessionState(IntakeDocument):
    """Snapshot of a persisted intake session.

    Attributes:
        version: Optimistic concurrency counter, bumped on every write.
    """

    id: str
    connection_id: str
    status: IntakeStatus = IntakeStatus.NOT_STARTED
    medical_data: MedicalData = Field(default_factory=MedicalData)
    clinical_handover: SBAR | None = None
    doctor_thought: DoctorThought | None = None
    completeness: int = Field(default=0, ge=0, le=100)
    current_agent: AgentRole = INITIAL_AGENT
    follow_up_counts: dict[str, int] = Field(default_factory=dict)
    answered_topics: list[str] = Field(default_factory=list)
    consecutive_errors: int = 0
    ai_message_count: int = 0
    has_offered_conclusion: bool = False
    termination_reason: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    reviewed_at: datetime | None = None
    reviewed_by: str | None = None
    created_at: datetime
    updated_at: datetime
    version: int = 0


def encode_document(document: BaseModel | None) -> dict[str, Any] | None:
    """Encode a document for JSONB storage.

    Every field is written, absent values as explicit null, so the
    document survives a storage round trip unchanged.

    Args:
        document: Document to encode.

    Returns:
        JSON-safe dict with camelCase keys, or None.
    """
    if document is None:
        return None
    return document.model_dump(mode="json", by_alias=True, exclude_none=False)


def decode_document(
    model: type[DocumentT],
    raw: dict[str, Any] | None,
) -> DocumentT | None:
    """Decode a stored JSONB document.

    Args:
        model: Document class to decode into.
        raw: Stored JSON dict.

    Returns:
        Decoded document, or None when nothing was stored.
    """
    if raw is None:
        return None
    return model.model_validate(raw)


class ChatTurn(IntakeDocument):
    """One persisted chat message, oldest first when listed."""

    role: MessageRole
    content: str
    agent: AgentRole | None = None
    created_at: datetime | None = None
