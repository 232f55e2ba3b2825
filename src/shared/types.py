"""Shared types, enums, and constants used across the intake engine."""

import enum


class AgentRole(str, enum.Enum):
    """Conversational persona driving the current intake stage.

    The roster is fixed by prompt design; declaration order is the
    sequencing order.
    """

    TRIAGE = "Triage"
    CLINICAL_INVESTIGATOR = "ClinicalInvestigator"
    RECORDS_CLERK = "RecordsClerk"
    HISTORY_SPECIALIST = "HistorySpecialist"
    HANDOVER_SPECIALIST = "HandoverSpecialist"


AGENT_ROSTER: tuple[AgentRole, ...] = tuple(AgentRole)
INITIAL_AGENT = AgentRole.TRIAGE
HANDOVER_AGENT = AgentRole.HANDOVER_SPECIALIST
VALID_AGENT_NAMES: frozenset[str] = frozenset(role.value for role in AgentRole)


class IntakeStatus(str, enum.Enum):
    """Intake session lifecycle state."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    READY = "ready"
    REVIEWED = "reviewed"


class BookingStatus(str, enum.Enum):
    """Booking readiness of the collected record."""

    COLLECTING = "collecting"
    READY = "ready"
    BOOKED = "booked"


class TriageDecision(str, enum.Enum):
    """Urgency classification from vitals and reported symptoms."""

    EMERGENCY = "emergency"
    NORMAL = "normal"
    PENDING = "pending"


class TemperatureUnit(str, enum.Enum):
    """Temperature reading unit."""

    CELSIUS = "celsius"
    FAHRENHEIT = "fahrenheit"


class WeightUnit(str, enum.Enum):
    """Weight reading unit."""

    KG = "kg"
    LBS = "lbs"


class MessageRole(str, enum.Enum):
    """Author of a persisted chat message."""

    USER = "user"
    MODEL = "model"


class IntakeIntent(str, enum.Enum):
    """Fire-and-forget intents emitted after a committed transaction."""

    INTAKE_COMPLETED = "intake_completed"
    INTAKE_RESET = "intake_reset"


class TerminationReason(str, enum.Enum):
    """Why the sequencer moved the intake on ahead of the model.

    Skip commands advance one stage; every other reason hands over.
    """

    DONE_COMMAND = "done_command"
    SKIP_COMMAND = "skip_command"
    EXPLICIT_REQUEST = "explicit_request"
    COMPLETION_PHRASE = "completion_phrase"
    MESSAGE_LIMIT = "message_limit"
    COMPLETENESS_THRESHOLD = "completeness_threshold"
