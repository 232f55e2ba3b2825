"""Question tracking: follow-up counts, answered topics, and fallbacks.

Keeps the intake from re-asking what the patient already answered and
provides stage-aware replies when the model produces nothing usable.
All helpers are pure and return new containers.
"""

import re
from dataclasses import dataclass, field

from src.shared.completeness import calculate_completeness
from src.shared.intake_models import MedicalData
from src.shared.types import AGENT_ROSTER, HANDOVER_AGENT, AgentRole, TerminationReason

MAX_FOLLOWUPS_PER_STAGE = 2
REPHRASE_AFTER_ERRORS = 3
OFFER_CONCLUSION_AT = 15
FORCE_HANDOVER_AT = 20
SNIPPET_MAX_LENGTH = 50
COMPLETION_COMPLETENESS = 60
HANDOVER_COMPLETENESS = 80
MIN_HPI_FOR_COMPLETION = 20

AGENT_TO_STAGE: dict[AgentRole, str] = {
    AgentRole.TRIAGE: "triage",
    AgentRole.CLINICAL_INVESTIGATOR: "symptoms",
    AgentRole.RECORDS_CLERK: "records",
    AgentRole.HISTORY_SPECIALIST: "history",
    AgentRole.HANDOVER_SPECIALIST: "review",
}

CONTEXTUAL_FALLBACKS: dict[str, str] = {
    "triage": "I understand you're not feeling well. Could you describe your main concern in a few words?",
    "symptoms": "Thanks for sharing that. To help narrow things down, are you experiencing any other symptoms?",
    "records": "Got it. Do you have any recent test results or medical records to share?",
    "history": "Thanks. Do you have any ongoing medical conditions or take any regular medications?",
    "review": "I have the information I need. Let me summarize what you've told me.",
}

REPHRASE_MESSAGE = (
    "I'm having some difficulty understanding. "
    "Could you try rephrasing your response in simpler terms?"
)

UNCERTAINTY_PHRASES = [
    "i don't know", "i dont know", "not sure", "unsure", "no idea",
    "can't remember", "cant remember", "i forget", "hard to say",
]

NEGATIVE_RESPONSES = [
    "no", "none", "nothing", "nope", "n/a", "not really",
    "not that i know of", "i don't think so", "i dont think so",
    "i don't have any", "i dont have any", "no records", "no documents",
    "nothing to share", "skip", "move on", "next",
]

DONE_COMMANDS = ["done", "finish", "end", "complete", "stop", "enough"]
SKIP_COMMANDS = ["skip", "next", "move on", "next question", "next section"]

EXPLICIT_FINISH_PHRASES = [
    "can we wrap up", "wrap this up", "finish up", "i want to book",
    "let's book", "lets book", "ready to book", "i'm ready", "im ready",
    "book now", "schedule now", "can i book", "want to schedule",
    "ready for appointment",
]

COMPLETION_PHRASES = [
    "that's all", "thats all", "that is all", "nothing else", "no more",
    "i'm done", "im done", "that's it", "thats it", "no other",
    "nothing more", "i think that's everything", "that covers it",
    "i'm healthy", "im healthy", "no issues", "no problems", "no concerns",
    "that's everything", "thats everything",
]

DONE_ACKNOWLEDGMENT = (
    "Understood. I'll wrap up now and put together a summary for the doctor."
)
SKIP_ACKNOWLEDGMENT = "No problem, let's move on."

# Keyword stems matched at word starts; a topic mentioned once is not re-asked.
TOPIC_KEYWORDS: dict[str, list[str]] = {
    "fever": ["fever", "temperature", "burning up", "feverish"],
    "chills": ["chills", "shiver", "cold sweat"],
    "cough": ["cough"],
    "congestion": ["congest", "runny nose", "stuffy", "blocked nose"],
    "sore_throat": ["sore throat", "throat"],
    "headache": ["headache", "migraine", "head hurts"],
    "fatigue": ["tired", "fatigue", "exhausted", "worn out"],
    "nausea": ["nausea", "nauseous", "vomit", "throwing up"],
    "pain": ["pain", "hurts", "ache", "sore"],
    "rash": ["rash", "hives", "itch"],
    "swelling": ["swelling", "swollen", "lump"],
    "breathing": ["breath", "wheez"],
    "dizziness": ["dizz", "lightheaded", "faint"],
    "medications": ["medication", "medicine", "pills", "tablets"],
    "allergies": ["allerg"],
    "smoking": ["smok", "tobacco", "vape", "vaping"],
    "alcohol": ["alcohol", "drink"],
}

HISTORY_TOPICS = ("medications", "allergies", "past_medical_history")


@dataclass(frozen=True)
class TerminationSignal:
    """A patient or counter signal that moves the intake on.

    Attributes:
        reason: Why the intake is moving on.
        target_agent: Persona to continue with.
        acknowledgment: Reply sent instead of calling the model, for
            explicit commands.
    """

    reason: TerminationReason
    target_agent: AgentRole
    acknowledgment: str | None = None

    @property
    def is_immediate(self) -> bool:
        """Whether the patient issued a command the model is not asked about."""
        return self.reason in (TerminationReason.DONE_COMMAND, TerminationReason.SKIP_COMMAND)


@dataclass(frozen=True)
class StageAdvance:
    """Stage tracking after a patient message, before the model replies."""

    agent: AgentRole
    data: MedicalData
    answered_topics: list[str] = field(default_factory=list)
    signal: TerminationSignal | None = None


def stage_for_agent(agent: AgentRole) -> str:
    """Map a persona to the intake stage it owns."""
    return AGENT_TO_STAGE[agent]


def get_follow_up_count(follow_up_counts: dict[str, int], agent: AgentRole) -> int:
    """Return how many follow-ups the persona's stage has used."""
    return follow_up_counts.get(stage_for_agent(agent), 0)


def increment_follow_up_count(
    follow_up_counts: dict[str, int],
    agent: AgentRole,
) -> dict[str, int]:
    """Count one more follow-up for the persona's stage.

    Args:
        follow_up_counts: Current counts keyed by stage.
        agent: Persona that just asked a question.

    Returns:
        New counts mapping.
    """
    stage = stage_for_agent(agent)
    return {**follow_up_counts, stage: follow_up_counts.get(stage, 0) + 1}


def is_follow_up_limit_reached(follow_up_counts: dict[str, int], agent: AgentRole) -> bool:
    return get_follow_up_count(follow_up_counts, agent) >= MAX_FOLLOWUPS_PER_STAGE


def detect_uncertainty_phrase(message: str) -> bool:
    lower = message.lower()
    return any(phrase in lower for phrase in UNCERTAINTY_PHRASES)


def detect_negative_response(message: str) -> bool:
    """Check whether a patient message is a plain negative answer.

    Matches a negative phrase on its own or at the start of the message
    followed by a space or punctuation.
    """
    lower = message.lower().strip()
    return any(
        lower == phrase or lower.startswith((f"{phrase} ", f"{phrase},", f"{phrase}."))
        for phrase in NEGATIVE_RESPONSES
    )


def mark_topic_answered(answered_topics: list[str], topic: str) -> list[str]:
    if topic in answered_topics:
        return list(answered_topics)
    return [*answered_topics, topic]


def update_answered_topics(
    answered_topics: list[str],
    agent: AgentRole,
    patient_message: str | None,
) -> list[str]:
    """Mark the current stage answered when the patient declines or is unsure.

    Args:
        answered_topics: Topics already answered.
        agent: Persona that asked the question being answered.
        patient_message: Patient's latest message.

    Returns:
        New topic list.
    """
    if not patient_message:
        return list(answered_topics)
    if detect_negative_response(patient_message) or detect_uncertainty_phrase(patient_message):
        return mark_topic_answered(answered_topics, stage_for_agent(agent))
    return list(answered_topics)


def extract_answered_topics(message: str | None) -> list[str]:
    """List the topics a patient message touches on, in registry order."""
    if not message:
        return []
    lower = message.lower()
    return [
        topic
        for topic, keywords in TOPIC_KEYWORDS.items()
        if any(re.search(rf"\b{re.escape(keyword)}", lower) for keyword in keywords)
    ]


def contains_new_information(message: str | None, answered_topics: list[str]) -> bool:
    """Check whether a message mentions a topic not already answered."""
    return any(topic not in answered_topics for topic in extract_answered_topics(message))


def detect_completion_phrase(message: str | None) -> bool:
    if not message:
        return False
    lower = message.lower()
    return any(phrase in lower for phrase in COMPLETION_PHRASES)


def get_next_agent_on_limit_reached(agent: AgentRole) -> AgentRole:
    """Return the persona after this one in the roster.

    The handover persona is last and maps to itself.
    """
    index = AGENT_ROSTER.index(agent)
    return AGENT_ROSTER[min(index + 1, len(AGENT_ROSTER) - 1)]


def _is_command(lower: str, commands: list[str]) -> bool:
    return any(
        lower == command or lower.startswith(f"{command} ")
        for command in commands
    )


def detect_termination_signal(
    message: str | None,
    agent: AgentRole,
    ai_message_count: int,
    completeness: int,
    has_chief_complaint: bool,
    has_hpi: bool,
) -> TerminationSignal | None:
    """Decide whether the intake should move on regardless of the model.

    Checked in priority order: a done command, a skip command, an
    explicit request to finish, a completion phrase once enough has been
    collected, the message limit, and the completeness threshold. Only a
    skip command stops short of the handover persona.

    Args:
        message: Patient's latest message.
        agent: Persona currently in charge.
        ai_message_count: Model messages including the one being produced.
        completeness: Current completeness score.
        has_chief_complaint: Whether a chief complaint is recorded.
        has_hpi: Whether a substantive HPI is recorded.

    Returns:
        The signal, or None when the intake should carry on.
    """
    lower = (message or "").lower().strip()
    if lower:
        if _is_command(lower, DONE_COMMANDS):
            return TerminationSignal(
                TerminationReason.DONE_COMMAND, HANDOVER_AGENT, DONE_ACKNOWLEDGMENT,
            )
        if _is_command(lower, SKIP_COMMANDS):
            return TerminationSignal(
                TerminationReason.SKIP_COMMAND,
                get_next_agent_on_limit_reached(agent),
                SKIP_ACKNOWLEDGMENT,
            )
        if any(phrase in lower for phrase in EXPLICIT_FINISH_PHRASES):
            return TerminationSignal(TerminationReason.EXPLICIT_REQUEST, HANDOVER_AGENT)
        enough = completeness >= COMPLETION_COMPLETENESS or (has_chief_complaint and has_hpi)
        if enough and detect_completion_phrase(lower):
            return TerminationSignal(TerminationReason.COMPLETION_PHRASE, HANDOVER_AGENT)
    if agent == HANDOVER_AGENT:
        return None
    if should_force_handover(ai_message_count):
        return TerminationSignal(TerminationReason.MESSAGE_LIMIT, HANDOVER_AGENT)
    if completeness >= HANDOVER_COMPLETENESS:
        return TerminationSignal(TerminationReason.COMPLETENESS_THRESHOLD, HANDOVER_AGENT)
    return None


def _close_stage(agent: AgentRole, data: MedicalData) -> MedicalData:
    if agent == AgentRole.RECORDS_CLERK and not data.records_check_completed:
        return data.model_copy(update={"records_check_completed": True})
    if agent == AgentRole.HISTORY_SPECIALIST and not data.history_check_completed:
        return data.model_copy(update={"history_check_completed": True})
    return data


def advance_stage(
    agent: AgentRole,
    data: MedicalData,
    answered_topics: list[str],
    follow_up_counts: dict[str, int],
    patient_message: str | None,
    ai_message_count: int,
) -> StageAdvance:
    """Apply a patient message to the stage tracking.

    A negative reply to the records clerk or history specialist completes
    that check, and the history specialist hands on at once. A stage whose
    follow-up limit is spent moves on when the reply adds nothing new, and
    so does any stage when the patient says that is all. Termination
    signals are applied last and win.

    Args:
        agent: Persona that asked the question being answered.
        data: Medical record before the model's update.
        answered_topics: Topics answered before this message.
        follow_up_counts: Follow-up counts keyed by stage.
        patient_message: Patient's latest message.
        ai_message_count: Model messages including the one being produced.

    Returns:
        Persona to continue with, the adjusted record and topics, and the
        termination signal if one fired.
    """
    topics = update_answered_topics(answered_topics, agent, patient_message)
    for topic in extract_answered_topics(patient_message):
        topics = mark_topic_answered(topics, topic)

    if patient_message:
        negative = detect_negative_response(patient_message)
        if negative and agent == AgentRole.RECORDS_CLERK:
            data = _close_stage(agent, data)
        elif (
            negative
            and agent == AgentRole.HISTORY_SPECIALIST
            and not data.history_check_completed
        ):
            data = _close_stage(agent, data)
            for topic in HISTORY_TOPICS:
                topics = mark_topic_answered(topics, topic)
            agent = get_next_agent_on_limit_reached(agent)

        if (
            agent != HANDOVER_AGENT
            and is_follow_up_limit_reached(follow_up_counts, agent)
            and not contains_new_information(patient_message, answered_topics)
        ):
            data = _close_stage(agent, data)
            agent = get_next_agent_on_limit_reached(agent)

        if detect_completion_phrase(patient_message) and agent != HANDOVER_AGENT:
            data = _close_stage(agent, data)
            agent = get_next_agent_on_limit_reached(agent)

    hpi = data.hpi or ""
    signal = detect_termination_signal(
        patient_message,
        agent,
        ai_message_count,
        calculate_completeness(data),
        has_chief_complaint=bool(data.chief_complaint),
        has_hpi=len(hpi.strip()) > MIN_HPI_FOR_COMPLETION,
    )
    if signal is not None:
        agent = signal.target_agent
    return StageAdvance(agent=agent, data=data, answered_topics=topics, signal=signal)


def should_offer_conclusion(ai_message_count: int) -> bool:
    return OFFER_CONCLUSION_AT <= ai_message_count < FORCE_HANDOVER_AT


def should_force_handover(ai_message_count: int) -> bool:
    return ai_message_count >= FORCE_HANDOVER_AT


def _snippet(message: str | None) -> str | None:
    if not message or not message.strip():
        return None
    cleaned = message.strip()
    if len(cleaned) <= SNIPPET_MAX_LENGTH:
        return cleaned
    return cleaned[:SNIPPET_MAX_LENGTH - 3] + "..."


def get_fallback_message(
    agent: AgentRole,
    patient_message: str | None,
    consecutive_errors: int,
) -> str:
    """Pick the reply shown when the model output was unusable.

    Args:
        agent: Persona currently in charge.
        patient_message: Patient's latest message, for personalisation.
        consecutive_errors: Consecutive failed turns including this one.

    Returns:
        Non-empty fallback reply.
    """
    if consecutive_errors >= REPHRASE_AFTER_ERRORS:
        return REPHRASE_MESSAGE
    base = CONTEXTUAL_FALLBACKS[stage_for_agent(agent)]
    snippet = _snippet(patient_message)
    if snippet:
        return f'I heard you mention "{snippet}". {base}'
    return base
