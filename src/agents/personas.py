"""Intake personas — the fixed five-agent roster and its prompts.

The model plays one persona per turn and may hand control to another by
naming it in ``activeAgent``. The roster is closed: any other name is
rejected by the response validator and the current persona is kept.

Sequence:
  Triage → ClinicalInvestigator → RecordsClerk → HistorySpecialist
  → HandoverSpecialist
"""

from __future__ import annotations

from src.shared.intake_models import MedicalData
from src.shared.question_tracking import (
    MAX_FOLLOWUPS_PER_STAGE,
    get_follow_up_count,
    should_offer_conclusion,
)
from src.shared.types import AgentRole

HPI_MIN_LENGTH = 50

JSON_SCHEMA_INSTRUCTION = """
**OUTPUT FORMAT:**
Respond with a single JSON object wrapped in ```json ... ``` following this schema:

{
  "thought": {
    "differentialDiagnosis": [
      {"condition": "Condition Name", "probability": "High/Medium/Low", "reasoning": "Brief explanation"}
    ],
    "strategy": "Technique used for this turn",
    "missingInformation": ["Critical data points still missing"],
    "nextMove": "Your immediate next question"
  },
  "reply": "Your message to the patient (Markdown supported).",
  "updatedData": {
    "chiefComplaint": "...",
    "hpi": "...",
    "medicalRecords": ["..."],
    "recordsCheckCompleted": false,
    "historyCheckCompleted": false,
    "medications": ["..."],
    "allergies": ["..."],
    "pastMedicalHistory": ["..."],
    "familyHistory": "...",
    "socialHistory": "...",
    "reviewOfSystems": ["..."],
    "clinicalHandover": {
      "situation": "...", "background": "...", "assessment": "...", "recommendation": "..."
    },
    "ucgRecommendations": "...",
    "bookingStatus": "collecting"
  },
  "activeAgent": "Triage | ClinicalInvestigator | RecordsClerk | HistorySpecialist | HandoverSpecialist"
}

Only include keys in "updatedData" that you are changing.
"""

ROSTER_OVERVIEW = """
You are part of a five-agent medical intake team. Hand control to another
agent by naming it in "activeAgent":
1. Triage: identifies the chief complaint.
2. ClinicalInvestigator: explores the presenting illness (HPI).
3. RecordsClerk: collects documents, lab results and photos.
4. HistorySpecialist: medications, allergies and past history.
5. HandoverSpecialist: final sweep, SBAR handover and booking readiness.
"""

PERSONA_PROMPTS: dict[AgentRole, str] = {
    AgentRole.TRIAGE: (
        "You are the Triage Specialist Agent.\n"
        "Goal: identify the chief complaint efficiently.\n"
        'Ask "What brings you in today?" or clarify the main issue.'
    ),
    AgentRole.CLINICAL_INVESTIGATOR: (
        "You are the Clinical Investigator Agent.\n"
        "Goal: build a differential diagnosis with a hypothesis-driven history.\n"
        "List the top three differentials in 'thought', start with open questions, "
        "then batch closed yes/no questions. Signpost topic changes."
    ),
    AgentRole.RECORDS_CLERK: (
        "You are the Medical Records Specialist Agent.\n"
        "Goal: get objective data without making the patient type.\n"
        "Prompt for photos of discharge letters, lab results or pill bottles. "
        "If the patient has none, set 'recordsCheckCompleted': true and continue."
    ),
    AgentRole.HISTORY_SPECIALIST: (
        "You are the Patient History Specialist Agent.\n"
        "Ask ONE combined question for medications, allergies and major conditions.\n"
        "If the patient reports none, set the lists to [] and "
        "'historyCheckCompleted': true. Never re-ask once it is true."
    ),
    AgentRole.HANDOVER_SPECIALIST: (
        "You are the Senior Attending Agent.\n"
        "Goal: quality control, SBAR generation and booking.\n"
        'Do a final sweep: "Is there anything else worrying you?" '
        "When the SBAR is solid, fill 'clinicalHandover' and set 'bookingStatus': 'ready'."
    ),
}


def determine_agent(data: MedicalData) -> AgentRole:
    """Pick the persona that should own the next question.

    Priority order: missing chief complaint, short HPI, records check,
    history, then handover.

    Args:
        data: Current medical record.

    Returns:
        Persona for the first unmet stage.
    """
    if not data.chief_complaint or not data.chief_complaint.strip():
        return AgentRole.TRIAGE
    if len((data.hpi or "").strip()) < HPI_MIN_LENGTH:
        return AgentRole.CLINICAL_INVESTIGATOR
    if not data.records_check_completed:
        return AgentRole.RECORDS_CLERK
    has_history = data.medications or data.allergies or data.past_medical_history
    if not data.history_check_completed and not has_history:
        return AgentRole.HISTORY_SPECIALIST
    return AgentRole.HANDOVER_SPECIALIST


def _format_answered_topics(topics: list[str]) -> str:
    if not topics:
        return "None yet"
    return "\n".join(f"- {topic}" for topic in topics)


def build_system_prompt(
    agent: AgentRole,
    *,
    answered_topics: list[str],
    follow_up_counts: dict[str, int],
    ai_message_count: int,
    completeness: int,
) -> str:
    """Assemble the system prompt for the persona in charge.

    Args:
        agent: Persona playing this turn.
        answered_topics: Topics the patient already answered.
        follow_up_counts: Follow-up counts keyed by stage.
        ai_message_count: Model messages sent so far in the session.
        completeness: Current completeness score.

    Returns:
        Prompt text.
    """
    sections = [
        ROSTER_OVERVIEW.strip(),
        PERSONA_PROMPTS[agent],
        "**ALREADY ANSWERED (DO NOT ASK AGAIN):**\n"
        + _format_answered_topics(answered_topics),
        "**FOLLOW-UP COUNT FOR CURRENT STAGE:** "
        f"{get_follow_up_count(follow_up_counts, agent)}/{MAX_FOLLOWUPS_PER_STAGE}",
        f"**INTAKE COMPLETENESS:** {completeness}%",
    ]
    if should_offer_conclusion(ai_message_count):
        sections.append(
            "The intake is running long. Offer the patient to wrap up and "
            "move to the handover."
        )
    sections.append(JSON_SCHEMA_INSTRUCTION.strip())
    return "\n\n".join(sections)
