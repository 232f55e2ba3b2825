"""Emergency symptom definitions — curated phrase registry for triage.

Each trigger groups the free-text phrases that indicate one emergency
category together with the advice shown to the patient. Triggers are
evaluated in priority order; every matching phrase is reported.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class EmergencySymptomTrigger:
    """A single emergency symptom category.

    Attributes:
        category: Short machine name for the category.
        patterns: Lowercase phrases matched as substrings.
        recommendation: Advice attached when the category fires.
    """

    category: str
    patterns: list[str] = field(default_factory=list)
    recommendation: str = "Seek immediate medical attention"


def load_triggers() -> list[EmergencySymptomTrigger]:
    """Load the active emergency symptom definitions.

    Returns:
        List of EmergencySymptomTrigger definitions in priority order.
    """
    return list(DEFAULT_TRIGGERS)


def match_emergency_phrases(
    text: str,
    triggers: list[EmergencySymptomTrigger] | None = None,
) -> list[tuple[EmergencySymptomTrigger, str]]:
    """Find every emergency phrase contained in a symptom description.

    Matching is plain substring search without negation or word
    boundaries: "no chest pain" matches "chest pain" and "unconsciously"
    matches "unconscious". Such text is flagged as an emergency.

    Args:
        text: Patient's free-text description of how they feel.
        triggers: Trigger list to evaluate (defaults to DEFAULT_TRIGGERS).

    Returns:
        (trigger, phrase) pairs in priority order.
    """
    text_lower = text.lower()
    matches = []
    for trigger in triggers or load_triggers():
        for pattern in trigger.patterns:
            if pattern in text_lower:
                matches.append((trigger, pattern))
    return matches


DEFAULT_TRIGGERS: list[EmergencySymptomTrigger] = [
    EmergencySymptomTrigger(
        category="cardiac",
        patterns=["chest pain", "chest tightness", "crushing pain"],
        recommendation="Call emergency services or visit the nearest emergency room",
    ),
    EmergencySymptomTrigger(
        category="respiratory",
        patterns=[
            "difficulty breathing",
            "shortness of breath",
            "can't breathe",
            "cannot breathe",
            "choking",
        ],
        recommendation="Call emergency services or visit the nearest emergency room",
    ),
    EmergencySymptomTrigger(
        category="neurological",
        patterns=[
            "loss of consciousness",
            "unconscious",
            "passed out",
            "fainted",
            "seizure",
            "convulsions",
            "confusion",
            "disorientation",
            "worst headache",
            "severe headache",
            "slurred speech",
            "face drooping",
        ],
        recommendation="Call emergency services or visit the nearest emergency room",
    ),
    EmergencySymptomTrigger(
        category="bleeding",
        patterns=[
            "severe bleeding",
            "bleeding heavily",
            "uncontrolled bleeding",
            "vomiting blood",
            "coughing up blood",
        ],
        recommendation="Apply pressure and seek immediate medical attention",
    ),
    EmergencySymptomTrigger(
        category="pain",
        patterns=["severe pain"],
    ),
    EmergencySymptomTrigger(
        category="mental_health",
        patterns=["suicidal", "self-harm", "kill myself"],
        recommendation="Contact a crisis line or emergency services now",
    ),
]
