"""Turn raw model text into a validated reply envelope.

The model is instructed to emit a fenced JSON envelope
({"thought", "reply", "updatedData", "activeAgent"}) but routinely
returns prose, half-JSON, or nothing at all. Extraction runs as ordered
lists of pure extractor functions; the first one that produces a value
wins. validate_ai_response never raises and always returns a non-empty
reply.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from typing import Any

from src.shared.response_models import ResponseValidationResult, ValidationDetails
from src.shared.types import VALID_AGENT_NAMES

logger = logging.getLogger(__name__)

FALLBACK_MESSAGE = (
    "I apologize, but I'm having trouble processing your message. Please try again."
)

ALTERNATE_REPLY_KEYS = ("text", "content", "response", "answer", "output")
PLAIN_TEXT_MIN_LENGTH = 10
PLAIN_TEXT_MAX_LENGTH = 500
MAX_FALLBACK_SENTENCES = 3

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_ANY_FENCED_BLOCK = re.compile(r"```[\s\S]*?```")
_BRACE_SPAN = re.compile(r"\{[\s\S]*\}")
_SENTENCE = re.compile(r"[A-Z][^.!?]*[.!?]")

JsonExtractor = Callable[[str], "dict[str, Any] | None"]
ReplyExtractor = Callable[[dict[str, Any]], "str | None"]
TextExtractor = Callable[[str], "str | None"]


def _load_object(candidate: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(candidate)
    except (json.JSONDecodeError, RecursionError):
        return None
    return parsed if isinstance(parsed, dict) else None


def _json_from_fenced_block(text: str) -> dict[str, Any] | None:
    match = _FENCED_BLOCK.search(text)
    if not match or not match.group(1):
        return None
    return _load_object(match.group(1))


def _json_from_brace_span(text: str) -> dict[str, Any] | None:
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last <= first:
        return None
    return _load_object(text[first:last + 1])


JSON_EXTRACTORS: list[JsonExtractor] = [
    _json_from_fenced_block,
    _json_from_brace_span,
]


def _non_empty_string(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _primary_reply(data: dict[str, Any]) -> str | None:
    return _non_empty_string(data.get("reply")) or _non_empty_string(data.get("message"))


def _alternate_key_reply(data: dict[str, Any]) -> str | None:
    for key in ALTERNATE_REPLY_KEYS:
        reply = _non_empty_string(data.get(key))
        if reply:
            return reply
    return None


def _next_move_reply(data: dict[str, Any]) -> str | None:
    thought = data.get("thought")
    if isinstance(thought, dict):
        return _non_empty_string(thought.get("nextMove"))
    return None


RECOVERY_EXTRACTORS: list[ReplyExtractor] = [
    _alternate_key_reply,
    _next_move_reply,
]


def _stripped_plain_text(text: str) -> str | None:
    cleaned = _ANY_FENCED_BLOCK.sub("", text).strip()
    cleaned = _BRACE_SPAN.sub("", cleaned).strip()
    if len(cleaned) <= PLAIN_TEXT_MIN_LENGTH:
        return None
    if len(cleaned) > PLAIN_TEXT_MAX_LENGTH:
        return cleaned[:PLAIN_TEXT_MAX_LENGTH] + "..."
    return cleaned


def _leading_sentences(text: str) -> str | None:
    sentences = _SENTENCE.findall(text)
    if not sentences:
        return None
    return " ".join(sentences[:MAX_FALLBACK_SENTENCES])


PLAIN_TEXT_EXTRACTORS: list[TextExtractor] = [
    _stripped_plain_text,
    _leading_sentences,
]


def _first_match(extractors: list[Callable[[Any], Any]], source: Any) -> Any:
    for extractor in extractors:
        result = extractor(source)
        if result:
            return result
    return None


def parse_json_envelope(text: str) -> dict[str, Any] | None:
    """Extract the JSON object envelope from raw model text.

    Args:
        text: Raw model output.

    Returns:
        Parsed JSON object, or None if no object could be parsed.
    """
    return _first_match(JSON_EXTRACTORS, text)


def _details(data: dict[str, Any], has_valid_reply: bool) -> ValidationDetails:
    return ValidationDetails(
        has_valid_reply=has_valid_reply,
        has_valid_updated_data=isinstance(data.get("updatedData"), dict),
        has_valid_active_agent=(
            isinstance(data.get("activeAgent"), str)
            and data["activeAgent"] in VALID_AGENT_NAMES
        ),
    )


def _fallback(error: str) -> ResponseValidationResult:
    return ResponseValidationResult(
        is_valid=False,
        reply=FALLBACK_MESSAGE,
        error=error,
        was_recovered=False,
    )


def validate_ai_response(text: str | None) -> ResponseValidationResult:
    """Validate raw model output and recover a displayable reply.

    Args:
        text: Raw model output; None when the model call failed.

    Returns:
        ResponseValidationResult with a non-empty reply.
    """
    try:
        return _validate(text)
    except Exception:
        logger.exception("ai_response_validation_crashed")
        return _fallback("Unexpected error while validating response")


def _validate(text: str | None) -> ResponseValidationResult:
    if not isinstance(text, str) or not text.strip():
        logger.warning("ai_response_empty")
        return _fallback("Empty response received")

    parsed = parse_json_envelope(text)
    if parsed is not None:
        reply = _primary_reply(parsed)
        details = _details(parsed, has_valid_reply=reply is not None)
        if not (
            details.has_valid_reply
            and details.has_valid_updated_data
            and details.has_valid_active_agent
        ):
            logger.warning(
                "ai_response_validation_issues",
                extra={
                    "has_valid_reply": details.has_valid_reply,
                    "has_valid_updated_data": details.has_valid_updated_data,
                    "has_valid_active_agent": details.has_valid_active_agent,
                },
            )
        if reply:
            return ResponseValidationResult(
                is_valid=True,
                reply=reply,
                was_recovered=False,
                parsed_data=parsed,
                validation_details=details,
            )
        recovered = _first_match(RECOVERY_EXTRACTORS, parsed)
        if recovered:
            return ResponseValidationResult(
                is_valid=True,
                reply=recovered,
                was_recovered=True,
                parsed_data=parsed,
                validation_details=details,
            )

    plain = _first_match(PLAIN_TEXT_EXTRACTORS, text)
    if plain:
        return ResponseValidationResult(
            is_valid=True,
            reply=plain,
            error="JSON parsing failed, extracted plain text",
            was_recovered=True,
        )

    logger.error("ai_response_unrecoverable")
    return _fallback("Failed to extract valid reply from response")
