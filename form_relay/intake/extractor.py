"""Answer extraction for Typeform answer objects.

Typeform answers are a tagged union: ``type`` names the variant and the value
lives under a variant-specific key (``{"type": "email", "email": "a@b.com"}``).
This module renders every variant as plain text, independent of where the
value ends up being stored.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from form_relay.intake.validator import FormEnvelope

logger = logging.getLogger(__name__)

UNKNOWN_LABEL = "Unknown"


class AnswerKind(str, Enum):
    """Answer variants understood by the extractor."""

    TEXT = "text"
    EMAIL = "email"
    URL = "url"
    CHOICE = "choice"
    CHOICES = "choices"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    FILE_URL = "file_url"
    PHONE_NUMBER = "phone_number"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> "AnswerKind":
        """Map a provider ``type`` string to a kind; unknown types become OTHER."""
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


# Kinds whose value sits under a key named after the kind itself
_SCALAR_KINDS = {
    AnswerKind.TEXT,
    AnswerKind.EMAIL,
    AnswerKind.URL,
    AnswerKind.DATE,
    AnswerKind.FILE_URL,
}


@dataclass(frozen=True)
class ExtractedAnswer:
    """One answer with a usable, non-empty text value."""

    question_id: str
    question_ref: str
    label: str
    value: str
    kind: AnswerKind
    raw_type: str


def _dump(answer: Any) -> str:
    return json.dumps(answer, ensure_ascii=False, sort_keys=True, default=str)


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def _render_number(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return _as_text(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def extract_answer_text(answer: Any) -> str | None:
    """Render one raw answer as text.

    Total over every input: unrecognised variants are returned as a JSON dump
    of the whole answer so nothing is silently lost.

    Args:
        answer: Raw answer object from ``form_response.answers``

    Returns:
        Text value, or None when the variant carries no value
    """
    if not isinstance(answer, dict):
        return None

    kind = AnswerKind.parse(answer.get("type"))

    if kind in _SCALAR_KINDS:
        return _as_text(answer.get(kind.value))

    if kind is AnswerKind.CHOICE:
        choice = answer.get("choice")
        if not isinstance(choice, dict):
            return None
        return _as_text(choice.get("label") or choice.get("other"))

    if kind is AnswerKind.CHOICES:
        choices = answer.get("choices")
        if not isinstance(choices, dict):
            return None
        labels = [str(label) for label in choices.get("labels") or [] if label is not None]
        if choices.get("other"):
            labels.append(str(choices["other"]))
        return ", ".join(labels) if labels else None

    if kind is AnswerKind.NUMBER:
        return _render_number(answer.get("number"))

    if kind is AnswerKind.BOOLEAN:
        if answer.get("boolean") is None:
            return None
        return "Yes" if answer["boolean"] else "No"

    if kind is AnswerKind.PHONE_NUMBER:
        return _as_text(answer.get("phone_number")) or _dump(answer)

    return _dump(answer)


def build_question_index(definition_fields: list[Any]) -> dict[str, str]:
    """Map question ids to titles from the form definition embedded in the event."""
    index: dict[str, str] = {}
    for definition_field in definition_fields:
        if not isinstance(definition_field, dict):
            continue
        field_id = definition_field.get("id")
        title = definition_field.get("title")
        if field_id and title:
            index[str(field_id)] = str(title)
    return index


def resolve_label(answer_field: dict[str, Any], index: dict[str, str]) -> str:
    """Resolve the human-readable label for an answer's field.

    Lookup order: form definition title, inline field title, field ref, "Unknown".
    """
    field_id = answer_field.get("id")
    if field_id and str(field_id) in index:
        return index[str(field_id)]
    for key in ("title", "ref"):
        value = answer_field.get(key)
        if value:
            return str(value)
    return UNKNOWN_LABEL


def extract_answers(envelope: FormEnvelope) -> list[ExtractedAnswer]:
    """Extract every answer of an event that has a usable value.

    Answers without a ``field`` object, or whose value is missing, empty or
    whitespace-only, are dropped here so they reach neither store.

    Args:
        envelope: Validated event envelope

    Returns:
        Extracted answers in delivery order
    """
    index = build_question_index(envelope.definition_fields)
    extracted: list[ExtractedAnswer] = []
    dropped = 0

    for answer in envelope.answers:
        if not isinstance(answer, dict) or not isinstance(answer.get("field"), dict):
            dropped += 1
            continue

        value = extract_answer_text(answer)
        if value is None or not value.strip():
            dropped += 1
            continue

        answer_field = answer["field"]
        raw_type = str(answer.get("type") or AnswerKind.OTHER.value)
        extracted.append(
            ExtractedAnswer(
                question_id=str(answer_field.get("id") or answer_field.get("ref") or ""),
                question_ref=str(answer_field.get("ref") or ""),
                label=resolve_label(answer_field, index),
                value=value,
                kind=AnswerKind.parse(raw_type),
                raw_type=raw_type,
            )
        )

    if dropped:
        logger.debug(
            f"Dropped {dropped} answers without a usable value",
            extra={"submission_id": envelope.submission_id},
        )
    return extracted
