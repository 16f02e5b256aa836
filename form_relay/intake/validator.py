"""Structural validation of inbound webhook deliveries.

Runs before any side effect. Checks happen in a fixed order: size ceiling,
envelope presence, then the identifying fields inside the envelope.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from form_relay.exceptions import MalformedRequestError, PayloadTooLargeError

logger = logging.getLogger(__name__)

ENVELOPE_KEY = "form_response"


@dataclass(frozen=True)
class FormEnvelope:
    """Normalized view of one ``form_response`` envelope.

    ``payload`` is the complete delivery body and ``raw`` its unmodified
    ``form_response`` envelope; every other attribute is derived from them.
    """

    submission_id: str
    form_id: str
    submitted_at: datetime
    submitted_at_raw: str
    form_title: str | None
    definition_fields: list[dict[str, Any]] = field(default_factory=list)
    answers: list[Any] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)
    payload: dict[str, Any] = field(default_factory=dict)


def parse_body(raw_body: bytes) -> dict[str, Any]:
    """Decode a raw request body into a JSON object.

    Args:
        raw_body: Request body bytes

    Returns:
        Decoded JSON object

    Raises:
        MalformedRequestError: If the body cannot be decoded into a JSON object
    """
    try:
        body = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedRequestError(
            f"Request body is not valid JSON: {e}", error_code="invalid_json"
        ) from e
    except RecursionError as e:
        raise MalformedRequestError(
            "Request body is nested too deeply to decode", error_code="invalid_json"
        ) from e

    if not isinstance(body, dict):
        raise MalformedRequestError("Request body must be a JSON object", error_code="invalid_json")
    return body


def serialized_size(body: Any) -> int:
    """Size in bytes of the compact UTF-8 JSON serialization of ``body``.

    Raises:
        MalformedRequestError: If ``body`` nests too deeply to serialize
    """
    try:
        text = json.dumps(body, separators=(",", ":"), ensure_ascii=False)
    except RecursionError as e:
        raise MalformedRequestError(
            "Request body is nested too deeply to serialize", error_code="invalid_json"
        ) from e
    return len(text.encode("utf-8"))


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO 8601 timestamp (``Z`` suffix allowed) into an aware datetime."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _non_empty_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def validate_event(body: dict[str, Any], max_payload_bytes: int) -> FormEnvelope:
    """Validate a decoded delivery and return its normalized envelope.

    Args:
        body: Decoded request body
        max_payload_bytes: Serialized size ceiling

    Returns:
        FormEnvelope for downstream stages

    Raises:
        PayloadTooLargeError: If the serialized body exceeds the ceiling
        MalformedRequestError: If the envelope or required identifiers are missing
    """
    size = serialized_size(body)
    if size > max_payload_bytes:
        logger.error(f"Payload too large: {size} bytes (limit {max_payload_bytes})")
        raise PayloadTooLargeError(
            f"Payload of {size} bytes exceeds the {max_payload_bytes} byte limit",
            size_bytes=size,
            limit_bytes=max_payload_bytes,
        )
    return build_envelope(body)


def build_envelope(body: dict[str, Any]) -> FormEnvelope:
    """Check the envelope and identifiers of a decoded body and normalize it.

    Raises:
        MalformedRequestError: If the envelope or required identifiers are missing
    """
    form_response = body.get(ENVELOPE_KEY)
    if not isinstance(form_response, dict):
        logger.error("Invalid payload structure: missing form_response")
        raise MalformedRequestError("Invalid payload structure", error_code="invalid_payload")

    submission_id = _non_empty_str(form_response.get("token"))
    form_id = _non_empty_str(form_response.get("form_id"))
    if submission_id is None or form_id is None:
        logger.error(
            "Missing required fields",
            extra={"submission_id": submission_id, "form_id": form_id},
        )
        raise MalformedRequestError(
            "Missing required fields: token and form_id",
            error_code="missing_required_fields",
            details={"token": submission_id is not None, "form_id": form_id is not None},
        )

    submitted_at = parse_timestamp(form_response.get("submitted_at"))
    if submitted_at is None:
        submitted_at = datetime.now(UTC)
        submitted_at_raw = submitted_at.isoformat()
    else:
        submitted_at_raw = form_response["submitted_at"]

    definition = form_response.get("definition")
    definition = definition if isinstance(definition, dict) else {}
    fields = definition.get("fields")
    answers = form_response.get("answers")

    return FormEnvelope(
        submission_id=submission_id,
        form_id=form_id,
        submitted_at=submitted_at,
        submitted_at_raw=submitted_at_raw,
        form_title=_non_empty_str(definition.get("title")),
        definition_fields=fields if isinstance(fields, list) else [],
        answers=answers if isinstance(answers, list) else [],
        raw=form_response,
        payload=body,
    )
