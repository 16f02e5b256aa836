"""Tests for structural validation of webhook deliveries."""

from datetime import UTC, datetime

import pytest

from form_relay.exceptions import MalformedRequestError, PayloadTooLargeError
from form_relay.intake.validator import (
    build_envelope,
    parse_body,
    parse_timestamp,
    serialized_size,
    validate_event,
)

LIMIT = 4 * 1024 * 1024


class TestParseBody:
    """Tests for parse_body."""

    def test_valid_object(self):
        assert parse_body(b'{"a": 1}') == {"a": 1}

    @pytest.mark.parametrize("raw", [b"not json", b"", b"\xff\xff", b'{"a": '])
    def test_invalid_json(self, raw):
        with pytest.raises(MalformedRequestError) as exc_info:
            parse_body(raw)

        assert exc_info.value.error_code == "invalid_json"
        assert exc_info.value.status_code == 400

    @pytest.mark.parametrize("raw", [b"[]", b'"text"', b"42", b"null"])
    def test_non_object_rejected(self, raw):
        with pytest.raises(MalformedRequestError) as exc_info:
            parse_body(raw)

        assert exc_info.value.error_code == "invalid_json"

    def test_deeply_nested_body_rejected(self):
        raw = b'{"form_response": ' + b"[" * 200_000 + b"]" * 200_000 + b"}"

        with pytest.raises(MalformedRequestError) as exc_info:
            parse_body(raw)

        assert exc_info.value.error_code == "invalid_json"
        assert exc_info.value.status_code == 400


class TestParseTimestamp:
    """Tests for parse_timestamp."""

    def test_zulu_suffix(self):
        assert parse_timestamp("2024-05-01T10:00:00Z") == datetime(2024, 5, 1, 10, tzinfo=UTC)

    def test_offset_preserved(self):
        parsed = parse_timestamp("2024-05-01T12:00:00+02:00")

        assert parsed == datetime(2024, 5, 1, 10, tzinfo=UTC)

    def test_naive_assumed_utc(self):
        assert parse_timestamp("2024-05-01T10:00:00").tzinfo == UTC

    @pytest.mark.parametrize("value", [None, "", "   ", "yesterday", 1714557600])
    def test_unparsable(self, value):
        assert parse_timestamp(value) is None


class TestValidateEvent:
    """Tests for validate_event."""

    def test_valid_event(self, email_event):
        envelope = validate_event(email_event, LIMIT)

        assert envelope.submission_id == "abc123"
        assert envelope.form_id == "F1"
        assert envelope.form_title == "Property Survey"
        assert envelope.submitted_at == datetime(2024, 5, 1, 10, tzinfo=UTC)
        assert envelope.submitted_at_raw == "2024-05-01T10:00:00Z"
        assert envelope.definition_fields == [{"id": "q1", "title": "Your Email"}]
        assert len(envelope.answers) == 1
        assert envelope.raw is email_event["form_response"]
        assert envelope.payload is email_event

    def test_missing_envelope(self):
        with pytest.raises(MalformedRequestError) as exc_info:
            validate_event({"event_id": "x"}, LIMIT)

        assert exc_info.value.error_code == "invalid_payload"

    def test_envelope_not_an_object(self):
        with pytest.raises(MalformedRequestError) as exc_info:
            validate_event({"form_response": ["nope"]}, LIMIT)

        assert exc_info.value.error_code == "invalid_payload"

    @pytest.mark.parametrize(
        ("token", "form_id"),
        [(None, "F1"), ("abc123", None), ("", "F1"), ("abc123", "   "), (None, None)],
    )
    def test_missing_identifiers(self, event_factory, token, form_id):
        event = event_factory(token=token, form_id=form_id)

        with pytest.raises(MalformedRequestError) as exc_info:
            validate_event(event, LIMIT)

        assert exc_info.value.error_code == "missing_required_fields"
        assert exc_info.value.status_code == 400

    def test_payload_too_large(self, event_factory):
        event = event_factory(
            answers=[{"type": "text", "text": "x" * 2000, "field": {"id": "q1"}}]
        )

        with pytest.raises(PayloadTooLargeError) as exc_info:
            validate_event(event, 1024)

        error = exc_info.value
        assert error.status_code == 413
        assert error.error_code == "payload_too_large"
        assert error.limit_bytes == 1024
        assert error.size_bytes == serialized_size(event)

    def test_size_checked_before_structure(self):
        """Test that an oversize body is rejected as too large even when malformed."""
        with pytest.raises(PayloadTooLargeError):
            validate_event({"junk": "x" * 100}, 10)

    def test_size_boundary_inclusive(self, email_event):
        size = serialized_size(email_event)

        assert validate_event(email_event, size).submission_id == "abc123"
        with pytest.raises(PayloadTooLargeError):
            validate_event(email_event, size - 1)

    def test_size_counts_utf8_bytes(self):
        assert serialized_size({"a": "é"}) == len('{"a":"é"}'.encode())

    def test_size_of_deeply_nested_body_rejected(self):
        deep: list = []
        for _ in range(200_000):
            deep = [deep]

        with pytest.raises(MalformedRequestError) as exc_info:
            validate_event({"form_response": deep}, LIMIT)

        assert exc_info.value.error_code == "invalid_json"

    def test_missing_timestamp_defaults_to_receipt_time(self, event_factory):
        before = datetime.now(UTC)
        envelope = validate_event(event_factory(submitted_at=None), LIMIT)

        assert envelope.submitted_at >= before
        assert envelope.submitted_at_raw == envelope.submitted_at.isoformat()

    def test_bad_timestamp_defaults_to_receipt_time(self, event_factory):
        envelope = validate_event(event_factory(submitted_at="not a date"), LIMIT)

        assert envelope.submitted_at.tzinfo is not None
        assert envelope.submitted_at_raw != "not a date"

    def test_missing_definition_tolerated(self, event_factory):
        event = event_factory()
        del event["form_response"]["definition"]
        event["form_response"]["answers"] = "not-a-list"

        envelope = validate_event(event, LIMIT)

        assert envelope.form_title is None
        assert envelope.definition_fields == []
        assert envelope.answers == []

    def test_numeric_identifiers_coerced(self, event_factory):
        envelope = validate_event(event_factory(token=12345), LIMIT)

        assert envelope.submission_id == "12345"


class TestBuildEnvelope:
    """Tests for build_envelope."""

    def test_no_size_check(self, event_factory):
        event = event_factory(answers=[{"type": "text", "text": "x" * 5000, "field": {"id": "q1"}}])

        envelope = build_envelope(event)

        assert envelope.submission_id == "abc123"
        assert envelope.payload is event

    def test_missing_envelope(self):
        with pytest.raises(MalformedRequestError) as exc_info:
            build_envelope({"event_id": "x"})

        assert exc_info.value.error_code == "invalid_payload"
