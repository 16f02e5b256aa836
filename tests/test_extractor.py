"""Tests for Typeform answer extraction."""

import json

import pytest

from form_relay.intake.extractor import (
    AnswerKind,
    build_question_index,
    extract_answer_text,
    extract_answers,
    resolve_label,
)
from form_relay.intake.validator import validate_event

LIMIT = 4 * 1024 * 1024


class TestAnswerKind:
    """Tests for AnswerKind.parse."""

    def test_known_type(self):
        assert AnswerKind.parse("phone_number") is AnswerKind.PHONE_NUMBER

    @pytest.mark.parametrize("value", ["payment", None, 7, ""])
    def test_unknown_type_is_other(self, value):
        assert AnswerKind.parse(value) is AnswerKind.OTHER


class TestExtractAnswerText:
    """Tests for extract_answer_text over every answer variant."""

    @pytest.mark.parametrize(
        ("answer", "expected"),
        [
            ({"type": "text", "text": "hello"}, "hello"),
            ({"type": "email", "email": "a@b.com"}, "a@b.com"),
            ({"type": "url", "url": "https://example.com"}, "https://example.com"),
            ({"type": "date", "date": "2024-05-01"}, "2024-05-01"),
            ({"type": "file_url", "file_url": "https://files/x.pdf"}, "https://files/x.pdf"),
            ({"type": "phone_number", "phone_number": "+15550100"}, "+15550100"),
            ({"type": "choice", "choice": {"label": "Villa"}}, "Villa"),
            ({"type": "choice", "choice": {"other": "Treehouse"}}, "Treehouse"),
            ({"type": "choices", "choices": {"labels": ["Pool", "Gym"]}}, "Pool, Gym"),
            (
                {"type": "choices", "choices": {"labels": ["Pool"], "other": "Sauna"}},
                "Pool, Sauna",
            ),
            ({"type": "number", "number": 3}, "3"),
            ({"type": "number", "number": 3.0}, "3"),
            ({"type": "number", "number": 2.5}, "2.5"),
            ({"type": "number", "number": 0}, "0"),
            ({"type": "boolean", "boolean": True}, "Yes"),
            ({"type": "boolean", "boolean": False}, "No"),
        ],
    )
    def test_known_variants(self, answer, expected):
        assert extract_answer_text(answer) == expected

    @pytest.mark.parametrize(
        "answer",
        [
            {"type": "text"},
            {"type": "choice"},
            {"type": "choice", "choice": "flat"},
            {"type": "choices", "choices": {"labels": []}},
            {"type": "number"},
            {"type": "boolean"},
        ],
    )
    def test_variants_without_value(self, answer):
        assert extract_answer_text(answer) is None

    def test_unknown_variant_dumped(self):
        answer = {"type": "payment", "payment": {"amount": "10", "success": True}}

        text = extract_answer_text(answer)

        assert json.loads(text) == answer

    def test_missing_type_dumped(self):
        answer = {"field": {"id": "q1"}}

        assert json.loads(extract_answer_text(answer)) == answer

    def test_phone_number_without_value_dumped(self):
        answer = {"type": "phone_number", "field": {"id": "q1"}}

        assert json.loads(extract_answer_text(answer)) == answer

    def test_non_ascii_preserved(self):
        answer = {"type": "mystery", "value": "café"}

        assert "café" in extract_answer_text(answer)

    @pytest.mark.parametrize("answer", [None, "text", 42, ["a"]])
    def test_non_object_answer(self, answer):
        assert extract_answer_text(answer) is None


class TestLabels:
    """Tests for question label resolution."""

    def test_index_skips_incomplete_fields(self):
        index = build_question_index(
            [{"id": "q1", "title": "One"}, {"id": "q2"}, {"title": "orphan"}, "junk"]
        )

        assert index == {"q1": "One"}

    def test_definition_title_preferred(self):
        field = {"id": "q1", "title": "Inline", "ref": "ref_1"}

        assert resolve_label(field, {"q1": "From definition"}) == "From definition"

    def test_inline_title_then_ref(self):
        assert resolve_label({"id": "q1", "title": "Inline", "ref": "ref_1"}, {}) == "Inline"
        assert resolve_label({"id": "q1", "ref": "ref_1"}, {}) == "ref_1"

    def test_unknown_fallback(self):
        assert resolve_label({"id": "q1"}, {}) == "Unknown"


class TestExtractAnswers:
    """Tests for extract_answers over a whole event."""

    def test_email_answer(self, email_event):
        answers = extract_answers(validate_event(email_event, LIMIT))

        assert len(answers) == 1
        answer = answers[0]
        assert answer.question_id == "q1"
        assert answer.question_ref == "email_ref"
        assert answer.label == "Your Email"
        assert answer.value == "a@b.com"
        assert answer.kind is AnswerKind.EMAIL
        assert answer.raw_type == "email"

    def test_empty_and_whitespace_dropped(self, survey_event):
        answers = extract_answers(validate_event(survey_event, LIMIT))

        assert [a.question_id for a in answers] == ["q1", "q2", "q3", "q5", "q6", "q7"]
        assert all(a.value.strip() for a in answers)

    def test_answers_without_field_dropped(self, event_factory):
        event = event_factory(
            answers=[
                {"type": "text", "text": "no field"},
                {"type": "text", "text": "bad field", "field": "q1"},
                "junk",
                {"type": "text", "text": "kept", "field": {"ref": "ref_only"}},
            ]
        )

        answers = extract_answers(validate_event(event, LIMIT))

        assert len(answers) == 1
        assert answers[0].question_id == "ref_only"
        assert answers[0].label == "ref_only"

    def test_unknown_type_kept_as_dump(self, event_factory):
        event = event_factory(
            answers=[{"type": "matrix", "matrix": {"rows": 2}, "field": {"id": "q9"}}]
        )

        answers = extract_answers(validate_event(event, LIMIT))

        assert answers[0].kind is AnswerKind.OTHER
        assert answers[0].raw_type == "matrix"
        assert json.loads(answers[0].value)["matrix"] == {"rows": 2}

    def test_order_preserved(self, event_factory):
        event = event_factory(
            answers=[
                {"type": "number", "number": i, "field": {"id": f"q{i}"}} for i in range(1, 6)
            ]
        )

        answers = extract_answers(validate_event(event, LIMIT))

        assert [a.value for a in answers] == ["1", "2", "3", "4", "5"]
