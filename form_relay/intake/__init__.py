"""Pure intake steps: signature check, validation, answer extraction, classification.

None of these modules perform I/O; the pipeline wires them to the stores.
"""

from form_relay.intake.classifier import (
    CATCH_ALL_SLOTS,
    PROJECTION_CATALOG,
    Classification,
    ProjectionClassifier,
)
from form_relay.intake.extractor import AnswerKind, ExtractedAnswer, extract_answer_text, extract_answers
from form_relay.intake.signature import compute_signature, verify_signature
from form_relay.intake.validator import FormEnvelope, parse_body, validate_event

__all__ = [
    "CATCH_ALL_SLOTS",
    "PROJECTION_CATALOG",
    "AnswerKind",
    "Classification",
    "ExtractedAnswer",
    "FormEnvelope",
    "ProjectionClassifier",
    "compute_signature",
    "extract_answer_text",
    "extract_answers",
    "parse_body",
    "validate_event",
    "verify_signature",
]
