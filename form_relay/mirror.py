"""Best-effort mirror of stored submissions into the Airtable review table.

The mirror is a projection of what the durable store already holds: it never
carries data the store does not have, never overwrites an existing record, and
its failures never reach the webhook sender.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from form_relay.airtable_client import AirtableClient
from form_relay.config.settings import DEFAULT_MIRROR_FIELD_MAX_LENGTH
from form_relay.intake.classifier import ProjectionClassifier
from form_relay.intake.extractor import ExtractedAnswer
from form_relay.intake.validator import FormEnvelope

logger = logging.getLogger(__name__)

INITIAL_STATUS = "New"
UNKNOWN_FORM_NAME = "Unknown"
NOT_APPLICABLE = "N/A"
PREVIEW_LENGTH = 50


class MirrorStatus(str, Enum):
    """Terminal states of the mirror stage."""

    MIRRORED = "mirrored"
    SKIPPED_EXISTING = "skipped_existing"
    DISABLED = "disabled"
    FAILED = "failed"


@dataclass(frozen=True)
class MirrorResult:
    """Soft result of the mirror stage; never raised, only reported.

    Attributes:
        status: What happened
        record_id: Airtable record id when one was created
        mapped: Number of answers written to a column
        unmapped: Number of answers no rule claimed
        warning: Failure description when status is FAILED
    """

    status: MirrorStatus
    record_id: str | None = None
    mapped: int = 0
    unmapped: int = 0
    warning: str | None = None

    @property
    def ok(self) -> bool:
        """True unless the mirror failed."""
        return self.status is not MirrorStatus.FAILED


@dataclass
class ProjectionReport:
    """Projected record plus bookkeeping for the mapping summary log."""

    fields: dict[str, Any]
    mapped: list[str] = field(default_factory=list)
    unmapped: list[dict[str, Any]] = field(default_factory=list)


def truncate(value: str, max_length: int) -> str:
    """Clip a value to the Airtable per-field ceiling."""
    return value if len(value) <= max_length else value[:max_length]


def is_not_applicable(value: str) -> bool:
    """True for blank values and the literal "N/A" sentinel."""
    stripped = value.strip()
    return not stripped or stripped.upper() == NOT_APPLICABLE


def build_projected_record(
    envelope: FormEnvelope,
    answers: list[ExtractedAnswer],
    *,
    dashboard_url: str | None = None,
    max_length: int = DEFAULT_MIRROR_FIELD_MAX_LENGTH,
) -> ProjectionReport:
    """Project a submission onto the fixed review-table columns.

    Args:
        envelope: Validated event envelope
        answers: Extracted answers (already non-empty)
        dashboard_url: Store dashboard base URL for the "View Data" link
        max_length: Per-field character ceiling

    Returns:
        ProjectionReport with the record fields and mapping details
    """
    fields: dict[str, Any] = {
        "Submission ID": envelope.submission_id,
        "Submitted At": envelope.submitted_at_raw,
        "Form Name": envelope.form_title or UNKNOWN_FORM_NAME,
        "Status": INITIAL_STATUS,
    }
    if dashboard_url:
        fields["View Data"] = f"{dashboard_url.rstrip('/')}/project/default/editor"

    report = ProjectionReport(fields=fields)
    classifier = ProjectionClassifier()

    for answer in answers:
        if is_not_applicable(answer.value):
            continue

        classification = classifier.classify(answer.label, answer.question_ref)
        if not classification.matched:
            report.unmapped.append(
                {
                    "field_id": answer.question_id,
                    "title": answer.label,
                    "ref": answer.question_ref,
                    "type": answer.raw_type,
                    "value_preview": answer.value[:PREVIEW_LENGTH],
                }
            )
            continue

        value = truncate(answer.value, max_length)
        for column in classification.columns:
            fields[column] = value
        report.mapped.append(classification.column)

    return report


def log_projection_summary(report: ProjectionReport, submission_id: str) -> None:
    """Log the mapping summary so drifting question labels are noticed."""
    context = {"submission_id": submission_id, "stage": "mirror"}
    logger.info(
        f"Airtable mapping summary: {len(report.mapped)} mapped, "
        f"{len(report.unmapped)} unmapped, {len(report.fields)} fields",
        extra=context,
    )
    for position, unmapped in enumerate(report.unmapped, start=1):
        logger.warning(
            f"Unmapped field {position}: id={unmapped['field_id']} "
            f"title={unmapped['title']!r} ref={unmapped['ref']!r} type={unmapped['type']} "
            f"value={unmapped['value_preview']!r}",
            extra=context,
        )


class MirrorWriter:
    """Mirrors one stored submission into Airtable.

    ``mirror`` raises on any failure; the pipeline turns that into a
    ``MirrorResult`` with status FAILED.
    """

    def __init__(
        self,
        client: AirtableClient,
        *,
        dashboard_url: str | None = None,
        max_field_length: int = DEFAULT_MIRROR_FIELD_MAX_LENGTH,
    ):
        self.client = client
        self.dashboard_url = dashboard_url
        self.max_field_length = max_field_length

    async def mirror(
        self,
        envelope: FormEnvelope,
        answers: list[ExtractedAnswer],
        record_id: int,
    ) -> MirrorResult:
        """Create the review record unless one already exists.

        Args:
            envelope: Validated event envelope
            answers: Extracted answers
            record_id: Durable store identity (for log correlation)

        Returns:
            MirrorResult with status MIRRORED or SKIPPED_EXISTING

        Raises:
            MirrorError: If Airtable rejects either call
        """
        context = {"submission_id": envelope.submission_id, "stage": "mirror"}

        existing = await self.client.find_records_by_submission_id(envelope.submission_id)
        if existing:
            logger.info("Record already exists in Airtable, skipping", extra=context)
            return MirrorResult(status=MirrorStatus.SKIPPED_EXISTING, record_id=existing[0].get("id"))

        report = build_projected_record(
            envelope,
            answers,
            dashboard_url=self.dashboard_url,
            max_length=self.max_field_length,
        )
        log_projection_summary(report, envelope.submission_id)

        created = await self.client.create_record(report.fields)
        logger.info(
            f"Created Airtable record {created.get('id')} for store record {record_id}",
            extra=context,
        )
        return MirrorResult(
            status=MirrorStatus.MIRRORED,
            record_id=created.get("id"),
            mapped=len(report.mapped),
            unmapped=len(report.unmapped),
        )
