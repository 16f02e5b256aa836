"""Ingestion pipeline: verify, validate, persist, mirror.

States:
- RECEIVED: Raw delivery accepted by the transport
- VERIFIED: Signature checked (or signing disabled)
- VALIDATED: Envelope is structurally sound
- PERSISTED: Submission durably stored (or already present)
- MIRRORED: Airtable record created or already present
- MIRROR_FAILED: Mirror failed; still a successful outcome for the sender
- DONE: Terminal success
- REJECTED: Terminal, sender error (401/400/405/413)
- FAILED: Terminal, durable write failed (500, sender retries)

Transitions:
- RECEIVED → VERIFIED | REJECTED
- VERIFIED → VALIDATED | REJECTED
- VALIDATED → PERSISTED | FAILED
- PERSISTED → MIRRORED | MIRROR_FAILED
- MIRRORED → DONE
- MIRROR_FAILED → DONE

Once PERSISTED is reached the outcome is success no matter what the mirror does.

Example:
    >>> pipeline = IngestionPipeline(store, mirror, signing_secret=secret)
    >>> outcome = await pipeline.process(raw_body, signature)
    >>> outcome.state
    <PipelineState.DONE: 'done'>
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from form_relay.config.settings import DEFAULT_MAX_PAYLOAD_BYTES
from form_relay.exceptions import (
    IntakeError,
    PersistenceError,
    UnauthorizedError,
)
from form_relay.intake.extractor import ExtractedAnswer, extract_answers
from form_relay.intake.signature import verify_signature
from form_relay.intake.validator import FormEnvelope, build_envelope, parse_body, validate_event
from form_relay.mirror import MirrorResult, MirrorStatus, MirrorWriter
from form_relay.store import PersistResult, SubmissionStore

logger = logging.getLogger(__name__)


# ============================================================================
# STATES
# ============================================================================
class PipelineState(str, Enum):
    """Lifecycle of one webhook delivery."""

    RECEIVED = "received"
    VERIFIED = "verified"
    VALIDATED = "validated"
    PERSISTED = "persisted"
    MIRRORED = "mirrored"
    MIRROR_FAILED = "mirror_failed"
    DONE = "done"
    REJECTED = "rejected"
    FAILED = "failed"


VALID_TRANSITIONS: dict[PipelineState, set[PipelineState]] = {
    PipelineState.RECEIVED: {PipelineState.VERIFIED, PipelineState.REJECTED},
    PipelineState.VERIFIED: {PipelineState.VALIDATED, PipelineState.REJECTED},
    PipelineState.VALIDATED: {PipelineState.PERSISTED, PipelineState.FAILED},
    PipelineState.PERSISTED: {PipelineState.MIRRORED, PipelineState.MIRROR_FAILED},
    PipelineState.MIRRORED: {PipelineState.DONE},
    PipelineState.MIRROR_FAILED: {PipelineState.DONE},
    PipelineState.DONE: set(),
    PipelineState.REJECTED: set(),
    PipelineState.FAILED: set(),
}

TERMINAL_STATES = {PipelineState.DONE, PipelineState.REJECTED, PipelineState.FAILED}


class PipelineStateMachine:
    """Tracks and validates the state transitions of one delivery.

    Attributes:
        current_state: Current state
        history: Transition records with timestamps and reasons
    """

    def __init__(self, initial_state: PipelineState = PipelineState.RECEIVED):
        self.current_state = initial_state
        self.submission_id: str | None = None
        self.history: list[dict[str, Any]] = [
            {"state": initial_state, "timestamp": datetime.now(UTC), "reason": "Initial state"}
        ]

    def can_transition(self, to_state: PipelineState) -> bool:
        """Check if transition to ``to_state`` is valid."""
        return to_state in VALID_TRANSITIONS.get(self.current_state, set())

    def transition(self, to_state: PipelineState, reason: str | None = None) -> None:
        """Move to ``to_state``.

        Raises:
            ValueError: If the transition is not allowed
        """
        if not self.can_transition(to_state):
            raise ValueError(f"Invalid transition from {self.current_state} to {to_state}")

        self.history.append(
            {
                "from_state": self.current_state,
                "to_state": to_state,
                "timestamp": datetime.now(UTC),
                "reason": reason or f"Transition to {to_state}",
            }
        )
        old_state = self.current_state
        self.current_state = to_state
        logger.info(
            f"Delivery {old_state.value} → {to_state.value} ({reason or 'no reason'})",
            extra={"submission_id": self.submission_id, "stage": to_state.value},
        )

    def is_terminal(self) -> bool:
        """True once no further transition is possible."""
        return self.current_state in TERMINAL_STATES


# ============================================================================
# OUTCOME
# ============================================================================
@dataclass(frozen=True)
class PipelineOutcome:
    """Successful result of one delivery.

    Attributes:
        submission_id: Provider token echoed back to the sender
        record_id: Durable store identity
        created: False when the delivery was a duplicate
        mirror: Soft result of the mirror stage
        state: Terminal state (always DONE)
        history: State transition history
        answers_error: Why the answer batch was not written, if it was not
    """

    submission_id: str
    record_id: int
    created: bool
    mirror: MirrorResult
    state: PipelineState = PipelineState.DONE
    history: list[dict[str, Any]] = field(default_factory=list)
    answers_error: str | None = None


# ============================================================================
# PIPELINE
# ============================================================================
class IngestionPipeline:
    """Drives one delivery through verify → validate → persist → mirror.

    Both collaborators are injected so tests can substitute doubles.
    """

    def __init__(
        self,
        store: SubmissionStore,
        mirror: MirrorWriter | None = None,
        *,
        signing_secret: str | None = None,
        max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES,
        store_timeout: float = 10.0,
        mirror_timeout: float = 15.0,
    ):
        """Initialize the pipeline.

        Args:
            store: Durable store writer (mandatory stage)
            mirror: Airtable mirror writer; None disables mirroring
            signing_secret: Shared secret; empty or None is open mode
            max_payload_bytes: Serialized payload ceiling
            store_timeout: Deadline in seconds for the submission row, and
                separately for the answer batch
            mirror_timeout: Deadline for the mirror stage in seconds
        """
        self.store = store
        self.mirror = mirror
        self.signing_secret = signing_secret
        self.max_payload_bytes = max_payload_bytes
        self.store_timeout = store_timeout
        self.mirror_timeout = mirror_timeout

    async def process(self, raw_body: bytes, signature: str | None = None) -> PipelineOutcome:
        """Process one webhook delivery.

        Args:
            raw_body: Request body bytes exactly as received
            signature: ``Typeform-Signature`` header value, if any

        Returns:
            PipelineOutcome once the submission is durably stored

        Raises:
            UnauthorizedError: Signature check failed while signing is enabled
            MalformedRequestError: Body, envelope or identifiers are unusable
            PersistenceError: Durable write failed; the sender must retry
        """
        sm = PipelineStateMachine()

        try:
            if not verify_signature(raw_body, signature, self.signing_secret):
                logger.error("Invalid Typeform signature")
                raise UnauthorizedError("Invalid or missing webhook signature")
            sm.transition(
                PipelineState.VERIFIED,
                "Signature valid" if self.signing_secret else "Signing disabled (open mode)",
            )

            envelope = validate_event(parse_body(raw_body), self.max_payload_bytes)
        except IntakeError as e:
            sm.transition(PipelineState.REJECTED, e.error_code)
            raise

        sm.submission_id = envelope.submission_id
        sm.transition(PipelineState.VALIDATED, f"Form {envelope.form_id}")

        answers = extract_answers(envelope)

        try:
            persisted = await self._persist(envelope)
        except PersistenceError as e:
            sm.transition(PipelineState.FAILED, e.message)
            raise

        sm.transition(
            PipelineState.PERSISTED,
            f"Record {persisted.record_id} ({'created' if persisted.created else 'duplicate'})",
        )

        if persisted.created:
            persisted = await self._persist_answers(envelope, answers, persisted)

        mirror_result = await self._mirror(envelope, answers, persisted)
        if mirror_result.ok:
            sm.transition(PipelineState.MIRRORED, mirror_result.status.value)
        else:
            sm.transition(PipelineState.MIRROR_FAILED, mirror_result.warning)
        sm.transition(PipelineState.DONE)

        return PipelineOutcome(
            submission_id=envelope.submission_id,
            record_id=persisted.record_id,
            created=persisted.created,
            mirror=mirror_result,
            state=sm.current_state,
            history=list(sm.history),
            answers_error=persisted.answers_error,
        )

    async def _persist(self, envelope: FormEnvelope) -> PersistResult:
        """Hard stage: every failure becomes a PersistenceError.

        The deadline covers the lookup and the submission row only.
        """
        try:
            return await asyncio.wait_for(self.store.save_submission(envelope), self.store_timeout)
        except PersistenceError:
            raise
        except asyncio.TimeoutError as e:
            raise PersistenceError(
                f"Database save timed out after {self.store_timeout}s",
                details={"submission_id": envelope.submission_id},
            ) from e
        except Exception as e:
            logger.exception(
                "Unexpected error while saving submission",
                extra={"submission_id": envelope.submission_id},
            )
            raise PersistenceError(
                f"Database save failed: {e}",
                details={"submission_id": envelope.submission_id},
            ) from e

    async def _persist_answers(
        self,
        envelope: FormEnvelope,
        answers: list[ExtractedAnswer],
        persisted: PersistResult,
    ) -> PersistResult:
        """Write the answer batch. The submission row is committed, so nothing here is fatal."""
        context = {"submission_id": envelope.submission_id, "stage": "answers"}
        try:
            written, error = await asyncio.wait_for(
                self.store.save_answers(
                    persisted.record_id, answers, submission_id=envelope.submission_id
                ),
                self.store_timeout,
            )
        except asyncio.TimeoutError:
            written, error = 0, f"Answer save timed out after {self.store_timeout}s"
        except Exception as e:
            logger.exception("Unexpected error while saving answers", extra=context)
            written, error = 0, f"Answer save failed: {e}"

        if error is not None:
            logger.error(
                f"Answers for record {persisted.record_id} not stored: {error}", extra=context
            )
        return replace(persisted, answers_written=written, answers_error=error)

    async def _mirror(
        self,
        envelope: FormEnvelope,
        answers: list[ExtractedAnswer],
        persisted: PersistResult,
    ) -> MirrorResult:
        """Soft stage: every failure, timeouts included, becomes a warning.

        A redelivery is mirrored from the payload already in the durable
        store, so the mirror never holds content the store lacks.
        """
        if self.mirror is None:
            return MirrorResult(status=MirrorStatus.DISABLED)

        context = {"submission_id": envelope.submission_id, "stage": "mirror"}
        try:
            stored = persisted.stored_payload
            if not persisted.created and stored and stored != envelope.payload:
                logger.info(
                    "Redelivery differs from stored payload, mirroring stored copy",
                    extra=context,
                )
                envelope = build_envelope(stored)
                answers = extract_answers(envelope)
            return await asyncio.wait_for(
                self.mirror.mirror(envelope, answers, persisted.record_id), self.mirror_timeout
            )
        except asyncio.TimeoutError:
            warning = f"Airtable update timed out after {self.mirror_timeout}s"
        except Exception as e:
            warning = f"Airtable update failed: {e}"

        logger.warning(warning, extra=context)
        return MirrorResult(status=MirrorStatus.FAILED, warning=warning)
