"""Durable, idempotent persistence of submissions.

The lookup-then-insert below is only half of the idempotency story. Two
deliveries of the same token can race past the lookup together; the unique
index on ``submissions.submission_id`` makes the loser fail with an
``IntegrityError``, after which it re-reads and returns the winner's row.

The submission row and the answer batch are written in separate
transactions. Only the first is mandatory; callers that put a deadline on
persistence put it on ``save_submission`` and give ``save_answers`` its own.
"""

import logging
from dataclasses import dataclass, replace
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from form_relay.database import Database
from form_relay.exceptions import PersistenceError
from form_relay.intake.extractor import ExtractedAnswer
from form_relay.intake.validator import FormEnvelope
from form_relay.models.submission import Answer, Submission

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersistResult:
    """Outcome of the mandatory durable write.

    Attributes:
        record_id: Store identity of the submission row
        created: False when the token was already stored (redelivery)
        answers_written: Answer rows inserted by this call
        answers_error: Error text when the answer batch failed (non-fatal)
        stored_payload: Payload of the existing row on a redelivery
    """

    record_id: int
    created: bool
    answers_written: int = 0
    answers_error: str | None = None
    stored_payload: dict[str, Any] | None = None


class SubmissionStore:
    """Writes submissions and answers to PostgreSQL.

    Example:
        >>> store = SubmissionStore(database)
        >>> result = await store.save(envelope, answers)
        >>> result.created
        True
    """

    def __init__(self, database: Database):
        self.database = database

    async def save(self, envelope: FormEnvelope, answers: list[ExtractedAnswer]) -> PersistResult:
        """Persist one submission exactly once, then its answers.

        Args:
            envelope: Validated event envelope
            answers: Extracted answers with non-empty values

        Returns:
            PersistResult describing what happened

        Raises:
            PersistenceError: If the submission row could not be read or written
        """
        result = await self.save_submission(envelope)
        if not result.created:
            return result

        written, answers_error = await self.save_answers(
            result.record_id, answers, submission_id=envelope.submission_id
        )
        return replace(result, answers_written=written, answers_error=answers_error)

    async def save_submission(self, envelope: FormEnvelope) -> PersistResult:
        """Look the token up and insert the submission row when it is new.

        Raises:
            PersistenceError: If the submission row could not be read or written
        """
        context = {"submission_id": envelope.submission_id, "form_id": envelope.form_id}
        try:
            async with self.database.session() as session:
                existing = await self._find_existing(session, envelope.submission_id)
                if existing is not None:
                    logger.info(
                        f"Submission {envelope.submission_id} already exists, skipping",
                        extra=context,
                    )
                    return PersistResult(
                        record_id=existing.id, created=False, stored_payload=existing.raw_data
                    )

                record_id = await self._insert_submission(session, envelope)
                if record_id is None:
                    # Lost the race against a concurrent duplicate delivery
                    existing = await self._find_existing(session, envelope.submission_id)
                    if existing is None:
                        raise PersistenceError(
                            "Submission insert conflicted but no existing row was found",
                            details=context,
                        )
                    logger.info(
                        f"Submission {envelope.submission_id} inserted concurrently, skipping",
                        extra=context,
                    )
                    return PersistResult(
                        record_id=existing.id, created=False, stored_payload=existing.raw_data
                    )
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Submission save failed: {e}", extra=context)
            raise PersistenceError(f"Database save failed: {e}", details=context) from e

        logger.info(f"Saved submission {envelope.submission_id} as {record_id}", extra=context)
        return PersistResult(record_id=record_id, created=True)

    async def save_answers(
        self,
        record_id: int,
        answers: list[ExtractedAnswer],
        submission_id: str | None = None,
    ) -> tuple[int, str | None]:
        """Insert the answer batch; failures are logged and reported, never raised.

        The submission row already holds the full raw payload, so answers can
        be rebuilt from it later.

        Returns:
            (rows written, error text or None)
        """
        if not answers:
            return 0, None

        rows = [
            Answer(
                submission_id=record_id,
                question_id=answer.question_id,
                question_text=answer.label,
                answer_text=answer.value,
                answer_type=answer.raw_type,
            )
            for answer in answers
        ]
        try:
            async with self.database.session() as session:
                session.add_all(rows)
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Error saving answers: {e}", extra={"submission_id": submission_id})
            return 0, str(e)
        return len(rows), None

    async def _find_existing(self, session: AsyncSession, submission_id: str):
        result = await session.execute(
            select(Submission.id, Submission.raw_data).where(
                Submission.submission_id == submission_id
            )
        )
        return result.first()

    async def _insert_submission(self, session: AsyncSession, envelope: FormEnvelope) -> int | None:
        submission = Submission(
            submission_id=envelope.submission_id,
            form_id=envelope.form_id,
            submitted_at=envelope.submitted_at,
            raw_data=envelope.payload,
        )
        session.add(submission)
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            return None
        await session.refresh(submission)
        return submission.id
