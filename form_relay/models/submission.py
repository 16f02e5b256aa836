"""
Submission and Answer models for durable storage.

A ``Submission`` row is created exactly once per unique provider token and is
never updated afterwards. ``raw_data`` keeps the complete delivery body,
so every ``Answer`` row can be re-derived from it.
"""

from datetime import UTC, datetime
from typing import Any, Optional

from sqlalchemy import JSON, Column, DateTime, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Submission(SQLModel, table=True):
    """
    One inbound form submission.

    The unique index on ``submission_id`` is what makes concurrent duplicate
    deliveries safe; the application-level lookup alone is not enough.

    Attributes:
        id: Store-assigned identity
        submission_id: Provider token, the idempotency key
        form_id: Originating form
        submitted_at: Sender timestamp (receipt time when absent)
        raw_data: Complete unmodified delivery body
        created_at: Row creation timestamp
    """

    __tablename__ = "submissions"

    id: Optional[int] = Field(default=None, primary_key=True)
    submission_id: str = Field(max_length=255, unique=True, index=True)
    form_id: str = Field(max_length=255, index=True)
    submitted_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    raw_data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class Answer(SQLModel, table=True):
    """
    One question/answer pair belonging to a submission.

    Only answers with a non-empty extracted value are stored.

    Attributes:
        id: Store-assigned identity
        submission_id: Foreign key to ``submissions.id``
        question_id: Stable question id from the form schema
        question_text: Resolved human-readable label
        answer_text: Normalized answer value
        answer_type: Provider answer type (``email``, ``choices``, ...)
        created_at: Row creation timestamp
    """

    __tablename__ = "answers"

    id: Optional[int] = Field(default=None, primary_key=True)
    submission_id: int = Field(foreign_key="submissions.id", index=True)
    question_id: str = Field(default="", max_length=255)
    question_text: str = Field(sa_column=Column(Text, nullable=False))
    answer_text: str = Field(sa_column=Column(Text, nullable=False))
    answer_type: str = Field(default="other", max_length=50)
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
