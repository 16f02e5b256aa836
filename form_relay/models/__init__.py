"""Database models for form-relay.

This module contains SQLModel schemas for all database entities.
"""

from form_relay.models.submission import Answer, Submission

__all__ = [
    "Answer",
    "Submission",
]
