"""
Unified Exception Hierarchy for form-relay.

Every failure the ingestion pipeline can produce is an ``IntakeError``. The
class decides how the failure surfaces to the webhook sender:

- ``UnauthorizedError``: bad or missing signature (HTTP 401, no retry)
- ``MalformedRequestError``: wrong method, broken envelope (HTTP 400/405/413)
- ``PersistenceError``: durable write failed (HTTP 500, sender must retry)
- ``MirrorError``: secondary mirror failed (never surfaced, logged only)

Usage:
    from form_relay.exceptions import IntakeError, PersistenceError

    try:
        outcome = await pipeline.process(body, signature)
    except PersistenceError:
        # Nothing was committed, the sender will redeliver
        raise
    except IntakeError as e:
        return JSONResponse(e.to_response(), status_code=e.status_code)
"""

from typing import Any


class IntakeError(Exception):
    """Base exception for all ingestion errors.

    Attributes:
        message: Human-readable error description.
        error_code: Short machine-readable code returned to the caller.
        status_code: HTTP status code the caller sees.
        details: Optional dict with additional error context.
    """

    default_code = "internal_error"
    default_status = 500

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.status_code = status_code or self.default_status
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def to_response(self) -> dict[str, str]:
        """Render the JSON error body returned to the webhook sender."""
        return {"error": self.error_code, "message": self.message}


class UnauthorizedError(IntakeError):
    """Signature verification failed while signing is enabled.

    Example:
        if not verify_signature(body, signature, secret):
            raise UnauthorizedError("Invalid Typeform signature")
    """

    default_code = "unauthorized"
    default_status = 401


class MalformedRequestError(IntakeError):
    """The delivery is structurally unusable.

    Raised when:
    - The body is not a JSON object
    - The ``form_response`` envelope is missing
    - The submission token or form id is missing

    Retrying the same delivery can never succeed.
    """

    default_code = "invalid_payload"
    default_status = 400


class PayloadTooLargeError(MalformedRequestError):
    """Serialized payload exceeds the configured ceiling.

    Attributes:
        size_bytes: Measured serialized size.
        limit_bytes: Configured ceiling.
    """

    default_code = "payload_too_large"
    default_status = 413

    def __init__(
        self,
        message: str = "Payload too large",
        *,
        size_bytes: int | None = None,
        limit_bytes: int | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes


class MethodNotAllowedError(MalformedRequestError):
    """The webhook endpoint only accepts POST."""

    default_code = "method_not_allowed"
    default_status = 405


class PersistenceError(IntakeError):
    """The mandatory durable write failed.

    No submission row was committed, so redelivery is both safe and required.
    The API layer answers with HTTP 500 which makes the sender retry.
    """

    default_code = "persistence_failed"
    default_status = 500
    retryable = True


class MirrorError(IntakeError):
    """The best-effort mirror failed.

    Never propagated past the pipeline; converted to a warning instead.
    """

    default_code = "mirror_failed"
    default_status = 502


__all__ = [
    "IntakeError",
    "UnauthorizedError",
    "MalformedRequestError",
    "PayloadTooLargeError",
    "MethodNotAllowedError",
    "PersistenceError",
    "MirrorError",
]
