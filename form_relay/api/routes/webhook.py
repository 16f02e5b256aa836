"""Typeform webhook endpoint.

POST delivers one form submission. Every other method is answered with 405 in
the same JSON error shape as the other rejections.
"""

import logging

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from form_relay.exceptions import IntakeError, MethodNotAllowedError, PersistenceError
from form_relay.intake.signature import SIGNATURE_HEADER
from form_relay.pipeline import IngestionPipeline

logger = logging.getLogger(__name__)

router = APIRouter()


def get_pipeline(request: Request) -> IngestionPipeline:
    """Return the pipeline built at startup."""
    return request.app.state.pipeline


@router.post("")
async def receive_submission(request: Request) -> JSONResponse:
    """Receive one form submission.

    Returns:
        200 with ``{"success": true, "submission_id": ...}`` once the
        submission is durably stored, whatever happened to the mirror.

    Error responses carry ``{"error": <code>, "message": <text>}``:
        401 unauthorized, 400 invalid_json / invalid_payload /
        missing_required_fields, 413 payload_too_large, 500 persistence_failed
        (the sender retries) or internal_error.
    """
    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    try:
        outcome = await get_pipeline(request).process(raw_body, signature)
    except PersistenceError as e:
        logger.error(f"Returning 500 so the sender retries: {e.message}", extra=e.details)
        return JSONResponse(e.to_response(), status_code=e.status_code)
    except IntakeError as e:
        return JSONResponse(e.to_response(), status_code=e.status_code)
    except Exception as e:
        logger.exception("Error processing webhook")
        return JSONResponse(
            {"error": "internal_error", "message": str(e) or "Internal server error"},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    return JSONResponse(
        {"success": True, "submission_id": outcome.submission_id},
        status_code=status.HTTP_200_OK,
    )


@router.api_route(
    "", methods=["GET", "HEAD", "PUT", "PATCH", "DELETE", "OPTIONS"], include_in_schema=False
)
async def reject_method(request: Request) -> JSONResponse:
    """Reject anything but POST."""
    error = MethodNotAllowedError(f"Method {request.method} not allowed")
    return JSONResponse(error.to_response(), status_code=error.status_code, headers={"Allow": "POST"})
