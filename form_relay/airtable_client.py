"""Airtable REST client for the submission review table.

Only the two calls the mirror needs are implemented: look a record up by
submission token, and create a record.

Example:
    >>> client = AirtableClient(
    ...     base_id="appXXXXXXXXXXXXXX",
    ...     table_id="tblXXXXXXXXXXXXXX",
    ...     token=settings.airtable_token,
    ... )
    >>> existing = await client.find_records_by_submission_id("abc123")
    >>> if not existing:
    ...     await client.create_record({"Submission ID": "abc123", "Status": "New"})
"""

from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from form_relay.exceptions import MirrorError

SUBMISSION_ID_COLUMN = "Submission ID"
IDEMPOTENT_METHODS = frozenset({"GET", "HEAD"})
CONNECT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)

# ============================================================================
# EXCEPTION CLASSES
# ============================================================================


class AirtableError(MirrorError):
    """Base exception for Airtable operations."""

    default_code = "airtable_error"


class AirtableAuthenticationError(AirtableError):
    """Raised when the Airtable token is rejected (401/403)."""

    default_code = "airtable_unauthorized"


class AirtableValidationError(AirtableError):
    """Raised when Airtable rejects the record (400/422), e.g. unknown column."""

    default_code = "airtable_invalid_record"


# ============================================================================
# AIRTABLE CLIENT
# ============================================================================


def submission_filter_formula(submission_id: str) -> str:
    """Build the ``filterByFormula`` expression matching one submission token.

    Double quotes and backslashes in the token are escaped so a hostile token
    cannot break out of the string literal.
    """
    escaped = submission_id.replace("\\", "\\\\").replace('"', '\\"')
    return f'{{{SUBMISSION_ID_COLUMN}}}="{escaped}"'


class AirtableClient:
    """Client for the Airtable REST API (one base, one table).

    Attributes:
        api_url: REST root (default ``https://api.airtable.com/v0``)
        base_id: Airtable base id
        table_id: Table id or name
        token: Personal access token sent as a bearer credential
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        base_id: str,
        table_id: str,
        token: str,
        api_url: str = "https://api.airtable.com/v0",
        timeout: float = 10.0,
    ):
        self.api_url = api_url.rstrip("/")
        self.base_id = base_id
        self.table_id = table_id
        self.token = token
        self.timeout = timeout

    @property
    def table_url(self) -> str:
        """Endpoint for records of the configured table."""
        return f"{self.api_url}/{self.base_id}/{self.table_id}"

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=8),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        reraise=True,
    )
    async def _send_idempotent(
        self,
        method: str,
        json_data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        return await self._request(method, json_data=json_data, params=params)

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=8),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(CONNECT_ERRORS),
        reraise=True,
    )
    async def _send_write(
        self,
        method: str,
        json_data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        # Retried only when the request never reached Airtable
        return await self._request(method, json_data=json_data, params=params)

    async def _send(
        self,
        method: str,
        json_data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        sender = self._send_idempotent if method in IDEMPOTENT_METHODS else self._send_write
        return await sender(method, json_data=json_data, params=params)

    async def _request(
        self,
        method: str,
        json_data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        async with httpx.AsyncClient() as client:
            return await client.request(
                method=method,
                url=self.table_url,
                json=json_data,
                params=params,
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )

    async def _api_request(
        self,
        method: str,
        json_data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated Airtable request.

        Lookups retry timeouts and network errors with exponential backoff.
        Record creation retries only connection failures, so a create that
        Airtable may already have applied is never sent twice.

        Args:
            method: HTTP method (GET, POST)
            json_data: Request body (for POST)
            params: Query parameters (for GET)

        Returns:
            Parsed JSON response

        Raises:
            AirtableAuthenticationError: If the token is rejected (401/403)
            AirtableValidationError: If the record is rejected (400/422)
            AirtableError: For any other failure
        """
        try:
            response = await self._send(method, json_data=json_data, params=params)
        except httpx.TimeoutException as e:
            raise AirtableError(f"Airtable API timeout: {e}") from e
        except httpx.NetworkError as e:
            raise AirtableError(f"Airtable API network error: {e}") from e

        if response.status_code in (401, 403):
            raise AirtableAuthenticationError(
                "Airtable rejected the access token", status_code=response.status_code
            )
        if response.status_code in (400, 422):
            raise AirtableValidationError(
                f"Airtable rejected the request: {response.text}",
                status_code=response.status_code,
            )
        if response.status_code >= 300:
            raise AirtableError(
                f"Airtable error: HTTP {response.status_code} - {response.text}",
                status_code=response.status_code,
            )
        return response.json()

    async def find_records_by_submission_id(self, submission_id: str) -> list[dict[str, Any]]:
        """Return records whose ``Submission ID`` equals the token.

        Args:
            submission_id: Provider submission token

        Returns:
            Matching records (empty list when none)
        """
        data = await self._api_request(
            "GET",
            params={"filterByFormula": submission_filter_formula(submission_id), "maxRecords": 1},
        )
        return list(data.get("records") or [])

    async def create_record(self, fields: dict[str, Any]) -> dict[str, Any]:
        """Create one record.

        Args:
            fields: Column name -> value

        Returns:
            Created record (``{"id": "rec...", "fields": {...}}``)
        """
        return await self._api_request("POST", json_data={"fields": fields})
