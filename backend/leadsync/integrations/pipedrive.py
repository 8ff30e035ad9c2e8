"""Pipedrive CRM client.

The lead's status lives in a single-option custom field on the
organization.  This client performs exactly one HTTP request per call;
retries and circuit breaking are the caller's job (see
``leadsync.core.resilience``).
"""

import logging
from typing import Any, cast

import httpx

from leadsync.core.exceptions import CRMConnectionError, CRMRequestError

logger = logging.getLogger(__name__)

PROVIDER = "pipedrive"

# Pipedrive caps activity notes
MAX_NOTE_LENGTH = 2000


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class PipedriveClient:
    """Async client for the Pipedrive v1 REST API.

    Args:
        api_key: Pipedrive API token.
        status_field_id: Key of the organization custom field holding the
            status option id.
        base_url: API base URL.
        timeout: Per-request timeout in seconds.
        http_client: Optional preconfigured ``httpx.AsyncClient`` (tests
            pass one with a ``MockTransport``).
    """

    def __init__(
        self,
        api_key: str,
        status_field_id: str,
        base_url: str = "https://api.pipedrive.com/v1",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.status_field_id = status_field_id
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self._owns_client = http_client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send one request and return the ``data`` member of the response.

        Raises:
            CRMRequestError: On a non-2xx response.
            CRMConnectionError: On network failure or timeout.
        """
        url = f"{self.base_url}{path}"
        try:
            response = await self._client.request(
                method,
                url,
                params={"api_token": self._api_key},
                json=json,
                headers={"Accept": "application/json"},
            )
        except httpx.TimeoutException as e:
            logger.warning("Pipedrive request timed out: %s %s", method, path)
            raise CRMConnectionError(
                f"Pipedrive request timed out: {method} {path}", provider=PROVIDER, timed_out=True
            ) from e
        except httpx.RequestError as e:
            logger.warning("Pipedrive connection error: %s %s: %s", method, path, e)
            raise CRMConnectionError(
                f"Failed to connect to Pipedrive: {e}", provider=PROVIDER
            ) from e

        if response.is_error:
            try:
                body = response.json()
                message = body.get("error") or body.get("message") or response.reason_phrase
            except ValueError:
                message = response.text[:200] or response.reason_phrase
            raise CRMRequestError(
                f"Pipedrive API error {response.status_code} on {method} {path}: {message}",
                status_code=response.status_code,
                provider=PROVIDER,
                retry_after=_retry_after(response),
            )

        payload = response.json()
        return cast(dict[str, Any], payload.get("data") or {})

    async def get_lead_status(self, lead_id: str) -> int | None:
        """Current status option id of an organization, or None if unset."""
        organization = await self._request("GET", f"/organizations/{lead_id}")
        value = organization.get(self.status_field_id)
        if value in (None, ""):
            return None
        if isinstance(value, dict):
            # Some API versions wrap option fields as {"id": ..., "label": ...}
            value = value.get("id")
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning(
                "Unparseable status value on organization",
                extra={"lead_id": lead_id, "value": repr(value)},
            )
            return None

    async def set_lead_status(self, lead_id: str, status_id: int) -> None:
        """Write the status option id to the organization.

        Setting the same value twice is harmless.
        """
        await self._request(
            "PUT",
            f"/organizations/{lead_id}",
            json={self.status_field_id: status_id},
        )
        logger.info(
            "Pipedrive status updated",
            extra={"lead_id": lead_id, "status_id": status_id},
        )

    async def add_activity(
        self,
        lead_id: str,
        subject: str,
        note: str = "",
        activity_type: str = "email",
        done: bool = True,
    ) -> dict[str, Any]:
        """Log an activity on the organization.

        Returns:
            The created activity.
        """
        return await self._request(
            "POST",
            "/activities",
            json={
                "subject": subject,
                "type": activity_type,
                "done": 1 if done else 0,
                "org_id": int(lead_id) if lead_id.isdigit() else lead_id,
                "note": note[:MAX_NOTE_LENGTH],
            },
        )
