"""Instantly campaign tool client (suppression list only)."""

import logging
import re
from typing import Any, cast

import httpx

from leadsync.core.exceptions import CRMConnectionError, CRMRequestError, ValidationError

logger = logging.getLogger(__name__)

PROVIDER = "instantly"

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_DOMAIN_RE = re.compile(r"^(?!-)[a-z0-9-]+(\.[a-z0-9-]+)*\.[a-z]{2,}$")


class InstantlyClient:
    """Async client for the Instantly v2 API.

    Args:
        api_key: Bearer token.
        base_url: API base URL.
        timeout: Per-request timeout in seconds.
        http_client: Optional preconfigured ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.instantly.ai/api/v2",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self._owns_client = http_client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def add_to_blocklist(self, value: str) -> dict[str, Any]:
        """Add an email address or domain to the workspace blocklist.

        Raises:
            ValidationError: If ``value`` is neither an email nor a domain.
            CRMRequestError: On a non-2xx response.
            CRMConnectionError: On network failure or timeout.
        """
        clean = value.strip().lower()
        if not (_EMAIL_RE.match(clean) or _DOMAIN_RE.match(clean)):
            raise ValidationError(f"Invalid email or domain format: {clean}", field="bl_value")

        try:
            response = await self._client.post(
                f"{self.base_url}/block-lists-entries",
                json={"bl_value": clean},
                headers=self._headers,
            )
        except httpx.TimeoutException as e:
            raise CRMConnectionError(
                "Instantly request timed out", provider=PROVIDER, timed_out=True
            ) from e
        except httpx.RequestError as e:
            raise CRMConnectionError(
                f"Failed to connect to Instantly: {e}", provider=PROVIDER
            ) from e

        if response.is_error:
            raise CRMRequestError(
                f"Instantly API error {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
                provider=PROVIDER,
            )

        logger.info("Added to Instantly blocklist", extra={"bl_value": clean})
        return cast(dict[str, Any], response.json())
