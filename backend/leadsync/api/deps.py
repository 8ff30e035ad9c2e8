"""FastAPI dependencies for the sync engine components.

Components are built once in the application lifespan and kept on
``app.state``; routes receive them through these dependencies so tests can
override them with ``app.dependency_overrides``.
"""

import hmac
import logging
from typing import Annotated

from fastapi import Depends, Header, Request

from leadsync.core.circuit_breaker import CircuitBreakerRegistry
from leadsync.core.config import Settings, get_settings
from leadsync.core.exceptions import AuthenticationError
from leadsync.services.lead_directory import LeadDirectory
from leadsync.services.lead_sync import SyncOrchestrator

logger = logging.getLogger(__name__)


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return request.app.state.orchestrator  # type: ignore[no-any-return]


def get_lead_directory(request: Request) -> LeadDirectory | None:
    return getattr(request.app.state, "lead_directory", None)


def get_breakers(request: Request) -> CircuitBreakerRegistry:
    return request.app.state.orchestrator.executor.breakers  # type: ignore[no-any-return]


async def verify_webhook_secret(
    settings: Annotated[Settings, Depends(get_settings)],
    x_webhook_secret: Annotated[str | None, Header()] = None,
) -> None:
    """Check the shared webhook secret when one is configured.

    Raises:
        AuthenticationError: If the header is missing or does not match.
    """
    expected = settings.INSTANTLY_WEBHOOK_SECRET
    if not expected:
        return
    if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret, expected):
        logger.warning("WEBHOOK: rejected request with invalid secret")
        raise AuthenticationError("Invalid webhook secret")


Orchestrator = Annotated[SyncOrchestrator, Depends(get_orchestrator)]
Directory = Annotated[LeadDirectory | None, Depends(get_lead_directory)]
Breakers = Annotated[CircuitBreakerRegistry, Depends(get_breakers)]
