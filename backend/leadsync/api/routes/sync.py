"""Sync maintenance routes: manual events, follow-up retries and outcome history."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from leadsync.api.deps import Orchestrator
from leadsync.core.exceptions import UnknownEventTypeError
from leadsync.services.event_policy import resolve_event_type
from leadsync.services.sync_models import SyncEvent

router = APIRouter(prefix="/sync", tags=["sync"])


class ManualEventRequest(BaseModel):
    """Request body for replaying an event against a lead by hand."""

    event_type: str = Field(..., description="Campaign event name")
    email: str | None = Field(None, description="Lead email for side effects")
    force: bool = Field(False, description="Bypass protection, transition and priority rules")
    timestamp: datetime | None = None


@router.post("/leads/{lead_id}/events")
async def process_manual_event(
    lead_id: str,
    data: ManualEventRequest,
    orchestrator: Orchestrator,
) -> dict[str, Any]:
    """Process an event for a lead, optionally forcing the status change."""
    event_type = resolve_event_type(data.event_type)
    if event_type is None:
        raise UnknownEventTypeError(data.event_type)

    event = SyncEvent(
        lead_id=lead_id,
        event_type=event_type,
        email=data.email,
        metadata={"source": "manual"},
        **({"timestamp": data.timestamp} if data.timestamp else {}),
    )
    outcome = await orchestrator.process_event(event, force=data.force)
    return outcome.to_dict()


@router.get("/follow-ups")
async def list_follow_ups(orchestrator: Orchestrator) -> dict[str, Any]:
    """Events whose status write failed and await a retry."""
    pending = orchestrator.follow_ups.pending()
    return {"count": len(pending), "follow_ups": pending}


@router.post("/follow-ups/retry")
async def retry_follow_ups(orchestrator: Orchestrator) -> dict[str, int]:
    """Reprocess every queued follow-up once."""
    return await orchestrator.retry_follow_ups()


@router.get("/outcomes/{lead_id}")
async def lead_outcomes(
    lead_id: str,
    orchestrator: Orchestrator,
    limit: int = Query(50, ge=1, le=500),
) -> dict[str, Any]:
    """Most recent sync outcomes for a lead."""
    outcomes = await orchestrator.store.list_for_lead(lead_id, limit=limit)
    return {"lead_id": lead_id, "outcomes": outcomes}
