"""Instantly webhook endpoint.

Receives campaign events, resolves the lead's CRM id and hands the event to
the ``SyncOrchestrator``.  Unsupported event types and leads that are not
linked to the CRM are acknowledged with ``skipped`` so the sender does not
redeliver them.  A failure to persist the outcome is answered with a 5xx so
the sender does redeliver; reprocessing is idempotent.
"""

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field

from leadsync.api.deps import Directory, Orchestrator, verify_webhook_secret
from leadsync.services.event_policy import resolve_event_type
from leadsync.services.sync_models import SyncEvent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


class InstantlyWebhookPayload(BaseModel):
    """Instantly webhook body. Unknown fields are kept as event metadata."""

    model_config = ConfigDict(extra="allow")

    event_type: str = Field(..., description="Instantly event name")
    lead_email: str | None = Field(None, description="Email address of the lead")
    crm_lead_id: str | None = Field(None, description="Pipedrive organization id, if known")
    timestamp: datetime | None = Field(None, description="When the event happened")
    campaign_id: str | None = None
    campaign_name: str | None = None
    reply_text: str | None = None


def _metadata(payload: InstantlyWebhookPayload) -> dict[str, Any]:
    data = payload.model_dump(
        exclude={"event_type", "lead_email", "crm_lead_id", "timestamp"},
        exclude_none=True,
        mode="json",
    )
    return data


@router.post(
    "/instantly",
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(verify_webhook_secret)],
)
async def instantly_webhook(
    payload: InstantlyWebhookPayload,
    orchestrator: Orchestrator,
    directory: Directory,
) -> dict[str, Any]:
    """Process one Instantly event."""
    event_type = resolve_event_type(payload.event_type)
    if event_type is None:
        return {
            "skipped": True,
            "reason": "unsupported event type",
            "event_type": payload.event_type,
        }

    lead_id = payload.crm_lead_id
    if not lead_id and payload.lead_email and directory is not None:
        lead_id = await directory.resolve_lead_id(payload.lead_email)

    if not lead_id:
        logger.info(
            "WEBHOOK: no CRM lead for event",
            extra={"event_type": event_type.value},
        )
        return {
            "skipped": True,
            "reason": "lead not linked to CRM",
            "event_type": event_type.value,
        }

    event_fields: dict[str, Any] = {
        "lead_id": lead_id,
        "event_type": event_type,
        "email": payload.lead_email,
        "metadata": _metadata(payload),
    }
    if payload.timestamp is not None:
        event_fields["timestamp"] = payload.timestamp

    outcome = await orchestrator.process_event(SyncEvent(**event_fields))
    return {"skipped": False, "outcome": outcome.to_dict()}
