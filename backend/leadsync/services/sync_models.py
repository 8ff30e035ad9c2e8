"""Domain models for lead status synchronization."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from leadsync.core.resilience import AttemptRecord
from leadsync.services.event_policy import CampaignEventType
from leadsync.services.status_rules import SkipReason


class SyncModelError(Exception):
    """Error raised when sync model validation fails."""

    pass


@dataclass(frozen=True)
class SyncEvent:
    """An inbound campaign event for one lead.

    ``lead_id`` is the CRM identifier of the lead (organization id).
    """

    lead_id: str
    event_type: CampaignEventType
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    email: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.lead_id:
            raise SyncModelError("lead_id is required")

    @property
    def campaign_id(self) -> str | None:
        """Campaign the event came from; part of the delivery identity."""
        value = self.metadata.get("campaign_id")
        return str(value) if value else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "lead_id": self.lead_id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "email": self.email,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class SideEffectResult:
    """Result of one best-effort side effect (suppression, activity, engagement)."""

    name: str
    success: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "success": self.success, "error": self.error}


@dataclass(frozen=True)
class SyncOutcome:
    """Audit record of processing one event for one lead.

    ``final_status_id`` equals ``previous_status_id`` unless the status was
    written successfully.  ``accepted`` with ``success=False`` means the
    write was attempted and failed after retries; ``success=False`` with
    ``accepted=False`` means the current status could not be read.
    """

    lead_id: str
    event_type: CampaignEventType
    previous_status_id: int | None
    candidate_status_id: int | None
    final_status_id: int | None
    accepted: bool
    success: bool
    skip_reason: SkipReason | None = None
    no_op: bool = False
    retry_attempts: tuple[AttemptRecord, ...] = ()
    error: str | None = None
    error_classification: str | None = None
    side_effects: tuple[SideEffectResult, ...] = ()
    forced: bool = False
    campaign_id: str | None = None
    blocklisted: bool = False
    processed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def needs_follow_up(self) -> bool:
        """A remote status call failed; worth retrying later."""
        return not self.success

    def to_dict(self) -> dict[str, Any]:
        """Serialize outcome for storage and API responses."""
        return {
            "lead_id": self.lead_id,
            "event_type": self.event_type.value,
            "previous_status_id": self.previous_status_id,
            "candidate_status_id": self.candidate_status_id,
            "final_status_id": self.final_status_id,
            "accepted": self.accepted,
            "success": self.success,
            "skip_reason": self.skip_reason.value if self.skip_reason else None,
            "no_op": self.no_op,
            "retry_attempts": [a.to_dict() for a in self.retry_attempts],
            "error": self.error,
            "error_classification": self.error_classification,
            "side_effects": [s.to_dict() for s in self.side_effects],
            "forced": self.forced,
            "campaign_id": self.campaign_id,
            "blocklisted": self.blocklisted,
            "processed_at": self.processed_at.isoformat(),
        }
