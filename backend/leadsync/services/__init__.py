"""Services package."""

from leadsync.services.event_policy import (
    EVENT_POLICIES,
    CampaignEventType,
    EventPolicy,
    QualificationStatus,
)
from leadsync.services.lead_sync import FollowUpQueue, SyncOrchestrator
from leadsync.services.status_model import (
    DEFAULT_STATUS_MODEL,
    LeadStatus,
    StatusDefinition,
    StatusModel,
)
from leadsync.services.status_rules import SkipReason, TransitionDecision, evaluate_transition
from leadsync.services.sync_models import SideEffectResult, SyncEvent, SyncOutcome

__all__ = [
    "EVENT_POLICIES",
    "CampaignEventType",
    "EventPolicy",
    "QualificationStatus",
    "FollowUpQueue",
    "SyncOrchestrator",
    "DEFAULT_STATUS_MODEL",
    "LeadStatus",
    "StatusDefinition",
    "StatusModel",
    "SkipReason",
    "TransitionDecision",
    "evaluate_transition",
    "SideEffectResult",
    "SyncEvent",
    "SyncOutcome",
]
