"""Campaign event policies.

Maps every campaign-tool event type to what it means for the lead: a target
CRM status, a qualification label, and which side effects it triggers.  The
table is static, read-only, and total over ``CampaignEventType``.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from leadsync.services.status_model import LeadStatus

logger = logging.getLogger(__name__)


class CampaignEventType(str, Enum):
    """Webhook event types emitted by the campaign tool."""

    EMAIL_SENT = "email_sent"
    EMAIL_OPENED = "email_opened"
    EMAIL_LINK_CLICKED = "email_link_clicked"
    EMAIL_BOUNCED = "email_bounced"
    LEAD_UNSUBSCRIBED = "lead_unsubscribed"
    REPLY_RECEIVED = "reply_received"
    AUTO_REPLY_RECEIVED = "auto_reply_received"
    LEAD_INTERESTED = "lead_interested"
    LEAD_NOT_INTERESTED = "lead_not_interested"
    LEAD_NEUTRAL = "lead_neutral"
    CAMPAIGN_COMPLETED = "campaign_completed"
    LEAD_MEETING_BOOKED = "lead_meeting_booked"
    LEAD_MEETING_COMPLETED = "lead_meeting_completed"
    LEAD_CLOSED = "lead_closed"
    LEAD_OUT_OF_OFFICE = "lead_out_of_office"
    LEAD_WRONG_PERSON = "lead_wrong_person"
    ACCOUNT_ERROR = "account_error"
    LEAD_ADDED = "lead_added"
    BACKFILL = "backfill"


class QualificationStatus(str, Enum):
    """Qualification label stored alongside the contact."""

    PENDING = "pending"
    QUALIFIED = "qualified"
    REVIEW = "review"
    DISQUALIFIED = "disqualified"
    IN_CAMPAIGN = "in_campaign"
    SYNCED_TO_PIPEDRIVE = "synced_to_pipedrive"
    MEETING_BOOKED = "meeting_booked"
    MEETING_COMPLETED = "meeting_completed"
    CLOSED_WON = "closed_won"
    BOUNCED = "bounced"
    UNSUBSCRIBED = "unsubscribed"
    WRONG_PERSON = "wrong_person"
    ENRICHED = "enriched"


class ReplySentiment(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class EventPolicy:
    """What an event type means for a lead."""

    target_status: LeadStatus | None = None
    qualification_label: QualificationStatus | None = None
    add_to_suppression_list: bool = False
    log_activity: bool = False
    update_engagement_metrics: bool = False
    description: str = ""


_NO_POLICY = EventPolicy()

E = CampaignEventType
Q = QualificationStatus

EVENT_POLICIES: Mapping[CampaignEventType, EventPolicy] = MappingProxyType(
    {
        E.EMAIL_SENT: EventPolicy(log_activity=True, description="Email sent to lead"),
        E.EMAIL_OPENED: EventPolicy(
            log_activity=True,
            update_engagement_metrics=True,
            description="Lead opened email",
        ),
        E.EMAIL_LINK_CLICKED: EventPolicy(
            log_activity=True,
            update_engagement_metrics=True,
            description="Lead clicked link in email",
        ),
        E.EMAIL_BOUNCED: EventPolicy(
            target_status=LeadStatus.STOP_CONTACTING,
            qualification_label=Q.BOUNCED,
            add_to_suppression_list=True,
            description="Email bounced - invalid address",
        ),
        E.LEAD_UNSUBSCRIBED: EventPolicy(
            target_status=LeadStatus.STOP_CONTACTING,
            qualification_label=Q.UNSUBSCRIBED,
            add_to_suppression_list=True,
            description="Lead unsubscribed",
        ),
        E.REPLY_RECEIVED: EventPolicy(
            target_status=LeadStatus.SHOULD_CONTACT,
            qualification_label=Q.REVIEW,
            log_activity=True,
            update_engagement_metrics=True,
            description="Lead replied",
        ),
        E.AUTO_REPLY_RECEIVED: EventPolicy(
            target_status=LeadStatus.SHOULD_CONTACT,
            qualification_label=Q.REVIEW,
            log_activity=True,
            update_engagement_metrics=True,
            description="Automatic reply received",
        ),
        E.LEAD_INTERESTED: EventPolicy(
            target_status=LeadStatus.SHOULD_CONTACT,
            qualification_label=Q.QUALIFIED,
            update_engagement_metrics=True,
            description="Lead marked as interested",
        ),
        E.LEAD_NOT_INTERESTED: EventPolicy(
            target_status=LeadStatus.STOP_CONTACTING,
            qualification_label=Q.DISQUALIFIED,
            add_to_suppression_list=True,
            description="Lead marked as not interested",
        ),
        E.LEAD_NEUTRAL: EventPolicy(
            qualification_label=Q.REVIEW,
            description="Lead marked as neutral",
        ),
        E.CAMPAIGN_COMPLETED: EventPolicy(
            target_status=LeadStatus.NO_REPLY_IN_CAMPAIGN,
            qualification_label=Q.ENRICHED,
            description="Campaign finished without reply",
        ),
        E.LEAD_MEETING_BOOKED: EventPolicy(
            target_status=LeadStatus.SHOULD_CONTACT,
            qualification_label=Q.MEETING_BOOKED,
            log_activity=True,
            update_engagement_metrics=True,
            description="Meeting booked with lead",
        ),
        E.LEAD_MEETING_COMPLETED: EventPolicy(
            target_status=LeadStatus.IN_NEGOTIATION,
            qualification_label=Q.MEETING_COMPLETED,
            log_activity=True,
            update_engagement_metrics=True,
            description="Meeting with lead completed",
        ),
        E.LEAD_CLOSED: EventPolicy(
            target_status=LeadStatus.CUSTOMER,
            qualification_label=Q.CLOSED_WON,
            log_activity=True,
            update_engagement_metrics=True,
            description="Deal closed",
        ),
        E.LEAD_OUT_OF_OFFICE: EventPolicy(log_activity=True, description="Out of office reply"),
        E.LEAD_WRONG_PERSON: EventPolicy(
            target_status=LeadStatus.STOP_CONTACTING,
            qualification_label=Q.WRONG_PERSON,
            log_activity=True,
            description="Wrong contact person",
        ),
        E.ACCOUNT_ERROR: EventPolicy(description="Sending account error"),
        E.LEAD_ADDED: EventPolicy(
            target_status=LeadStatus.IN_CAMPAIGN,
            qualification_label=Q.IN_CAMPAIGN,
            description="Lead added to campaign",
        ),
        E.BACKFILL: EventPolicy(
            target_status=LeadStatus.NO_REPLY_IN_CAMPAIGN,
            qualification_label=Q.ENRICHED,
            description="Historical lead synced via backfill",
        ),
    }
)

_missing = [e.value for e in CampaignEventType if e not in EVENT_POLICIES]
if _missing:
    raise RuntimeError(f"Event types without policy: {', '.join(_missing)}")

POSITIVE_EVENTS = frozenset(
    {E.LEAD_INTERESTED, E.LEAD_MEETING_BOOKED, E.LEAD_MEETING_COMPLETED, E.LEAD_CLOSED}
)
NEGATIVE_EVENTS = frozenset(
    {E.LEAD_NOT_INTERESTED, E.EMAIL_BOUNCED, E.LEAD_UNSUBSCRIBED, E.LEAD_WRONG_PERSON}
)
NEUTRAL_REPLY_EVENTS = frozenset({E.REPLY_RECEIVED, E.AUTO_REPLY_RECEIVED, E.LEAD_NEUTRAL})
HOT_LEAD_EVENTS = POSITIVE_EVENTS
ENGAGEMENT_ONLY_EVENTS = frozenset({E.EMAIL_OPENED, E.EMAIL_LINK_CLICKED})


def get_event_policy(event_type: CampaignEventType | None) -> EventPolicy:
    """Policy for an event type; an empty policy when unknown."""
    if event_type is None:
        return _NO_POLICY
    return EVENT_POLICIES.get(event_type, _NO_POLICY)


def status_for_event(event_type: CampaignEventType | None) -> LeadStatus | None:
    return get_event_policy(event_type).target_status


def qualification_label_for_event(
    event_type: CampaignEventType | None,
) -> QualificationStatus | None:
    return get_event_policy(event_type).qualification_label


def should_suppress(event_type: CampaignEventType | None) -> bool:
    return get_event_policy(event_type).add_to_suppression_list


def should_log_activity(event_type: CampaignEventType | None) -> bool:
    return get_event_policy(event_type).log_activity


def should_update_engagement(event_type: CampaignEventType | None) -> bool:
    return get_event_policy(event_type).update_engagement_metrics


def is_engagement_only_event(event_type: CampaignEventType) -> bool:
    """Opens and clicks: counted, never change status."""
    return event_type in ENGAGEMENT_ONLY_EVENTS


def is_hot_lead_event(event_type: CampaignEventType) -> bool:
    return event_type in HOT_LEAD_EVENTS


def reply_sentiment_for_event(event_type: CampaignEventType) -> ReplySentiment | None:
    if event_type in POSITIVE_EVENTS:
        return ReplySentiment.POSITIVE
    if event_type in NEGATIVE_EVENTS:
        return ReplySentiment.NEGATIVE
    if event_type in NEUTRAL_REPLY_EVENTS:
        return ReplySentiment.NEUTRAL
    return None


def resolve_event_type(raw: str | None) -> CampaignEventType | None:
    """Resolve a webhook ``event_type`` string.

    Matching is case-insensitive and tolerates surrounding whitespace.
    Unknown names return None so callers can acknowledge and skip them.
    """
    if not raw:
        return None
    try:
        return CampaignEventType(raw.strip().lower())
    except ValueError:
        logger.info("Unsupported campaign event type: %s", raw)
        return None


# Campaign-tool lead snapshot codes
LEAD_STATUS_BOUNCED = -1
LEAD_STATUS_UNSUBSCRIBED = -2
INTEREST_MEETING_BOOKED = 2
INTEREST_WON = 4
INTEREST_INTERESTED = 1
INTEREST_NOT_INTERESTED = -1


def determine_event_from_lead_snapshot(snapshot: Mapping[str, Any]) -> CampaignEventType:
    """Pick the event that best describes a lead fetched from the campaign tool.

    Used by backfills, where no webhook exists. Checked in order: bounce or
    unsubscribe, meeting booked or won, interested or not, any reply, and
    finally a plain backfill.

    Args:
        snapshot: Lead record with ``lead_status``, ``interest_status``,
            optional ``lt_interest_status`` and ``reply_count``.

    Returns:
        The event type to process the lead as.
    """
    lead_status = snapshot.get("lead_status")
    if lead_status == LEAD_STATUS_BOUNCED:
        return E.EMAIL_BOUNCED
    if lead_status == LEAD_STATUS_UNSUBSCRIBED:
        return E.LEAD_UNSUBSCRIBED

    interest = snapshot.get("lt_interest_status")
    if interest is None:
        interest = snapshot.get("interest_status")

    if interest == INTEREST_MEETING_BOOKED:
        return E.LEAD_MEETING_BOOKED
    if interest == INTEREST_WON:
        return E.LEAD_CLOSED
    if interest == INTEREST_INTERESTED:
        return E.LEAD_INTERESTED
    if interest == INTEREST_NOT_INTERESTED:
        return E.LEAD_NOT_INTERESTED

    if (snapshot.get("reply_count") or 0) > 0:
        return E.REPLY_RECEIVED

    return E.BACKFILL
