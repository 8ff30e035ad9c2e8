"""Contact lookups and contact-level bookkeeping in Supabase.

Maps campaign lead emails to CRM organization ids, and stores the
qualification label and engagement counters the campaign events produce.
"""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any, Protocol, cast

from supabase import Client

from leadsync.services.event_policy import CampaignEventType, QualificationStatus

logger = logging.getLogger(__name__)

CONTACTS_TABLE = "contacts"
ENGAGEMENT_TABLE = "contact_engagement"
BLOCKLIST_TABLE = "blocklist_entries"

# Engagement counter column per event type
_COUNTER_COLUMNS: dict[CampaignEventType, str] = {
    CampaignEventType.EMAIL_OPENED: "opens_count",
    CampaignEventType.EMAIL_LINK_CLICKED: "clicks_count",
    CampaignEventType.REPLY_RECEIVED: "replies_count",
    CampaignEventType.AUTO_REPLY_RECEIVED: "replies_count",
    CampaignEventType.LEAD_INTERESTED: "replies_count",
    CampaignEventType.LEAD_MEETING_BOOKED: "meetings_count",
    CampaignEventType.LEAD_MEETING_COMPLETED: "meetings_count",
    CampaignEventType.LEAD_CLOSED: "meetings_count",
}


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _blocklist_values(email: str) -> list[str]:
    """The email itself and its domain, as stored in the blocklist."""
    clean = normalize_email(email)
    domain = clean.rpartition("@")[2]
    return [clean, domain] if domain and domain != clean else [clean]


class LeadDirectory(Protocol):
    """Contact store used by the webhook and the side effects."""

    async def resolve_lead_id(self, email: str) -> str | None: ...

    async def set_qualification(self, email: str, label: QualificationStatus) -> None: ...

    async def record_engagement(self, email: str, event_type: CampaignEventType) -> None: ...

    async def is_blocklisted(self, email: str) -> bool: ...


class SupabaseLeadDirectory:
    """``LeadDirectory`` backed by the ``contacts`` tables in Supabase.

    Args:
        client: Supabase client.
    """

    def __init__(self, client: Client) -> None:
        self._client = client

    async def resolve_lead_id(self, email: str) -> str | None:
        """CRM organization id of the company the contact belongs to."""
        query = (
            self._client.table(CONTACTS_TABLE)
            .select("id, company_id, companies(pipedrive_id)")
            .eq("email", normalize_email(email))
            .limit(1)
        )
        response = await asyncio.to_thread(query.execute)
        rows = cast(list[dict[str, Any]], response.data or [])
        if not rows:
            return None
        company = rows[0].get("companies") or {}
        pipedrive_id = company.get("pipedrive_id")
        return str(pipedrive_id) if pipedrive_id else None

    async def set_qualification(self, email: str, label: QualificationStatus) -> None:
        query = (
            self._client.table(CONTACTS_TABLE)
            .update({"qualification_status": label.value})
            .eq("email", normalize_email(email))
        )
        await asyncio.to_thread(query.execute)

    async def record_engagement(self, email: str, event_type: CampaignEventType) -> None:
        """Bump the counter for this event type and the last-engagement time.

        Read-then-upsert: concurrent events for the same contact may lose an
        increment, which is acceptable for these metrics.
        """
        column = _COUNTER_COLUMNS.get(event_type)
        clean = normalize_email(email)
        now = datetime.now(UTC).isoformat()

        query = self._client.table(ENGAGEMENT_TABLE).select("*").eq("email", clean).limit(1)
        response = await asyncio.to_thread(query.execute)
        rows = cast(list[dict[str, Any]], response.data or [])
        current = rows[0] if rows else {}

        row: dict[str, Any] = {"email": clean, "last_engagement_at": now}
        if column:
            row[column] = int(current.get(column) or 0) + 1

        upsert = self._client.table(ENGAGEMENT_TABLE).upsert(row, on_conflict="email")
        await asyncio.to_thread(upsert.execute)
        logger.debug(
            "Contact engagement recorded",
            extra={"event_type": event_type.value, "counter": column},
        )

    async def is_blocklisted(self, email: str) -> bool:
        """Whether the email or its domain has an active blocklist entry."""
        query = (
            self._client.table(BLOCKLIST_TABLE)
            .select("id, value, reason")
            .in_("value", _blocklist_values(email))
            .eq("is_active", True)
            .limit(1)
        )
        response = await asyncio.to_thread(query.execute)
        rows = cast(list[dict[str, Any]], response.data or [])
        if rows:
            logger.info(
                "Contact is blocklisted",
                extra={"blocklist_value": rows[0].get("value"), "reason": rows[0].get("reason")},
            )
        return bool(rows)


class InMemoryLeadDirectory:
    """Dictionary-backed ``LeadDirectory`` for local runs and tests."""

    def __init__(
        self,
        lead_ids: dict[str, str] | None = None,
        blocklist: set[str] | None = None,
    ) -> None:
        self.lead_ids = {normalize_email(k): v for k, v in (lead_ids or {}).items()}
        self.qualifications: dict[str, QualificationStatus] = {}
        self.engagement: dict[str, dict[str, int]] = {}
        self.blocklist = {normalize_email(v) for v in (blocklist or set())}

    async def resolve_lead_id(self, email: str) -> str | None:
        return self.lead_ids.get(normalize_email(email))

    async def set_qualification(self, email: str, label: QualificationStatus) -> None:
        self.qualifications[normalize_email(email)] = label

    async def record_engagement(self, email: str, event_type: CampaignEventType) -> None:
        counters = self.engagement.setdefault(normalize_email(email), {})
        column = _COUNTER_COLUMNS.get(event_type, "other_count")
        counters[column] = counters.get(column, 0) + 1

    async def is_blocklisted(self, email: str) -> bool:
        return any(value in self.blocklist for value in _blocklist_values(email))
