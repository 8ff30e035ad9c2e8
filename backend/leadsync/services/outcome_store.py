"""Append-only persistence of sync outcomes.

Outcomes are never updated or deleted.  ``SupabaseOutcomeStore`` writes to
the ``lead_sync_outcomes`` table; ``InMemoryOutcomeStore`` keeps them in a
list for local runs and tests.
"""

import asyncio
import logging
from typing import Any, Protocol, cast

from supabase import Client

from leadsync.core.exceptions import OutcomePersistenceError
from leadsync.services.event_policy import CampaignEventType
from leadsync.services.sync_models import SyncOutcome

logger = logging.getLogger(__name__)

OUTCOMES_TABLE = "lead_sync_outcomes"


class OutcomeStore(Protocol):
    """Sink for sync outcomes."""

    async def append(self, outcome: SyncOutcome) -> None:
        """Persist one outcome.

        Raises:
            OutcomePersistenceError: If the outcome could not be stored.
        """
        ...

    async def list_for_lead(self, lead_id: str, limit: int = 50) -> list[dict[str, Any]]:
        """Most recent outcomes for a lead, newest first."""
        ...

    async def latest_for_event(
        self, lead_id: str, event_type: CampaignEventType, campaign_id: str
    ) -> dict[str, Any] | None:
        """Most recent outcome recorded for this delivery, or None."""
        ...


class InMemoryOutcomeStore:
    """Outcome store backed by a process-local list."""

    def __init__(self) -> None:
        self._outcomes: list[SyncOutcome] = []
        self._lock = asyncio.Lock()

    @property
    def outcomes(self) -> list[SyncOutcome]:
        return list(self._outcomes)

    async def append(self, outcome: SyncOutcome) -> None:
        async with self._lock:
            self._outcomes.append(outcome)

    async def list_for_lead(self, lead_id: str, limit: int = 50) -> list[dict[str, Any]]:
        matching = [o.to_dict() for o in reversed(self._outcomes) if o.lead_id == lead_id]
        return matching[:limit]

    async def latest_for_event(
        self, lead_id: str, event_type: CampaignEventType, campaign_id: str
    ) -> dict[str, Any] | None:
        for outcome in reversed(self._outcomes):
            if (outcome.lead_id, outcome.event_type, outcome.campaign_id) == (
                lead_id,
                event_type,
                campaign_id,
            ):
                return outcome.to_dict()
        return None


class SupabaseOutcomeStore:
    """Outcome store writing to Supabase.

    Args:
        client: Supabase client.
        table: Table to insert into.
    """

    def __init__(self, client: Client, table: str = OUTCOMES_TABLE) -> None:
        self._client = client
        self._table = table

    async def append(self, outcome: SyncOutcome) -> None:
        try:
            response = await asyncio.to_thread(
                self._client.table(self._table).insert(outcome.to_dict()).execute
            )
        except Exception as e:
            raise OutcomePersistenceError(outcome, cause=str(e)) from e

        if not response.data:
            raise OutcomePersistenceError(outcome, cause="no data returned from insert")

        logger.debug(
            "Sync outcome stored",
            extra={"lead_id": outcome.lead_id, "event_type": outcome.event_type.value},
        )

    async def list_for_lead(self, lead_id: str, limit: int = 50) -> list[dict[str, Any]]:
        query = (
            self._client.table(self._table)
            .select("*")
            .eq("lead_id", lead_id)
            .order("processed_at", desc=True)
            .limit(limit)
        )
        response = await asyncio.to_thread(query.execute)
        return cast(list[dict[str, Any]], response.data or [])

    async def latest_for_event(
        self, lead_id: str, event_type: CampaignEventType, campaign_id: str
    ) -> dict[str, Any] | None:
        query = (
            self._client.table(self._table)
            .select("id, success, processed_at")
            .eq("lead_id", lead_id)
            .eq("event_type", event_type.value)
            .eq("campaign_id", campaign_id)
            .order("processed_at", desc=True)
            .limit(1)
        )
        response = await asyncio.to_thread(query.execute)
        rows = cast(list[dict[str, Any]], response.data or [])
        return rows[0] if rows else None
