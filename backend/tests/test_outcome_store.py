"""Tests for sync outcome stores."""

import threading
from unittest.mock import MagicMock

import pytest

from leadsync.core.exceptions import OutcomePersistenceError
from leadsync.services.event_policy import CampaignEventType
from leadsync.services.outcome_store import InMemoryOutcomeStore, SupabaseOutcomeStore
from leadsync.services.sync_models import SyncOutcome


def _outcome(lead_id: str = "42", event_type=CampaignEventType.REPLY_RECEIVED) -> SyncOutcome:
    return SyncOutcome(
        lead_id=lead_id,
        event_type=event_type,
        previous_status_id=345,
        candidate_status_id=302,
        final_status_id=302,
        accepted=True,
        success=True,
    )


class TestInMemoryOutcomeStore:
    """Tests for InMemoryOutcomeStore."""

    @pytest.mark.asyncio
    async def test_append_and_list(self) -> None:
        store = InMemoryOutcomeStore()
        first = _outcome()
        second = _outcome(event_type=CampaignEventType.LEAD_MEETING_COMPLETED)
        await store.append(first)
        await store.append(_outcome(lead_id="7"))
        await store.append(second)

        rows = await store.list_for_lead("42")

        assert [r["event_type"] for r in rows] == ["lead_meeting_completed", "reply_received"]
        assert len(store.outcomes) == 3

    @pytest.mark.asyncio
    async def test_list_limit(self) -> None:
        store = InMemoryOutcomeStore()
        for _ in range(5):
            await store.append(_outcome())

        assert len(await store.list_for_lead("42", limit=2)) == 2

    def test_outcomes_returns_copy(self) -> None:
        store = InMemoryOutcomeStore()
        store.outcomes.append(_outcome())
        assert store.outcomes == []

    @pytest.mark.asyncio
    async def test_latest_for_event(self) -> None:
        store = InMemoryOutcomeStore()
        failed = SyncOutcome(
            lead_id="42",
            event_type=CampaignEventType.REPLY_RECEIVED,
            previous_status_id=345,
            candidate_status_id=302,
            final_status_id=345,
            accepted=True,
            success=False,
            campaign_id="camp-1",
        )
        await store.append(_outcome())
        await store.append(failed)

        latest = await store.latest_for_event("42", CampaignEventType.REPLY_RECEIVED, "camp-1")

        assert latest is not None
        assert latest["success"] is False
        assert await store.latest_for_event("42", CampaignEventType.EMAIL_OPENED, "camp-1") is None
        assert await store.latest_for_event("7", CampaignEventType.REPLY_RECEIVED, "camp-1") is None


class TestSupabaseOutcomeStore:
    """Tests for SupabaseOutcomeStore."""

    @pytest.fixture
    def mock_supabase(self) -> MagicMock:
        """Create a mocked Supabase client."""
        mock_client = MagicMock()
        mock_response = MagicMock()
        mock_response.data = [{"id": "outcome-1"}]
        mock_client.table.return_value.insert.return_value.execute.return_value = mock_response
        return mock_client

    @pytest.mark.asyncio
    async def test_append_inserts_serialized_outcome(self, mock_supabase: MagicMock) -> None:
        store = SupabaseOutcomeStore(mock_supabase)
        outcome = _outcome()

        await store.append(outcome)

        mock_supabase.table.assert_called_with("lead_sync_outcomes")
        inserted = mock_supabase.table.return_value.insert.call_args[0][0]
        assert inserted == outcome.to_dict()

    @pytest.mark.asyncio
    async def test_append_failure_raises_persistence_error(
        self, mock_supabase: MagicMock
    ) -> None:
        mock_supabase.table.return_value.insert.return_value.execute.side_effect = Exception(
            "connection refused"
        )
        store = SupabaseOutcomeStore(mock_supabase)
        outcome = _outcome()

        with pytest.raises(OutcomePersistenceError, match="connection refused") as exc_info:
            await store.append(outcome)

        assert exc_info.value.outcome is outcome

    @pytest.mark.asyncio
    async def test_append_without_returned_data(self, mock_supabase: MagicMock) -> None:
        mock_supabase.table.return_value.insert.return_value.execute.return_value.data = []
        store = SupabaseOutcomeStore(mock_supabase)

        with pytest.raises(OutcomePersistenceError, match="no data returned"):
            await store.append(_outcome())

    @pytest.mark.asyncio
    async def test_list_for_lead(self, mock_supabase: MagicMock) -> None:
        rows = [{"lead_id": "42", "event_type": "reply_received"}]
        query = mock_supabase.table.return_value.select.return_value.eq.return_value
        query.order.return_value.limit.return_value.execute.return_value.data = rows
        store = SupabaseOutcomeStore(mock_supabase, table="custom_outcomes")

        result = await store.list_for_lead("42", limit=10)

        assert result == rows
        mock_supabase.table.assert_called_with("custom_outcomes")
        mock_supabase.table.return_value.select.return_value.eq.assert_called_with("lead_id", "42")
        query.order.assert_called_with("processed_at", desc=True)
        query.order.return_value.limit.assert_called_with(10)

    @pytest.mark.asyncio
    async def test_latest_for_event(self, mock_supabase: MagicMock) -> None:
        row = {"id": "outcome-1", "success": True, "processed_at": "2026-01-05T10:00:00+00:00"}
        select = mock_supabase.table.return_value.select.return_value
        query = select.eq.return_value.eq.return_value.eq.return_value
        query.order.return_value.limit.return_value.execute.return_value.data = [row]
        store = SupabaseOutcomeStore(mock_supabase)

        latest = await store.latest_for_event("42", CampaignEventType.REPLY_RECEIVED, "camp-1")

        assert latest == row
        select.eq.assert_called_with("lead_id", "42")
        select.eq.return_value.eq.assert_called_with("event_type", "reply_received")
        query.order.assert_called_with("processed_at", desc=True)

    @pytest.mark.asyncio
    async def test_latest_for_event_none(self, mock_supabase: MagicMock) -> None:
        select = mock_supabase.table.return_value.select.return_value
        query = select.eq.return_value.eq.return_value.eq.return_value
        query.order.return_value.limit.return_value.execute.return_value.data = []
        store = SupabaseOutcomeStore(mock_supabase)

        assert await store.latest_for_event("42", CampaignEventType.EMAIL_OPENED, "c") is None

    @pytest.mark.asyncio
    async def test_queries_run_off_the_event_loop_thread(self, mock_supabase: MagicMock) -> None:
        loop_thread = threading.get_ident()
        threads: list[int] = []

        def execute() -> MagicMock:
            threads.append(threading.get_ident())
            response = MagicMock()
            response.data = [{"id": "outcome-1"}]
            return response

        mock_supabase.table.return_value.insert.return_value.execute.side_effect = execute
        store = SupabaseOutcomeStore(mock_supabase)

        await store.append(_outcome())

        assert len(threads) == 1
        assert threads[0] != loop_thread
