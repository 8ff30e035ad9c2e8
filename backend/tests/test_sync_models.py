"""Tests for sync domain models."""

from datetime import UTC, datetime

import pytest

from leadsync.core.error_classification import ErrorCategory
from leadsync.core.resilience import AttemptRecord
from leadsync.services.event_policy import CampaignEventType
from leadsync.services.status_rules import SkipReason
from leadsync.services.sync_models import (
    SideEffectResult,
    SyncEvent,
    SyncModelError,
    SyncOutcome,
)


class TestSyncEvent:
    """Tests for SyncEvent."""

    def test_lead_id_required(self) -> None:
        with pytest.raises(SyncModelError, match="lead_id is required"):
            SyncEvent(lead_id="", event_type=CampaignEventType.REPLY_RECEIVED)

    def test_timestamp_defaults_to_now_utc(self) -> None:
        event = SyncEvent(lead_id="42", event_type=CampaignEventType.REPLY_RECEIVED)
        assert event.timestamp.tzinfo is UTC

    def test_campaign_id_from_metadata(self) -> None:
        event = SyncEvent(
            lead_id="42",
            event_type=CampaignEventType.REPLY_RECEIVED,
            metadata={"campaign_id": "c-1"},
        )
        assert event.campaign_id == "c-1"
        assert SyncEvent("42", CampaignEventType.REPLY_RECEIVED).campaign_id is None

    def test_to_dict(self) -> None:
        ts = datetime(2026, 3, 1, tzinfo=UTC)
        event = SyncEvent(
            lead_id="42",
            event_type=CampaignEventType.EMAIL_BOUNCED,
            timestamp=ts,
            metadata={"campaign_id": "c-1"},
        )
        assert event.to_dict() == {
            "lead_id": "42",
            "event_type": "email_bounced",
            "timestamp": ts.isoformat(),
            "email": None,
            "metadata": {"campaign_id": "c-1"},
        }


class TestSyncOutcome:
    """Tests for SyncOutcome."""

    def _outcome(self, **overrides) -> SyncOutcome:
        values = {
            "lead_id": "42",
            "event_type": CampaignEventType.REPLY_RECEIVED,
            "previous_status_id": 345,
            "candidate_status_id": 302,
            "final_status_id": 302,
            "accepted": True,
            "success": True,
        }
        values.update(overrides)
        return SyncOutcome(**values)

    def test_needs_follow_up(self) -> None:
        assert self._outcome().needs_follow_up is False
        assert self._outcome(success=False, final_status_id=345).needs_follow_up is True
        skipped = self._outcome(accepted=False, skip_reason=SkipReason.PROTECTED)
        assert skipped.needs_follow_up is False

    def test_failed_read_needs_follow_up(self) -> None:
        unread = self._outcome(
            accepted=False, success=False, previous_status_id=None, final_status_id=None
        )
        assert unread.needs_follow_up is True

    def test_outcome_is_immutable(self) -> None:
        outcome = self._outcome()
        with pytest.raises(AttributeError):
            outcome.success = False  # type: ignore[misc]

    def test_to_dict(self) -> None:
        outcome = self._outcome(
            success=False,
            final_status_id=345,
            retry_attempts=(
                AttemptRecord(1, ErrorCategory.SERVER_ERROR, 1000, "503"),
            ),
            error="503",
            error_classification="server_error",
            side_effects=(SideEffectResult("activity_log", False, "timeout"),),
            skip_reason=None,
        )

        data = outcome.to_dict()

        assert data["event_type"] == "reply_received"
        assert data["accepted"] is True
        assert data["success"] is False
        assert data["skip_reason"] is None
        assert data["retry_attempts"] == [
            {
                "attempt_number": 1,
                "error_classification": "server_error",
                "delay_before_next_ms": 1000,
                "error_message": "503",
            }
        ]
        assert data["side_effects"] == [
            {"name": "activity_log", "success": False, "error": "timeout"}
        ]
        assert data["campaign_id"] is None
        assert data["blocklisted"] is False
        assert data["processed_at"].endswith("+00:00")

    def test_skip_reason_serialized_as_text(self) -> None:
        outcome = self._outcome(
            accepted=False, final_status_id=345, skip_reason=SkipReason.LOWER_PRIORITY
        )
        expected = "current status has lower upgrade priority deficit"
        assert outcome.to_dict()["skip_reason"] == expected
