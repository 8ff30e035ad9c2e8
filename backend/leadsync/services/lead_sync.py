"""Lead status synchronization.

Turns campaign events into CRM status changes:

1. skip deliveries that were already processed (same lead, event and campaign)
2. map the event to a candidate status (``event_policy``); a blocklisted
   contact always maps to the negative-signal status
3. read the lead's current CRM status
4. accept or skip the candidate (``status_rules.evaluate_transition``)
5. write accepted changes through the ``ResilientExecutor``
6. apply best-effort side effects
7. append a ``SyncOutcome`` to the outcome store

All steps run under a per-lead lock so two events for the same lead never
decide against the same stale status.  Different leads run concurrently.
"""

import asyncio
import logging
from collections import OrderedDict
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Any, Protocol

from leadsync.core.exceptions import DatabaseError, OutcomePersistenceError
from leadsync.core.resilience import AttemptRecord, ExecutionResult, ResilientExecutor
from leadsync.services.event_policy import (
    CampaignEventType,
    determine_event_from_lead_snapshot,
    get_event_policy,
)
from leadsync.services.lead_directory import LeadDirectory
from leadsync.services.outcome_store import OutcomeStore
from leadsync.services.side_effects import CampaignSideEffects
from leadsync.services.status_model import (
    DEFAULT_STATUS_MODEL,
    NEGATIVE_SIGNAL_STATUS,
    LeadStatus,
    StatusModel,
)
from leadsync.services.status_rules import SkipReason, evaluate_transition
from leadsync.services.sync_models import SideEffectResult, SyncEvent, SyncOutcome

logger = logging.getLogger(__name__)

GET_STATUS_OPERATION = "crm.get_lead_status"
SET_STATUS_OPERATION = "crm.set_lead_status"
BLOCKLIST_OPERATION = "contacts.check_blocklist"


class CRMStatusGateway(Protocol):
    """The CRM operations the orchestrator needs."""

    async def get_lead_status(self, lead_id: str) -> int | None: ...

    async def set_lead_status(self, lead_id: str, status_id: int) -> None: ...


class FollowUpQueue:
    """Events whose status read or write failed and should be retried later.

    Holds at most one event per lead; a newer failure for the same lead
    replaces the older one.
    """

    def __init__(self) -> None:
        self._pending: OrderedDict[str, tuple[SyncEvent, bool]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, lead_id: object) -> bool:
        return lead_id in self._pending

    def push(self, event: SyncEvent, force: bool = False) -> None:
        self._pending.pop(event.lead_id, None)
        self._pending[event.lead_id] = (event, force)

    def drain(self) -> list[tuple[SyncEvent, bool]]:
        """Remove and return all pending events, oldest first."""
        items = list(self._pending.values())
        self._pending.clear()
        return items

    def pending(self) -> list[dict[str, Any]]:
        return [{**event.to_dict(), "force": force} for event, force in self._pending.values()]


class SyncOrchestrator:
    """Processes campaign events into CRM status changes.

    Args:
        crm: CRM status reads and writes.
        executor: Resilient executor for every remote call.
        store: Outcome sink, also consulted for already-processed deliveries.
        side_effects: Best-effort side effects; None disables them.
        model: Status model to decide against.
        follow_ups: Queue for failed status reads and writes.
        directory: Contact store for blocklist checks; None disables them.
    """

    def __init__(
        self,
        crm: CRMStatusGateway,
        executor: ResilientExecutor,
        store: OutcomeStore,
        side_effects: CampaignSideEffects | None = None,
        model: StatusModel = DEFAULT_STATUS_MODEL,
        follow_ups: FollowUpQueue | None = None,
        directory: LeadDirectory | None = None,
    ) -> None:
        self.crm = crm
        self.executor = executor
        self.store = store
        self.side_effects = side_effects
        self.model = model
        self.follow_ups = follow_ups if follow_ups is not None else FollowUpQueue()
        self.directory = directory
        self._lead_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @asynccontextmanager
    async def _lead_lock(self, lead_id: str) -> AsyncIterator[None]:
        """Hold the lead's lock; it is dropped once nobody holds or awaits it."""
        lock = self._lead_locks.setdefault(lead_id, asyncio.Lock())
        self._lock_users[lead_id] = self._lock_users.get(lead_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[lead_id] -= 1
            if not self._lock_users[lead_id]:
                del self._lock_users[lead_id]
                del self._lead_locks[lead_id]

    async def process_event(self, event: SyncEvent, force: bool = False) -> SyncOutcome:
        """Process one event for one lead.

        Policy rejections and failed writes are returned in the outcome,
        never raised.  A delivery that already succeeded is recorded as a
        duplicate without touching the CRM or re-running side effects; one
        that failed earlier retries the status only.  ``force`` bypasses
        both checks.

        Args:
            event: The inbound event.
            force: Bypass duplicate detection, protection, transition table
                and priority.

        Returns:
            The persisted SyncOutcome.

        Raises:
            DatabaseError: If earlier deliveries could not be looked up.
            OutcomePersistenceError: If the outcome could not be stored.
        """
        async with self._lead_lock(event.lead_id):
            run_side_effects = True
            if not force and event.campaign_id is not None:
                previous = await self._previous_delivery(event, event.campaign_id)
                if previous is not None and previous.get("success"):
                    return await self._record_duplicate(event)
                run_side_effects = previous is None
            return await self._process(event, force, run_side_effects)

    async def _previous_delivery(self, event: SyncEvent, campaign_id: str) -> dict[str, Any] | None:
        try:
            return await self.store.latest_for_event(event.lead_id, event.event_type, campaign_id)
        except Exception as e:
            logger.error(
                "Could not look up earlier deliveries for lead %s",
                event.lead_id,
                exc_info=True,
                extra={
                    "lead_id": event.lead_id,
                    "event_type": event.event_type.value,
                    "campaign_id": campaign_id,
                    "alert": "delivery_lookup_failed",
                },
            )
            raise DatabaseError("Could not check whether the event was already processed") from e

    async def _record_duplicate(self, event: SyncEvent) -> SyncOutcome:
        logger.info(
            "Event %s already processed for lead %s",
            event.event_type.value,
            event.lead_id,
            extra={
                "lead_id": event.lead_id,
                "event_type": event.event_type.value,
                "campaign_id": event.campaign_id,
            },
        )
        outcome = SyncOutcome(
            lead_id=event.lead_id,
            event_type=event.event_type,
            previous_status_id=None,
            candidate_status_id=None,
            final_status_id=None,
            accepted=False,
            success=True,
            skip_reason=SkipReason.DUPLICATE,
            campaign_id=event.campaign_id,
        )
        await self._persist(outcome)
        return outcome

    async def _process(
        self, event: SyncEvent, force: bool, run_side_effects: bool
    ) -> SyncOutcome:
        """Decide, write, apply side effects and persist. Caller holds the lead lock."""
        policy = get_event_policy(event.event_type)
        blocklisted = await self._is_blocklisted(event)
        candidate = NEGATIVE_SIGNAL_STATUS if blocklisted else policy.target_status

        if candidate is None:
            outcome_fields = self._no_status_change()
        else:
            outcome_fields = await self._sync_status(event, candidate, force)

        side_effects: tuple[SideEffectResult, ...] = ()
        if run_side_effects and self.side_effects is not None:
            side_effects = await self.side_effects.apply(event, policy)

        outcome = SyncOutcome(
            lead_id=event.lead_id,
            event_type=event.event_type,
            side_effects=side_effects,
            forced=force,
            campaign_id=event.campaign_id,
            blocklisted=blocklisted,
            **outcome_fields,
        )

        if outcome.needs_follow_up:
            self.follow_ups.push(event, force)

        await self._persist(outcome)
        return outcome

    async def _is_blocklisted(self, event: SyncEvent) -> bool:
        """Blocklist check; a failed lookup lets the event through unblocked."""
        if self.directory is None or not event.email:
            return False
        directory = self.directory
        email = event.email
        result: ExecutionResult[bool] = await self.executor.execute_with_retry(
            lambda: directory.is_blocklisted(email), BLOCKLIST_OPERATION
        )
        if not result.success:
            logger.warning(
                "Blocklist check failed for lead %s, treating contact as not blocklisted",
                event.lead_id,
                extra={"lead_id": event.lead_id, "error": str(result.error)},
            )
            return False
        if result.result:
            logger.info(
                "Lead %s is blocklisted, candidate status forced to %s",
                event.lead_id,
                NEGATIVE_SIGNAL_STATUS.value,
                extra={"lead_id": event.lead_id, "event_type": event.event_type.value},
            )
        return bool(result.result)

    def _no_status_change(self) -> dict[str, Any]:
        return {
            "previous_status_id": None,
            "candidate_status_id": None,
            "final_status_id": None,
            "accepted": False,
            "success": True,
        }

    async def _sync_status(
        self, event: SyncEvent, candidate: LeadStatus, force: bool
    ) -> dict[str, Any]:
        """Read, decide and write."""
        lead_id = event.lead_id
        candidate_id = self.model.id_for(candidate)

        read: ExecutionResult[int | None] = await self.executor.execute_with_retry(
            lambda: self.crm.get_lead_status(lead_id), GET_STATUS_OPERATION
        )
        if not read.success:
            logger.error(
                "Could not read current status for lead %s",
                lead_id,
                extra={
                    "lead_id": lead_id,
                    "event_type": event.event_type.value,
                    "alert": "remote_status_read_failed",
                },
            )
            return {
                "previous_status_id": None,
                "candidate_status_id": candidate_id,
                "final_status_id": None,
                "accepted": False,
                "success": False,
                "retry_attempts": read.attempts,
                "error": str(read.error),
                "error_classification": _category(read),
            }

        current_id = read.result
        decision = evaluate_transition(current_id, candidate, force=force, model=self.model)
        fields: dict[str, Any] = {
            "previous_status_id": current_id,
            "candidate_status_id": candidate_id,
            "final_status_id": current_id,
            "accepted": decision.accepted,
            "success": True,
            "skip_reason": decision.skip_reason,
            "no_op": decision.no_op,
            "retry_attempts": read.attempts,
        }

        if not decision.accepted:
            logger.info(
                "Skipped status update for lead %s: %s",
                lead_id,
                decision.skip_reason.value if decision.skip_reason else "",
                extra={
                    "lead_id": lead_id,
                    "event_type": event.event_type.value,
                    "current_status_id": current_id,
                    "candidate_status_id": candidate_id,
                },
            )
            return fields

        if decision.no_op:
            logger.debug("Lead %s already has status %s", lead_id, candidate_id)
            return fields

        write: ExecutionResult[None] = await self.executor.execute_with_retry(
            lambda: self.crm.set_lead_status(lead_id, candidate_id), SET_STATUS_OPERATION
        )
        attempts: tuple[AttemptRecord, ...] = read.attempts + write.attempts
        fields["retry_attempts"] = attempts

        if write.success:
            fields["final_status_id"] = candidate_id
            logger.info(
                "Lead %s status %s -> %s",
                lead_id,
                current_id,
                candidate_id,
                extra={
                    "lead_id": lead_id,
                    "event_type": event.event_type.value,
                    "previous_status_id": current_id,
                    "final_status_id": candidate_id,
                },
            )
            return fields

        logger.error(
            "Status update for lead %s failed after %d call(s)",
            lead_id,
            write.call_count,
            extra={
                "lead_id": lead_id,
                "event_type": event.event_type.value,
                "candidate_status_id": candidate_id,
                "error_classification": _category(write),
                "alert": "remote_status_update_failed",
            },
        )
        fields.update(
            success=False,
            error=str(write.error),
            error_classification=_category(write),
        )
        return fields

    async def _persist(self, outcome: SyncOutcome) -> None:
        try:
            await self.store.append(outcome)
        except OutcomePersistenceError:
            self._log_persistence_failure(outcome)
            raise
        except Exception as e:
            self._log_persistence_failure(outcome)
            raise OutcomePersistenceError(outcome, cause=str(e)) from e

    def _log_persistence_failure(self, outcome: SyncOutcome) -> None:
        logger.error(
            "Failed to persist sync outcome for lead %s",
            outcome.lead_id,
            exc_info=True,
            extra={
                "lead_id": outcome.lead_id,
                "event_type": outcome.event_type.value,
                "accepted": outcome.accepted,
                "success": outcome.success,
                "alert": "outcome_persistence_failed",
            },
        )

    async def process_lead_snapshot(
        self,
        lead_id: str,
        snapshot: Mapping[str, Any],
        email: str | None = None,
        campaign_id: str | None = None,
    ) -> SyncOutcome:
        """Backfill one lead from a campaign-tool lead record."""
        event_type: CampaignEventType = determine_event_from_lead_snapshot(snapshot)
        metadata: dict[str, Any] = {"source": "backfill"}
        if campaign_id:
            metadata["campaign_id"] = campaign_id
        event = SyncEvent(
            lead_id=lead_id,
            event_type=event_type,
            email=email or snapshot.get("email"),
            metadata=metadata,
        )
        return await self.process_event(event)

    async def retry_follow_ups(self) -> dict[str, int]:
        """Retry the status sync of every queued follow-up once.

        Side effects already ran on the first delivery and are not repeated.
        Events that fail again are queued again.

        Returns:
            Counts of retried, succeeded and failed events.
        """
        pending = self.follow_ups.drain()
        succeeded = 0
        failed = 0

        for event, force in pending:
            try:
                async with self._lead_lock(event.lead_id):
                    outcome = await self._process(event, force, run_side_effects=False)
            except OutcomePersistenceError:
                failed += 1
                continue
            if outcome.success:
                succeeded += 1
            else:
                failed += 1

        if pending:
            logger.info(
                "Retried %d follow-up(s): %d succeeded, %d failed",
                len(pending),
                succeeded,
                failed,
            )
        return {"retried": len(pending), "succeeded": succeeded, "failed": failed}


def _category(result: ExecutionResult[Any]) -> str | None:
    return result.error_classification.value if result.error_classification else None
