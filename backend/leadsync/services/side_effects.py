"""Best-effort side effects of campaign events.

Suppression, activity logging, qualification labels and engagement counters
are applied independently of each other and of the status write.  A failure
is recorded on the outcome and never raised.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from leadsync.core.resilience import ResilientExecutor
from leadsync.services.event_policy import (
    EventPolicy,
    reply_sentiment_for_event,
)
from leadsync.services.lead_directory import LeadDirectory
from leadsync.services.sync_models import SideEffectResult, SyncEvent

logger = logging.getLogger(__name__)

SUPPRESSION = "suppression"
ACTIVITY_LOG = "activity_log"
QUALIFICATION = "qualification"
ENGAGEMENT = "engagement"


class SuppressionList(Protocol):
    async def add_to_blocklist(self, value: str) -> dict[str, Any]: ...


class ActivityLog(Protocol):
    async def add_activity(
        self,
        lead_id: str,
        subject: str,
        note: str = "",
        activity_type: str = "email",
        done: bool = True,
    ) -> dict[str, Any]: ...


def _activity_subject(event: SyncEvent) -> str:
    label = event.event_type.value.replace("_", " ").capitalize()
    campaign = event.metadata.get("campaign_name")
    return f"{label} ({campaign})" if campaign else label


def _activity_note(event: SyncEvent) -> str:
    lines = [f"Campaign event: {event.event_type.value}"]
    if event.email:
        lines.append(f"Lead: {event.email}")
    sentiment = reply_sentiment_for_event(event.event_type)
    if sentiment:
        lines.append(f"Reply sentiment: {sentiment.value}")
    reply = event.metadata.get("reply_text")
    if reply:
        lines.append("")
        lines.append(str(reply))
    return "\n".join(lines)


class CampaignSideEffects:
    """Applies the side effects an event policy asks for.

    Every remote call goes through the executor under its own operation
    class, so a failing blocklist API never opens the CRM status breaker.

    Args:
        executor: Resilient executor for remote calls.
        suppression: Blocklist client.
        activity_log: CRM activity client.
        directory: Contact store for qualification and engagement.
    """

    def __init__(
        self,
        executor: ResilientExecutor,
        suppression: SuppressionList | None = None,
        activity_log: ActivityLog | None = None,
        directory: LeadDirectory | None = None,
    ) -> None:
        self._executor = executor
        self._suppression = suppression
        self._activity_log = activity_log
        self._directory = directory

    async def _run(
        self,
        name: str,
        operation_class: str,
        operation: Callable[[], Awaitable[Any]],
    ) -> SideEffectResult:
        result = await self._executor.execute_with_retry(operation, operation_class)
        if result.success:
            return SideEffectResult(name=name, success=True)
        logger.warning(
            "Side effect %s failed: %s",
            name,
            result.error,
            extra={"side_effect": name, "operation_class": operation_class},
        )
        return SideEffectResult(name=name, success=False, error=str(result.error))

    async def apply(self, event: SyncEvent, policy: EventPolicy) -> tuple[SideEffectResult, ...]:
        """Apply every side effect ``policy`` asks for.

        Args:
            event: The event being processed.
            policy: Its event policy.

        Returns:
            One result per attempted side effect.
        """
        results: list[SideEffectResult] = []
        email = event.email

        if policy.add_to_suppression_list:
            if not email or self._suppression is None:
                results.append(
                    SideEffectResult(
                        name=SUPPRESSION, success=False, error="no email or suppression client"
                    )
                )
            else:
                suppression = self._suppression
                results.append(
                    await self._run(
                        SUPPRESSION,
                        "instantly.add_to_blocklist",
                        lambda: suppression.add_to_blocklist(email),
                    )
                )

        if policy.log_activity and self._activity_log is not None:
            activity_log = self._activity_log
            results.append(
                await self._run(
                    ACTIVITY_LOG,
                    "crm.add_activity",
                    lambda: activity_log.add_activity(
                        event.lead_id,
                        subject=_activity_subject(event),
                        note=_activity_note(event),
                    ),
                )
            )

        if email and self._directory is not None:
            directory = self._directory
            label = policy.qualification_label
            if label is not None:
                results.append(
                    await self._run(
                        QUALIFICATION,
                        "contacts.set_qualification",
                        lambda: directory.set_qualification(email, label),
                    )
                )
            if policy.update_engagement_metrics:
                results.append(
                    await self._run(
                        ENGAGEMENT,
                        "contacts.record_engagement",
                        lambda: directory.record_engagement(email, event.event_type),
                    )
                )

        return tuple(results)
