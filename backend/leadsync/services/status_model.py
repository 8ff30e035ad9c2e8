"""Lead status model shared by the CRM and the campaign tool.

The CRM stores a lead's commercial status as a numeric option of a custom
"Status Prospect" field.  This module is the single source of truth for
those options: their ids, labels, funnel priority, and which of them are
protected (human-curated) or terminal.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping


class StatusModelError(Exception):
    """Raised when the status table or transition table is inconsistent."""

    pass


class LeadStatus(str, Enum):
    """Closed set of lead statuses."""

    CUSTOMER = "customer"
    IN_NEGOTIATION = "in_negotiation"
    SHOULD_CONTACT = "should_contact"
    IN_CAMPAIGN = "in_campaign"
    NO_REPLY_IN_CAMPAIGN = "no_reply_in_campaign"
    CONTACT_AGAIN = "contact_again"
    STOP_CONTACTING = "stop_contacting"


@dataclass(frozen=True)
class StatusDefinition:
    """A CRM status option.

    Priority encodes how far along the funnel a lead is and is only ever
    compared, never added up.
    """

    id: int
    key: LeadStatus
    label: str
    priority: int
    is_protected: bool = False
    is_terminal: bool = False
    description: str = ""

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "key": self.key.value,
            "label": self.label,
            "priority": self.priority,
            "is_protected": self.is_protected,
            "is_terminal": self.is_terminal,
        }


# Status that explicit negative signals (bounce, unsubscribe, rejection) map to
NEGATIVE_SIGNAL_STATUS = LeadStatus.STOP_CONTACTING


class StatusModel:
    """Immutable status table plus transition graph.

    Uniqueness of ids and keys, completeness over ``LeadStatus``, and
    zero out-degree for terminal statuses are all checked at construction.
    """

    def __init__(
        self,
        statuses: list[StatusDefinition],
        transitions: Mapping[LeadStatus, frozenset[LeadStatus]],
    ) -> None:
        by_key: dict[LeadStatus, StatusDefinition] = {}
        by_id: dict[int, StatusDefinition] = {}
        for status in statuses:
            if status.key in by_key:
                raise StatusModelError(f"Duplicate status key: {status.key.value}")
            if status.id in by_id:
                raise StatusModelError(f"Duplicate status id: {status.id}")
            by_key[status.key] = status
            by_id[status.id] = status

        missing = [key.value for key in LeadStatus if key not in by_key]
        if missing:
            raise StatusModelError(f"Statuses without definition: {', '.join(missing)}")

        for source, targets in transitions.items():
            unknown = [t for t in targets if t not in by_key]
            if source not in by_key or unknown:
                raise StatusModelError(f"Transition table references unknown status from {source}")
            if by_key[source].is_terminal and targets:
                raise StatusModelError(
                    f"Terminal status {source.value} cannot have outgoing transitions"
                )

        self._by_key: Mapping[LeadStatus, StatusDefinition] = MappingProxyType(by_key)
        self._by_id: Mapping[int, StatusDefinition] = MappingProxyType(by_id)
        self._transitions: Mapping[LeadStatus, frozenset[LeadStatus]] = MappingProxyType(
            {key: frozenset(transitions.get(key, frozenset())) for key in LeadStatus}
        )

    def __iter__(self):  # type: ignore[no-untyped-def]
        return iter(self._by_key.values())

    def get(self, key: LeadStatus) -> StatusDefinition:
        """Get the definition of a status key."""
        return self._by_key[key]

    def get_by_id(self, status_id: int | None) -> StatusDefinition | None:
        """Get a status by its CRM option id, or None if unknown."""
        if status_id is None:
            return None
        return self._by_id.get(status_id)

    def key_for_id(self, status_id: int | None) -> LeadStatus | None:
        status = self.get_by_id(status_id)
        return status.key if status else None

    def id_for(self, key: LeadStatus) -> int:
        return self._by_key[key].id

    def priority(self, key: LeadStatus) -> int:
        return self._by_key[key].priority

    def priority_for_id(self, status_id: int | None) -> int:
        """Priority of a status id; unknown ids rank lowest (0)."""
        status = self.get_by_id(status_id)
        return status.priority if status else 0

    def allowed_targets(self, key: LeadStatus | None) -> frozenset[LeadStatus]:
        """Statuses reachable from ``key`` without force."""
        if key is None:
            return frozenset()
        return self._transitions.get(key, frozenset())

    def protected_ids(self) -> frozenset[int]:
        return frozenset(s.id for s in self._by_key.values() if s.is_protected)


STATUS_DEFINITIONS: list[StatusDefinition] = [
    StatusDefinition(
        id=303,
        key=LeadStatus.CUSTOMER,
        label="Klant",
        priority=100,
        is_protected=True,
        is_terminal=True,
        description="Customer - highest status, protected from changes",
    ),
    StatusDefinition(
        id=322,
        key=LeadStatus.IN_NEGOTIATION,
        label="In onderhandeling",
        priority=90,
        is_protected=True,
        description="In negotiation - protected from automatic changes",
    ),
    StatusDefinition(
        id=302,
        key=LeadStatus.SHOULD_CONTACT,
        label="Benaderen",
        priority=80,
        description="Should be contacted - positive response received",
    ),
    StatusDefinition(
        id=345,
        key=LeadStatus.IN_CAMPAIGN,
        label="In campagne Instantly",
        priority=50,
        description="Currently in an outbound campaign",
    ),
    StatusDefinition(
        id=344,
        key=LeadStatus.NO_REPLY_IN_CAMPAIGN,
        label="Niet gereageerd Instantly",
        priority=40,
        description="Campaign completed without reply",
    ),
    StatusDefinition(
        id=305,
        key=LeadStatus.CONTACT_AGAIN,
        label="Opnieuw Benaderen",
        priority=30,
        description="Should be contacted again",
    ),
    StatusDefinition(
        id=304,
        key=LeadStatus.STOP_CONTACTING,
        label="Niet meer Benaderen",
        priority=10,
        is_terminal=True,
        description="Do not contact - negative response, bounce, or unsubscribe",
    ),
]

# Re-engaging a stopped lead or changing a customer needs force=True.
VALID_TRANSITIONS: dict[LeadStatus, frozenset[LeadStatus]] = {
    LeadStatus.IN_CAMPAIGN: frozenset(
        {
            LeadStatus.SHOULD_CONTACT,
            LeadStatus.NO_REPLY_IN_CAMPAIGN,
            LeadStatus.STOP_CONTACTING,
            LeadStatus.CUSTOMER,
        }
    ),
    LeadStatus.NO_REPLY_IN_CAMPAIGN: frozenset(
        {
            LeadStatus.SHOULD_CONTACT,
            LeadStatus.STOP_CONTACTING,
            LeadStatus.CUSTOMER,
            LeadStatus.IN_NEGOTIATION,
        }
    ),
    LeadStatus.SHOULD_CONTACT: frozenset(
        {LeadStatus.IN_NEGOTIATION, LeadStatus.STOP_CONTACTING, LeadStatus.CUSTOMER}
    ),
    LeadStatus.IN_NEGOTIATION: frozenset({LeadStatus.CUSTOMER, LeadStatus.STOP_CONTACTING}),
    LeadStatus.CUSTOMER: frozenset(),
    LeadStatus.CONTACT_AGAIN: frozenset(
        {
            LeadStatus.SHOULD_CONTACT,
            LeadStatus.IN_CAMPAIGN,
            LeadStatus.STOP_CONTACTING,
            LeadStatus.CUSTOMER,
        }
    ),
    LeadStatus.STOP_CONTACTING: frozenset(),
}

DEFAULT_STATUS_MODEL = StatusModel(STATUS_DEFINITIONS, VALID_TRANSITIONS)


def get_status(key: LeadStatus) -> StatusDefinition:
    """Get a status definition from the default model."""
    return DEFAULT_STATUS_MODEL.get(key)


def get_status_by_id(status_id: int | None) -> StatusDefinition | None:
    """Look up a CRM option id in the default model."""
    return DEFAULT_STATUS_MODEL.get_by_id(status_id)


def status_key_for_id(status_id: int | None) -> LeadStatus | None:
    return DEFAULT_STATUS_MODEL.key_for_id(status_id)


def priority_for_id(status_id: int | None) -> int:
    """Priority of a CRM status id; 0 when the id is unknown."""
    return DEFAULT_STATUS_MODEL.priority_for_id(status_id)


def protected_status_ids() -> frozenset[int]:
    return DEFAULT_STATUS_MODEL.protected_ids()
