"""Transition validation and priority-based conflict resolution.

Pure functions over a ``StatusModel``.  Rejections are returned as data
(``TransitionDecision`` with a ``SkipReason``), never raised.
"""

from dataclasses import dataclass
from enum import Enum

from leadsync.services.status_model import (
    DEFAULT_STATUS_MODEL,
    NEGATIVE_SIGNAL_STATUS,
    LeadStatus,
    StatusModel,
)


class SkipReason(str, Enum):
    """Why a candidate status was not applied."""

    NOT_ALLOWED = "target not in allowed transition set"
    LOWER_PRIORITY = "current status has lower upgrade priority deficit"
    PROTECTED = "current status is protected"
    DUPLICATE = "event already processed"


@dataclass(frozen=True)
class TransitionDecision:
    """Result of evaluating a candidate status against the current one.

    ``no_op`` is set when the candidate equals the current status: the
    decision is accepted but there is nothing to write.
    """

    accepted: bool
    skip_reason: SkipReason | None = None
    no_op: bool = False


def is_valid_transition(
    from_key: LeadStatus | None,
    to_key: LeadStatus,
    force: bool = False,
    model: StatusModel = DEFAULT_STATUS_MODEL,
) -> bool:
    """Check whether moving from ``from_key`` to ``to_key`` is allowed.

    A lead without a known status may move anywhere.  A ``from_key`` with no
    entry in the transition table allows nothing.
    """
    if force or from_key is None:
        return True
    return to_key in model.allowed_targets(from_key)


def is_protected(
    status: LeadStatus | int | None,
    model: StatusModel = DEFAULT_STATUS_MODEL,
) -> bool:
    """Check whether a status (by key or CRM id) is protected from automation."""
    if status is None:
        return False
    if isinstance(status, LeadStatus):
        return model.get(status).is_protected
    definition = model.get_by_id(status)
    return definition is not None and definition.is_protected


def should_upgrade(
    current_status_id: int | None,
    candidate_key: LeadStatus,
    force: bool = False,
    model: StatusModel = DEFAULT_STATUS_MODEL,
) -> bool:
    """Decide whether the candidate wins over the current status by priority.

    Negative signals always win.  Equal priority favors the candidate.
    """
    if force or current_status_id is None:
        return True
    if candidate_key == NEGATIVE_SIGNAL_STATUS:
        return True
    return model.priority(candidate_key) >= model.priority_for_id(current_status_id)


def evaluate_transition(
    current_status_id: int | None,
    candidate_key: LeadStatus,
    force: bool = False,
    model: StatusModel = DEFAULT_STATUS_MODEL,
) -> TransitionDecision:
    """Decide whether ``candidate_key`` should replace the current status.

    Args:
        current_status_id: CRM id of the lead's current status, or None.
        candidate_key: Status the event maps to.
        force: Bypass protection, transition table and priority.
        model: Status model to evaluate against.

    Returns:
        TransitionDecision. A protected current status rejects every
        candidate unless forced. Replaying the current status is otherwise an
        accepted no-op; then the transition table and priority are checked.
    """
    if not force and is_protected(current_status_id, model):
        return TransitionDecision(accepted=False, skip_reason=SkipReason.PROTECTED)

    if current_status_id is not None and current_status_id == model.id_for(candidate_key):
        return TransitionDecision(accepted=True, no_op=True)

    if force:
        return TransitionDecision(accepted=True)

    current_key = model.key_for_id(current_status_id)
    if current_status_id is not None and current_key is None:
        # Unknown CRM option: nothing is reachable from it without force
        return TransitionDecision(accepted=False, skip_reason=SkipReason.NOT_ALLOWED)

    if not is_valid_transition(current_key, candidate_key, model=model):
        return TransitionDecision(accepted=False, skip_reason=SkipReason.NOT_ALLOWED)

    if not should_upgrade(current_status_id, candidate_key, model=model):
        return TransitionDecision(accepted=False, skip_reason=SkipReason.LOWER_PRIORITY)

    return TransitionDecision(accepted=True)
