"""Static transition table and status metadata.

VALID_TRANSITIONS only rules out moves that are impossible whatever the
quote contains. Whether a reachable move is actually allowed is decided by
quoteflow.validation and quoteflow.authorization.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Tuple

from quoteflow.types import QuoteStatus


# Maps each status to the statuses it can move to, in display order.
_TRANSITION_ORDER: Dict[QuoteStatus, Tuple[QuoteStatus, ...]] = {
    QuoteStatus.BUILDING: (
        QuoteStatus.DRAFT,
        QuoteStatus.PRESENTED,
        QuoteStatus.CANCELLED,
    ),
    QuoteStatus.DRAFT: (
        QuoteStatus.BUILDING,
        QuoteStatus.PRESENTED,
        QuoteStatus.CANCELLED,
        QuoteStatus.EXPIRED,
    ),
    QuoteStatus.PRESENTED: (
        QuoteStatus.BUILDING,
        QuoteStatus.DRAFT,
        QuoteStatus.SIGNED,
        QuoteStatus.CANCELLED,
        QuoteStatus.EXPIRED,
    ),
    QuoteStatus.SIGNED: (
        QuoteStatus.COMPLETED,
        QuoteStatus.CANCELLED,
    ),
    # Terminal statuses - no transitions allowed
    QuoteStatus.COMPLETED: (),
    QuoteStatus.CANCELLED: (),
    # Expired quotes can be revived
    QuoteStatus.EXPIRED: (
        QuoteStatus.BUILDING,
        QuoteStatus.DRAFT,
    ),
}

VALID_TRANSITIONS: Dict[QuoteStatus, FrozenSet[QuoteStatus]] = {
    status: frozenset(targets) for status, targets in _TRANSITION_ORDER.items()
}

TERMINAL_STATUSES: FrozenSet[QuoteStatus] = frozenset({
    QuoteStatus.COMPLETED,
    QuoteStatus.CANCELLED,
})

EXPIRABLE_STATUSES: FrozenSet[QuoteStatus] = frozenset({
    QuoteStatus.DRAFT,
    QuoteStatus.PRESENTED,
})

EDITABLE_STATUSES: FrozenSet[QuoteStatus] = frozenset({
    QuoteStatus.BUILDING,
    QuoteStatus.DRAFT,
})

# Position along the happy path; moving to a lower rank is a backward move.
_PROGRESS_RANK: Dict[QuoteStatus, int] = {
    QuoteStatus.BUILDING: 0,
    QuoteStatus.DRAFT: 1,
    QuoteStatus.PRESENTED: 2,
    QuoteStatus.SIGNED: 3,
    QuoteStatus.COMPLETED: 4,
}


def is_reachable(current: QuoteStatus, target: QuoteStatus) -> bool:
    """Whether the table has an edge from ``current`` to ``target``.

    Examples:
        >>> is_reachable(QuoteStatus.EXPIRED, QuoteStatus.DRAFT)
        True
        >>> is_reachable(QuoteStatus.EXPIRED, QuoteStatus.PRESENTED)
        False
    """
    return target in VALID_TRANSITIONS.get(current, frozenset())


def reachable_from(current: QuoteStatus) -> List[QuoteStatus]:
    return list(_TRANSITION_ORDER.get(current, ()))


def is_terminal(status: QuoteStatus) -> bool:
    return status in TERMINAL_STATUSES


def is_backward(current: QuoteStatus, target: QuoteStatus) -> bool:
    """True for moves back along the happy path, e.g. PRESENTED -> DRAFT.

    Revivals out of EXPIRED are not backward moves.
    """
    if current not in _PROGRESS_RANK or target not in _PROGRESS_RANK:
        return False
    return _PROGRESS_RANK[target] < _PROGRESS_RANK[current]


def can_edit(status: QuoteStatus) -> bool:
    return status in EDITABLE_STATUSES


def requires_customer_action(status: QuoteStatus) -> bool:
    return status == QuoteStatus.PRESENTED


@dataclass(frozen=True)
class StatusInfo:
    """Display metadata for a status."""
    label: str
    description: str
    color: str
    icon: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "label": self.label,
            "description": self.description,
            "color": self.color,
            "icon": self.icon,
        }


STATUS_INFO: Dict[QuoteStatus, StatusInfo] = {
    QuoteStatus.BUILDING: StatusInfo("Building", "Quote is being created or edited", "blue", "hammer"),
    QuoteStatus.DRAFT: StatusInfo("Draft", "Quote saved as draft, not yet presented", "gray", "file-text"),
    QuoteStatus.PRESENTED: StatusInfo(
        "Presented", "Quote presented to customer, awaiting response", "yellow", "presentation"
    ),
    QuoteStatus.SIGNED: StatusInfo(
        "Signed", "Customer signed quote, awaiting fulfillment", "purple", "file-signature"
    ),
    QuoteStatus.COMPLETED: StatusInfo("Completed", "Quote fully completed and fulfilled", "green", "check-circle"),
    QuoteStatus.CANCELLED: StatusInfo("Cancelled", "Quote cancelled by customer or staff", "red", "x-circle"),
    QuoteStatus.EXPIRED: StatusInfo("Expired", "Quote expired due to inactivity", "orange", "alert-triangle"),
}


USER_ACTION = "USER_ACTION"
SYSTEM_ACTION = "SYSTEM_ACTION"
BUSINESS_RULE = "BUSINESS_RULE"

DEFAULT_REASONS: Dict[Tuple[QuoteStatus, QuoteStatus], Tuple[str, str]] = {
    (QuoteStatus.BUILDING, QuoteStatus.DRAFT): ("Quote saved as draft", USER_ACTION),
    (QuoteStatus.BUILDING, QuoteStatus.PRESENTED): ("Quote presented to customer", USER_ACTION),
    (QuoteStatus.DRAFT, QuoteStatus.BUILDING): ("Draft reopened for editing", USER_ACTION),
    (QuoteStatus.DRAFT, QuoteStatus.PRESENTED): ("Draft quote presented to customer", USER_ACTION),
    (QuoteStatus.DRAFT, QuoteStatus.EXPIRED): ("Quote auto-expired after inactivity", SYSTEM_ACTION),
    (QuoteStatus.PRESENTED, QuoteStatus.BUILDING): ("Presented quote reopened for editing", USER_ACTION),
    (QuoteStatus.PRESENTED, QuoteStatus.DRAFT): ("Presented quote saved as draft", USER_ACTION),
    (QuoteStatus.PRESENTED, QuoteStatus.SIGNED): ("Customer accepted and signed quote", USER_ACTION),
    (QuoteStatus.PRESENTED, QuoteStatus.EXPIRED): ("Presented quote auto-expired", SYSTEM_ACTION),
    (QuoteStatus.SIGNED, QuoteStatus.COMPLETED): ("Quote fulfillment completed", USER_ACTION),
    (QuoteStatus.SIGNED, QuoteStatus.CANCELLED): ("Signed quote cancelled", BUSINESS_RULE),
    (QuoteStatus.EXPIRED, QuoteStatus.BUILDING): ("Expired quote reactivated", USER_ACTION),
    (QuoteStatus.EXPIRED, QuoteStatus.DRAFT): ("Expired quote reactivated as draft", USER_ACTION),
}


def default_reason(current: QuoteStatus, target: QuoteStatus) -> str:
    """Audit reason used when the caller supplies none."""
    if (current, target) in DEFAULT_REASONS:
        return DEFAULT_REASONS[(current, target)][0]
    if target == QuoteStatus.CANCELLED:
        return "Quote cancelled"
    return f"Status changed from {current.value} to {target.value}"


def reason_category(current: QuoteStatus, target: QuoteStatus) -> str:
    return DEFAULT_REASONS.get((current, target), ("", USER_ACTION))[1]


__all__ = [
    "VALID_TRANSITIONS",
    "TERMINAL_STATUSES",
    "EXPIRABLE_STATUSES",
    "EDITABLE_STATUSES",
    "STATUS_INFO",
    "StatusInfo",
    "DEFAULT_REASONS",
    "is_reachable",
    "reachable_from",
    "is_terminal",
    "is_backward",
    "can_edit",
    "requires_customer_action",
    "default_reason",
    "reason_category",
]
