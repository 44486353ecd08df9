"""Authorization gate for quote status changes.

Every transition the orchestrator applies passes through
``requires_approval`` exactly once. Two rules escalate to a manager:

- cancelling a SIGNED quote, unless the actor has manager authority
- signing a quote whose total exceeds the high-value threshold, when the
  actor is a sales associate

Everything else is approved automatically. Approval is independent of data
completeness; the validator has already run by the time the gate is asked.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union

from quoteflow.types import QuoteStatus, UserRole


DEFAULT_HIGH_VALUE_THRESHOLD = Decimal("10000")

MANAGER_ROLES = frozenset({UserRole.MANAGER, UserRole.ADMIN})


@dataclass(frozen=True)
class ApprovalDecision:
    """Whether a transition needs manager approval, and why."""
    required: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.required


AUTO_APPROVED = ApprovalDecision(required=False)


def has_manager_authority(role: UserRole) -> bool:
    return role in MANAGER_ROLES


def requires_approval(
    current: QuoteStatus,
    target: QuoteStatus,
    role: UserRole,
    total: Optional[Union[Decimal, int, float]] = None,
    high_value_threshold: Decimal = DEFAULT_HIGH_VALUE_THRESHOLD,
) -> ApprovalDecision:
    """Decide whether ``role`` needs a manager to approve this transition.

    Args:
        current: Status the quote is moving from
        target: Status requested
        role: Role of the acting user
        total: Quote total, consulted by the high-value rule
        high_value_threshold: Totals strictly above this need approval to sign

    Examples:
        >>> bool(requires_approval(QuoteStatus.SIGNED, QuoteStatus.CANCELLED, UserRole.SALES_ASSOCIATE))
        True
        >>> bool(requires_approval(QuoteStatus.SIGNED, QuoteStatus.CANCELLED, UserRole.MANAGER))
        False
    """
    if current == QuoteStatus.SIGNED and target == QuoteStatus.CANCELLED:
        if not has_manager_authority(role):
            return ApprovalDecision(True, "Manager approval required to cancel signed quote")

    if target == QuoteStatus.SIGNED and role == UserRole.SALES_ASSOCIATE and total is not None:
        if Decimal(str(total)) > Decimal(str(high_value_threshold)):
            return ApprovalDecision(
                True,
                f"Manager approval required for high-value quotes over {high_value_threshold}",
            )

    return AUTO_APPROVED


__all__ = [
    "DEFAULT_HIGH_VALUE_THRESHOLD",
    "MANAGER_ROLES",
    "ApprovalDecision",
    "AUTO_APPROVED",
    "has_manager_authority",
    "requires_approval",
]
