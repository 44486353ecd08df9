"""Quote state machine for the Quoteflow lifecycle engine.

This module implements the orchestrator that decides quote status changes.
It combines the transition table (quoteflow.rules), the data validator
(quoteflow.validation) and the authorization gate (quoteflow.authorization)
and, when everything passes, computes the audit fields to persist.

The state machine:
- Rejects same-status requests and moves missing from the transition table
- Rejects reachable moves whose preconditions are unmet, naming each one
- Returns PendingApproval when a manager has to sign off
- Stamps milestone timestamps only the first time a status is entered
- Holds no per-quote state, so one instance can serve concurrent requests

It performs no I/O. Reading the quote and writing the result back under an
optimistic version check is the caller's job (see quoteflow.runtime).

Usage:
    >>> from quoteflow.quote import Quote, LineItem
    >>> from quoteflow.types import Actor, QuoteStatus
    >>> sm = QuoteStateMachine()
    >>> quote = Quote(id="q_123", exam_services=[LineItem(name="Eye Exam")])
    >>> result = sm.request_transition(quote, QuoteStatus.DRAFT, Actor(id="user_1"))
    >>> result.outcome
    'applied'
    >>> result.new_status
    <QuoteStatus.DRAFT: 'DRAFT'>
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Tuple, Union

from quoteflow.authorization import (
    DEFAULT_HIGH_VALUE_THRESHOLD,
    has_manager_authority,
    requires_approval,
)
from quoteflow.errors import (
    IllegalTransitionError,
    NextAction,
    PreconditionFailedError,
)
from quoteflow.ports import Clock, SystemClock
from quoteflow.quote import MILESTONE_FIELDS, AuditFields, Quote
from quoteflow.rules import default_reason, is_reachable, reachable_from
from quoteflow.types import Actor, ErrorType, NextActionType, QuoteStatus, Requirement
from quoteflow.validation import validate_transition


NO_OP_REASON = "no-op transition not allowed"


@dataclass(frozen=True)
class Applied:
    """The transition passed every check; persist ``audit``."""
    new_status: QuoteStatus
    audit: AuditFields
    warnings: List[str] = field(default_factory=list)
    approved_by: Optional[str] = None

    outcome = "applied"


@dataclass(frozen=True)
class Rejected:
    """The transition is not allowed.

    ``error_type`` is ILLEGAL_TRANSITION for same-status requests and moves
    missing from the table, PRECONDITION_FAILED for unmet data requirements.
    """
    error_type: ErrorType
    reason: str
    unmet: List[Requirement] = field(default_factory=list)
    next_actions: List[NextAction] = field(default_factory=list)

    outcome = "rejected"


@dataclass(frozen=True)
class PendingApproval:
    """The transition is valid but needs a manager to approve it."""
    reason: str
    next_actions: List[NextAction] = field(default_factory=list)

    outcome = "pending_approval"


TransitionResult = Union[Applied, Rejected, PendingApproval]


class QuoteStateMachine:
    """Stateless orchestrator for quote status transitions.

    Attributes:
        clock: Source of ``status_changed_at`` and milestone timestamps
        high_value_threshold: Totals above this need approval for a sales
            associate to sign

    Examples:
        >>> from quoteflow.quote import Quote
        >>> from quoteflow.types import Actor, QuoteStatus
        >>> sm = QuoteStateMachine()
        >>> quote = Quote(id="q_1", status=QuoteStatus.COMPLETED)
        >>> sm.request_transition(quote, QuoteStatus.CANCELLED, Actor(id="u")).error_type
        <ErrorType.ILLEGAL_TRANSITION: 'illegal_transition'>
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        high_value_threshold: Decimal = DEFAULT_HIGH_VALUE_THRESHOLD,
    ):
        self.clock = clock or SystemClock()
        self.high_value_threshold = high_value_threshold

    def request_transition(
        self,
        quote: Quote,
        target_status: QuoteStatus,
        actor: Actor,
        reason: Optional[str] = None,
        approved_by: Optional[Actor] = None,
    ) -> TransitionResult:
        """Decide a transition for a quote snapshot.

        Checks run in order and stop at the first failure: same-status,
        transition table, data preconditions, manager approval.

        Args:
            quote: Current snapshot of the quote (not modified)
            target_status: Status requested
            actor: Who requests the change
            reason: Audit reason; a default reason is used when omitted
            approved_by: Manager who approved an escalated request, if any

        Returns:
            Applied, Rejected or PendingApproval
        """
        current = quote.status

        if target_status == current:
            return Rejected(ErrorType.ILLEGAL_TRANSITION, NO_OP_REASON)

        if not is_reachable(current, target_status):
            return Rejected(ErrorType.ILLEGAL_TRANSITION, self._illegal_message(current, target_status))

        validation = validate_transition(quote, current, target_status)
        if not validation.is_valid:
            return Rejected(
                ErrorType.PRECONDITION_FAILED,
                validation.reason or "precondition failed",
                unmet=list(validation.unmet),
                next_actions=list(validation.next_actions),
            )

        approval = requires_approval(
            current,
            target_status,
            actor.role,
            total=quote.total,
            high_value_threshold=self.high_value_threshold,
        )
        approver_id = None
        if approval.required:
            if approved_by is None or not has_manager_authority(approved_by.role):
                return PendingApproval(
                    reason=approval.reason or "Manager approval required",
                    next_actions=[NextAction(
                        action=NextActionType.REQUEST_MANAGER_APPROVAL,
                        hint=approval.reason,
                    )],
                )
            approver_id = approved_by.id

        audit = self._audit_fields(quote, target_status, actor, reason)
        return Applied(
            new_status=target_status,
            audit=audit,
            warnings=list(validation.warnings),
            approved_by=approver_id,
        )

    def apply_transition(
        self,
        quote: Quote,
        target_status: QuoteStatus,
        actor: Actor,
        reason: Optional[str] = None,
        approved_by: Optional[Actor] = None,
    ) -> Tuple[TransitionResult, Optional[Quote]]:
        """Decide a transition and, if applied, return the updated copy.

        The input quote is never modified.
        """
        result = self.request_transition(quote, target_status, actor, reason, approved_by)
        if not isinstance(result, Applied):
            return result, None
        updated = quote.copy()
        updated.apply(result.audit)
        return result, updated

    def transition_or_raise(
        self,
        quote: Quote,
        target_status: QuoteStatus,
        actor: Actor,
        reason: Optional[str] = None,
        approved_by: Optional[Actor] = None,
    ) -> Union[Applied, PendingApproval]:
        """Like request_transition, but raise on rejection.

        Raises:
            IllegalTransitionError: Same-status or unreachable target
            PreconditionFailedError: Reachable target with unmet requirements
        """
        result = self.request_transition(quote, target_status, actor, reason, approved_by)
        if isinstance(result, Rejected):
            if result.error_type == ErrorType.ILLEGAL_TRANSITION:
                raise IllegalTransitionError(quote.status, target_status, result.reason)
            raise PreconditionFailedError(result.reason, result.unmet, result.next_actions)
        return result

    def can_transition_to(self, quote: Quote, target_status: QuoteStatus) -> bool:
        """Whether the table and the data allow the move (approval aside)."""
        if target_status == quote.status:
            return False
        return validate_transition(quote, quote.status, target_status).is_valid

    def next_valid_states(self, quote: Quote) -> List[QuoteStatus]:
        """Reachable statuses whose preconditions the quote currently meets.

        Targets that would need manager approval are included; approval is
        resolved when the transition is requested.
        """
        return [
            target for target in reachable_from(quote.status)
            if validate_transition(quote, quote.status, target).is_valid
        ]

    def _audit_fields(
        self,
        quote: Quote,
        target_status: QuoteStatus,
        actor: Actor,
        reason: Optional[str],
    ) -> AuditFields:
        now = self.clock.now()
        milestones = {}

        milestone = MILESTONE_FIELDS.get(target_status)
        if milestone is not None and getattr(quote, milestone) is None:
            milestones[milestone] = now

        if quote.status == QuoteStatus.BUILDING and quote.building_completed_at is None \
                and target_status in (QuoteStatus.DRAFT, QuoteStatus.PRESENTED):
            milestones["building_completed_at"] = now

        return AuditFields(
            status=target_status,
            previous_status=quote.status,
            status_changed_at=now,
            status_changed_by=actor.id,
            status_reason=reason or default_reason(quote.status, target_status),
            milestones=milestones,
        )

    @staticmethod
    def _illegal_message(current: QuoteStatus, target: QuoteStatus) -> str:
        allowed = reachable_from(current)
        if not allowed:
            return (
                f"structurally illegal transition: '{current.value}' is a terminal status, "
                f"no transitions are allowed"
            )
        return (
            f"structurally illegal transition from '{current.value}' to '{target.value}'. "
            f"Valid transitions from '{current.value}' are: "
            f"{', '.join(s.value for s in allowed)}"
        )


__all__ = [
    "NO_OP_REASON",
    "Applied",
    "Rejected",
    "PendingApproval",
    "TransitionResult",
    "QuoteStateMachine",
]
