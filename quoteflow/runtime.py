"""QuoteLifecycleService: the engine's outward-facing API.

This module coordinates the store, the state machine and the event system.
It is what the point-of-sale request handlers and the expiration sweeper
call.

Every status change is a read -> decide -> write cycle. The write carries
the version that was read; if another writer got there first the store
raises ConcurrencyConflictError and the whole decision is made again
against fresh data. Transient persistence failures are retried with
exponential backoff and then surfaced as an error response. Status and
audit fields are always written in one save, so a failed write leaves the
quote exactly as it was.

Usage:
    >>> from quoteflow.store import InMemoryQuoteStore
    >>> from quoteflow.types import Actor, QuoteStatus
    >>> service = QuoteLifecycleService(store=InMemoryQuoteStore())
    >>> quote = service.create_quote(Actor(id="user_1"))
    >>> quote.status
    <QuoteStatus.BUILDING: 'BUILDING'>
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from quoteflow.authorization import has_manager_authority
from quoteflow.completeness import derive_completeness
from quoteflow.config import QuoteflowSettings
from quoteflow.errors import (
    ConcurrencyConflictError,
    ErrorDetail,
    NextAction,
    PersistenceError,
    QuoteError,
    QuoteNotFoundError,
)
from quoteflow.events import EventEmitter, QuoteEvent, new_event_id
from quoteflow.expiration import days_until_expiration, evaluate_expiration, expiration_date
from quoteflow.ports import Clock, QuoteStore, SystemClock
from quoteflow.quote import Quote
from quoteflow.rules import (
    EXPIRABLE_STATUSES,
    STATUS_INFO,
    can_edit,
    is_terminal,
    reason_category,
    requires_customer_action,
)
from quoteflow.state_machine import Applied, PendingApproval, QuoteStateMachine, Rejected
from quoteflow.types import Actor, ErrorType, EventType, NextActionType, QuoteStatus
from quoteflow.validation import recommended_actions


logger = logging.getLogger(__name__)

AUTO_EXPIRE_REASON = "auto-expired"


class ApprovalStatus:
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    APPROVED = "APPROVED"
    DENIED = "DENIED"
    SUPERSEDED = "SUPERSEDED"


@dataclass
class ApprovalRequest:
    """A transition waiting for a manager's decision.

    Attributes:
        approval_id: Unique identifier ("apr_...")
        quote_id: Quote the transition targets
        from_status: Status the quote was in when approval was requested
        to_status: Requested status
        requested_by: Actor who asked for the transition
        reason: Why approval is needed
        requested_reason: Audit reason supplied with the original request
        requested_at: When the request was made
        status: PENDING, IN_PROGRESS (a manager is deciding), APPROVED,
            DENIED or SUPERSEDED
    """
    approval_id: str
    quote_id: str
    from_status: QuoteStatus
    to_status: QuoteStatus
    requested_by: Actor
    reason: str
    requested_at: datetime
    requested_reason: Optional[str] = None
    status: str = ApprovalStatus.PENDING
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    decision_reason: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "approvalId": self.approval_id,
            "quoteId": self.quote_id,
            "fromStatus": self.from_status.value,
            "toStatus": self.to_status.value,
            "requestedBy": self.requested_by.to_dict(),
            "reason": self.reason,
            "requestedReason": self.requested_reason,
            "requestedAt": self.requested_at.isoformat(),
            "status": self.status,
            "decidedBy": self.decided_by,
            "decidedAt": self.decided_at.isoformat() if self.decided_at else None,
            "decisionReason": self.decision_reason,
        }


class QuoteLifecycleService:
    """Orchestrates quote status changes against a store.

    Attributes:
        store: Persistence for quotes (optimistic concurrency)
        clock: Time source shared with the state machine
        settings: Thresholds and retry policy
        emitter: Event dispatcher for audit listeners
        state_machine: Stateless decision engine
    """

    def __init__(
        self,
        store: QuoteStore,
        clock: Optional[Clock] = None,
        settings: Optional[QuoteflowSettings] = None,
        emitter: Optional[EventEmitter] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.settings = settings or QuoteflowSettings()
        self.emitter = emitter or EventEmitter()
        self.state_machine = QuoteStateMachine(
            clock=self.clock,
            high_value_threshold=self.settings.high_value_threshold,
        )
        self._sleep = sleep
        self._approvals: Dict[str, ApprovalRequest] = {}
        self._events: Dict[str, List[QuoteEvent]] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    def create_quote(self, actor: Actor, quote_id: Optional[str] = None, **fields: Any) -> Quote:
        """Create a quote in BUILDING and persist it.

        Args:
            actor: Who creates the quote
            quote_id: Optional identifier; generated when omitted
            **fields: Any other Quote attribute except ``status``

        Raises:
            ValueError: If ``status`` is passed or the id already exists
        """
        if "status" in fields:
            raise ValueError("Quotes are always created in BUILDING")
        now = self.clock.now()
        fields.setdefault("auto_expire_after_days", self.settings.default_auto_expire_days)
        quote = Quote(
            id=quote_id or f"q_{uuid.uuid4().hex[:16]}",
            status=QuoteStatus.BUILDING,
            created_at=now,
            updated_at=now,
            last_activity_at=now,
            **fields,
        )
        saved = self.store.add(quote)
        logger.info("Quote %s created by %s", saved.id, actor.id)
        self._emit(EventType.QUOTE_CREATED, saved, actor)
        return saved

    def get_quote(self, quote_id: str) -> Quote:
        """Raises QuoteNotFoundError for unknown ids."""
        return self.store.get(quote_id)

    # ------------------------------------------------------------------
    # Status changes
    # ------------------------------------------------------------------

    def change_quote_status(
        self,
        quote_id: str,
        target_status: Union[QuoteStatus, str],
        actor: Actor,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Request a status change.

        Returns one of:
            - ``{"ok": True, "quoteId", "status", "previousStatus", "warnings"}``
            - ``{"ok": False, "pendingApproval": True, "approvalId", "reason", ...}``
            - a QuoteError envelope (``{"ok": False, "quoteId", "status", "error"}``)
        """
        try:
            target = QuoteStatus(target_status)
        except ValueError:
            valid = ", ".join(s.value for s in QuoteStatus)
            return self._error_response(
                quote_id, None,
                ErrorDetail.of(
                    ErrorType.INVALID_REQUEST,
                    f"Invalid status: {target_status}. Valid statuses: {valid}",
                ),
            )
        return self._transition(quote_id, target, actor, reason)

    def expire_if_due(self, quote_id: str) -> Dict[str, Any]:
        """Force-expire a quote if it is still due when re-read.

        Used by the sweeper: the due check is repeated against every fresh
        read, so activity recorded after the sweep listed the quote wins.
        A quote that is no longer due yields ``{"ok": True, "skipped": True}``.
        """
        def still_due(quote: Quote) -> bool:
            decision = evaluate_expiration(quote, self.clock.now(), self.settings.warning_lead_days)
            return decision.should_expire

        return self._transition(
            quote_id,
            QuoteStatus.EXPIRED,
            Actor.system(),
            AUTO_EXPIRE_REASON,
            guard=still_due,
        )

    def _transition(
        self,
        quote_id: str,
        target: QuoteStatus,
        actor: Actor,
        reason: Optional[str],
        approved_by: Optional[Actor] = None,
        approval: Optional[ApprovalRequest] = None,
        guard: Optional[Callable[[Quote], bool]] = None,
    ) -> Dict[str, Any]:
        conflicts = 0
        while True:
            try:
                quote = self.store.get(quote_id)
            except QuoteNotFoundError as exc:
                return self._error_response(quote_id, None, exc.to_detail())

            if guard is not None and not guard(quote):
                logger.debug("Transition of quote %s to %s skipped: guard no longer holds", quote_id, target.value)
                return {"ok": True, "skipped": True, "quoteId": quote_id, "status": quote.status.value}

            if approval is not None and quote.status != approval.from_status:
                self._close_approval(approval, ApprovalStatus.SUPERSEDED, approved_by, "Quote status changed")
                return self._error_response(
                    quote_id, quote.status,
                    ErrorDetail.of(
                        ErrorType.ILLEGAL_TRANSITION,
                        f"Approval no longer applies: quote is now {quote.status.value}",
                    ),
                )

            result, updated = self.state_machine.apply_transition(
                quote, target, actor, reason, approved_by=approved_by,
            )

            if isinstance(result, Rejected):
                logger.info(
                    "Transition %s -> %s for quote %s rejected: %s",
                    quote.status.value, target.value, quote_id, result.reason,
                )
                return self._error_response(
                    quote_id, quote.status,
                    ErrorDetail.of(
                        result.error_type,
                        result.reason,
                        unmet=result.unmet or None,
                        next_actions=result.next_actions or None,
                    ),
                )

            if isinstance(result, PendingApproval):
                request = self._request_approval(quote, target, actor, result, reason)
                return {
                    "ok": False,
                    "pendingApproval": True,
                    "quoteId": quote_id,
                    "status": quote.status.value,
                    "approvalId": request.approval_id,
                    "reason": result.reason,
                }

            try:
                saved = self._save_with_retry(updated, expected_version=quote.version)
            except ConcurrencyConflictError as exc:
                conflicts += 1
                if conflicts > self.settings.max_conflict_retries:
                    logger.warning("Giving up on quote %s after %d conflicts", quote_id, conflicts)
                    return self._error_response(
                        quote_id, quote.status,
                        ErrorDetail.of(
                            ErrorType.CONCURRENCY_CONFLICT,
                            str(exc),
                            next_actions=[NextAction(action=NextActionType.RELOAD_QUOTE)],
                        ),
                    )
                logger.info("Conflict on quote %s, re-deciding (attempt %d)", quote_id, conflicts + 1)
                continue
            except PersistenceError as exc:
                logger.error("Could not persist transition for quote %s: %s", quote_id, exc)
                return self._error_response(
                    quote_id, quote.status,
                    ErrorDetail.of(
                        ErrorType.PERSISTENCE_FAILURE,
                        str(exc),
                        next_actions=[NextAction(action=NextActionType.RETRY_LATER)],
                        retry_after_ms=self.settings.persistence_retry_backoff_ms,
                    ),
                )

            self._record_applied(quote, saved, actor, result, approval, approved_by)
            return {
                "ok": True,
                "quoteId": quote_id,
                "status": saved.status.value,
                "previousStatus": quote.status.value,
                "warnings": list(result.warnings),
            }

    def _save_with_retry(self, quote: Quote, expected_version: int) -> Quote:
        attempts = max(1, self.settings.persistence_retry_attempts)
        backoff_ms = self.settings.persistence_retry_backoff_ms
        attempt = 1
        while True:
            try:
                return self.store.save(quote, expected_version=expected_version)
            except PersistenceError as exc:
                if attempt >= attempts:
                    raise
                delay_ms = backoff_ms * (2 ** (attempt - 1))
                logger.warning(
                    "Write for quote %s failed (attempt %d/%d): %s; retrying in %dms",
                    quote.id, attempt, attempts, exc, delay_ms,
                )
                self._sleep(delay_ms / 1000.0)
                attempt += 1

    def _record_applied(
        self,
        before: Quote,
        saved: Quote,
        actor: Actor,
        result: Applied,
        approval: Optional[ApprovalRequest],
        approved_by: Optional[Actor],
    ) -> None:
        logger.info(
            "Quote %s: %s -> %s by %s (%s)",
            saved.id, before.status.value, saved.status.value, actor.id, saved.status_reason,
        )
        payload = {
            "fromStatus": before.status.value,
            "toStatus": saved.status.value,
            "reason": saved.status_reason,
            "category": reason_category(before.status, saved.status),
        }
        if result.approved_by is not None:
            payload["approvedBy"] = result.approved_by
        if approval is not None:
            payload["approvalId"] = approval.approval_id
            self._close_approval(approval, ApprovalStatus.APPROVED, approved_by, None)

        event_type = EventType.EXPIRED if saved.status == QuoteStatus.EXPIRED else EventType.STATUS_CHANGED
        self._emit(event_type, saved, actor, payload)

    # ------------------------------------------------------------------
    # Approvals
    # ------------------------------------------------------------------

    def _request_approval(
        self,
        quote: Quote,
        target: QuoteStatus,
        actor: Actor,
        result: PendingApproval,
        requested_reason: Optional[str],
    ) -> ApprovalRequest:
        with self._lock:
            for existing in self._approvals.values():
                if (existing.is_pending and existing.quote_id == quote.id
                        and existing.from_status == quote.status and existing.to_status == target):
                    return existing
            request = ApprovalRequest(
                approval_id=f"apr_{uuid.uuid4().hex[:16]}",
                quote_id=quote.id,
                from_status=quote.status,
                to_status=target,
                requested_by=actor,
                reason=result.reason,
                requested_at=self.clock.now(),
                requested_reason=requested_reason,
            )
            self._approvals[request.approval_id] = request

        logger.info(
            "Approval %s requested by %s for quote %s: %s -> %s",
            request.approval_id, actor.id, quote.id, quote.status.value, target.value,
        )
        self._emit(EventType.APPROVAL_REQUESTED, quote, actor, {
            "approvalId": request.approval_id,
            "fromStatus": quote.status.value,
            "toStatus": target.value,
            "reason": result.reason,
        })
        return request

    def get_approval(self, approval_id: str) -> Optional[ApprovalRequest]:
        with self._lock:
            return self._approvals.get(approval_id)

    def list_pending_approvals(self, quote_id: Optional[str] = None) -> List[ApprovalRequest]:
        with self._lock:
            return [
                a for a in self._approvals.values()
                if a.is_pending and (quote_id is None or a.quote_id == quote_id)
            ]

    def approve(self, approval_id: str, manager: Actor) -> Dict[str, Any]:
        """Approve a pending request and apply the transition against fresh data.

        The transition is recorded as requested by the original actor and
        approved by ``manager``. Validation runs again, so a quote whose data
        changed since the request can still be rejected.
        """
        approval, error = self._claim_approval(approval_id, manager)
        if error is not None:
            return error
        try:
            return self._transition(
                approval.quote_id,
                approval.to_status,
                approval.requested_by,
                approval.requested_reason,
                approved_by=manager,
                approval=approval,
            )
        finally:
            self._release_approval(approval)

    def deny(self, approval_id: str, manager: Actor, reason: Optional[str] = None) -> Dict[str, Any]:
        approval, error = self._claim_approval(approval_id, manager)
        if error is not None:
            return error
        self._close_approval(approval, ApprovalStatus.DENIED, manager, reason)
        try:
            quote = self.store.get(approval.quote_id)
        except QuoteNotFoundError as exc:
            return self._error_response(approval.quote_id, None, exc.to_detail())
        self._emit(EventType.APPROVAL_DENIED, quote, manager, {
            "approvalId": approval.approval_id,
            "reason": reason,
        })
        return {
            "ok": True,
            "quoteId": approval.quote_id,
            "status": quote.status.value,
            "approvalId": approval.approval_id,
            "approvalStatus": approval.status,
        }

    def _claim_approval(self, approval_id: str, manager: Actor):
        """Check a decision may be made and move the approval to IN_PROGRESS.

        Check and claim happen under one lock, so of two managers deciding
        the same request only one gets past here.
        """
        with self._lock:
            approval = self._approvals.get(approval_id)
            if approval is None:
                return None, self._error_response(
                    "", None, ErrorDetail.of(ErrorType.NOT_FOUND, f"Approval '{approval_id}' not found"),
                )
            if not has_manager_authority(manager.role):
                return None, self._error_response(
                    approval.quote_id, None,
                    ErrorDetail.of(
                        ErrorType.APPROVAL_REQUIRED,
                        f"Role {manager.role.value} cannot approve quote status changes",
                    ),
                )
            if not approval.is_pending:
                return None, self._error_response(
                    approval.quote_id, None,
                    ErrorDetail.of(
                        ErrorType.INVALID_REQUEST,
                        f"Approval '{approval_id}' is already {approval.status}",
                    ),
                )
            approval.status = ApprovalStatus.IN_PROGRESS
            return approval, None

    def _release_approval(self, approval: ApprovalRequest) -> None:
        # A claim that ended without a decision goes back to the queue.
        with self._lock:
            if approval.status == ApprovalStatus.IN_PROGRESS:
                approval.status = ApprovalStatus.PENDING

    def _close_approval(
        self,
        approval: ApprovalRequest,
        status: str,
        manager: Optional[Actor],
        reason: Optional[str],
    ) -> None:
        with self._lock:
            if approval.status not in (ApprovalStatus.PENDING, ApprovalStatus.IN_PROGRESS):
                logger.warning(
                    "Approval %s is already %s; not marking it %s",
                    approval.approval_id, approval.status, status,
                )
                return
            approval.status = status
            approval.decided_by = manager.id if manager else None
            approval.decided_at = self.clock.now()
            approval.decision_reason = reason
        if status == ApprovalStatus.APPROVED:
            logger.info("Approval %s granted by %s", approval.approval_id, approval.decided_by)
            try:
                quote = self.store.get(approval.quote_id)
            except QuoteNotFoundError:
                return
            self._emit(EventType.APPROVAL_GRANTED, quote, manager or Actor.system(), {
                "approvalId": approval.approval_id,
            })

    # ------------------------------------------------------------------
    # Activity and expiration bookkeeping
    # ------------------------------------------------------------------

    def record_activity(self, quote_id: str, actor: Actor) -> Quote:
        """Bump ``last_activity_at`` and re-arm the expiration warning.

        Raises:
            QuoteNotFoundError: For unknown ids
            ConcurrencyConflictError: If conflicts persist past the retry limit
        """
        def touch(quote: Quote) -> None:
            now = self.clock.now()
            quote.last_activity_at = now
            quote.updated_at = now
            quote.expire_notification_sent = False
            quote.expire_notification_sent_at = None

        saved = self._update(quote_id, touch)
        self._emit(EventType.ACTIVITY_RECORDED, saved, actor)
        return saved

    def mark_expiration_warning_sent(self, quote_id: str) -> Dict[str, Any]:
        """Record that the expiration warning is going out (no status change).

        Like expire_if_due, the warning condition is re-evaluated on every
        fresh read. A quote that was touched, signed or cancelled since the
        sweep listed it yields ``{"ok": True, "skipped": True}`` and is left
        unchanged.
        """
        def still_warnable(quote: Quote) -> bool:
            decision = evaluate_expiration(quote, self.clock.now(), self.settings.warning_lead_days)
            return decision.should_warn and not decision.should_expire

        def mark(quote: Quote) -> None:
            quote.expire_notification_sent = True
            quote.expire_notification_sent_at = self.clock.now()

        try:
            saved = self._update(quote_id, mark, guard=still_warnable)
        except QuoteNotFoundError as exc:
            return self._error_response(quote_id, None, exc.to_detail())
        if saved is None:
            current = self.store.get(quote_id)
            logger.debug("Expiration warning for quote %s skipped: no longer due", quote_id)
            return {"ok": True, "skipped": True, "quoteId": quote_id, "status": current.status.value}

        days_left = days_until_expiration(saved, self.clock.now())
        self._emit(EventType.EXPIRATION_WARNING, saved, Actor.system(), {
            "daysUntilExpiration": days_left,
        })
        return {
            "ok": True,
            "quoteId": quote_id,
            "status": saved.status.value,
            "daysUntilExpiration": days_left,
        }

    def clear_expiration_warning(self, quote_id: str) -> Quote:
        """Re-arm the warning for a quote whose notification could not be delivered."""
        def clear(quote: Quote) -> None:
            quote.expire_notification_sent = False
            quote.expire_notification_sent_at = None

        return self._update(quote_id, clear)

    def _update(
        self,
        quote_id: str,
        mutate: Callable[[Quote], None],
        guard: Optional[Callable[[Quote], bool]] = None,
    ) -> Optional[Quote]:
        conflicts = 0
        while True:
            quote = self.store.get(quote_id)
            if guard is not None and not guard(quote):
                return None
            updated = quote.copy()
            mutate(updated)
            try:
                return self._save_with_retry(updated, expected_version=quote.version)
            except ConcurrencyConflictError:
                conflicts += 1
                if conflicts > self.settings.max_conflict_retries:
                    raise

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_quote_status(self, quote_id: str) -> Dict[str, Any]:
        """Status, next valid statuses, expiration and completeness for a quote."""
        try:
            quote = self.store.get(quote_id)
        except QuoteNotFoundError as exc:
            return self._error_response(quote_id, None, exc.to_detail())

        now = self.clock.now()
        expirable = quote.status in EXPIRABLE_STATUSES
        expires = expiration_date(quote) if expirable else None
        info = STATUS_INFO[quote.status]

        return {
            "ok": True,
            "quoteId": quote.id,
            "status": quote.status.value,
            "previousStatus": quote.previous_status.value if quote.previous_status else None,
            "statusChangedAt": quote.status_changed_at.isoformat() if quote.status_changed_at else None,
            "statusChangedBy": quote.status_changed_by,
            "statusReason": quote.status_reason,
            "lastActivityAt": quote.last_activity_at.isoformat() if quote.last_activity_at else None,
            "nextValidStates": [s.value for s in self.state_machine.next_valid_states(quote)],
            "expirationDate": expires.isoformat() if expires else None,
            "daysUntilExpiration": days_until_expiration(quote, now) if expirable else None,
            "completeness": derive_completeness(quote).to_dict(),
            "completionFlags": {
                "building": quote.building_completed,
                "presentation": quote.presentation_completed,
                "examSignature": quote.exam_signature_completed,
                "materialsSignature": quote.materials_signature_completed,
                "fulfillment": quote.fulfillment_completed,
            },
            "stateInfo": dict(
                info.to_dict(),
                isTerminal=is_terminal(quote.status),
                canEdit=can_edit(quote.status),
                requiresCustomerAction=requires_customer_action(quote.status),
            ),
            "recommendedActions": recommended_actions(quote),
        }

    def get_events(self, quote_id: str) -> List[QuoteEvent]:
        with self._lock:
            return list(self._events.get(quote_id, []))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _emit(
        self,
        event_type: EventType,
        quote: Quote,
        actor: Actor,
        payload: Optional[Dict[str, Any]] = None,
    ) -> QuoteEvent:
        event = QuoteEvent(
            event_id=new_event_id(),
            type=event_type,
            quote_id=quote.id,
            ts=self.clock.now(),
            actor=actor,
            status=quote.status,
            payload=payload,
        )
        with self._lock:
            self._events.setdefault(quote.id, []).append(event)
        self.emitter.emit(event)
        return event

    @staticmethod
    def _error_response(
        quote_id: str,
        status: Optional[QuoteStatus],
        detail: ErrorDetail,
    ) -> Dict[str, Any]:
        return QuoteError(quote_id=quote_id, status=status, error=detail).to_dict()


__all__ = [
    "AUTO_EXPIRE_REASON",
    "ApprovalStatus",
    "ApprovalRequest",
    "QuoteLifecycleService",
]
