"""Unit tests for the quote state machine orchestrator.

Tests cover:
- Check order: no-op, transition table, preconditions, approval
- Audit fields and write-once milestones
- Approval outcomes for signed cancellation and high-value signing
- Helper methods (apply_transition, transition_or_raise, next_valid_states)
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from quoteflow.errors import IllegalTransitionError, PreconditionFailedError
from quoteflow.ports import FixedClock
from quoteflow.quote import LineItem, PatientInfo, Quote
from quoteflow.rules import reachable_from
from quoteflow.state_machine import (
    NO_OP_REASON,
    Applied,
    PendingApproval,
    QuoteStateMachine,
    Rejected,
)
from quoteflow.types import Actor, ErrorType, NextActionType, QuoteStatus, Requirement, UserRole


NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

ASSOCIATE = Actor(id="user_1", role=UserRole.SALES_ASSOCIATE)
MANAGER = Actor(id="mgr_1", role=UserRole.MANAGER)


def _presented(total="150", **overrides) -> Quote:
    fields = dict(
        id="q_100",
        status=QuoteStatus.PRESENTED,
        exam_services=[LineItem(name="Eye Exam", price=Decimal("150"))],
        patient=PatientInfo(first_name="Ada", last_name="Lovelace"),
        total=Decimal(total),
        exam_signature_completed=True,
        materials_signature_completed=True,
        presented_at=NOW,
    )
    fields.update(overrides)
    return Quote(**fields)


class TestRejections:
    """Test rejected transitions."""

    def test_same_status_is_rejected(self):
        """Requesting the current status is a no-op and always rejected."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        for status in QuoteStatus:
            result = sm.request_transition(Quote(id="q_1", status=status), status, ASSOCIATE)
            assert isinstance(result, Rejected)
            assert result.error_type == ErrorType.ILLEGAL_TRANSITION
            assert result.reason == NO_OP_REASON
            assert result.outcome == "rejected"

    def test_unreachable_pairs_are_illegal(self):
        """Every pair missing from the table is rejected as illegal_transition."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        for current in QuoteStatus:
            for target in QuoteStatus:
                if target == current or target in reachable_from(current):
                    continue
                result = sm.request_transition(Quote(id="q_1", status=current), target, MANAGER)
                assert isinstance(result, Rejected), (current, target)
                assert result.error_type == ErrorType.ILLEGAL_TRANSITION

    def test_terminal_statuses_reject_everything(self):
        """COMPLETED and CANCELLED never move."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        for status in (QuoteStatus.COMPLETED, QuoteStatus.CANCELLED):
            for target in QuoteStatus:
                result = sm.request_transition(Quote(id="q_1", status=status), target, MANAGER)
                assert isinstance(result, Rejected)
                assert result.error_type == ErrorType.ILLEGAL_TRANSITION

    def test_terminal_message_mentions_terminal(self):
        """Illegal moves out of a terminal status say so."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        result = sm.request_transition(
            Quote(id="q_1", status=QuoteStatus.COMPLETED), QuoteStatus.CANCELLED, MANAGER,
        )
        assert "terminal" in result.reason

    def test_expired_to_presented_is_illegal(self):
        """Revived quotes must pass through DRAFT or BUILDING."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        result = sm.request_transition(
            Quote(id="q_1", status=QuoteStatus.EXPIRED), QuoteStatus.PRESENTED, ASSOCIATE,
        )
        assert result.error_type == ErrorType.ILLEGAL_TRANSITION

    def test_missing_exam_signature(self):
        """PRESENTED -> SIGNED without the exam signature names the exam signature."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        result = sm.request_transition(_presented(exam_signature_completed=False), QuoteStatus.SIGNED, ASSOCIATE)
        assert isinstance(result, Rejected)
        assert result.error_type == ErrorType.PRECONDITION_FAILED
        assert "exam signature" in result.reason.lower()
        assert result.unmet == [Requirement.EXAM_SIGNATURE]
        assert result.next_actions[0].action == NextActionType.CAPTURE_EXAM_SIGNATURE

    def test_preconditions_run_before_approval(self):
        """An incomplete high-value quote is rejected, not escalated."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        quote = _presented(total="15000", materials_signature_completed=False)
        result = sm.request_transition(quote, QuoteStatus.SIGNED, ASSOCIATE)
        assert isinstance(result, Rejected)
        assert result.error_type == ErrorType.PRECONDITION_FAILED


class TestPatientOwnedFrames:
    """Test additive patient-owned frame gating."""

    def test_non_pof_quote_signs(self):
        """A complete non-POF quote with total 150 is signed."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        result = sm.request_transition(_presented(), QuoteStatus.SIGNED, ASSOCIATE)
        assert isinstance(result, Applied)
        assert result.new_status == QuoteStatus.SIGNED

    def test_pof_without_waiver_is_rejected(self):
        """The same quote with a patient-owned frame and no waiver is rejected."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        quote = _presented(is_patient_owned_frame=True, pof_inspection_completed=True)
        result = sm.request_transition(quote, QuoteStatus.SIGNED, ASSOCIATE)
        assert isinstance(result, Rejected)
        assert result.unmet == [Requirement.POF_WAIVER]


class TestApprovals:
    """Test manager approval outcomes."""

    def test_associate_cancelling_signed_quote_is_pending(self):
        """SIGNED -> CANCELLED by a sales associate waits for a manager."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        result = sm.request_transition(Quote(id="q_1", status=QuoteStatus.SIGNED), QuoteStatus.CANCELLED, ASSOCIATE)
        assert isinstance(result, PendingApproval)
        assert result.outcome == "pending_approval"
        assert result.next_actions[0].action == NextActionType.REQUEST_MANAGER_APPROVAL

    def test_manager_cancelling_signed_quote_is_applied(self):
        """SIGNED -> CANCELLED by a manager goes through."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        result = sm.request_transition(Quote(id="q_1", status=QuoteStatus.SIGNED), QuoteStatus.CANCELLED, MANAGER)
        assert isinstance(result, Applied)
        assert result.new_status == QuoteStatus.CANCELLED
        assert result.approved_by is None

    def test_high_value_signing_is_pending(self):
        """Total 15000 PRESENTED -> SIGNED by a sales associate needs approval."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        result = sm.request_transition(_presented(total="15000"), QuoteStatus.SIGNED, ASSOCIATE)
        assert isinstance(result, PendingApproval)

    def test_regular_signing_is_applied(self):
        """Total 150 PRESENTED -> SIGNED by a sales associate is applied."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        result = sm.request_transition(_presented(total="150"), QuoteStatus.SIGNED, ASSOCIATE)
        assert isinstance(result, Applied)

    def test_approved_by_manager_is_applied(self):
        """An escalated request carrying a manager approval is applied and records the approver."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        result = sm.request_transition(
            _presented(total="15000"), QuoteStatus.SIGNED, ASSOCIATE, approved_by=MANAGER,
        )
        assert isinstance(result, Applied)
        assert result.approved_by == "mgr_1"
        assert result.audit.status_changed_by == "user_1"

    def test_approval_from_non_manager_is_ignored(self):
        """A sales associate cannot approve another associate's request."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        result = sm.request_transition(
            _presented(total="15000"), QuoteStatus.SIGNED, ASSOCIATE,
            approved_by=Actor(id="user_2", role=UserRole.SALES_ASSOCIATE),
        )
        assert isinstance(result, PendingApproval)

    def test_custom_threshold(self):
        """The orchestrator honours its configured threshold."""
        sm = QuoteStateMachine(clock=FixedClock(NOW), high_value_threshold=Decimal("100"))
        result = sm.request_transition(_presented(total="150"), QuoteStatus.SIGNED, ASSOCIATE)
        assert isinstance(result, PendingApproval)


class TestAuditFields:
    """Test the audit bundle of applied transitions."""

    def test_audit_triple(self):
        """Applied transitions record when, who and why."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        quote = Quote(id="q_1", exam_services=[LineItem(name="Exam")])
        result = sm.request_transition(quote, QuoteStatus.DRAFT, ASSOCIATE, reason="Customer will return")
        assert result.audit.status == QuoteStatus.DRAFT
        assert result.audit.previous_status == QuoteStatus.BUILDING
        assert result.audit.status_changed_at == NOW
        assert result.audit.status_changed_by == "user_1"
        assert result.audit.status_reason == "Customer will return"

    def test_default_reason(self):
        """Without a reason the default reason for the pair is recorded."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        quote = Quote(id="q_1", exam_services=[LineItem(name="Exam")])
        result = sm.request_transition(quote, QuoteStatus.DRAFT, ASSOCIATE)
        assert result.audit.status_reason == "Quote saved as draft"

    def test_first_forward_move_stamps_building_completed(self):
        """Leaving BUILDING for DRAFT stamps both building_completed_at and draft_created_at."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        quote = Quote(id="q_1", exam_services=[LineItem(name="Exam")])
        result = sm.request_transition(quote, QuoteStatus.DRAFT, ASSOCIATE)
        assert result.audit.milestones == {"draft_created_at": NOW, "building_completed_at": NOW}

    def test_cancel_from_building_does_not_stamp_building_completed(self):
        """Cancelling is not a forward move out of BUILDING."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        result = sm.request_transition(Quote(id="q_1"), QuoteStatus.CANCELLED, ASSOCIATE)
        assert result.audit.milestones == {"cancelled_at": NOW}

    def test_draft_created_at_is_write_once(self):
        """BUILDING -> DRAFT -> BUILDING -> DRAFT keeps the first draft timestamp."""
        clock = FixedClock(NOW)
        sm = QuoteStateMachine(clock=clock)
        quote = Quote(id="q_1", exam_services=[LineItem(name="Exam")])

        _, quote = sm.apply_transition(quote, QuoteStatus.DRAFT, ASSOCIATE)
        first_draft = quote.draft_created_at
        assert first_draft == NOW

        clock.advance(hours=1)
        _, quote = sm.apply_transition(quote, QuoteStatus.BUILDING, ASSOCIATE)
        clock.advance(hours=1)
        _, quote = sm.apply_transition(quote, QuoteStatus.DRAFT, ASSOCIATE)

        assert quote.status == QuoteStatus.DRAFT
        assert quote.draft_created_at == first_draft
        assert quote.building_completed_at == first_draft
        assert quote.status_changed_at == NOW.replace(hour=14)

    def test_backward_move_keeps_completeness_flags(self):
        """Moving back to DRAFT leaves signatures and milestones untouched."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        quote = _presented()
        _, updated = sm.apply_transition(quote, QuoteStatus.DRAFT, ASSOCIATE)
        assert updated.status == QuoteStatus.DRAFT
        assert updated.exam_signature_completed
        assert updated.presented_at == NOW


class TestHelpers:
    """Test convenience methods."""

    def test_apply_transition_does_not_modify_input(self):
        """apply_transition returns an updated copy and leaves the snapshot alone."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        quote = Quote(id="q_1", exam_services=[LineItem(name="Exam")])
        result, updated = sm.apply_transition(quote, QuoteStatus.DRAFT, ASSOCIATE)
        assert isinstance(result, Applied)
        assert quote.status == QuoteStatus.BUILDING
        assert updated.status == QuoteStatus.DRAFT
        assert updated.last_activity_at == NOW

    def test_apply_transition_rejected_returns_none(self):
        """Rejected transitions produce no updated quote."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        result, updated = sm.apply_transition(Quote(id="q_1"), QuoteStatus.DRAFT, ASSOCIATE)
        assert isinstance(result, Rejected)
        assert updated is None

    def test_transition_or_raise_illegal(self):
        """Illegal moves raise IllegalTransitionError."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        with pytest.raises(IllegalTransitionError) as exc_info:
            sm.transition_or_raise(Quote(id="q_1", status=QuoteStatus.EXPIRED), QuoteStatus.PRESENTED, ASSOCIATE)
        assert exc_info.value.current_status == QuoteStatus.EXPIRED
        assert exc_info.value.target_status == QuoteStatus.PRESENTED

    def test_transition_or_raise_precondition(self):
        """Unmet preconditions raise PreconditionFailedError with the requirements."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        with pytest.raises(PreconditionFailedError) as exc_info:
            sm.transition_or_raise(Quote(id="q_1"), QuoteStatus.DRAFT, ASSOCIATE)
        assert exc_info.value.unmet == [Requirement.HAS_ITEMS]
        assert exc_info.value.to_detail().type == ErrorType.PRECONDITION_FAILED

    def test_transition_or_raise_returns_pending(self):
        """Pending approvals are returned, not raised."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        result = sm.transition_or_raise(Quote(id="q_1", status=QuoteStatus.SIGNED), QuoteStatus.CANCELLED, ASSOCIATE)
        assert isinstance(result, PendingApproval)

    def test_next_valid_states(self):
        """Only reachable targets whose data gates pass are listed."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        quote = _presented(exam_signature_completed=False)
        assert sm.next_valid_states(quote) == [
            QuoteStatus.BUILDING,
            QuoteStatus.DRAFT,
            QuoteStatus.CANCELLED,
            QuoteStatus.EXPIRED,
        ]

    def test_next_valid_states_includes_approval_targets(self):
        """Targets that need approval are still listed."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        assert QuoteStatus.SIGNED in sm.next_valid_states(_presented(total="15000"))

    def test_can_transition_to(self):
        """can_transition_to combines the table and the validator."""
        sm = QuoteStateMachine(clock=FixedClock(NOW))
        quote = Quote(id="q_1", status=QuoteStatus.EXPIRED, exam_services=[LineItem(name="Exam")])
        assert sm.can_transition_to(quote, QuoteStatus.DRAFT)
        assert not sm.can_transition_to(quote, QuoteStatus.PRESENTED)
        assert not sm.can_transition_to(quote, QuoteStatus.EXPIRED)
