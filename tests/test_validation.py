"""Unit tests for the transition validator.

Tests cover:
- Illegal moves reported before any data check
- Per-target data gates (DRAFT, PRESENTED, SIGNED, COMPLETED)
- Additive patient-owned frame gating
- Next actions and non-blocking warnings
- Recommended actions per status
"""

from datetime import datetime, timezone
from decimal import Decimal

from quoteflow.quote import LineItem, PatientInfo, Quote
from quoteflow.types import NextActionType, QuoteStatus, Requirement
from quoteflow.validation import recommended_actions, validate_transition


def _signed_ready(**overrides) -> Quote:
    fields = dict(
        id="q_sig",
        status=QuoteStatus.PRESENTED,
        exam_services=[LineItem(name="Eye Exam", price=Decimal("150"))],
        patient=PatientInfo(first_name="Ada", last_name="Lovelace"),
        total=Decimal("150"),
        exam_signature_completed=True,
        materials_signature_completed=True,
        presented_at=datetime(2024, 3, 1, tzinfo=timezone.utc),
    )
    fields.update(overrides)
    return Quote(**fields)


class TestIllegalMoves:
    """Test moves missing from the transition table."""

    def test_terminal_status_is_illegal(self):
        """COMPLETED -> CANCELLED is rejected as illegal."""
        quote = Quote(id="q_1", status=QuoteStatus.COMPLETED)
        result = validate_transition(quote, QuoteStatus.COMPLETED, QuoteStatus.CANCELLED)
        assert not result.is_valid
        assert result.illegal
        assert result.reason.startswith("illegal transition")
        assert result.unmet == []

    def test_presented_to_completed_is_illegal(self):
        """Completing straight from PRESENTED is structurally illegal."""
        quote = Quote(id="q_1", status=QuoteStatus.PRESENTED, fulfillment_completed=True)
        result = validate_transition(quote, QuoteStatus.PRESENTED, QuoteStatus.COMPLETED)
        assert result.illegal

    def test_summary_for_illegal(self):
        """summary() distinguishes illegal moves from unmet requirements."""
        quote = Quote(id="q_1", status=QuoteStatus.CANCELLED)
        result = validate_transition(quote, QuoteStatus.CANCELLED, QuoteStatus.DRAFT)
        assert result.summary() == "Blocked: illegal transition"


class TestDraftGate:
    """Test the DRAFT items requirement."""

    def test_building_to_draft_without_items(self):
        """A quote without lines cannot become a draft."""
        quote = Quote(id="q_1")
        result = validate_transition(quote, QuoteStatus.BUILDING, QuoteStatus.DRAFT)
        assert not result.is_valid
        assert result.unmet == [Requirement.HAS_ITEMS]
        assert result.next_actions[0].action == NextActionType.ADD_ITEMS

    def test_building_to_draft_with_items(self):
        """A quote with a line item can become a draft, with a warning about the customer."""
        quote = Quote(id="q_1", eyeglasses=[LineItem(name="Frames")])
        result = validate_transition(quote, QuoteStatus.BUILDING, QuoteStatus.DRAFT)
        assert result.is_valid
        assert result.warnings == ["Customer information is incomplete"]
        assert result.summary() == "Valid with 1 warnings"

    def test_backward_move_to_draft_is_not_gated(self):
        """Saving a presented quote back as a draft skips the items check."""
        quote = Quote(id="q_1", status=QuoteStatus.PRESENTED)
        result = validate_transition(quote, QuoteStatus.PRESENTED, QuoteStatus.DRAFT)
        assert result.is_valid

    def test_revival_to_draft_needs_items(self):
        """EXPIRED -> DRAFT is a forward move and needs items."""
        quote = Quote(id="q_1", status=QuoteStatus.EXPIRED)
        result = validate_transition(quote, QuoteStatus.EXPIRED, QuoteStatus.DRAFT)
        assert result.unmet == [Requirement.HAS_ITEMS]


class TestPresentedGate:
    """Test the PRESENTED customer and total requirements."""

    def test_reports_every_unmet_requirement(self):
        """Missing name and zero total are both reported."""
        quote = Quote(id="q_1", status=QuoteStatus.DRAFT, exam_services=[LineItem(name="Exam")])
        result = validate_transition(quote, QuoteStatus.DRAFT, QuoteStatus.PRESENTED)
        assert result.unmet == [Requirement.CUSTOMER_NAME, Requirement.POSITIVE_TOTAL]
        assert result.reason == (
            "Customer first and last name are required; Quote total must be greater than zero"
        )
        assert [a.requirement for a in result.next_actions] == result.unmet

    def test_complete_quote_can_be_presented(self):
        """Name and positive total are enough to present."""
        quote = Quote(
            id="q_1",
            status=QuoteStatus.DRAFT,
            patient=PatientInfo(first_name="Ada", last_name="Lovelace"),
            total=Decimal("99.50"),
        )
        assert validate_transition(quote, QuoteStatus.DRAFT, QuoteStatus.PRESENTED).is_valid


class TestSignedGate:
    """Test signature and patient-owned frame requirements."""

    def test_missing_exam_signature_is_named(self):
        """The rejection reason names the exam signature."""
        quote = _signed_ready(exam_signature_completed=False)
        result = validate_transition(quote, QuoteStatus.PRESENTED, QuoteStatus.SIGNED)
        assert not result.is_valid
        assert result.reason == "Missing exam signature"
        assert "exam signature" in result.reason.lower()
        assert result.unmet == [Requirement.EXAM_SIGNATURE]

    def test_missing_both_signatures(self):
        """Both signatures are reported when neither was captured."""
        quote = _signed_ready(exam_signature_completed=False, materials_signature_completed=False)
        result = validate_transition(quote, QuoteStatus.PRESENTED, QuoteStatus.SIGNED)
        assert result.unmet == [Requirement.EXAM_SIGNATURE, Requirement.MATERIALS_SIGNATURE]

    def test_non_pof_quote_signs(self):
        """A regular quote with both signatures passes."""
        result = validate_transition(_signed_ready(), QuoteStatus.PRESENTED, QuoteStatus.SIGNED)
        assert result.is_valid
        assert result.warnings == []

    def test_pof_without_waiver_is_rejected(self):
        """Patient-owned frames add the waiver on top of the signatures."""
        quote = _signed_ready(is_patient_owned_frame=True, pof_inspection_completed=True)
        result = validate_transition(quote, QuoteStatus.PRESENTED, QuoteStatus.SIGNED)
        assert result.unmet == [Requirement.POF_WAIVER]
        assert result.next_actions[0].action == NextActionType.SIGN_POF_WAIVER

    def test_pof_gating_adds_to_signature_gating(self):
        """Missing signatures and POF steps are reported together."""
        quote = _signed_ready(materials_signature_completed=False, is_patient_owned_frame=True)
        result = validate_transition(quote, QuoteStatus.PRESENTED, QuoteStatus.SIGNED)
        assert result.unmet == [
            Requirement.MATERIALS_SIGNATURE,
            Requirement.POF_INSPECTION,
            Requirement.POF_WAIVER,
        ]

    def test_warns_when_never_presented(self):
        """Signing a quote without a presented_at timestamp produces a warning."""
        quote = _signed_ready(presented_at=None)
        result = validate_transition(quote, QuoteStatus.PRESENTED, QuoteStatus.SIGNED)
        assert result.is_valid
        assert result.warnings == ["Quote was not formally presented to customer"]


class TestCompletedAndUngatedTargets:
    """Test COMPLETED and the targets without data gates."""

    def test_completion_requires_fulfillment(self):
        """SIGNED -> COMPLETED needs fulfillment done."""
        quote = Quote(id="q_1", status=QuoteStatus.SIGNED)
        result = validate_transition(quote, QuoteStatus.SIGNED, QuoteStatus.COMPLETED)
        assert result.unmet == [Requirement.FULFILLMENT]

        quote.fulfillment_completed = True
        assert validate_transition(quote, QuoteStatus.SIGNED, QuoteStatus.COMPLETED).is_valid

    def test_cancel_and_expire_are_ungated(self):
        """CANCELLED, EXPIRED and BUILDING targets have no data requirements."""
        quote = Quote(id="q_1", status=QuoteStatus.DRAFT)
        for target in (QuoteStatus.CANCELLED, QuoteStatus.EXPIRED, QuoteStatus.BUILDING):
            assert validate_transition(quote, QuoteStatus.DRAFT, target).is_valid

    def test_validation_is_deterministic(self):
        """Identical inputs give identical results."""
        quote = _signed_ready(exam_signature_completed=False)
        first = validate_transition(quote, QuoteStatus.PRESENTED, QuoteStatus.SIGNED)
        second = validate_transition(quote, QuoteStatus.PRESENTED, QuoteStatus.SIGNED)
        assert first == second


class TestRecommendedActions:
    """Test per-status guidance."""

    def test_building_quote_without_anything(self):
        """An empty quote should prompt for items and customer info."""
        actions = recommended_actions(Quote(id="q_1"))
        assert actions == ["Add services or products to quote", "Complete customer information"]

    def test_presented_quote_lists_missing_signatures(self):
        """A presented quote lists each missing signature."""
        quote = _signed_ready(exam_signature_completed=False)
        actions = recommended_actions(quote)
        assert "Collect required signatures" in actions
        assert "Complete exam signature" in actions
        assert "Complete materials signature" not in actions

    def test_expired_quote(self):
        """Expired quotes should suggest reactivation."""
        assert recommended_actions(Quote(id="q_1", status=QuoteStatus.EXPIRED)) == [
            "Reactivate quote to continue"
        ]
