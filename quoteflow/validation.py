"""Transition validator for quote status changes.

The validator answers one question: given a quote snapshot, may it move from
one status to another as far as its *data* is concerned? Role checks live in
quoteflow.authorization; the orchestrator in quoteflow.state_machine
combines both.

Rules by target status:
- DRAFT: at least one sellable line (only when moving forward; saving a
  presented quote back as a draft is not re-validated)
- PRESENTED: customer first and last name, and a total above zero
- SIGNED: exam and materials signatures; patient-owned frames additionally
  need inspection and waiver
- COMPLETED: reached from SIGNED with fulfillment done
- BUILDING, CANCELLED, EXPIRED: no data gate

All unmet requirements are reported together, each with a NextAction, so a
single rejection tells the associate everything that is missing.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from quoteflow.completeness import derive_completeness
from quoteflow.errors import NextAction
from quoteflow.quote import Quote
from quoteflow.rules import is_backward, is_reachable
from quoteflow.types import NextActionType, QuoteStatus, Requirement


REQUIREMENT_MESSAGES: Dict[Requirement, Tuple[str, NextActionType]] = {
    Requirement.HAS_ITEMS: (
        "Quote must contain at least one exam service, eyeglasses or contacts item",
        NextActionType.ADD_ITEMS,
    ),
    Requirement.CUSTOMER_NAME: (
        "Customer first and last name are required",
        NextActionType.COLLECT_CUSTOMER_INFO,
    ),
    Requirement.POSITIVE_TOTAL: (
        "Quote total must be greater than zero",
        NextActionType.PRICE_QUOTE,
    ),
    Requirement.EXAM_SIGNATURE: (
        "Missing exam signature",
        NextActionType.CAPTURE_EXAM_SIGNATURE,
    ),
    Requirement.MATERIALS_SIGNATURE: (
        "Missing materials signature",
        NextActionType.CAPTURE_MATERIALS_SIGNATURE,
    ),
    Requirement.POF_INSPECTION: (
        "Patient-owned frame inspection must be completed",
        NextActionType.INSPECT_PATIENT_FRAME,
    ),
    Requirement.POF_WAIVER: (
        "Patient-owned frame waiver must be signed",
        NextActionType.SIGN_POF_WAIVER,
    ),
    Requirement.SIGNED_BEFORE_COMPLETION: (
        "Quote must be signed before completing",
        NextActionType.COMPLETE_FULFILLMENT,
    ),
    Requirement.FULFILLMENT: (
        "All items must be fulfilled before completing",
        NextActionType.COMPLETE_FULFILLMENT,
    ),
}


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one transition against quote data.

    Attributes:
        is_valid: Whether the data permits the transition
        reason: Why it does not (None when valid)
        unmet: Requirements that blocked the transition
        next_actions: One suggested action per unmet requirement
        warnings: Non-blocking observations for the associate
        illegal: True when the move is not in the transition table at all
    """
    is_valid: bool
    reason: Optional[str] = None
    unmet: List[Requirement] = field(default_factory=list)
    next_actions: List[NextAction] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    illegal: bool = False

    def summary(self) -> str:
        if self.is_valid:
            if self.warnings:
                return f"Valid with {len(self.warnings)} warnings"
            return "Valid transition"
        if self.illegal:
            return "Blocked: illegal transition"
        return f"Blocked: {len(self.unmet)} unmet requirements"


def _unmet_requirements(quote: Quote, current: QuoteStatus, target: QuoteStatus) -> List[Requirement]:
    flags = derive_completeness(quote)
    unmet: List[Requirement] = []

    if target == QuoteStatus.DRAFT:
        if not is_backward(current, target) and not flags.has_items:
            unmet.append(Requirement.HAS_ITEMS)

    elif target == QuoteStatus.PRESENTED:
        if not flags.has_customer_info:
            unmet.append(Requirement.CUSTOMER_NAME)
        if not flags.has_positive_total:
            unmet.append(Requirement.POSITIVE_TOTAL)

    elif target == QuoteStatus.SIGNED:
        if not flags.exam_signed:
            unmet.append(Requirement.EXAM_SIGNATURE)
        if not flags.materials_signed:
            unmet.append(Requirement.MATERIALS_SIGNATURE)
        # Patient-owned frame gating adds to the signature gating
        if quote.is_patient_owned_frame:
            if not quote.pof_inspection_completed:
                unmet.append(Requirement.POF_INSPECTION)
            if not quote.pof_waiver_signed:
                unmet.append(Requirement.POF_WAIVER)

    elif target == QuoteStatus.COMPLETED:
        if current != QuoteStatus.SIGNED:
            unmet.append(Requirement.SIGNED_BEFORE_COMPLETION)
        if not flags.is_fulfilled:
            unmet.append(Requirement.FULFILLMENT)

    return unmet


def _warnings(quote: Quote, current: QuoteStatus, target: QuoteStatus) -> List[str]:
    warnings: List[str] = []
    if target == QuoteStatus.DRAFT and not derive_completeness(quote).has_customer_info:
        warnings.append("Customer information is incomplete")
    if target == QuoteStatus.SIGNED and quote.presented_at is None:
        warnings.append("Quote was not formally presented to customer")
    return warnings


def validate_transition(quote: Quote, current: QuoteStatus, target: QuoteStatus) -> ValidationResult:
    """Validate a transition against the quote's data.

    Args:
        quote: Snapshot of the quote
        current: Status the quote is moving from
        target: Status requested

    Returns:
        ValidationResult; identical inputs always give identical results

    Examples:
        >>> q = Quote(id="q_1", status=QuoteStatus.PRESENTED, materials_signature_completed=True)
        >>> result = validate_transition(q, QuoteStatus.PRESENTED, QuoteStatus.SIGNED)
        >>> result.is_valid, result.reason
        (False, 'Missing exam signature')
    """
    if not is_reachable(current, target):
        return ValidationResult(
            is_valid=False,
            reason=f"illegal transition from {current.value} to {target.value}",
            illegal=True,
        )

    unmet = _unmet_requirements(quote, current, target)
    warnings = _warnings(quote, current, target)
    if not unmet:
        return ValidationResult(is_valid=True, warnings=warnings)

    messages = [REQUIREMENT_MESSAGES[r][0] for r in unmet]
    actions = [
        NextAction(action=REQUIREMENT_MESSAGES[r][1], requirement=r, hint=REQUIREMENT_MESSAGES[r][0])
        for r in unmet
    ]
    return ValidationResult(
        is_valid=False,
        reason="; ".join(messages),
        unmet=unmet,
        next_actions=actions,
        warnings=warnings,
    )


def recommended_actions(quote: Quote) -> List[str]:
    """Guidance for the associate based on the quote's status and data."""
    flags = derive_completeness(quote)
    status = quote.status
    actions: List[str] = []

    if status == QuoteStatus.BUILDING:
        if not flags.has_items:
            actions.append("Add services or products to quote")
        if not flags.has_customer_info:
            actions.append("Complete customer information")
        if flags.has_items and flags.has_customer_info:
            actions.append("Save as draft or present to customer")
    elif status == QuoteStatus.DRAFT:
        actions.append("Present quote to customer")
        if not flags.has_customer_info:
            actions.append("Complete customer information before presenting")
    elif status == QuoteStatus.PRESENTED:
        actions.append("Collect required signatures")
        if not flags.exam_signed:
            actions.append("Complete exam signature")
        if not flags.materials_signed:
            actions.append("Complete materials signature")
        if not flags.is_pof_ready:
            actions.append("Complete patient-owned frame inspection and waiver")
    elif status == QuoteStatus.SIGNED:
        actions.append("Fulfill quote items")
        if not flags.is_fulfilled:
            actions.append("Process order fulfillment")
    elif status == QuoteStatus.COMPLETED:
        actions.append("Quote is fully completed")
    elif status == QuoteStatus.EXPIRED:
        actions.append("Reactivate quote to continue")
    elif status == QuoteStatus.CANCELLED:
        actions.append("Quote is cancelled - no further action needed")

    return actions


__all__ = [
    "REQUIREMENT_MESSAGES",
    "ValidationResult",
    "validate_transition",
    "recommended_actions",
]
