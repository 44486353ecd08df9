"""Completeness projection for quotes.

The flags here are owned by other workflows (quote builder, signature
capture, fulfillment, frame inspection). The engine only reads them, and
this module is the one place that turns raw quote fields into the derived
answers the validator and the UI share.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict

from quoteflow.quote import Quote


@dataclass(frozen=True)
class Completeness:
    """Derived completion flags for one quote snapshot.

    Attributes:
        has_items: At least one exam service, eyeglasses or contacts line
        has_customer_info: Patient first and last name are both present
        has_positive_total: Quote total is greater than zero
        exam_signed: Exam signature captured
        materials_signed: Materials signature captured
        is_signed: Both signatures captured
        is_fulfilled: Fulfillment done
        is_pof_ready: Not a patient-owned frame, or inspection and waiver both done
    """
    has_items: bool
    has_customer_info: bool
    has_positive_total: bool
    exam_signed: bool
    materials_signed: bool
    is_signed: bool
    is_fulfilled: bool
    is_pof_ready: bool

    def to_dict(self) -> Dict[str, bool]:
        return {
            "hasItems": self.has_items,
            "hasCustomerInfo": self.has_customer_info,
            "hasPositiveTotal": self.has_positive_total,
            "examSigned": self.exam_signed,
            "materialsSigned": self.materials_signed,
            "isSigned": self.is_signed,
            "isFulfilled": self.is_fulfilled,
            "isPofReady": self.is_pof_ready,
        }


def _has_text(value) -> bool:
    return bool(value and value.strip())


def derive_completeness(quote: Quote) -> Completeness:
    """Project a quote's fields onto its completion flags."""
    patient = quote.patient
    has_customer_info = patient is not None and _has_text(patient.first_name) and _has_text(patient.last_name)

    exam_signed = bool(quote.exam_signature_completed)
    materials_signed = bool(quote.materials_signature_completed)
    pof_ready = (
        not quote.is_patient_owned_frame
        or (quote.pof_inspection_completed and quote.pof_waiver_signed)
    )

    return Completeness(
        has_items=bool(quote.exam_services or quote.eyeglasses or quote.contacts),
        has_customer_info=has_customer_info,
        has_positive_total=quote.total > Decimal("0"),
        exam_signed=exam_signed,
        materials_signed=materials_signed,
        is_signed=exam_signed and materials_signed,
        is_fulfilled=bool(quote.fulfillment_completed),
        is_pof_ready=bool(pof_ready),
    )


__all__ = [
    "Completeness",
    "derive_completeness",
]
