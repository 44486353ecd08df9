"""Typed quote record manipulated by the lifecycle engine.

A Quote carries everything the engine reads (content, completeness flags,
patient-owned-frame flags, totals) and everything it writes (status, the
audit triple, write-once milestone timestamps, expiration bookkeeping).
Absent values are always ``None``; there are no optional keys.

Records travel as camelCase dictionaries (see quoteflow.schema); use
Quote.from_dict / Quote.to_dict at that boundary.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser

from quoteflow.errors import QuoteValidationError
from quoteflow.schema import QuotePayloadValidator
from quoteflow.types import QuoteStatus


DEFAULT_AUTO_EXPIRE_DAYS = 30

# Milestone attribute stamped the first time each status is entered.
MILESTONE_FIELDS: Dict[QuoteStatus, str] = {
    QuoteStatus.DRAFT: "draft_created_at",
    QuoteStatus.PRESENTED: "presented_at",
    QuoteStatus.SIGNED: "signed_at",
    QuoteStatus.COMPLETED: "completed_at",
    QuoteStatus.CANCELLED: "cancelled_at",
    QuoteStatus.EXPIRED: "expired_at",
}

_TIMESTAMP_FIELDS = {
    "status_changed_at": "statusChangedAt",
    "building_completed_at": "buildingCompletedAt",
    "draft_created_at": "draftCreatedAt",
    "presented_at": "presentedAt",
    "signed_at": "signedAt",
    "completed_at": "completedAt",
    "cancelled_at": "cancelledAt",
    "expired_at": "expiredAt",
    "last_activity_at": "lastActivityAt",
    "expire_notification_sent_at": "expireNotificationSentAt",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
}

_FLAG_FIELDS = {
    "building_completed": "buildingCompleted",
    "presentation_completed": "presentationCompleted",
    "exam_signature_completed": "examSignatureCompleted",
    "materials_signature_completed": "materialsSignatureCompleted",
    "fulfillment_completed": "fulfillmentCompleted",
    "is_patient_owned_frame": "isPatientOwnedFrame",
    "pof_inspection_completed": "pofInspectionCompleted",
    "pof_waiver_signed": "pofWaiverSigned",
    "expire_notification_sent": "expireNotificationSent",
}

# Statuses whose entry starts a fresh expiration window.
_WINDOW_STATUSES = frozenset({QuoteStatus.DRAFT, QuoteStatus.PRESENTED})

_payload_validator = QuotePayloadValidator()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Optional[Any]) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp, assuming UTC when no offset is given."""
    if value is None or isinstance(value, datetime):
        ts = value
    else:
        ts = date_parser.isoparse(value)
    if ts is not None and ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class LineItem:
    """A sellable line on the quote (exam service, eyeglasses or contacts)."""
    name: str
    id: Optional[str] = None
    price: Decimal = Decimal("0")
    quantity: int = 1

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "price": str(self.price),
            "quantity": self.quantity,
        }
        if self.id is not None:
            result["id"] = self.id
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LineItem":
        return cls(
            name=data["name"],
            id=data.get("id"),
            price=Decimal(str(data.get("price", "0"))),
            quantity=data.get("quantity", 1),
        )


@dataclass(frozen=True)
class PatientInfo:
    """Customer details captured by the quote builder."""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "phone": self.phone,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PatientInfo":
        return cls(
            first_name=data.get("firstName"),
            last_name=data.get("lastName"),
            email=data.get("email"),
            phone=data.get("phone"),
        )


@dataclass(frozen=True)
class AuditFields:
    """Fields written together with a status change.

    Attributes:
        status: The new status
        previous_status: The status before the transition
        status_changed_at: When the transition was decided
        status_changed_by: Actor id that requested it
        status_reason: Reason recorded for the audit trail
        milestones: Write-once milestone attributes newly set by this transition
    """
    status: QuoteStatus
    previous_status: QuoteStatus
    status_changed_at: datetime
    status_changed_by: str
    status_reason: str
    milestones: Dict[str, datetime] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "status": self.status.value,
            "previousStatus": self.previous_status.value,
            "statusChangedAt": self.status_changed_at.isoformat(),
            "statusChangedBy": self.status_changed_by,
            "statusReason": self.status_reason,
            "lastActivityAt": self.status_changed_at.isoformat(),
        }
        for attr, ts in self.milestones.items():
            result[_TIMESTAMP_FIELDS[attr]] = ts.isoformat()
        return result


@dataclass
class Quote:
    """Quote record.

    Created in BUILDING. ``status`` must only change through
    QuoteStateMachine; every other writer treats it as read-only.
    """
    id: str
    status: QuoteStatus = QuoteStatus.BUILDING
    quote_number: Optional[str] = None
    location_id: Optional[str] = None
    version: int = 0

    exam_services: List[LineItem] = field(default_factory=list)
    eyeglasses: List[LineItem] = field(default_factory=list)
    contacts: List[LineItem] = field(default_factory=list)
    patient: Optional[PatientInfo] = None
    total: Decimal = Decimal("0")

    previous_status: Optional[QuoteStatus] = None
    status_changed_at: Optional[datetime] = None
    status_changed_by: Optional[str] = None
    status_reason: Optional[str] = None

    building_completed: bool = False
    presentation_completed: bool = False
    exam_signature_completed: bool = False
    materials_signature_completed: bool = False
    fulfillment_completed: bool = False

    is_patient_owned_frame: bool = False
    pof_inspection_completed: bool = False
    pof_waiver_signed: bool = False

    building_completed_at: Optional[datetime] = None
    draft_created_at: Optional[datetime] = None
    presented_at: Optional[datetime] = None
    signed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None

    auto_expire_after_days: int = DEFAULT_AUTO_EXPIRE_DAYS
    last_activity_at: Optional[datetime] = None
    expire_notification_sent: bool = False
    expire_notification_sent_at: Optional[datetime] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not isinstance(self.status, QuoteStatus):
            self.status = QuoteStatus(self.status)
        if self.previous_status is not None and not isinstance(self.previous_status, QuoteStatus):
            self.previous_status = QuoteStatus(self.previous_status)
        if not isinstance(self.total, Decimal):
            self.total = Decimal(str(self.total))
        for attr in _TIMESTAMP_FIELDS:
            setattr(self, attr, parse_timestamp(getattr(self, attr)))

    def copy(self) -> "Quote":
        """Deep copy, so snapshots never share mutable state."""
        return copy.deepcopy(self)

    def apply(self, audit: AuditFields) -> None:
        """Write a transition's status and audit fields onto this record.

        Entering DRAFT or PRESENTED opens a new inactivity window, so the
        one-time expiration warning is re-armed.
        """
        self.status = audit.status
        self.previous_status = audit.previous_status
        self.status_changed_at = audit.status_changed_at
        self.status_changed_by = audit.status_changed_by
        self.status_reason = audit.status_reason
        self.last_activity_at = audit.status_changed_at
        self.updated_at = audit.status_changed_at
        if audit.status in _WINDOW_STATUSES:
            self.expire_notification_sent = False
            self.expire_notification_sent_at = None
        for attr, ts in audit.milestones.items():
            setattr(self, attr, ts)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a camelCase dict for storage or transport."""
        result: Dict[str, Any] = {
            "id": self.id,
            "quoteNumber": self.quote_number,
            "locationId": self.location_id,
            "version": self.version,
            "status": self.status.value,
            "previousStatus": self.previous_status.value if self.previous_status else None,
            "statusChangedBy": self.status_changed_by,
            "statusReason": self.status_reason,
            "examServices": [i.to_dict() for i in self.exam_services],
            "eyeglasses": [i.to_dict() for i in self.eyeglasses],
            "contacts": [i.to_dict() for i in self.contacts],
            "patient": self.patient.to_dict() if self.patient else None,
            "total": str(self.total),
            "autoExpireAfterDays": self.auto_expire_after_days,
        }
        for attr, key in _FLAG_FIELDS.items():
            result[key] = getattr(self, attr)
        for attr, key in _TIMESTAMP_FIELDS.items():
            result[key] = _format_timestamp(getattr(self, attr))
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Quote":
        """Create a Quote from a camelCase dict.

        Raises:
            QuoteValidationError: If the payload does not match QUOTE_SCHEMA
        """
        check = _payload_validator.check(data)
        if not check.is_valid:
            raise QuoteValidationError(check.errors)

        patient = data.get("patient")
        previous = data.get("previousStatus")
        kwargs: Dict[str, Any] = {
            "id": data["id"],
            "status": QuoteStatus(data["status"]),
            "quote_number": data.get("quoteNumber"),
            "location_id": data.get("locationId"),
            "version": data.get("version", 0),
            "exam_services": [LineItem.from_dict(i) for i in data.get("examServices", [])],
            "eyeglasses": [LineItem.from_dict(i) for i in data.get("eyeglasses", [])],
            "contacts": [LineItem.from_dict(i) for i in data.get("contacts", [])],
            "patient": PatientInfo.from_dict(patient) if patient else None,
            "total": Decimal(str(data.get("total", "0"))),
            "previous_status": QuoteStatus(previous) if previous else None,
            "status_changed_by": data.get("statusChangedBy"),
            "status_reason": data.get("statusReason"),
            "auto_expire_after_days": data.get("autoExpireAfterDays", DEFAULT_AUTO_EXPIRE_DAYS),
        }
        for attr, key in _FLAG_FIELDS.items():
            kwargs[attr] = bool(data.get(key, False))
        for attr, key in _TIMESTAMP_FIELDS.items():
            kwargs[attr] = parse_timestamp(data.get(key))
        return cls(**kwargs)


__all__ = [
    "DEFAULT_AUTO_EXPIRE_DAYS",
    "MILESTONE_FIELDS",
    "LineItem",
    "PatientInfo",
    "AuditFields",
    "Quote",
    "parse_timestamp",
    "utcnow",
]
