"""Core type definitions for the Quoteflow lifecycle engine.

This module defines the fundamental types used throughout the engine:
- QuoteStatus: Lifecycle statuses for eyewear quotes
- UserRole: Roles of the staff (or system) acting on a quote
- ErrorType: Structured error categories for rejected or failed transitions
- EventType: Audit event types for the event stream
- Requirement: Named preconditions a transition can be blocked on
- NextActionType: Suggested actions for resolving a rejection
- Actor: Identity of whoever requests a transition

These types form the contract between the point-of-sale front end and the
lifecycle engine.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class QuoteStatus(str, Enum):
    """Quote lifecycle statuses.

    Terminal statuses: completed, cancelled. Expired quotes can be revived.
    """
    BUILDING = "BUILDING"
    DRAFT = "DRAFT"
    PRESENTED = "PRESENTED"
    SIGNED = "SIGNED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class UserRole(str, Enum):
    """Roles of actors that request status changes.

    SYSTEM is used by scheduled jobs such as the expiration sweeper.
    """
    SALES_ASSOCIATE = "SALES_ASSOCIATE"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class ErrorType(str, Enum):
    """Error types for QuoteError responses.

    Only concurrency_conflict and persistence_failure are retryable.
    """
    ILLEGAL_TRANSITION = "illegal_transition"
    PRECONDITION_FAILED = "precondition_failed"
    APPROVAL_REQUIRED = "approval_required"
    CONCURRENCY_CONFLICT = "concurrency_conflict"
    PERSISTENCE_FAILURE = "persistence_failure"
    NOT_FOUND = "not_found"
    INVALID_REQUEST = "invalid_request"


class EventType(str, Enum):
    """Audit event types for the event stream."""
    QUOTE_CREATED = "quote.created"
    STATUS_CHANGED = "quote.status_changed"
    APPROVAL_REQUESTED = "quote.approval_requested"
    APPROVAL_GRANTED = "quote.approval_granted"
    APPROVAL_DENIED = "quote.approval_denied"
    EXPIRATION_WARNING = "quote.expiration_warning"
    EXPIRED = "quote.expired"
    ACTIVITY_RECORDED = "quote.activity_recorded"


class Requirement(str, Enum):
    """Preconditions checked by the transition validator.

    Each value names one piece of quote data an upstream workflow must
    supply before a transition can go through.
    """
    HAS_ITEMS = "has_items"
    CUSTOMER_NAME = "customer_name"
    POSITIVE_TOTAL = "positive_total"
    EXAM_SIGNATURE = "exam_signature"
    MATERIALS_SIGNATURE = "materials_signature"
    POF_INSPECTION = "pof_inspection"
    POF_WAIVER = "pof_waiver"
    SIGNED_BEFORE_COMPLETION = "signed_before_completion"
    FULFILLMENT = "fulfillment"


class NextActionType(str, Enum):
    """Suggested next actions for resolving a rejected transition."""
    ADD_ITEMS = "add_items"
    COLLECT_CUSTOMER_INFO = "collect_customer_info"
    PRICE_QUOTE = "price_quote"
    CAPTURE_EXAM_SIGNATURE = "capture_exam_signature"
    CAPTURE_MATERIALS_SIGNATURE = "capture_materials_signature"
    INSPECT_PATIENT_FRAME = "inspect_patient_frame"
    SIGN_POF_WAIVER = "sign_pof_waiver"
    COMPLETE_FULFILLMENT = "complete_fulfillment"
    REQUEST_MANAGER_APPROVAL = "request_manager_approval"
    RELOAD_QUOTE = "reload_quote"
    RETRY_LATER = "retry_later"


SYSTEM_ACTOR_ID = "system"


@dataclass(frozen=True)
class Actor:
    """Identity of an actor performing an operation.

    Actors are recorded on every audit event and as ``status_changed_by``.

    Attributes:
        id: Unique identifier for this actor (user id, or "system")
        role: The actor's role, consulted by the authorization gate
        name: Optional display name (e.g., "Jane Doe")

    Examples:
        >>> associate = Actor(id="user_42", role=UserRole.SALES_ASSOCIATE, name="Jane Doe")
        >>> Actor.system().role
        <UserRole.SYSTEM: 'SYSTEM'>
    """
    id: str
    role: UserRole = UserRole.SALES_ASSOCIATE
    name: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.role, str) and not isinstance(self.role, UserRole):
            object.__setattr__(self, "role", UserRole(self.role))

    @classmethod
    def system(cls) -> "Actor":
        """Identity used by scheduled jobs."""
        return cls(id=SYSTEM_ACTOR_ID, role=UserRole.SYSTEM, name="Quote Expiration Job")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "id": self.id,
            "role": self.role.value,
        }
        if self.name is not None:
            result["name"] = self.name
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Actor":
        """Create Actor from dict."""
        return cls(
            id=data["id"],
            role=UserRole(data.get("role", UserRole.SALES_ASSOCIATE.value)),
            name=data.get("name"),
        )


__all__ = [
    "QuoteStatus",
    "UserRole",
    "ErrorType",
    "EventType",
    "Requirement",
    "NextActionType",
    "SYSTEM_ACTOR_ID",
    "Actor",
]
