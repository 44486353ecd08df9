"""Structured error types and exceptions for the Quoteflow lifecycle engine.

Rejected or failed status changes are reported through a single envelope
(QuoteError) holding an ErrorDetail. The detail names the unmet requirements
and suggests next actions (NextAction), so the point-of-sale screen can send
the associate straight to the missing step.

Exceptions rooted at QuoteflowError cover the same taxonomy for callers that
prefer raising over result objects. Payload problems found while reading a
quote record are reported as FieldError lists on QuoteValidationError.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from quoteflow.types import ErrorType, NextActionType, QuoteStatus, Requirement


RETRYABLE_ERROR_TYPES = frozenset({
    ErrorType.CONCURRENCY_CONFLICT,
    ErrorType.PERSISTENCE_FAILURE,
})


@dataclass(frozen=True)
class FieldError:
    """Per-field error found while reading a quote payload.

    Attributes:
        path: Dot-notation field path (e.g., "patient.firstName")
        code: Short error code ("required", "invalid_type", ...)
        message: Human-readable error description
        expected: Optional - what was expected
        received: Optional - what was actually received
    """
    path: str
    code: str
    message: str
    expected: Optional[Any] = None
    received: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "path": self.path,
            "code": self.code,
            "message": self.message,
        }
        if self.expected is not None:
            result["expected"] = self.expected
        if self.received is not None:
            result["received"] = self.received
        return result


@dataclass(frozen=True)
class NextAction:
    """Suggested action for resolving a rejected transition.

    Attributes:
        action: Type of action to take
        requirement: Optional - the unmet requirement this action resolves
        hint: Optional - guidance text for the associate

    Examples:
        >>> action = NextAction(
        ...     action=NextActionType.CAPTURE_EXAM_SIGNATURE,
        ...     requirement=Requirement.EXAM_SIGNATURE,
        ...     hint="Capture the patient's exam signature"
        ... )
        >>> action.to_dict()["action"]
        'capture_exam_signature'
    """
    action: NextActionType
    requirement: Optional[Requirement] = None
    hint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {"action": self.action.value}
        if self.requirement is not None:
            result["requirement"] = self.requirement.value
        if self.hint is not None:
            result["hint"] = self.hint
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NextAction":
        """Create NextAction from dict."""
        requirement = data.get("requirement")
        return cls(
            action=NextActionType(data["action"]),
            requirement=Requirement(requirement) if requirement is not None else None,
            hint=data.get("hint"),
        )


@dataclass(frozen=True)
class ErrorDetail:
    """Detailed error information within a QuoteError.

    Attributes:
        type: Category of error
        retryable: Whether the caller may retry the whole decision
        message: Optional human-readable summary
        unmet: Optional list of requirements that blocked the transition
        next_actions: Optional list of suggested actions to resolve the error
        retry_after_ms: Optional suggested retry delay in milliseconds
    """
    type: ErrorType
    retryable: bool
    message: Optional[str] = None
    unmet: Optional[List[Requirement]] = None
    next_actions: Optional[List[NextAction]] = None
    retry_after_ms: Optional[int] = None

    @classmethod
    def of(cls, error_type: ErrorType, message: Optional[str] = None, **kwargs: Any) -> "ErrorDetail":
        """Build a detail whose retryability follows from its type."""
        return cls(
            type=error_type,
            retryable=error_type in RETRYABLE_ERROR_TYPES,
            message=message,
            **kwargs,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "type": self.type.value,
            "retryable": self.retryable,
        }
        if self.message is not None:
            result["message"] = self.message
        if self.unmet:
            result["unmet"] = [r.value for r in self.unmet]
        if self.next_actions:
            result["nextActions"] = [a.to_dict() for a in self.next_actions]
        if self.retry_after_ms is not None:
            result["retryAfterMs"] = self.retry_after_ms
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErrorDetail":
        """Create ErrorDetail from dict."""
        unmet = None
        if data.get("unmet") is not None:
            unmet = [Requirement(r) for r in data["unmet"]]

        next_actions = None
        if data.get("nextActions") is not None:
            next_actions = [NextAction.from_dict(a) for a in data["nextActions"]]

        return cls(
            type=ErrorType(data["type"]),
            retryable=data["retryable"],
            message=data.get("message"),
            unmet=unmet,
            next_actions=next_actions,
            retry_after_ms=data.get("retryAfterMs"),
        )


@dataclass(frozen=True)
class QuoteError:
    """Error envelope returned by the lifecycle service.

    Attributes:
        quote_id: ID of the quote the request targeted
        status: Status of the quote when the request was refused, if known
        error: Detailed error information

    Examples:
        >>> detail = ErrorDetail.of(ErrorType.ILLEGAL_TRANSITION, "structurally illegal transition")
        >>> err = QuoteError(quote_id="q_1", status=QuoteStatus.COMPLETED, error=detail)
        >>> err.to_dict()["error"]["retryable"]
        False
    """
    quote_id: str
    status: Optional[QuoteStatus]
    error: ErrorDetail

    @property
    def ok(self) -> bool:
        """Always returns False - this is an error response."""
        return False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "ok": False,
            "quoteId": self.quote_id,
            "status": self.status.value if self.status is not None else None,
            "error": self.error.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuoteError":
        """Create QuoteError from dict."""
        status = data.get("status")
        return cls(
            quote_id=data["quoteId"],
            status=QuoteStatus(status) if status is not None else None,
            error=ErrorDetail.from_dict(data["error"]),
        )


class QuoteflowError(Exception):
    """Base class for all engine exceptions."""

    error_type: ErrorType = ErrorType.INVALID_REQUEST

    def to_detail(self) -> ErrorDetail:
        return ErrorDetail.of(self.error_type, str(self))


class IllegalTransitionError(QuoteflowError):
    """Raised when the target status is unreachable from the current one.

    Attributes:
        current_status: The status before the attempted transition
        target_status: The status that was requested
    """

    error_type = ErrorType.ILLEGAL_TRANSITION

    def __init__(self, current_status: QuoteStatus, target_status: QuoteStatus, message: str):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(message)


class PreconditionFailedError(QuoteflowError):
    """Raised when a reachable transition is blocked by incomplete data."""

    error_type = ErrorType.PRECONDITION_FAILED

    def __init__(
        self,
        message: str,
        unmet: Optional[List[Requirement]] = None,
        next_actions: Optional[List[NextAction]] = None,
    ):
        self.unmet = list(unmet or [])
        self.next_actions = list(next_actions or [])
        super().__init__(message)

    def to_detail(self) -> ErrorDetail:
        return ErrorDetail.of(
            self.error_type,
            str(self),
            unmet=self.unmet or None,
            next_actions=self.next_actions or None,
        )


class ConcurrencyConflictError(QuoteflowError):
    """Raised by a store when a write is based on a stale quote snapshot.

    The caller should re-read the quote and redo the whole decision.
    """

    error_type = ErrorType.CONCURRENCY_CONFLICT

    def __init__(self, quote_id: str, expected_version: int, actual_version: int):
        self.quote_id = quote_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Quote '{quote_id}' was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


class PersistenceError(QuoteflowError):
    """Raised by a store when a write could not be committed."""

    error_type = ErrorType.PERSISTENCE_FAILURE


class QuoteNotFoundError(QuoteflowError):
    """Raised when no quote exists for the given id."""

    error_type = ErrorType.NOT_FOUND

    def __init__(self, quote_id: str):
        self.quote_id = quote_id
        super().__init__(f"Quote '{quote_id}' not found")


class QuoteValidationError(QuoteflowError):
    """Raised when a quote payload does not match the quote schema."""

    error_type = ErrorType.INVALID_REQUEST

    def __init__(self, errors: List[FieldError]):
        self.errors = list(errors)
        paths = ", ".join(e.path or "<root>" for e in self.errors)
        super().__init__(f"Invalid quote payload: {paths}")


__all__ = [
    "RETRYABLE_ERROR_TYPES",
    "FieldError",
    "NextAction",
    "ErrorDetail",
    "QuoteError",
    "QuoteflowError",
    "IllegalTransitionError",
    "PreconditionFailedError",
    "ConcurrencyConflictError",
    "PersistenceError",
    "QuoteNotFoundError",
    "QuoteValidationError",
]
