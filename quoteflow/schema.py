"""JSON Schema check for quote payloads.

Quote records arrive from the store or the front end as camelCase
dictionaries. Before they are turned into a typed Quote, the payload is
validated against QUOTE_SCHEMA and jsonschema errors are translated into
FieldError objects with paths, codes and readable messages.
"""

from dataclasses import dataclass
from typing import Any, Dict, List

import jsonschema
from jsonschema import Draft7Validator

from quoteflow.errors import FieldError
from quoteflow.types import QuoteStatus


_TIMESTAMP = {"type": ["string", "null"]}
_FLAG = {"type": "boolean"}

_LINE_ITEM = {
    "type": "object",
    "properties": {
        "id": {"type": "string"},
        "name": {"type": "string"},
        "price": {"type": ["number", "string"]},
        "quantity": {"type": "integer", "minimum": 1},
    },
    "required": ["name"],
}

QUOTE_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "quoteNumber": {"type": ["string", "null"]},
        "locationId": {"type": ["string", "null"]},
        "version": {"type": "integer", "minimum": 0},
        "status": {"enum": [s.value for s in QuoteStatus]},
        "previousStatus": {"enum": [s.value for s in QuoteStatus] + [None]},
        "statusChangedAt": _TIMESTAMP,
        "statusChangedBy": {"type": ["string", "null"]},
        "statusReason": {"type": ["string", "null"]},
        "examServices": {"type": "array", "items": _LINE_ITEM},
        "eyeglasses": {"type": "array", "items": _LINE_ITEM},
        "contacts": {"type": "array", "items": _LINE_ITEM},
        "patient": {
            "type": ["object", "null"],
            "properties": {
                "firstName": {"type": ["string", "null"]},
                "lastName": {"type": ["string", "null"]},
                "email": {"type": ["string", "null"]},
                "phone": {"type": ["string", "null"]},
            },
        },
        "total": {"type": ["number", "string"], "pattern": r"^-?\d+(\.\d+)?$"},
        "buildingCompleted": _FLAG,
        "presentationCompleted": _FLAG,
        "examSignatureCompleted": _FLAG,
        "materialsSignatureCompleted": _FLAG,
        "fulfillmentCompleted": _FLAG,
        "isPatientOwnedFrame": _FLAG,
        "pofInspectionCompleted": _FLAG,
        "pofWaiverSigned": _FLAG,
        "buildingCompletedAt": _TIMESTAMP,
        "draftCreatedAt": _TIMESTAMP,
        "presentedAt": _TIMESTAMP,
        "signedAt": _TIMESTAMP,
        "completedAt": _TIMESTAMP,
        "cancelledAt": _TIMESTAMP,
        "expiredAt": _TIMESTAMP,
        "autoExpireAfterDays": {"type": "integer", "minimum": 1},
        "lastActivityAt": _TIMESTAMP,
        "expireNotificationSent": _FLAG,
        "expireNotificationSentAt": _TIMESTAMP,
        "createdAt": _TIMESTAMP,
        "updatedAt": _TIMESTAMP,
    },
    "required": ["id", "status"],
}


@dataclass(frozen=True)
class SchemaCheckResult:
    """Result of checking a payload against the quote schema.

    Attributes:
        is_valid: Whether the payload passed all checks
        errors: Field-level errors (empty if valid)
    """
    is_valid: bool
    errors: List[FieldError]


class QuotePayloadValidator:
    """Validates quote payloads and reports field-level errors.

    Examples:
        >>> validator = QuotePayloadValidator()
        >>> validator.check({"id": "q_1", "status": "DRAFT"}).is_valid
        True
        >>> validator.check({"id": "q_1", "status": "LOST"}).errors[0].code
        'invalid_value'
    """

    def __init__(self, schema: Dict[str, Any] = QUOTE_SCHEMA) -> None:
        Draft7Validator.check_schema(schema)
        self.schema = schema
        self.validator = Draft7Validator(schema)

    def check(self, data: Dict[str, Any]) -> SchemaCheckResult:
        errors = sorted(self.validator.iter_errors(data), key=lambda e: [str(p) for p in e.path])
        if not errors:
            return SchemaCheckResult(is_valid=True, errors=[])
        return SchemaCheckResult(
            is_valid=False,
            errors=[self._translate_error(error) for error in errors],
        )

    def _translate_error(self, error: jsonschema.ValidationError) -> FieldError:
        path = ".".join(str(p) for p in error.path)

        if error.validator == "required":
            missing_prop = error.message.split("'")[1] if "'" in error.message else "field"
            full_path = f"{path}.{missing_prop}" if path else missing_prop
            return FieldError(
                path=full_path,
                code="required",
                message=f"Field '{full_path}' is required but was not provided",
                expected="required field",
            )

        if error.validator == "type":
            received_type = type(error.instance).__name__
            return FieldError(
                path=path,
                code="invalid_type",
                message=(
                    f"Field '{path}' has invalid type. "
                    f"Expected {error.validator_value}, got {received_type}"
                ),
                expected=error.validator_value,
                received=received_type,
            )

        if error.validator in ("enum", "const"):
            return FieldError(
                path=path,
                code="invalid_value",
                message=f"Field '{path}' has invalid value. Must be one of: {error.validator_value}",
                expected=error.validator_value,
                received=error.instance,
            )

        if error.validator in ("minimum", "maximum", "minLength", "pattern"):
            return FieldError(
                path=path,
                code="invalid_value",
                message=f"Field '{path}' violates {error.validator} constraint: {error.validator_value}",
                expected=f"{error.validator}: {error.validator_value}",
                received=error.instance,
            )

        return FieldError(
            path=path,
            code="custom",
            message=f"Field '{path}' validation failed: {error.message}",
            expected=error.validator_value,
            received=error.instance,
        )


__all__ = [
    "QUOTE_SCHEMA",
    "SchemaCheckResult",
    "QuotePayloadValidator",
]
