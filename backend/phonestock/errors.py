# Overview: Domain exception hierarchy shared by services and routes.

"""
Phone Stock Errors

Every service raises one of these typed exceptions instead of returning error
tuples. Routes do not catch them individually: a single Flask error handler
(registered in create_app) maps them to JSON responses.

HIERARCHY:
    PhoneStockError                    400
    +-- ValidationError                400
    +-- NotFoundError                  404
    +-- ConflictError                  409
    |   +-- UnitUnavailableError       409
    +-- InvalidTransitionError         400
    |   +-- VerificationPreconditionError
    |   +-- ImmutableInvoiceError
    |   +-- AlreadyResolvedError
    +-- AuthorizationError             403

CONTEXT: Each exception carries keyword context (imei, invoice_number,
schedule_id, ...) so the caller can tell the end user exactly which record
failed. Context keys are included in to_dict().
"""

from __future__ import annotations


class PhoneStockError(Exception):
    """Base class for all domain errors."""

    status_code = 400
    code = "PHONESTOCK_ERROR"

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        payload.update(self.context)
        return payload


class ValidationError(PhoneStockError):
    """Domain input is malformed (bad IMEI, negative price, bad date range)."""

    code = "VALIDATION_ERROR"


class NotFoundError(PhoneStockError):
    """Referenced entity does not exist."""

    status_code = 404
    code = "NOT_FOUND"


class ConflictError(PhoneStockError):
    """Uniqueness or exclusivity violated (duplicate IMEI, invoice number, schedule already assigned)."""

    status_code = 409
    code = "CONFLICT"


class UnitUnavailableError(ConflictError):
    """A requested unit was not Available when the assignment tried to claim it."""

    code = "UNIT_UNAVAILABLE"

    def __init__(self, imei: str, status: str | None = None, message: str | None = None):
        if message is None:
            message = f"Phone with IMEI {imei} is not available"
            if status:
                message += f". Current status: {status}"
        super().__init__(message, imei=imei, status=status)
        self.imei = imei
        self.status = status


class InvalidTransitionError(PhoneStockError):
    """A state-machine precondition does not hold."""

    code = "INVALID_TRANSITION"


class VerificationPreconditionError(InvalidTransitionError):
    """verify() requires a Draft invoice with proof of purchase attached."""

    code = "VERIFICATION_PRECONDITION"


class ImmutableInvoiceError(InvalidTransitionError):
    """Invoice is no longer editable (not Draft, or units already left Available)."""

    code = "IMMUTABLE_INVOICE"


class AlreadyResolvedError(InvalidTransitionError):
    """The unit was already sold or returned within its assignment."""

    code = "ALREADY_RESOLVED"


class AuthorizationError(PhoneStockError):
    """Principal role or ownership does not allow the operation."""

    status_code = 403
    code = "FORBIDDEN"
