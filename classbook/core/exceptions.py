"""
Domain exceptions for the scheduling and entitlement engine.

Every error the engine raises derives from DomainException. Services raise
them; the API layer converts them with ``to_http_exception()``.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class Forbidden(DomainException):
    """Raised when the requester does not own the resource."""

    status_code = status.HTTP_403_FORBIDDEN


# Scheduling errors

class ConfigurationMissing(BusinessRuleException):
    """No active schedule configuration exists for the tenant."""


class HasActiveReservations(ConflictException):
    """The mutation would delete or shrink slots that carry reservations."""


class MissingTimeSlot(NotFound):
    """No slot matches the requested date and time window."""


# Booking errors

class Full(ConflictException):
    """The slot is at capacity."""


class PastSlot(BusinessRuleException):
    """The slot has already started."""


class PastDate(BusinessRuleException):
    """The date is in the past."""


class CannotBook(BusinessRuleException):
    """Entitlement, suspension or pending payment blocks the booking."""


class Duplicate(ConflictException):
    """The user already holds a reservation on this slot."""


class CutoffExceeded(BusinessRuleException):
    """Cancellation requested too close to the slot start."""


# Recurring rules and suspensions

class InvalidRule(ValidationException):
    """Recurring rule options are inconsistent."""


class InvalidTransition(ConflictException):
    """The recurring rule cannot move to the requested status."""


class SuspensionOverlap(ConflictException):
    """A suspension already covers part of the requested range."""


class QuotaViolation(DomainException):
    """Ledger counters are inconsistent. Always a bug, never user-caused."""
