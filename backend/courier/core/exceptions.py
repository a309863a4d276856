# backend/courier/core/exceptions.py
"""
Domain-specific exceptions for the courier messaging service.

These exceptions provide clear, client-facing error messages that are
converted either to HTTP errors (REST routes) or to scoped ``error``
events on the originating websocket connection (fanout router).
"""

from typing import Any, Dict, Optional

from fastapi import status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code: Optional[str] = None

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_event_payload(self) -> Dict[str, Any]:
        """Payload of the scoped ``error`` event sent back to the originating connection."""
        return {"message": self.message, "code": self.code}


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "VALIDATION_ERROR"


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND
    default_code = "NOT_FOUND"


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ForbiddenException(DomainException):
    """Raised when user lacks permission for an action."""

    status_code = status.HTTP_403_FORBIDDEN


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


# Specific messaging exceptions


class InvalidReferenceException(ValidationException):
    """Raised when ``replyTo`` is malformed or does not resolve to a message."""

    default_code = "INVALID_REFERENCE"


class UnauthorizedActionException(ForbiddenException):
    """Raised when a user edits or deletes a message they do not own."""

    default_code = "UNAUTHORIZED"


class MessagePolicyException(BusinessRuleException):
    """Raised when a configured lifecycle policy forbids an edit or delete."""

    default_code = "POLICY_VIOLATION"


class PersistenceException(ServiceException):
    """Raised when the persistence store fails during an operation."""

    default_code = "PERSISTENCE_FAILURE"


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
