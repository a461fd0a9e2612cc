"""
Domain-specific exceptions for the messaging core.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer
and on the realtime socket.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

from .enums import RejectionReason

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

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
        """Default conversion to HTTPException (override in subclasses)."""
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=HTTP_422_UNPROCESSABLE,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class UnauthorizedException(DomainException):
    """Raised when user is not authenticated."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ForbiddenException(DomainException):
    """Raised when user lacks permission for an action."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific messaging exceptions


_REJECTION_MESSAGES: Dict[RejectionReason, str] = {
    RejectionReason.NOT_A_MEMBER: "You are not a participant in this conversation",
    RejectionReason.MUTED: "You are muted and cannot send messages",
    RejectionReason.EMPTY_BODY: "Message cannot be empty",
    RejectionReason.BODY_TOO_LONG: "Message is too long",
    RejectionReason.CHANNEL_LOCKED: "This channel is not accepting messages",
    RejectionReason.INVALID_REPLY: "Reply target is not part of this conversation",
    RejectionReason.UNKNOWN_CONVERSATION: "Conversation not found",
    RejectionReason.SELF_CONVERSATION: "Cannot send a direct message to yourself",
    RejectionReason.UNKNOWN_RECIPIENT: "Recipient not found",
    RejectionReason.CLIENT_ID_REUSED: "client_id was already used for another conversation",
}


class MessageRejected(BusinessRuleException):
    """
    Raised when a send is refused by policy.

    Rejections are final for the given request: retrying will not help until
    the underlying condition (membership, mute, payload) changes.
    """

    def __init__(
        self,
        reason: RejectionReason,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.reason = reason
        super().__init__(
            message=message or _REJECTION_MESSAGES[reason],
            code=reason.value,
            details=details or {},
        )

    def to_http_exception(self) -> HTTPException:
        status_code = HTTP_422_UNPROCESSABLE
        if self.reason in (RejectionReason.NOT_A_MEMBER, RejectionReason.MUTED):
            status_code = status.HTTP_403_FORBIDDEN
        elif self.reason in (
            RejectionReason.UNKNOWN_CONVERSATION,
            RejectionReason.UNKNOWN_RECIPIENT,
        ):
            status_code = status.HTTP_404_NOT_FOUND
        elif self.reason is RejectionReason.CLIENT_ID_REUSED:
            status_code = status.HTTP_409_CONFLICT
        return HTTPException(
            status_code=status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
