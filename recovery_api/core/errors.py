"""Recovery flow error taxonomy.

Every error carries the HTTP status it maps to and renders itself as the
``{error, field?, attemptsLeft?, details?}`` body returned to clients.
Unknown identifiers and bad state share ``InvalidOrExpiredError`` so that
responses do not reveal whether an account exists.
"""

from typing import Any

from fastapi import status


class RecoveryError(Exception):
    """Base exception for password recovery errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Unable to process the recovery request"

    def __init__(
        self,
        message: str | None = None,
        *,
        field: str | None = None,
        details: str | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.field = field
        self.details = details
        super().__init__(self.message)

    def to_response(self, include_details: bool = False) -> dict[str, Any]:
        """Build the JSON error body."""
        body: dict[str, Any] = {"error": self.message}
        if self.field:
            body["field"] = self.field
        if include_details and self.details:
            body["details"] = self.details
        return body


class InvalidInputError(RecoveryError):
    """Malformed or missing input."""

    default_message = "Invalid request"


class WeakPasswordError(InvalidInputError):
    """New password does not meet the minimum requirements."""

    default_message = "Password must be at least 8 characters long"

    def __init__(self, message: str | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("field", "newPassword")
        super().__init__(message, **kwargs)


class InvalidOrExpiredError(RecoveryError):
    """Unknown user, missing entry or wrong token."""

    default_message = "Invalid or expired code"


class AccountInactiveError(RecoveryError):
    default_message = "User account is not active"


class PhoneNotRegisteredError(RecoveryError):
    default_message = "User has no registered phone number"


class ExpiredError(RecoveryError):
    """A code or token was found but its window has passed."""

    default_message = "Expired"


class CodeExpiredError(ExpiredError):
    default_message = "Code expired, please request a new one"


class TokenExpiredError(ExpiredError):
    default_message = "Reset token expired"


class IncorrectCodeError(RecoveryError):
    """Submitted code does not match; reports remaining attempts."""

    default_message = "Incorrect code"

    def __init__(self, attempts_left: int, message: str | None = None) -> None:
        super().__init__(message)
        self.attempts_left = attempts_left

    def to_response(self, include_details: bool = False) -> dict[str, Any]:
        body = super().to_response(include_details)
        body["attemptsLeft"] = self.attempts_left
        return body


class AttemptsExhaustedError(RecoveryError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Maximum verification attempts exceeded"


class DeliveryFailureError(RecoveryError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Failed to send the verification code"


class UpdateFailureError(RecoveryError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Failed to update the password"


class InternalError(RecoveryError):
    """Unexpected collaborator failure; ``details`` holds the raw message."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Error processing the request"
