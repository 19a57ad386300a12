"""Password recovery schemas.

Request bodies are sanitized (trimmed, angle brackets stripped, length
capped) and validated here, before anything reaches the workflow. Field
names on the wire are camelCase.
"""

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

from recovery_api.config import settings

MAX_INPUT_LENGTH = 1000
MAX_PASSWORD_LENGTH = 128

_CODE_PATTERN = re.compile(r"^\d{6}$")

# Messages for missing or non-string fields, keyed by wire name
REQUIRED_FIELD_MESSAGES: dict[str, str] = {
    "identifier": 'The "identifier" field is required and must be a string',
    "code": 'The "code" field is required and must be a string',
    "resetToken": 'The "resetToken" field is required and must be a string',
    "newPassword": 'The "newPassword" field is required and must be a string',
}


def sanitize_input(value: str) -> str:
    """Trim, drop ``<``/``>`` and cap the length of a text input."""
    return re.sub(r"[<>]", "", value.strip())[:MAX_INPUT_LENGTH]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RequestCodeRequest(_CamelModel):
    """Request schema for step 1."""

    identifier: str = Field(..., description="National ID (CI) or email")

    @field_validator("identifier")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        v = sanitize_input(v)
        if not v:
            raise ValueError("The identifier cannot be empty")
        return v


class VerifyCodeRequest(RequestCodeRequest):
    """Request schema for step 2."""

    code: str = Field(..., description="6-digit verification code")

    @field_validator("code")
    @classmethod
    def validate_code(cls, v: str) -> str:
        v = sanitize_input(v)
        if not _CODE_PATTERN.match(v):
            raise ValueError("The code must be exactly 6 digits")
        return v


class ResetPasswordRequest(RequestCodeRequest):
    """Request schema for step 3."""

    reset_token: str = Field(..., alias="resetToken")
    new_password: str = Field(..., alias="newPassword")

    @field_validator("reset_token")
    @classmethod
    def validate_reset_token(cls, v: str) -> str:
        v = sanitize_input(v)
        if not v:
            raise ValueError("The reset token cannot be empty")
        return v

    @field_validator("new_password")
    @classmethod
    def validate_password_strength(cls, v: str) -> str:
        """Passwords are validated as typed; they are never sanitized."""
        min_length = settings.min_password_length
        if len(v) < min_length:
            raise ValueError(
                f"Password must be at least {min_length} characters long"
            )
        if len(v) > MAX_PASSWORD_LENGTH:
            raise ValueError(
                f"Password cannot exceed {MAX_PASSWORD_LENGTH} characters"
            )
        if (
            not re.search(r"[A-Z]", v)
            or not re.search(r"[a-z]", v)
            or not re.search(r"\d", v)
        ):
            raise ValueError(
                "Password must contain at least one uppercase letter, "
                "one lowercase letter and one number"
            )
        return v


class RequestCodeResponse(_CamelModel):
    message: str
    sent: bool
    expires_in: int | None = Field(
        default=None, alias="expiresIn", description="Code lifetime in seconds"
    )


class VerifyCodeResponse(_CamelModel):
    message: str
    reset_token: str = Field(..., alias="resetToken")
    expires_in: int = Field(
        ..., alias="expiresIn", description="Reset token lifetime in seconds"
    )


class ResetPasswordResponse(_CamelModel):
    message: str
    success: bool = True


class ErrorResponse(_CamelModel):
    """Error response schema."""

    error: str = Field(..., description="Error message")
    field: str | None = Field(default=None, description="Offending input field")
    attempts_left: int | None = Field(default=None, alias="attemptsLeft")
    details: str | None = Field(
        default=None, description="Raw error (development only)"
    )
