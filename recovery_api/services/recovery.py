"""Password recovery workflow.

Three-step flow over the in-memory verification store:

1. ``request_code``: issue a 6-digit code and deliver it over WhatsApp
2. ``verify_code``: exchange a correct code for a reset token
3. ``reset_password``: exchange the reset token for a new password

Per user the state moves NONE -> CODE_ISSUED -> TOKEN_ISSUED -> NONE.
Collaborators are injected; nothing here reads module-level singletons.
"""

import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol

from recovery_api.config import Settings
from recovery_api.core.errors import (
    AccountInactiveError,
    AttemptsExhaustedError,
    CodeExpiredError,
    DeliveryFailureError,
    IncorrectCodeError,
    InternalError,
    InvalidOrExpiredError,
    PhoneNotRegisteredError,
    RecoveryError,
    TokenExpiredError,
    UpdateFailureError,
    WeakPasswordError,
)
from recovery_api.core.masking import mask_phone
from recovery_api.core.verification_store import (
    ResetTokenEntry,
    VerificationEntry,
    VerificationStore,
    reset_key,
    verification_key,
)
from recovery_api.logging_config import get_logger
from recovery_api.services.audit_service import AuditEvent
from recovery_api.services.main_api import UserRecord

logger = get_logger(__name__)

CODE_MIN = 100000
CODE_MAX = 999999
RESET_TOKEN_BYTES = 32

CODE_SENT_MESSAGE = "Verification code sent via WhatsApp"
CODE_NOT_SENT_MESSAGE = "If the user exists, a verification code will be sent"
CODE_VERIFIED_MESSAGE = "Code verified successfully"
PASSWORD_RESET_MESSAGE = "Password updated successfully"


class IdentifierResolver(Protocol):
    async def find_user_by_identifier(self, identifier: str) -> UserRecord | None: ...


class NotificationSender(Protocol):
    async def send(self, phone: str, code: str, display_name: str = "") -> bool: ...


class AuditLogger(Protocol):
    async def record(self, user_id: int | str, event: AuditEvent, detail: str) -> None: ...


class PasswordUpdater(Protocol):
    async def update_password(self, user_id: int | str, new_password: str) -> bool: ...


class SessionInvalidator(Protocol):
    async def close_all_user_sessions(self, user_id: int | str) -> bool: ...


@dataclass
class CodeRequestResult:
    sent: bool
    message: str
    expires_in: int | None = None


@dataclass
class CodeVerificationResult:
    reset_token: str
    expires_in: int
    message: str = CODE_VERIFIED_MESSAGE


@dataclass
class PasswordResetResult:
    success: bool = True
    message: str = PASSWORD_RESET_MESSAGE


def generate_code() -> str:
    """Return a uniformly random 6-digit code from a CSPRNG."""
    return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))


def generate_reset_token() -> str:
    """Return a 256-bit random token, hex encoded."""
    return secrets.token_hex(RESET_TOKEN_BYTES)

def _matches(expected: str, submitted: str) -> bool:
    """Constant-time comparison that tolerates non-ASCII input."""
    return secrets.compare_digest(expected.encode(), submitted.encode())


def _utcnow() -> datetime:
    return datetime.now(UTC)


class RecoveryWorkflow:
    """Orchestrates the recovery state machine.

    Every public operation either returns a result or raises a
    ``RecoveryError``. Unexpected collaborator failures become
    ``InternalError`` with the raw message in ``details``.
    """

    def __init__(
        self,
        store: VerificationStore,
        resolver: IdentifierResolver,
        sender: NotificationSender,
        audit: AuditLogger,
        password_updater: PasswordUpdater,
        session_invalidator: SessionInvalidator,
        settings: Settings,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self._resolver = resolver
        self._sender = sender
        self._audit_logger = audit
        self._password_updater = password_updater
        self._session_invalidator = session_invalidator
        self._clock = clock

        self.code_ttl = timedelta(minutes=settings.code_expiry_minutes)
        self.token_ttl = timedelta(minutes=settings.reset_token_expiry_minutes)
        self.max_attempts = settings.max_verify_attempts
        self.min_password_length = settings.min_password_length
        self.conceal_account_state = settings.conceal_account_state

    # ------------------------------------------------------------------
    # Step 1: request a code
    # ------------------------------------------------------------------
    async def request_code(self, identifier: str) -> CodeRequestResult:
        try:
            return await self._request_code(identifier)
        except RecoveryError:
            raise
        except Exception as e:
            logger.exception("Unexpected error requesting recovery code")
            raise InternalError(
                "Error processing the request", details=str(e)
            ) from e

    async def _request_code(self, identifier: str) -> CodeRequestResult:
        user = await self._resolver.find_user_by_identifier(identifier)
        if user is None:
            logger.info("Recovery code requested for unknown identifier")
            return CodeRequestResult(sent=False, message=CODE_NOT_SENT_MESSAGE)

        if not user.active or not user.phone:
            reason = "inactive" if not user.active else "no_phone"
            logger.warning(
                "Recovery code refused", user_id=str(user.id), reason=reason
            )
            if self.conceal_account_state:
                return CodeRequestResult(sent=False, message=CODE_NOT_SENT_MESSAGE)
            if not user.active:
                raise AccountInactiveError()
            raise PhoneNotRegisteredError()

        key = verification_key(user.id)
        code = generate_code()
        entry = VerificationEntry(
            code=code,
            phone=user.phone,
            expires_at=self._clock() + self.code_ttl,
        )
        self.store.put(key, entry)

        try:
            sent = await self._sender.send(user.phone, code, user.display_name)
        except Exception:
            logger.exception("Message sender raised", user_id=str(user.id))
            sent = False

        if not sent:
            # A concurrent request may have replaced the entry meanwhile
            if self.store.get(key) is entry:
                self.store.delete(key)
            raise DeliveryFailureError()

        masked = mask_phone(user.phone)
        await self._audit(
            user.id,
            AuditEvent.RECOVERY_CODE_REQUESTED,
            f"Code sent to phone {masked}",
        )
        logger.info("Recovery code sent", user_id=str(user.id), phone=masked)

        return CodeRequestResult(
            sent=True,
            message=CODE_SENT_MESSAGE,
            expires_in=int(self.code_ttl.total_seconds()),
        )

    # ------------------------------------------------------------------
    # Step 2: verify the code
    # ------------------------------------------------------------------
    async def verify_code(self, identifier: str, code: str) -> CodeVerificationResult:
        try:
            return await self._verify_code(identifier, code)
        except RecoveryError:
            raise
        except Exception as e:
            logger.exception("Unexpected error verifying recovery code")
            raise InternalError("Error verifying the code", details=str(e)) from e

    async def _verify_code(self, identifier: str, code: str) -> CodeVerificationResult:
        user = await self._resolver.find_user_by_identifier(identifier)
        if user is None:
            raise InvalidOrExpiredError()

        key = verification_key(user.id)
        entry = self.store.get(key)
        if not isinstance(entry, VerificationEntry):
            raise InvalidOrExpiredError()

        if self._clock() > entry.expires_at:
            self.store.delete(key)
            await self._audit(
                user.id,
                AuditEvent.VERIFICATION_CODE_EXPIRED,
                "Verification attempted with an expired code",
            )
            raise CodeExpiredError()

        if entry.attempts >= self.max_attempts:
            self.store.delete(key)
            await self._audit(
                user.id,
                AuditEvent.MAX_ATTEMPTS_EXCEEDED,
                "Maximum verification attempts exceeded",
            )
            raise AttemptsExhaustedError()

        if not _matches(entry.code, code):
            entry.attempts += 1
            await self._audit(
                user.id,
                AuditEvent.VERIFICATION_CODE_INCORRECT,
                f"Failed attempt ({entry.attempts}/{self.max_attempts})",
            )
            raise IncorrectCodeError(attempts_left=self.max_attempts - entry.attempts)

        token = generate_reset_token()
        self.store.put(
            reset_key(user.id),
            ResetTokenEntry(token=token, expires_at=self._clock() + self.token_ttl),
        )
        self.store.delete(key)

        await self._audit(
            user.id,
            AuditEvent.VERIFICATION_CODE_VERIFIED,
            "Code verified successfully",
        )

        return CodeVerificationResult(
            reset_token=token,
            expires_in=int(self.token_ttl.total_seconds()),
        )

    # ------------------------------------------------------------------
    # Step 3: reset the password
    # ------------------------------------------------------------------
    async def reset_password(
        self, identifier: str, reset_token: str, new_password: str
    ) -> PasswordResetResult:
        try:
            return await self._reset_password(identifier, reset_token, new_password)
        except RecoveryError:
            raise
        except Exception as e:
            logger.exception("Unexpected error resetting password")
            raise InternalError("Error resetting the password", details=str(e)) from e

    async def _reset_password(
        self, identifier: str, reset_token: str, new_password: str
    ) -> PasswordResetResult:
        if len(new_password) < self.min_password_length:
            raise WeakPasswordError(
                f"Password must be at least {self.min_password_length} characters long"
            )

        user = await self._resolver.find_user_by_identifier(identifier)
        if user is None:
            raise InvalidOrExpiredError("Invalid or expired token")

        key = reset_key(user.id)
        entry = self.store.get(key)
        if not isinstance(entry, ResetTokenEntry) or not _matches(
            entry.token, reset_token
        ):
            detail = (
                "Password reset attempted without an issued token"
                if entry is None
                else "Password reset attempted with an invalid token"
            )
            await self._audit(user.id, AuditEvent.RESET_TOKEN_INVALID, detail)
            raise InvalidOrExpiredError("Invalid or expired token")

        if self._clock() > entry.expires_at:
            self.store.delete(key)
            await self._audit(
                user.id,
                AuditEvent.RESET_TOKEN_EXPIRED,
                "Password reset attempted with an expired token",
            )
            raise TokenExpiredError()

        # Entry is kept on failure so the same token can be retried
        if not await self._password_updater.update_password(user.id, new_password):
            raise UpdateFailureError()

        self.store.delete(key)

        try:
            await self._session_invalidator.close_all_user_sessions(user.id)
        except Exception:
            logger.exception("Failed to close user sessions", user_id=str(user.id))

        await self._audit(
            user.id,
            AuditEvent.PASSWORD_RESET_COMPLETED,
            "Password reset through recovery flow",
        )
        logger.info("Password reset completed", user_id=str(user.id))

        return PasswordResetResult()

    async def _audit(self, user_id: int | str, event: AuditEvent, detail: str) -> None:
        try:
            await self._audit_logger.record(user_id, event, detail)
        except Exception:
            logger.exception(
                "Audit logger raised", event_type=event.value, user_id=str(user_id)
            )
