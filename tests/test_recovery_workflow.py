"""Tests for the password recovery workflow state machine."""

import asyncio
import re

import httpx
import pytest

from recovery_api.core.errors import (
    AccountInactiveError,
    AttemptsExhaustedError,
    CodeExpiredError,
    DeliveryFailureError,
    ExpiredError,
    IncorrectCodeError,
    InternalError,
    InvalidOrExpiredError,
    PhoneNotRegisteredError,
    TokenExpiredError,
    UpdateFailureError,
    WeakPasswordError,
)
from recovery_api.core.masking import mask_phone
from recovery_api.core.verification_store import (
    ResetTokenEntry,
    VerificationEntry,
    reset_key,
    verification_key,
)
from recovery_api.services.audit_service import AuditEvent
from recovery_api.services.recovery import (
    RecoveryWorkflow,
    generate_code,
    generate_reset_token,
)

USER_ID = 42
IDENTIFIER = "1234567"
NEW_PASSWORD = "NewPassw0rd"


def _wrong(code: str) -> str:
    return "000000" if code != "000000" else "111111"


async def _issue_token(workflow: RecoveryWorkflow, sender) -> str:
    await workflow.request_code(IDENTIFIER)
    result = await workflow.verify_code(IDENTIFIER, sender.last_code)
    return result.reset_token


# ---------------------------------------------------------------------------
# Helpers: code, token and phone masking (pure)
# ---------------------------------------------------------------------------
class TestGenerators:
    def test_code_is_six_digits_in_range(self):
        for _ in range(200):
            code = generate_code()
            assert re.fullmatch(r"\d{6}", code)
            assert 100000 <= int(code) <= 999999

    def test_codes_vary(self):
        assert len({generate_code() for _ in range(100)}) >= 90

    def test_reset_token_is_256_bit_hex(self):
        token = generate_reset_token()
        assert re.fullmatch(r"[0-9a-f]{64}", token)
        assert token != generate_reset_token()


class TestMaskPhone:
    @pytest.mark.parametrize(
        ("phone", "expected"),
        [
            ("70123456", "****3456"),
            ("59170123456", "*******3456"),
            ("1234", "1234"),
            ("123", "****"),
            ("", "****"),
            (None, "****"),
            (70123456, "****3456"),
            ("+591 701-23456", "+*** ***-*3456"),
        ],
    )
    def test_mask_phone(self, phone, expected):
        assert mask_phone(phone) == expected


# ---------------------------------------------------------------------------
# Step 1: request_code
# ---------------------------------------------------------------------------
class TestRequestCode:
    async def test_sends_code_and_stores_entry(
        self, workflow, store, sender, audit, clock
    ):
        result = await workflow.request_code(IDENTIFIER)

        assert result.sent is True
        assert result.expires_in == 600

        phone, code, name = sender.sent[0]
        assert (phone, name) == ("70123456", "Ana")

        entry = store.get(verification_key(USER_ID))
        assert isinstance(entry, VerificationEntry)
        assert entry.code == code
        assert entry.phone == "70123456"
        assert entry.attempts == 0
        assert (entry.expires_at - clock()).total_seconds() == 600

        assert audit.events == [
            (USER_ID, AuditEvent.RECOVERY_CODE_REQUESTED, "Code sent to phone ****3456")
        ]

    async def test_unknown_identifier_is_not_revealed(self, workflow, store, sender):
        result = await workflow.request_code("nobody@example.com")

        assert result.sent is False
        assert result.expires_in is None
        assert sender.sent == []
        assert len(store) == 0

    async def test_inactive_user_gets_distinct_error(self, workflow, store):
        with pytest.raises(AccountInactiveError):
            await workflow.request_code("7654321")
        assert len(store) == 0

    async def test_user_without_phone_gets_distinct_error(self, workflow, store):
        with pytest.raises(PhoneNotRegisteredError):
            await workflow.request_code("5555555")
        assert len(store) == 0

    @pytest.mark.parametrize("identifier", ["7654321", "5555555"])
    async def test_conceal_account_state_hides_inactive_and_phoneless(
        self, store, directory, sender, audit, clock, test_settings, identifier
    ):
        test_settings.conceal_account_state = True
        workflow = RecoveryWorkflow(
            store=store,
            resolver=directory,
            sender=sender,
            audit=audit,
            password_updater=directory,
            session_invalidator=directory,
            settings=test_settings,
            clock=clock,
        )

        unknown = await workflow.request_code("nobody")
        hidden = await workflow.request_code(identifier)

        assert hidden == unknown
        assert sender.sent == []

    async def test_new_request_overwrites_previous_code(self, workflow, store, sender):
        await workflow.request_code(IDENTIFIER)
        store.get(verification_key(USER_ID)).attempts = 2

        await workflow.request_code(IDENTIFIER)

        entry = store.get(verification_key(USER_ID))
        assert entry.code == sender.sent[-1][1]
        assert entry.attempts == 0
        assert len(store) == 1

    async def test_delivery_failure_rolls_back_entry(self, workflow, store, sender, audit):
        sender.result = False

        with pytest.raises(DeliveryFailureError) as exc_info:
            await workflow.request_code(IDENTIFIER)

        assert exc_info.value.status_code == 500
        assert verification_key(USER_ID) not in store
        assert audit.events == []

    async def test_sender_exception_is_treated_as_delivery_failure(
        self, workflow, store, sender
    ):
        async def boom(*args, **kwargs):
            raise RuntimeError("provider down")

        sender.send = boom

        with pytest.raises(DeliveryFailureError):
            await workflow.request_code(IDENTIFIER)
        assert len(store) == 0

    async def test_failed_delivery_keeps_newer_concurrent_code(
        self, workflow, store, sender
    ):
        started = asyncio.Event()
        release = asyncio.Event()
        calls = 0

        async def send(phone, code, display_name=""):
            nonlocal calls
            calls += 1
            sender.sent.append((phone, code, display_name))
            if calls == 1:
                started.set()
                await release.wait()
                return False
            return True

        sender.send = send

        first = asyncio.create_task(workflow.request_code(IDENTIFIER))
        await started.wait()
        second = await workflow.request_code(IDENTIFIER)
        release.set()

        with pytest.raises(DeliveryFailureError):
            await first

        assert second.sent is True
        entry = store.get(verification_key(USER_ID))
        assert entry is not None
        assert entry.code == sender.sent[1][1]

    async def test_audit_failure_does_not_abort(self, workflow, audit):
        audit.error = RuntimeError("log API down")

        result = await workflow.request_code(IDENTIFIER)

        assert result.sent is True

    async def test_resolver_failure_becomes_internal_error(self, workflow, directory):
        directory.lookup_error = httpx.ConnectError("connection refused")

        with pytest.raises(InternalError) as exc_info:
            await workflow.request_code(IDENTIFIER)

        assert exc_info.value.status_code == 500
        assert exc_info.value.details == "connection refused"
        assert "details" not in exc_info.value.to_response()
        assert exc_info.value.to_response(include_details=True)["details"] == (
            "connection refused"
        )


# ---------------------------------------------------------------------------
# Step 2: verify_code
# ---------------------------------------------------------------------------
class TestVerifyCode:
    async def test_correct_code_issues_reset_token(
        self, workflow, store, sender, audit, clock
    ):
        await workflow.request_code(IDENTIFIER)

        result = await workflow.verify_code(IDENTIFIER, sender.last_code)

        assert re.fullmatch(r"[0-9a-f]{64}", result.reset_token)
        assert result.expires_in == 900
        assert verification_key(USER_ID) not in store

        token_entry = store.get(reset_key(USER_ID))
        assert isinstance(token_entry, ResetTokenEntry)
        assert token_entry.token == result.reset_token
        assert (token_entry.expires_at - clock()).total_seconds() == 900
        assert audit.kinds[-1] == AuditEvent.VERIFICATION_CODE_VERIFIED

    async def test_reusing_code_fails(self, workflow, sender):
        await workflow.request_code(IDENTIFIER)
        code = sender.last_code
        await workflow.verify_code(IDENTIFIER, code)

        with pytest.raises(InvalidOrExpiredError):
            await workflow.verify_code(IDENTIFIER, code)

    async def test_unknown_identifier_is_generic_error(self, workflow):
        with pytest.raises(InvalidOrExpiredError):
            await workflow.verify_code("nobody", "123456")

    async def test_no_code_issued_is_generic_error(self, workflow):
        with pytest.raises(InvalidOrExpiredError) as exc_info:
            await workflow.verify_code(IDENTIFIER, "123456")
        assert exc_info.value.status_code == 400

    async def test_wrong_code_counts_down_then_locks_out(
        self, workflow, store, sender, audit
    ):
        await workflow.request_code(IDENTIFIER)
        code = sender.last_code

        attempts_left = []
        for _ in range(3):
            with pytest.raises(IncorrectCodeError) as exc_info:
                await workflow.verify_code(IDENTIFIER, _wrong(code))
            attempts_left.append(exc_info.value.attempts_left)
            assert exc_info.value.to_response()["attemptsLeft"] == attempts_left[-1]

        assert attempts_left == [2, 1, 0]

        # Even the correct code is refused once attempts are used up
        with pytest.raises(AttemptsExhaustedError) as exc_info:
            await workflow.verify_code(IDENTIFIER, code)

        assert exc_info.value.status_code == 429
        assert verification_key(USER_ID) not in store
        assert audit.kinds[-1] == AuditEvent.MAX_ATTEMPTS_EXCEEDED
        assert audit.events[1][2] == "Failed attempt (1/3)"

    async def test_expired_code_is_rejected_and_removed(
        self, workflow, store, sender, audit, clock
    ):
        await workflow.request_code(IDENTIFIER)
        clock.advance(minutes=10, seconds=1)

        with pytest.raises(CodeExpiredError) as exc_info:
            await workflow.verify_code(IDENTIFIER, sender.last_code)

        assert isinstance(exc_info.value, ExpiredError)
        assert verification_key(USER_ID) not in store
        assert audit.kinds[-1] == AuditEvent.VERIFICATION_CODE_EXPIRED

    async def test_code_valid_at_exact_expiry(self, workflow, sender, clock):
        await workflow.request_code(IDENTIFIER)
        clock.advance(minutes=10)

        result = await workflow.verify_code(IDENTIFIER, sender.last_code)

        assert result.reset_token


# ---------------------------------------------------------------------------
# Step 3: reset_password
# ---------------------------------------------------------------------------
class TestResetPassword:
    async def test_full_flow_leaves_no_residual_entries(
        self, workflow, store, sender, directory, audit
    ):
        token = await _issue_token(workflow, sender)

        result = await workflow.reset_password(IDENTIFIER, token, NEW_PASSWORD)

        assert result.success is True
        assert directory.password_updates == [(USER_ID, NEW_PASSWORD)]
        assert directory.closed_sessions == [USER_ID]
        assert verification_key(USER_ID) not in store
        assert reset_key(USER_ID) not in store
        assert len(store) == 0
        assert audit.kinds == [
            AuditEvent.RECOVERY_CODE_REQUESTED,
            AuditEvent.VERIFICATION_CODE_VERIFIED,
            AuditEvent.PASSWORD_RESET_COMPLETED,
        ]

    async def test_short_password_rejected_before_lookup(self, workflow, directory):
        directory.lookup_error = RuntimeError("should not be called")

        with pytest.raises(WeakPasswordError) as exc_info:
            await workflow.reset_password(IDENTIFIER, "token", "short")

        assert exc_info.value.to_response()["field"] == "newPassword"

    async def test_unknown_identifier_is_generic_error(self, workflow):
        with pytest.raises(InvalidOrExpiredError):
            await workflow.reset_password("nobody", "token", NEW_PASSWORD)

    async def test_mismatched_token_is_rejected_and_audited(
        self, workflow, store, sender, audit
    ):
        await _issue_token(workflow, sender)

        with pytest.raises(InvalidOrExpiredError):
            await workflow.reset_password(IDENTIFIER, "f" * 64, NEW_PASSWORD)

        assert reset_key(USER_ID) in store
        assert audit.kinds[-1] == AuditEvent.RESET_TOKEN_INVALID
        assert audit.events[-1][2] == "Password reset attempted with an invalid token"

    async def test_missing_token_entry_is_rejected_and_audited(self, workflow, audit):
        with pytest.raises(InvalidOrExpiredError):
            await workflow.reset_password(IDENTIFIER, "f" * 64, NEW_PASSWORD)

        assert audit.events == [
            (
                USER_ID,
                AuditEvent.RESET_TOKEN_INVALID,
                "Password reset attempted without an issued token",
            )
        ]

    async def test_non_ascii_token_is_rejected(self, workflow, sender):
        await _issue_token(workflow, sender)

        with pytest.raises(InvalidOrExpiredError):
            await workflow.reset_password(IDENTIFIER, "tökén", NEW_PASSWORD)

    async def test_expired_token_is_rejected_and_removed(
        self, workflow, store, sender, clock, directory
    ):
        token = await _issue_token(workflow, sender)
        clock.advance(minutes=15, seconds=1)

        with pytest.raises(TokenExpiredError):
            await workflow.reset_password(IDENTIFIER, token, NEW_PASSWORD)

        assert reset_key(USER_ID) not in store
        assert directory.password_updates == []

    async def test_update_failure_keeps_token_for_retry(
        self, workflow, store, sender, directory
    ):
        token = await _issue_token(workflow, sender)
        directory.update_result = False

        with pytest.raises(UpdateFailureError) as exc_info:
            await workflow.reset_password(IDENTIFIER, token, NEW_PASSWORD)
        assert exc_info.value.status_code == 500
        assert reset_key(USER_ID) in store

        directory.update_result = True
        result = await workflow.reset_password(IDENTIFIER, token, NEW_PASSWORD)

        assert result.success is True
        assert reset_key(USER_ID) not in store

    async def test_session_invalidation_failure_is_swallowed(
        self, workflow, store, sender, directory
    ):
        token = await _issue_token(workflow, sender)
        directory.session_error = RuntimeError("sessions API down")

        result = await workflow.reset_password(IDENTIFIER, token, NEW_PASSWORD)

        assert result.success is True
        assert len(store) == 0

    async def test_password_update_exception_becomes_internal_error(
        self, workflow, store, sender, directory
    ):
        token = await _issue_token(workflow, sender)

        async def boom(user_id, new_password):
            raise httpx.ReadTimeout("timed out")

        directory.update_password = boom

        with pytest.raises(InternalError) as exc_info:
            await workflow.reset_password(IDENTIFIER, token, NEW_PASSWORD)

        assert exc_info.value.details == "timed out"
        assert reset_key(USER_ID) in store

