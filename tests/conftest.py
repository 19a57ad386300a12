"""Pytest configuration and shared fixtures.

The workflow is exercised against in-memory fakes of the main API and the
message sender, with a controllable clock so expiry can be tested without
sleeping.
"""

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set testing mode BEFORE importing the app: disables rate limiting
os.environ["TESTING"] = "true"

from recovery_api.config import Settings
from recovery_api.core.verification_store import VerificationStore
from recovery_api.dependencies import get_main_api_client, get_workflow
from recovery_api.main import app
from recovery_api.services.audit_service import AuditEvent
from recovery_api.services.main_api import UserRecord
from recovery_api.services.recovery import RecoveryWorkflow

ACTIVE_USER = UserRecord(
    id=42,
    active=True,
    phone="70123456",
    display_name="Ana",
    email="ana@example.com",
    national_id="1234567",
)
INACTIVE_USER = UserRecord(id=43, active=False, phone="71234567", display_name="Luis")
NO_PHONE_USER = UserRecord(id=44, active=True, phone=None, display_name="Eva")


class FakeClock:
    """Manually advanced clock."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeUserDirectory:
    """Stands in for the main API client."""

    def __init__(self) -> None:
        self.users: dict[str, UserRecord] = {
            "1234567": ACTIVE_USER,
            "ana@example.com": ACTIVE_USER,
            "7654321": INACTIVE_USER,
            "5555555": NO_PHONE_USER,
        }
        self.update_result = True
        self.lookup_error: Exception | None = None
        self.session_error: Exception | None = None
        self.password_updates: list[tuple[int | str, str]] = []
        self.closed_sessions: list[int | str] = []

    async def find_user_by_identifier(self, identifier: str) -> UserRecord | None:
        if self.lookup_error is not None:
            raise self.lookup_error
        return self.users.get(identifier)

    async def update_password(self, user_id: int | str, new_password: str) -> bool:
        self.password_updates.append((user_id, new_password))
        return self.update_result

    async def close_all_user_sessions(self, user_id: int | str) -> bool:
        if self.session_error is not None:
            raise self.session_error
        self.closed_sessions.append(user_id)
        return True


class FakeSender:
    """Records sent codes instead of delivering them."""

    provider_name = "fake"

    def __init__(self) -> None:
        self.result = True
        self.sent: list[tuple[str, str, str]] = []

    async def send(self, phone: str, code: str, display_name: str = "") -> bool:
        self.sent.append((phone, code, display_name))
        return self.result

    @property
    def last_code(self) -> str:
        return self.sent[-1][1]


class FakeAudit:
    def __init__(self) -> None:
        self.events: list[tuple[int | str, AuditEvent, str]] = []
        self.error: Exception | None = None

    async def record(self, user_id: int | str, event: AuditEvent, detail: str) -> None:
        self.events.append((user_id, event, detail))
        if self.error is not None:
            raise self.error

    @property
    def kinds(self) -> list[AuditEvent]:
        return [event for _, event, _ in self.events]


@pytest.fixture
def test_settings() -> Settings:
    return Settings(testing=True, _env_file=None)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> VerificationStore:
    return VerificationStore()


@pytest.fixture
def directory() -> FakeUserDirectory:
    return FakeUserDirectory()


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def audit() -> FakeAudit:
    return FakeAudit()


@pytest.fixture
def workflow(store, directory, sender, audit, test_settings, clock) -> RecoveryWorkflow:
    return RecoveryWorkflow(
        store=store,
        resolver=directory,
        sender=sender,
        audit=audit,
        password_updater=directory,
        session_invalidator=directory,
        settings=test_settings,
        clock=clock,
    )


@pytest_asyncio.fixture
async def client(workflow) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the fake-backed workflow."""
    app.dependency_overrides[get_workflow] = lambda: workflow
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as ac:
            yield ac
    finally:
        app.dependency_overrides.pop(get_workflow, None)


@pytest.fixture
def override_main_api():
    """Install a stand-in main API client for the health endpoints."""

    def _install(main_api) -> None:
        app.dependency_overrides[get_main_api_client] = lambda: main_api

    yield _install
    app.dependency_overrides.pop(get_main_api_client, None)
