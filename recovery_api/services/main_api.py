"""Client for the main user-management API.

All user lookups, password changes, session closing and audit log writes go
through this API using a service-level master token. The recovery service
never touches the user database directly.
"""

from dataclasses import dataclass
from typing import Any

import httpx

from recovery_api.logging_config import get_logger

logger = get_logger(__name__)

# Value of the ``activo`` column for enabled accounts
ACTIVE_STATUS = "activo"


@dataclass
class UserRecord:
    """A user joined with its person record."""

    id: int | str
    active: bool
    phone: str | None
    display_name: str
    username: str | None = None
    person_id: int | str | None = None
    national_id: str | None = None
    email: str | None = None
    first_surname: str | None = None
    second_surname: str | None = None


def _optional_text(value: Any) -> str | None:
    """Numeric columns (phone, national ID) may arrive as JSON numbers."""
    if value is None or value == "":
        return None
    return str(value)


async def _log_request(request: httpx.Request) -> None:
    logger.debug("Main API request", method=request.method, url=str(request.url))


async def _log_response(response: httpx.Response) -> None:
    logger.debug(
        "Main API response",
        status_code=response.status_code,
        url=str(response.request.url),
    )


class MainApiClient:
    """Async HTTP client for the main API.

    Args:
        base_url: Main API base URL.
        master_token: Bearer token authorizing service-level calls.
        timeout: Default request timeout in seconds.
        health_timeout: Timeout for the health probe.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        master_token: str = "",
        timeout: float = 10.0,
        health_timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if master_token:
            headers["Authorization"] = f"Bearer {master_token}"

        self.base_url = base_url
        self._health_timeout = health_timeout
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
            event_hooks={"request": [_log_request], "response": [_log_response]},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def find_user_by_identifier(self, identifier: str) -> UserRecord | None:
        """Find a user by national ID or email.

        Searches persons first, then loads the user bound to the first match.

        Returns:
            The merged user record, or None if nothing matches.

        Raises:
            httpx.HTTPError: On transport errors or non-404 error statuses.
        """
        try:
            response = await self._client.get(
                "/persons/search", params={"q": identifier}
            )
            response.raise_for_status()
            persons = response.json()
            if not persons:
                return None
            person = persons[0]

            response = await self._client.get(
                "/users", params={"persona_id": person["id"]}
            )
            response.raise_for_status()
            users = response.json()
            if not users:
                return None
            user = users[0]
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return None
            logger.error(
                "User lookup failed",
                status_code=e.response.status_code,
            )
            raise

        return UserRecord(
            id=user["id"],
            active=user.get("activo") == ACTIVE_STATUS,
            phone=_optional_text(person.get("telefono")),
            display_name=person.get("nombre") or "",
            username=user.get("usuario"),
            person_id=person["id"],
            national_id=_optional_text(person.get("ci")),
            email=person.get("mail"),
            first_surname=person.get("a_paterno"),
            second_surname=person.get("a_materno"),
        )

    async def update_password(self, user_id: int | str, new_password: str) -> bool:
        """Set a new password for the user.

        Returns:
            True if the main API accepted the change.

        Raises:
            httpx.HTTPError: On transport errors or error statuses.
        """
        response = await self._client.put(
            f"/users/{user_id}", json={"contrasena": new_password}
        )
        response.raise_for_status()
        return response.status_code == 200

    async def close_all_user_sessions(self, user_id: int | str) -> bool:
        """Close every active session of the user. Never raises."""
        try:
            response = await self._client.delete(f"/sessions/user/{user_id}")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(
                "Failed to close user sessions",
                user_id=str(user_id),
                error=str(e),
            )
            return False

    async def create_log(
        self, user_id: int | str, action: str, description: str
    ) -> bool:
        """Write an audit log entry on the main API. Never raises."""
        try:
            response = await self._client.post(
                "/logs",
                json={
                    "usuario_id": user_id,
                    "accion": action,
                    "descripcion": description,
                },
            )
            return response.status_code in (200, 201)
        except httpx.HTTPError as e:
            logger.warning(
                "Failed to write audit log to main API",
                user_id=str(user_id),
                action=action,
                error=str(e),
            )
            return False

    async def get_user_info(self, user_id: int | str) -> dict[str, Any] | None:
        try:
            response = await self._client.get(f"/users/{user_id}")
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            logger.warning("Failed to load user info", user_id=str(user_id), error=str(e))
            return None

    async def health_check(self) -> bool:
        """Return True if the main API answers GET /health with 200."""
        try:
            response = await self._client.get(
                "/health", timeout=self._health_timeout
            )
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning("Main API health check failed", error=str(e))
            return False
