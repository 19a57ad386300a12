"""Recovery audit logging service."""

import enum

from recovery_api.logging_config import get_logger
from recovery_api.services.main_api import MainApiClient

logger = get_logger(__name__)


class AuditEvent(str, enum.Enum):
    """Audit actions written to the main API log."""

    RECOVERY_CODE_REQUESTED = "RECOVERY_CODE_REQUESTED"
    VERIFICATION_CODE_EXPIRED = "VERIFICATION_CODE_EXPIRED"
    MAX_ATTEMPTS_EXCEEDED = "MAX_ATTEMPTS_EXCEEDED"
    VERIFICATION_CODE_INCORRECT = "VERIFICATION_CODE_INCORRECT"
    VERIFICATION_CODE_VERIFIED = "VERIFICATION_CODE_VERIFIED"
    RESET_TOKEN_INVALID = "RESET_TOKEN_INVALID"
    RESET_TOKEN_EXPIRED = "RESET_TOKEN_EXPIRED"
    PASSWORD_RESET_COMPLETED = "PASSWORD_RESET_COMPLETED"


class AuditService:
    """Writes audit events to the main API.

    Fire-and-forget: logs errors but never raises so callers are not disrupted.
    """

    def __init__(self, client: MainApiClient) -> None:
        self._client = client

    async def record(
        self, user_id: int | str, event: AuditEvent, detail: str
    ) -> None:
        logger.info(
            "Audit event",
            event_type=event.value,
            user_id=str(user_id),
            detail=detail,
        )
        try:
            stored = await self._client.create_log(user_id, event.value, detail)
        except Exception:
            logger.exception(
                "Failed to write audit log",
                event_type=event.value,
                user_id=str(user_id),
            )
            return

        if not stored:
            logger.warning(
                "Main API did not store audit log",
                event_type=event.value,
                user_id=str(user_id),
            )
