"""In-memory verification state for the recovery flow.

Holds one-time codes and reset tokens keyed by user id. Codes live under
the bare user id, reset tokens under ``reset:<user id>`` so the two never
collide. Entries are not evicted on read; expired entries are removed by
the workflow when it notices them or by the periodic sweep.

State is local to the process and lost on restart, which limits the
service to a single instance.
"""

from dataclasses import dataclass
from datetime import datetime

from recovery_api.logging_config import get_logger

logger = get_logger(__name__)

RESET_KEY_PREFIX = "reset:"


@dataclass
class VerificationEntry:
    """A one-time code issued to a user."""

    code: str
    phone: str
    expires_at: datetime
    attempts: int = 0


@dataclass
class ResetTokenEntry:
    """A reset token issued after a successful code verification."""

    token: str
    expires_at: datetime


StoreEntry = VerificationEntry | ResetTokenEntry


def verification_key(user_id: str | int) -> str:
    return str(user_id)


def reset_key(user_id: str | int) -> str:
    return f"{RESET_KEY_PREFIX}{user_id}"


class VerificationStore:
    """Process-wide map of recovery entries with manual expiry.

    Mutations are plain dict operations, so within one event loop no two
    requests interleave inside a single call. Concurrent writes for the same
    key are last-write-wins.
    """

    def __init__(self) -> None:
        self._entries: dict[str, StoreEntry] = {}

    def put(self, key: str, entry: StoreEntry) -> None:
        """Store an entry, replacing whatever was there."""
        self._entries[key] = entry

    def get(self, key: str) -> StoreEntry | None:
        return self._entries.get(key)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def sweep_expired(self, now: datetime) -> int:
        """Remove every entry whose ``expires_at`` is before ``now``.

        Returns:
            Number of entries removed.
        """
        expired = [
            key for key, entry in self._entries.items() if entry.expires_at < now
        ]
        for key in expired:
            del self._entries[key]

        if expired:
            logger.info(
                "Swept expired recovery entries",
                removed=len(expired),
                remaining=len(self._entries),
            )
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
