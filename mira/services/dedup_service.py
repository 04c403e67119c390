import hashlib
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from mira.logging_config import get_logger

logger = get_logger("dedup_service")

DEFAULT_TTL_SECONDS = 60 * 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_content_hash(sender: str, text: str, timestamp: int | float | str | None) -> str:
    """Digest over sender, normalized text and the transport timestamp.

    The transport timestamp is part of the key: a resend with a new timestamp is
    a new message, a replayed event is not.
    """
    payload = f"{sender}_{text}_{timestamp if timestamp is not None else ''}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class DedupCache:
    """Suppresses (sender, content hash) pairs already processed within the TTL."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._entries: dict[tuple[str, str], datetime] = {}
        self._lock = threading.RLock()

    def is_duplicate(self, sender: str, content_hash: str) -> bool:
        key = (sender, content_hash)
        now = self._clock()
        with self._lock:
            first_seen = self._entries.get(key)
            if first_seen is not None and now - first_seen <= self.ttl:
                return True
            self._entries[key] = now
            return False

    def cleanup(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, first_seen in self._entries.items() if now - first_seen > self.ttl]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.info("Cleaned message cache entries", extra={"context": {"removed": len(expired)}})
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def export(self) -> list[tuple[str, str, datetime]]:
        with self._lock:
            return [(sender, content_hash, seen) for (sender, content_hash), seen in self._entries.items()]

    def load(self, entries: Iterable[tuple[str, str, datetime]]) -> None:
        with self._lock:
            self._entries = {(sender, content_hash): seen for sender, content_hash, seen in entries}
