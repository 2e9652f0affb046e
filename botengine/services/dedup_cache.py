"""Short-window memo of recently processed messages.

Sheds wire-level webhook retries before they cost a store round-trip for the
session lock. It is per process (optionally shared through Redis) and only
best-effort; the session lock remains the correctness boundary.
"""

import hashlib
import threading
import time
from collections import OrderedDict
from enum import Enum

import redis.asyncio as redis_async

from botengine.config import settings
from botengine.logging_config import get_logger

logger = get_logger("dedup_cache")

REDIS_SOCKET_TIMEOUT_SECONDS = 0.3
REDIS_KEY_PREFIX = "botengine:dedup:"


class DedupStatus(str, Enum):
    NEW = "new"
    DUPLICATE = "duplicate"


def build_fingerprint(contact: str, tenant: str, text: str, bucket: int) -> str:
    raw = f"{contact}:{tenant}:{(text or '').strip()}:{bucket}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def build_message_id_fingerprint(contact: str, tenant: str, message_id: str) -> str:
    raw = f"{contact}:{tenant}:id:{message_id}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class DedupCache:
    """Bounded fingerprint -> first-seen timestamp map with eviction on every access."""

    def __init__(self, window_seconds: float = 30, max_entries: int = 10000):
        self.window_seconds = window_seconds
        self.max_entries = max_entries
        self._entries: OrderedDict[str, float] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def bucket_for(self, now: float) -> int:
        return int(now // self.window_seconds) if self.window_seconds > 0 else int(now)

    def _evict(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._entries:
            fingerprint, seen_at = next(iter(self._entries.items()))
            if seen_at >= cutoff and len(self._entries) <= self.max_entries:
                break
            self._entries.pop(fingerprint)

    def fingerprints(
        self, contact: str, tenant: str, text: str, now: float, message_id: str | None = None
    ) -> tuple[str, ...]:
        """Fingerprint to mark first, then any extra ones to check.

        A gateway message id identifies a redelivery exactly, so repeated text
        (``1`` in two menus in a row) is never mistaken for a retry. Without
        an id the text is bucketed in time.
        """
        if message_id:
            return (build_message_id_fingerprint(contact, tenant, message_id),)
        bucket = self.bucket_for(now)
        # A retry may land just past a bucket boundary, so the previous bucket is checked too.
        return (
            build_fingerprint(contact, tenant, text, bucket),
            build_fingerprint(contact, tenant, text, bucket - 1),
        )

    def check_and_mark(
        self,
        contact: str,
        tenant: str,
        text: str,
        now: float | None = None,
        message_id: str | None = None,
    ) -> DedupStatus:
        now = time.time() if now is None else now
        candidates = self.fingerprints(contact, tenant, text, now, message_id)
        fingerprint = candidates[0]
        with self._lock:
            self._evict(now)
            for candidate in candidates:
                seen_at = self._entries.get(candidate)
                if seen_at is not None and now - seen_at <= self.window_seconds:
                    return DedupStatus.DUPLICATE
            self._entries[fingerprint] = now
            self._evict(now)
        return DedupStatus.NEW

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


_redis_client = None
_redis_url = None


def _get_dedup_redis(redis_url: str):
    global _redis_client, _redis_url

    if not redis_url:
        return None
    if _redis_client is None or _redis_url != redis_url:
        _redis_url = redis_url
        _redis_client = redis_async.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=REDIS_SOCKET_TIMEOUT_SECONDS,
            socket_timeout=REDIS_SOCKET_TIMEOUT_SECONDS,
        )
    return _redis_client


async def check_delivery(
    cache: DedupCache,
    contact: str,
    tenant: str,
    text: str,
    *,
    redis_client=None,
    now: float | None = None,
    message_id: str | None = None,
) -> DedupStatus:
    """Check Redis when configured (shared across instances), else the local cache."""
    redis_client = redis_client or _get_dedup_redis(settings.dedup_redis_url)
    if redis_client:
        now_ts = time.time() if now is None else now
        key, *others = [
            f"{REDIS_KEY_PREFIX}{fingerprint}"
            for fingerprint in cache.fingerprints(contact, tenant, text, now_ts, message_id)
        ]
        try:
            for other in others:
                if await redis_client.exists(other):
                    return DedupStatus.DUPLICATE
            was_set = await redis_client.set(key, "1", ex=max(int(cache.window_seconds), 1), nx=True)
            return DedupStatus.NEW if was_set else DedupStatus.DUPLICATE
        except Exception as e:
            logger.warning(f"Dedup redis unavailable, falling back to local cache: {e}")
    return cache.check_and_mark(contact, tenant, text, now=now, message_id=message_id)
