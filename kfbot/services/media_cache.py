import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from kfbot.logging_config import get_logger

# WeCom temporary media expires after 3 days
MEDIA_TTL_SECONDS = 3 * 24 * 60 * 60

VOICE_KIND = "voice"
THUMB_KIND = "thumb"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class MediaCacheEntry:
    media_id: str
    expire_time: int  # epoch millis

    def is_valid(self, at_ms: Optional[int] = None) -> bool:
        return bool(self.media_id) and self.expire_time > (at_ms if at_ms is not None else now_ms())


class MediaCache:
    """Vendor media handles keyed by knowledge pattern, stored in the external cache."""

    def __init__(self, cache: Any, ttl_seconds: int = MEDIA_TTL_SECONDS, logger: Optional[logging.Logger] = None):
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.logger = logger or get_logger("media_cache")

    def _key(self, kind: str, pattern: str) -> str:
        return self.cache.key("media", kind, pattern)

    async def get(self, kind: str, pattern: str) -> Optional[MediaCacheEntry]:
        """Return the entry if present and unexpired."""
        data = await self.cache.get_json(self._key(kind, pattern))
        if not isinstance(data, dict):
            return None
        media_id = data.get("media_id")
        expire_time = data.get("expire_time")
        if not isinstance(media_id, str) or not isinstance(expire_time, int):
            return None
        entry = MediaCacheEntry(media_id=media_id, expire_time=expire_time)
        if not entry.is_valid():
            return None
        return entry

    async def put(self, kind: str, pattern: str, media_id: str) -> MediaCacheEntry:
        entry = MediaCacheEntry(media_id=media_id, expire_time=now_ms() + self.ttl_seconds * 1000)
        await self.cache.set_json(
            self._key(kind, pattern),
            {"media_id": entry.media_id, "expire_time": entry.expire_time},
            self.ttl_seconds,
        )
        return entry

    async def invalidate(self, kind: str, pattern: str) -> None:
        await self.cache.delete(self._key(kind, pattern))
