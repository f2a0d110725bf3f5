"""Static knowledge table: ordered patterns mapped to canned replies, links and cached voice."""

import logging
import re
import threading
from pathlib import Path
from typing import List, Optional

import yaml

from kfbot.logging_config import get_logger
from kfbot.schemas.knowledge import KnowledgeBase, KnowledgeItem
from kfbot.services.errors import PersistenceError
from kfbot.services.media_cache import THUMB_KIND, VOICE_KIND, MediaCache, now_ms

_MEDIA_FIELDS = {"voice_media_id", "voice_media_expire_time", "thumb_media_id", "thumb_media_expire_time"}


def load_knowledge_file(path: Path) -> KnowledgeBase:
    if not path.exists():
        return KnowledgeBase()
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        return KnowledgeBase()
    return KnowledgeBase.model_validate(data)


class KnowledgeService:
    """First-match-wins knowledge lookup.

    Order is part of the contract: an earlier item shadows any later item
    matching the same input. Media ids are mirrored from the MediaCache and
    cleared from the in-memory item once expired.
    """

    def __init__(
        self,
        items: List[KnowledgeItem],
        media_cache: MediaCache,
        knowledge_path: Optional[Path] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.items = list(items)
        self.media_cache = media_cache
        self.knowledge_path = knowledge_path
        self.logger = logger or get_logger("knowledge_service")
        self._lock = threading.Lock()
        self._compiled: dict[str, Optional[re.Pattern]] = {}

    @classmethod
    def from_file(
        cls,
        path: Path,
        media_cache: MediaCache,
        logger: Optional[logging.Logger] = None,
    ) -> "KnowledgeService":
        base = load_knowledge_file(path)
        service = cls(base.items, media_cache, knowledge_path=path, logger=logger)
        service.logger.info(f"Knowledge base loaded: {len(base.items)} items from {path}")
        return service

    def _regex(self, pattern: str) -> Optional[re.Pattern]:
        if pattern not in self._compiled:
            try:
                self._compiled[pattern] = re.compile(pattern)
            except re.error as exc:
                self.logger.warning(f"Invalid knowledge regex {pattern!r}: {exc}")
                self._compiled[pattern] = None
        return self._compiled[pattern]

    def _matches(self, item: KnowledgeItem, text: str) -> bool:
        if item.is_regex:
            regex = self._regex(item.pattern)
            return bool(regex and regex.search(text))
        return item.pattern in text

    @staticmethod
    def _drop_expired_media(item: KnowledgeItem, at_ms: int) -> None:
        if item.voice_media_id and not (item.voice_media_expire_time and item.voice_media_expire_time > at_ms):
            item.voice_media_id = None
            item.voice_media_expire_time = None
        if item.thumb_media_id and not (item.thumb_media_expire_time and item.thumb_media_expire_time > at_ms):
            item.thumb_media_id = None
            item.thumb_media_expire_time = None

    def find_match(self, text: str) -> Optional[KnowledgeItem]:
        if not text:
            return None
        with self._lock:
            for item in self.items:
                if self._matches(item, text):
                    self._drop_expired_media(item, now_ms())
                    return item
        return None

    def get_all(self) -> List[KnowledgeItem]:
        with self._lock:
            return list(self.items)

    def _find_by_pattern(self, pattern: str) -> Optional[KnowledgeItem]:
        for item in self.items:
            if item.pattern == pattern:
                return item
        return None

    @staticmethod
    def check_voice_media_valid(item: KnowledgeItem) -> bool:
        return bool(item.voice_media_id and item.voice_media_expire_time and item.voice_media_expire_time > now_ms())

    async def check_link_thumb_media_valid(self, item: KnowledgeItem) -> bool:
        entry = await self.media_cache.get(THUMB_KIND, item.pattern)
        if entry is None:
            return False
        with self._lock:
            item.thumb_media_id = entry.media_id
            item.thumb_media_expire_time = entry.expire_time
        return True

    async def update_voice_media_id(self, pattern: str, media_id: str) -> None:
        entry = await self.media_cache.put(VOICE_KIND, pattern, media_id)
        with self._lock:
            item = self._find_by_pattern(pattern)
            if item is not None:
                item.voice_media_id = entry.media_id
                item.voice_media_expire_time = entry.expire_time

    async def update_link_thumb_media_id(self, pattern: str, media_id: str) -> None:
        entry = await self.media_cache.put(THUMB_KIND, pattern, media_id)
        with self._lock:
            item = self._find_by_pattern(pattern)
            if item is not None:
                item.thumb_media_id = entry.media_id
                item.thumb_media_expire_time = entry.expire_time

    async def invalidate_voice_media_id(self, pattern: str) -> None:
        with self._lock:
            item = self._find_by_pattern(pattern)
            if item is not None:
                item.voice_media_id = None
                item.voice_media_expire_time = None
        await self.media_cache.invalidate(VOICE_KIND, pattern)

    async def hydrate(self) -> int:
        """Pull cached media ids for every item. Returns how many were restored."""
        restored = 0
        for item in self.get_all():
            try:
                voice = await self.media_cache.get(VOICE_KIND, item.pattern)
                thumb = await self.media_cache.get(THUMB_KIND, item.pattern)
            except PersistenceError as exc:
                self.logger.warning(f"Knowledge media hydrate skipped: {exc}")
                return restored
            with self._lock:
                if voice:
                    item.voice_media_id = voice.media_id
                    item.voice_media_expire_time = voice.expire_time
                    restored += 1
                if thumb:
                    item.thumb_media_id = thumb.media_id
                    item.thumb_media_expire_time = thumb.expire_time
                    restored += 1
        return restored

    def resolve_image_path(self, item: KnowledgeItem) -> Optional[Path]:
        if not item.link or not item.link.image_path:
            return None
        path = Path(item.link.image_path)
        if not path.is_absolute() and self.knowledge_path is not None:
            path = self.knowledge_path.parent / path
        return path

    def _save(self) -> None:
        if self.knowledge_path is None:
            return
        data = {
            "items": [
                item.model_dump(by_alias=True, exclude_none=True, exclude=_MEDIA_FIELDS) for item in self.items
            ]
        }
        try:
            with self.knowledge_path.open("w", encoding="utf-8") as handle:
                yaml.safe_dump(data, handle, allow_unicode=True, sort_keys=False)
        except OSError as exc:
            raise PersistenceError(f"Failed to save knowledge base: {exc}") from exc

    def add_item(self, item: KnowledgeItem) -> None:
        with self._lock:
            self.items.append(item)
            self._save()

    def remove_item(self, pattern: str) -> None:
        with self._lock:
            self.items = [item for item in self.items if item.pattern != pattern]
            self._save()

    def update_item(self, old_pattern: str, new_item: KnowledgeItem) -> bool:
        with self._lock:
            for index, item in enumerate(self.items):
                if item.pattern == old_pattern:
                    self.items[index] = new_item
                    self._save()
                    return True
        return False
