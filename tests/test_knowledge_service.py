import asyncio

import pytest
import yaml

from kfbot.config import DEFAULT_KNOWLEDGE_PATH
from kfbot.schemas.knowledge import KnowledgeItem, KnowledgeLink
from kfbot.services.knowledge_service import KnowledgeService, load_knowledge_file
from kfbot.services.media_cache import MEDIA_TTL_SECONDS, THUMB_KIND, VOICE_KIND, MediaCache, now_ms


@pytest.fixture
def media_cache(memory_cache):
    return MediaCache(memory_cache)


def _service(items, media_cache, path=None):
    return KnowledgeService(items, media_cache, knowledge_path=path)


class TestMediaCache:
    def test_put_then_get(self, media_cache, memory_cache):
        entry = asyncio.run(media_cache.put(VOICE_KIND, "笔法", "m1"))

        assert entry.media_id == "m1"
        assert entry.expire_time > now_ms()
        assert memory_cache.ttls["wecom-kf:media:voice:笔法"] == MEDIA_TTL_SECONDS
        assert asyncio.run(media_cache.get(VOICE_KIND, "笔法")) == entry

    def test_expired_entry_is_missing(self, media_cache, memory_cache):
        memory_cache.data["wecom-kf:media:thumb:p"] = {"media_id": "old", "expire_time": now_ms() - 1}

        assert asyncio.run(media_cache.get(THUMB_KIND, "p")) is None

    def test_malformed_entry_is_missing(self, media_cache, memory_cache):
        memory_cache.data["wecom-kf:media:voice:p"] = {"media_id": 5}

        assert asyncio.run(media_cache.get(VOICE_KIND, "p")) is None

    def test_invalidate(self, media_cache):
        asyncio.run(media_cache.put(VOICE_KIND, "p", "m1"))
        asyncio.run(media_cache.invalidate(VOICE_KIND, "p"))

        assert asyncio.run(media_cache.get(VOICE_KIND, "p")) is None


class TestFindMatch:
    def test_first_match_wins(self, media_cache):
        service = _service(
            [
                KnowledgeItem(pattern="书法", response="A"),
                KnowledgeItem(pattern="书", response="B"),
            ],
            media_cache,
        )

        assert service.find_match("我想学书法").response == "A"

    def test_earlier_regex_shadows_later_literal(self, media_cache):
        service = _service(
            [
                KnowledgeItem(pattern="^草书", is_regex=True, response="A"),
                KnowledgeItem(pattern="草书", response="B"),
            ],
            media_cache,
        )

        assert service.find_match("草书怎么写").response == "A"
        assert service.find_match("请教草书").response == "B"

    def test_literal_pattern_is_not_a_regex(self, media_cache):
        service = _service([KnowledgeItem(pattern="a.c", response="dot")], media_cache)

        assert service.find_match("abc") is None
        assert service.find_match("xa.cx").response == "dot"

    def test_no_match(self, media_cache):
        service = _service([KnowledgeItem(pattern="张旭", response="A")], media_cache)

        assert service.find_match("今天天气") is None
        assert service.find_match("") is None

    def test_invalid_regex_never_matches(self, media_cache):
        service = _service(
            [
                KnowledgeItem(pattern="([", is_regex=True, response="broken"),
                KnowledgeItem(pattern="[", response="literal"),
            ],
            media_cache,
        )

        assert service.find_match("[").response == "literal"

    def test_expired_voice_cleared_on_match(self, media_cache):
        item = KnowledgeItem(
            pattern="禅",
            response="A",
            voice_media_id="stale",
            voice_media_expire_time=now_ms() - 1000,
        )
        service = _service([item], media_cache)

        matched = service.find_match("禅意")

        assert matched.voice_media_id is None
        assert matched.voice_media_expire_time is None

    def test_valid_voice_kept_on_match(self, media_cache):
        item = KnowledgeItem(
            pattern="禅",
            response="A",
            voice_media_id="fresh",
            voice_media_expire_time=now_ms() + 60_000,
        )
        service = _service([item], media_cache)

        assert service.find_match("禅意").voice_media_id == "fresh"
        assert KnowledgeService.check_voice_media_valid(item) is True


class TestMediaIds:
    def test_update_voice_media_id_writes_through(self, media_cache):
        service = _service([KnowledgeItem(pattern="p", response="r")], media_cache)

        asyncio.run(service.update_voice_media_id("p", "m1"))

        assert service.items[0].voice_media_id == "m1"
        assert asyncio.run(media_cache.get(VOICE_KIND, "p")).media_id == "m1"

    def test_invalidate_voice_media_id(self, media_cache):
        service = _service([KnowledgeItem(pattern="p", response="r")], media_cache)
        asyncio.run(service.update_voice_media_id("p", "m1"))

        asyncio.run(service.invalidate_voice_media_id("p"))

        assert service.items[0].voice_media_id is None
        assert KnowledgeService.check_voice_media_valid(service.items[0]) is False
        assert asyncio.run(media_cache.get(VOICE_KIND, "p")) is None

    def test_link_thumb_validity_reads_cache(self, media_cache):
        item = KnowledgeItem(pattern="p", link=KnowledgeLink(title="t", url="https://example.com"))
        service = _service([item], media_cache)

        assert asyncio.run(service.check_link_thumb_media_valid(item)) is False

        asyncio.run(media_cache.put(THUMB_KIND, "p", "thumb-1"))

        assert asyncio.run(service.check_link_thumb_media_valid(item)) is True
        assert item.thumb_media_id == "thumb-1"

    def test_hydrate_restores_cached_ids(self, media_cache):
        asyncio.run(media_cache.put(VOICE_KIND, "a", "voice-a"))
        asyncio.run(media_cache.put(THUMB_KIND, "b", "thumb-b"))
        service = _service(
            [KnowledgeItem(pattern="a", response="x"), KnowledgeItem(pattern="b", response="y")],
            media_cache,
        )

        assert asyncio.run(service.hydrate()) == 2
        assert service.items[0].voice_media_id == "voice-a"
        assert service.items[1].thumb_media_id == "thumb-b"


class TestKnowledgeFile:
    def test_shipped_table_loads(self):
        base = load_knowledge_file(DEFAULT_KNOWLEDGE_PATH)

        assert base.items
        assert base.items[0].is_regex is True

    def test_missing_file_is_empty(self, tmp_path):
        assert load_knowledge_file(tmp_path / "missing.yaml").items == []

    def test_add_remove_update_persist(self, tmp_path, media_cache):
        path = tmp_path / "knowledge.yaml"
        path.write_text("items:\n  - pattern: 张旭\n    response: 颠张\n", encoding="utf-8")
        service = KnowledgeService.from_file(path, media_cache)

        service.add_item(KnowledgeItem(pattern="^怀素", is_regex=True, response="狂素"))
        service.update_item("张旭", KnowledgeItem(pattern="张旭|颠张", is_regex=True, response="颠张狂素"))
        reloaded = load_knowledge_file(path)

        assert [item.pattern for item in reloaded.items] == ["张旭|颠张", "^怀素"]
        assert reloaded.items[1].is_regex is True

        service.remove_item("^怀素")

        assert [item["pattern"] for item in yaml.safe_load(path.read_text(encoding="utf-8"))["items"]] == ["张旭|颠张"]

    def test_media_ids_not_saved(self, tmp_path, media_cache):
        path = tmp_path / "knowledge.yaml"
        service = KnowledgeService([], media_cache, knowledge_path=path)

        service.add_item(KnowledgeItem(pattern="p", response="r", voice_media_id="m1", voice_media_expire_time=1))

        assert "voice_media_id" not in path.read_text(encoding="utf-8")

    def test_resolve_image_path_relative_to_file(self, tmp_path, media_cache):
        path = tmp_path / "knowledge.yaml"
        item = KnowledgeItem(pattern="p", link=KnowledgeLink(title="t", url="u", image_path="assets/a.jpg"))
        service = KnowledgeService([item], media_cache, knowledge_path=path)

        assert service.resolve_image_path(item) == tmp_path / "assets" / "a.jpg"
