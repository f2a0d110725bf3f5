from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from kfbot.database import create_db_engine
from kfbot.models import ConversationCursor
from kfbot.services.cursor_store import CursorStore, build_conversation_key, is_compound_key
from kfbot.services.errors import PersistenceError


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'cursors' / 'kfbot.db'}"


class TestConversationKey:
    def test_build(self):
        assert build_conversation_key("wk-1", "ww-corp") == "wk-1:ww-corp"

    def test_compound(self):
        assert is_compound_key("wk-1:ww-corp") is True
        assert is_compound_key("legacy") is False
        assert is_compound_key("") is False


class TestCursorStore:
    def test_unknown_key_is_empty(self, db_url):
        store = CursorStore.from_url(db_url)

        assert store.get_cursor("wk-1:ww") == ""

    def test_last_write_wins(self, db_url):
        store = CursorStore.from_url(db_url)
        for cursor in ["c1", "c2", "c3", "c4"]:
            store.update_cursor("wk-1:ww", cursor)

        assert store.get_cursor("wk-1:ww") == "c4"

    def test_clear(self, db_url):
        store = CursorStore.from_url(db_url)
        store.update_cursor("wk-1:ww", "c1")

        store.clear_cursor("wk-1:ww")

        assert store.get_cursor("wk-1:ww") == ""

    def test_keys_are_independent(self, db_url):
        store = CursorStore.from_url(db_url)
        store.update_cursor("wk-1:ww", "a")
        store.update_cursor("wk-2:ww", "b")

        assert store.get_cursor("wk-1:ww") == "a"
        assert store.get_cursor("wk-2:ww") == "b"

    def test_survives_restart(self, db_url):
        CursorStore.from_url(db_url).update_cursor("wk-1:ww", "persisted")

        assert CursorStore.from_url(db_url).get_cursor("wk-1:ww") == "persisted"

    def test_legacy_keys_purged_on_startup(self, db_url):
        store = CursorStore.from_url(db_url)
        store.update_cursor("wk-1:ww", "keep")
        db = store.session_factory()
        db.add(ConversationCursor(conversation_key="legacy", cursor="old", last_update_time=1))
        db.commit()
        db.close()

        reopened = CursorStore(create_db_engine(db_url))

        assert reopened.get_cursor("legacy") == ""
        assert reopened.get_cursor("wk-1:ww") == "keep"

    def test_write_failure_raises_persistence_error(self, db_url):
        store = CursorStore.from_url(db_url)

        with patch.object(store, "session_factory") as factory:
            factory.return_value.commit.side_effect = OperationalError("UPDATE", {}, Exception("disk I/O error"))
            with pytest.raises(PersistenceError):
                store.update_cursor("wk-1:ww", "c1")
