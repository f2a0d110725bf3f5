import logging
import time
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from kfbot.database import Base, create_db_engine, create_session_factory
from kfbot.logging_config import get_logger
from kfbot.models import ConversationCursor
from kfbot.services.errors import PersistenceError

KEY_SEPARATOR = ":"


def build_conversation_key(open_kf_id: str, corp_user: str) -> str:
    return f"{open_kf_id}{KEY_SEPARATOR}{corp_user}"


def is_compound_key(key: str) -> bool:
    return KEY_SEPARATOR in (key or "")


class CursorStore:
    """Durable per-conversation sync cursors.

    Every write is committed before the call returns. Keys without the
    ``open_kfid:corp_user`` shape are legacy rows and are purged on startup.
    """

    def __init__(
        self,
        engine: Engine,
        session_factory: Optional[sessionmaker] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.engine = engine
        self.session_factory = session_factory or create_session_factory(engine)
        self.logger = logger or get_logger("cursor_store")
        self._init_store()

    @classmethod
    def from_url(cls, database_url: str, logger: Optional[logging.Logger] = None) -> "CursorStore":
        return cls(create_db_engine(database_url), logger=logger)

    def _init_store(self) -> None:
        try:
            Base.metadata.create_all(self.engine, tables=[ConversationCursor.__table__])
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to initialize cursor store: {exc}") from exc
        self._purge_legacy_keys()

    def _purge_legacy_keys(self) -> None:
        db = self.session_factory()
        try:
            legacy = [row for row in db.query(ConversationCursor).all() if not is_compound_key(row.conversation_key)]
            for row in legacy:
                db.delete(row)
            if legacy:
                db.commit()
                self.logger.info(
                    "Purged legacy cursor entries",
                    extra={"context": {"count": len(legacy)}},
                )
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(f"Failed to purge legacy cursors: {exc}") from exc
        finally:
            db.close()

    def get_cursor(self, conversation_key: str) -> str:
        db = self.session_factory()
        try:
            row = db.get(ConversationCursor, conversation_key)
            return row.cursor if row and row.cursor else ""
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to read cursor for {conversation_key}: {exc}") from exc
        finally:
            db.close()

    def update_cursor(self, conversation_key: str, cursor: str) -> None:
        db = self.session_factory()
        try:
            now_ms = int(time.time() * 1000)
            row = db.get(ConversationCursor, conversation_key)
            if row is None:
                db.add(ConversationCursor(conversation_key=conversation_key, cursor=cursor, last_update_time=now_ms))
            else:
                row.cursor = cursor
                row.last_update_time = now_ms
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(f"Failed to save cursor for {conversation_key}: {exc}") from exc
        finally:
            db.close()

    def clear_cursor(self, conversation_key: str) -> None:
        db = self.session_factory()
        try:
            db.query(ConversationCursor).filter(ConversationCursor.conversation_key == conversation_key).delete()
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(f"Failed to clear cursor for {conversation_key}: {exc}") from exc
        finally:
            db.close()
