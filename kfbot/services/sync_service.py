import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from kfbot.logging_config import get_logger
from kfbot.schemas.callback import SyncedMessage
from kfbot.services.cursor_store import build_conversation_key

# kf/sync_msg origin of messages sent by the customer
ORIGIN_CUSTOMER = 3


@dataclass
class SyncOutcome:
    latest_message: Optional[SyncedMessage]
    cursor: str
    pages: int
    capped: bool = False


class SyncService:
    """Cursor-driven pull of newly arrived messages for one conversation."""

    def __init__(
        self,
        wecom,
        cursor_store,
        page_size: int = 1000,
        page_delay_seconds: float = 0.2,
        max_pages: int = 50,
        customer_only: bool = False,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.wecom = wecom
        self.cursor_store = cursor_store
        self.page_size = min(max(page_size, 1), 1000)
        self.page_delay_seconds = page_delay_seconds
        self.max_pages = max_pages
        self.customer_only = customer_only
        self.logger = logger or get_logger("sync_service")
        self._sleep = sleep

    def _is_candidate(self, message: SyncedMessage) -> bool:
        if not self.customer_only:
            return True
        return message.origin is None or message.origin == ORIGIN_CUSTOMER

    async def sync_latest_message(self, token: str, open_kf_id: str, corp_user: str) -> SyncOutcome:
        """Page through kf/sync_msg and return the last message seen.

        ``next_cursor`` is persisted after every page, so a crash mid-loop
        resumes from the last committed page. PersistenceError aborts the loop.
        """
        conversation_key = build_conversation_key(open_kf_id, corp_user)
        cursor = self.cursor_store.get_cursor(conversation_key)
        latest: Optional[SyncedMessage] = None
        pages = 0
        capped = False

        while True:
            page = await self.wecom.sync_message(cursor=cursor, token=token, limit=self.page_size)
            pages += 1

            candidates = [message for message in page.msg_list if self._is_candidate(message)]
            if candidates:
                latest = candidates[-1]

            if page.next_cursor:
                cursor = page.next_cursor
                self.cursor_store.update_cursor(conversation_key, cursor)

            if not page.has_more:
                break
            if pages >= self.max_pages:
                capped = True
                self.logger.warning(
                    "Sync page cap reached",
                    extra={"context": {"conversation_key": conversation_key, "pages": pages}},
                )
                break
            await self._sleep(self.page_delay_seconds)

        self.logger.info(
            "Sync finished",
            extra={
                "context": {
                    "conversation_key": conversation_key,
                    "pages": pages,
                    "latest_msgtype": latest.msgtype if latest else None,
                }
            },
        )
        return SyncOutcome(latest_message=latest, cursor=cursor, pages=pages, capped=capped)
