import asyncio
import logging
import time
from typing import Any, Optional

import httpx

from kfbot.logging_config import get_logger
from kfbot.schemas.callback import Recipient, SyncPage
from kfbot.services.errors import UpstreamApiError

# Refresh the access token a little before WeCom expires it
TOKEN_REFRESH_MARGIN_SECONDS = 300

# invalid credential, invalid access_token, access_token expired
STALE_TOKEN_ERRCODES = frozenset({40001, 40014, 42001})


class WeComService:
    """Client for the WeCom customer-service (kf) REST API."""

    DEFAULT_BASE_URL = "https://qyapi.weixin.qq.com/cgi-bin"

    def __init__(
        self,
        corp_id: str,
        secret: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.corp_id = corp_id
        self.secret = secret
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.transport = transport
        self.logger = logger or get_logger("wecom_service")
        self._access_token: Optional[str] = None
        self._token_expire_at = 0.0
        self._token_lock = asyncio.Lock()

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport)

    @staticmethod
    def _check(operation: str, data: Any) -> dict:
        if not isinstance(data, dict):
            raise UpstreamApiError(operation, None, "unexpected response body")
        errcode = data.get("errcode", 0)
        if errcode != 0:
            raise UpstreamApiError(operation, errcode, data.get("errmsg"))
        return data

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
        files: Optional[dict] = None,
    ) -> dict:
        url = f"{self.base_url}/{path}"
        try:
            async with self._client() as client:
                response = await client.request(method, url, params=params, json=json, files=files)
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            self.logger.error(f"WeCom {operation} request error: {exc}")
            raise UpstreamApiError(operation, None, str(exc)) from exc
        return self._check(operation, data)

    async def get_access_token(self) -> str:
        async with self._token_lock:
            if self._access_token and time.monotonic() < self._token_expire_at:
                return self._access_token

            data = await self._request(
                "gettoken",
                "GET",
                "gettoken",
                params={"corpid": self.corp_id, "corpsecret": self.secret},
            )
            expires_in = int(data.get("expires_in") or 7200)
            self._access_token = data["access_token"]
            self._token_expire_at = time.monotonic() + max(expires_in - TOKEN_REFRESH_MARGIN_SECONDS, 0)
            self.logger.info("WeCom access token refreshed", extra={"context": {"expires_in": expires_in}})
            return self._access_token

    def invalidate_access_token(self) -> None:
        self._access_token = None
        self._token_expire_at = 0.0

    async def _authed(self, operation: str, method: str, path: str, **kwargs) -> dict:
        """Call with the cached token; on a stale-token errcode refresh it and retry once."""
        params = dict(kwargs.pop("params", None) or {})
        params["access_token"] = await self.get_access_token()
        try:
            return await self._request(operation, method, path, params=params, **kwargs)
        except UpstreamApiError as exc:
            if exc.errcode not in STALE_TOKEN_ERRCODES:
                raise
            self.logger.warning(
                "WeCom access token rejected, refreshing",
                extra={"context": {"operation": operation, "errcode": exc.errcode}},
            )
            self.invalidate_access_token()

        params["access_token"] = await self.get_access_token()
        return await self._request(operation, method, path, params=params, **kwargs)

    async def send_message(self, payload: dict) -> dict:
        return await self._authed("send_msg", "POST", "kf/send_msg", json=payload)

    async def send_text(self, recipient: Recipient, content: str) -> dict:
        return await self.send_message(
            {**recipient.model_dump(), "msgtype": "text", "text": {"content": content}}
        )

    async def send_voice(self, recipient: Recipient, media_id: str) -> dict:
        return await self.send_message(
            {**recipient.model_dump(), "msgtype": "voice", "voice": {"media_id": media_id}}
        )

    async def send_link(
        self,
        recipient: Recipient,
        *,
        title: str,
        desc: str,
        url: str,
        thumb_media_id: str,
    ) -> dict:
        return await self.send_message(
            {
                **recipient.model_dump(),
                "msgtype": "link",
                "link": {"title": title, "desc": desc, "url": url, "thumb_media_id": thumb_media_id},
            }
        )

    async def sync_message(self, cursor: str = "", token: str = "", limit: int = 1000) -> SyncPage:
        body: dict[str, Any] = {"token": token, "limit": limit}
        if cursor:
            body["cursor"] = cursor
        data = await self._authed("sync_msg", "POST", "kf/sync_msg", json=body)
        return SyncPage.model_validate(data)

    async def upload_media(self, media_type: str, content: bytes, filename: str) -> str:
        data = await self._authed(
            "media_upload",
            "POST",
            "media/upload",
            params={"type": media_type},
            files={"media": (filename, content)},
        )
        media_id = data.get("media_id")
        if not media_id:
            raise UpstreamApiError("media_upload", None, "response has no media_id")
        return media_id

    async def get_media(self, media_id: str) -> bytes:
        token = await self.get_access_token()
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.base_url}/media/get",
                    params={"access_token": token, "media_id": media_id},
                )
        except httpx.HTTPError as exc:
            raise UpstreamApiError("media_get", None, str(exc)) from exc

        content_type = response.headers.get("content-type", "")
        if "json" in content_type or "text/plain" in content_type:
            try:
                self._check("media_get", response.json())
            except ValueError as exc:
                raise UpstreamApiError("media_get", None, response.text[:200]) from exc
        if response.status_code != 200 or not response.content:
            raise UpstreamApiError("media_get", response.status_code, "empty media body")
        return response.content

    async def get_servicer_list(self, open_kfid: str) -> dict:
        return await self._authed("servicer_list", "GET", "kf/servicer/list", params={"open_kfid": open_kfid})

    async def get_account_list(self, offset: int = 0, limit: int = 100) -> dict:
        return await self._authed("account_list", "POST", "kf/account/list", json={"offset": offset, "limit": limit})
