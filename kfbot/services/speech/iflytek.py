"""iFlytek websocket TTS and ASR.

Each call opens one websocket, sends the request frames, reads frames until the
final one (``data.status == 2``) and closes. The whole exchange is bounded by a
hard timeout; leaving the ``async with`` block closes the socket on success,
error, timeout and cancellation alike.
"""

import asyncio
import base64
import hashlib
import hmac
import json
import logging
from email.utils import formatdate
from typing import Any, Callable, Iterable, Optional
from urllib.parse import urlencode, urlparse

import websockets
from websockets.exceptions import WebSocketException

from kfbot.logging_config import get_logger
from kfbot.services.errors import SpeechRecognitionFailed, SynthesisFailed, UpstreamApiError

TTS_URL = "wss://tts-api.xfyun.cn/v2/tts"
ASR_URL = "wss://iat-api.xfyun.cn/v2/iat"
FINAL_STATUS = 2


def build_auth_url(host_url: str, api_key: str, api_secret: str, date: Optional[str] = None) -> str:
    """Sign ``host/date/request-line`` with HMAC-SHA256 and append it as query params."""
    parsed = urlparse(host_url)
    host = parsed.netloc
    date = date or formatdate(usegmt=True)
    signature_origin = f"host: {host}\ndate: {date}\nGET {parsed.path} HTTP/1.1"
    digest = hmac.new(api_secret.encode("utf-8"), signature_origin.encode("utf-8"), hashlib.sha256).digest()
    signature = base64.b64encode(digest).decode("utf-8")
    authorization_origin = (
        f'api_key="{api_key}", algorithm="hmac-sha256", '
        f'headers="host date request-line", signature="{signature}"'
    )
    authorization = base64.b64encode(authorization_origin.encode("utf-8")).decode("utf-8")
    return f"{host_url}?{urlencode({'authorization': authorization, 'date': date, 'host': host})}"


class IflytekClient:
    host_url = ""

    def __init__(
        self,
        app_id: str,
        api_key: str,
        api_secret: str,
        timeout_seconds: float = 20.0,
        logger: Optional[logging.Logger] = None,
        connect: Callable[..., Any] = websockets.connect,
    ):
        if not app_id or not api_key or not api_secret:
            raise ValueError("iFlytek credentials are incomplete")
        self.app_id = app_id
        self.api_key = api_key
        self.api_secret = api_secret
        self.timeout_seconds = timeout_seconds
        self.logger = logger or get_logger("speech.iflytek")
        self._connect = connect

    async def _exchange(self, frames: Iterable[dict], on_data: Callable[[dict], None]) -> None:
        url = build_auth_url(self.host_url, self.api_key, self.api_secret)

        async def run() -> None:
            async with self._connect(url) as ws:
                for frame in frames:
                    await ws.send(json.dumps(frame))
                async for raw in ws:
                    response = json.loads(raw)
                    if response.get("code") != 0:
                        raise UpstreamApiError("iflytek", response.get("code"), response.get("message"))
                    data = response.get("data") or {}
                    on_data(data)
                    if data.get("status") == FINAL_STATUS:
                        return
            raise ConnectionError("iFlytek closed the connection before the final frame")

        await asyncio.wait_for(run(), timeout=self.timeout_seconds)


class IflytekTTS(IflytekClient):
    host_url = TTS_URL

    def __init__(self, *args, voice_name: str = "xiaoyan", **kwargs):
        super().__init__(*args, **kwargs)
        self.voice_name = voice_name

    async def text_to_speech(self, text: str) -> bytes:
        """Synthesize ``text`` to mp3 bytes."""
        chunks: list[bytes] = []

        def collect(data: dict) -> None:
            audio = data.get("audio")
            if audio:
                chunks.append(base64.b64decode(audio))

        frame = {
            "common": {"app_id": self.app_id},
            "business": {
                "aue": "lame",
                "sfl": 0,
                "auf": "audio/L16;rate=16000",
                "vcn": self.voice_name,
                "speed": 50,
                "volume": 50,
                "pitch": 50,
                "bgs": 0,
                "tte": "UTF8",
            },
            "data": {"status": FINAL_STATUS, "text": base64.b64encode(text.encode("utf-8")).decode("utf-8")},
        }

        try:
            await self._exchange([frame], collect)
        except asyncio.TimeoutError as exc:
            raise SynthesisFailed(f"TTS timed out after {self.timeout_seconds}s") from exc
        except (UpstreamApiError, WebSocketException, OSError, ValueError) as exc:
            raise SynthesisFailed(f"TTS failed: {exc}") from exc

        audio = b"".join(chunks)
        if not audio:
            raise SynthesisFailed("TTS returned no audio")
        return audio


class IflytekASR(IflytekClient):
    host_url = ASR_URL

    async def recognize_speech(
        self,
        audio: bytes,
        *,
        language: str = "zh_cn",
        domain: str = "iat",
        accent: str = "mandarin",
        vad_eos: int = 3000,
        punctuation: bool = True,
    ) -> str:
        """Recognize 16k mono 16-bit PCM audio."""
        if not audio:
            raise SpeechRecognitionFailed("Audio is empty")
        parts: list[str] = []

        def collect(data: dict) -> None:
            result = data.get("result") or {}
            for ws_item in result.get("ws") or []:
                parts.append("".join(cw.get("w", "") for cw in ws_item.get("cw") or []))

        frames = [
            {
                "common": {"app_id": self.app_id},
                "business": {
                    "language": language,
                    "domain": domain,
                    "accent": accent,
                    "vad_eos": vad_eos,
                    "ptt": 1 if punctuation else 0,
                },
                "data": {
                    "status": 0,
                    "format": "audio/L16;rate=16000",
                    "encoding": "raw",
                    "audio": base64.b64encode(audio).decode("utf-8"),
                },
            },
            {"data": {"status": FINAL_STATUS}},
        ]

        try:
            await self._exchange(frames, collect)
        except asyncio.TimeoutError as exc:
            raise SpeechRecognitionFailed(f"ASR timed out after {self.timeout_seconds}s") from exc
        except (UpstreamApiError, WebSocketException, OSError, ValueError) as exc:
            raise SpeechRecognitionFailed(f"ASR failed: {exc}") from exc

        return "".join(parts).strip()
