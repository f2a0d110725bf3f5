from typing import List, Optional

import httpx

from kfbot.logging_config import get_logger
from kfbot.services.errors import UpstreamApiError
from kfbot.services.llm.base import LLMProvider, LLMResponse

logger = get_logger("llm.openai")


class OpenAIProvider(LLMProvider):
    """Chat completions and Whisper transcription over any OpenAI-compatible endpoint."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: float = 60.0,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def _post(self, operation: str, path: str, **kwargs) -> httpx.Response:
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(
                    f"{self.base_url}{path}",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    **kwargs,
                )
        except httpx.HTTPError as exc:
            raise UpstreamApiError(operation, None, str(exc)) from exc

        if response.status_code != 200:
            logger.error(
                f"OpenAI {operation} failed",
                extra={"context": {"status": response.status_code, "body": response.text[:200]}},
            )
            raise UpstreamApiError(operation, response.status_code, response.text[:200])
        return response

    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> LLMResponse:
        model = model or self.default_model
        response = self._post(
            "chat_completion",
            "/chat/completions",
            json={"model": model, "messages": messages, "temperature": temperature, "max_tokens": max_tokens},
        )
        data = response.json()

        content = ""
        choices = data.get("choices") or []
        if choices:
            content = (choices[0].get("message") or {}).get("content") or ""
        return LLMResponse(content=content, model=data.get("model", model), usage=data.get("usage"))

    def transcribe_audio(
        self,
        *,
        audio_bytes: bytes,
        filename: str,
        mime_type: Optional[str] = None,
        model: Optional[str] = None,
        prompt: Optional[str] = None,
        language: Optional[str] = None,
    ) -> str:
        if not audio_bytes:
            raise ValueError("audio_bytes is empty")

        form = {"model": model or "whisper-1", "response_format": "text"}
        if prompt:
            form["prompt"] = prompt
        if language:
            form["language"] = language

        response = self._post(
            "transcription",
            "/audio/transcriptions",
            files={"file": (filename or "voice.mp3", audio_bytes, mime_type or "audio/mpeg")},
            data=form,
        )
        # response_format=text returns the bare transcript
        return (response.text or "").strip()
