import asyncio
import logging
from typing import Optional

from kfbot.logging_config import get_logger
from kfbot.services.llm import LLMProvider
from kfbot.services.prompts import TRANSCRIPTION, PromptTemplate, get_prompt

EMPTY_RESPONSE = "抱歉，我现在无法回答这个问题。"
FAILURE_RESPONSE = "抱歉，我暂时无法处理您的请求，请稍后再试。"


class AIService:
    """Free-form answers and Whisper transcription on top of an LLM provider."""

    def __init__(
        self,
        provider: LLMProvider,
        system_prompt: Optional[PromptTemplate] = None,
        model: Optional[str] = None,
        transcription_model: str = "whisper-1",
        language: str = "zh",
        logger: Optional[logging.Logger] = None,
    ):
        self.provider = provider
        self.system_prompt = system_prompt or get_prompt("calligraphy_master")
        self.model = model
        self.transcription_model = transcription_model
        self.language = language
        self.logger = logger or get_logger("ai_service")

    async def generate_response(self, user_message: str) -> str:
        """Never raises: failures degrade to an apology string."""
        messages = [
            {"role": "system", "content": self.system_prompt.content},
            {"role": "user", "content": user_message},
        ]
        try:
            result = await asyncio.to_thread(self.provider.generate, messages, self.model)
        except Exception as exc:
            self.logger.error(f"LLM call failed: {exc}", extra={"context": {"text": user_message[:50]}})
            return FAILURE_RESPONSE

        content = (result.content or "").strip()
        if not content:
            self.logger.warning("LLM returned empty content")
            return EMPTY_RESPONSE
        self.logger.info(
            "LLM response generated",
            extra={"context": {"model": result.model, "text": user_message[:50], "response": content[:100]}},
        )
        return content

    async def transcribe_audio(self, audio_bytes: bytes, filename: str, mime_type: Optional[str] = None) -> str:
        transcript = await asyncio.to_thread(
            lambda: self.provider.transcribe_audio(
                audio_bytes=audio_bytes,
                filename=filename,
                mime_type=mime_type,
                model=self.transcription_model,
                prompt=TRANSCRIPTION.content,
                language=self.language,
            )
        )
        return (transcript or "").strip()
