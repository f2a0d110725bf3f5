"""Outbound replies: voice when synthesis works, text otherwise."""

import logging
from typing import Optional

from kfbot.logging_config import get_logger
from kfbot.schemas.callback import Recipient
from kfbot.schemas.knowledge import KnowledgeLink
from kfbot.services.errors import KfBotError
from kfbot.services.result import SEND_ERROR, Result


class ResponseSynthesizer:
    def __init__(
        self,
        wecom,
        tts=None,
        converter=None,
        voice_enabled: bool = True,
        logger: Optional[logging.Logger] = None,
    ):
        self.wecom = wecom
        self.tts = tts
        self.converter = converter
        self.voice_enabled = voice_enabled and tts is not None and converter is not None
        self.logger = logger or get_logger("response_service")

    async def synthesize_voice_media(self, text: str) -> str:
        """TTS -> mp3 -> amr -> uploaded voice media. Returns the media id."""
        mp3 = await self.tts.text_to_speech(text)
        amr = await self.converter.mp3_to_amr(mp3)
        return await self.wecom.upload_media("voice", amr, "reply.amr")

    async def send_text(self, text: str, recipient: Recipient) -> dict:
        return await self.wecom.send_text(recipient, text)

    async def send_voice(self, media_id: str, recipient: Recipient) -> dict:
        return await self.wecom.send_voice(recipient, media_id)

    async def send_link(self, link: KnowledgeLink, thumb_media_id: str, recipient: Recipient) -> dict:
        return await self.wecom.send_link(
            recipient,
            title=link.title,
            desc=link.desc,
            url=link.url,
            thumb_media_id=thumb_media_id,
        )

    async def send_text_fallback(self, text: str, recipient: Recipient) -> Result[str]:
        try:
            await self.send_text(text, recipient)
        except KfBotError as exc:
            self.logger.error(
                f"Text reply failed: {exc.message}",
                extra={"context": {"touser": recipient.touser, "open_kfid": recipient.open_kfid}},
            )
            return Result.from_error(exc, SEND_ERROR)
        return Result.success("text")

    async def synthesize_and_send(self, text: str, recipient: Recipient) -> Result[str]:
        """Send ``text`` as voice, falling back to exactly one text message.

        Never raises. The result value is the channel actually used.
        """
        if self.voice_enabled:
            try:
                media_id = await self.synthesize_voice_media(text)
                await self.send_voice(media_id, recipient)
                return Result.success("voice")
            except Exception as exc:
                self.logger.warning(
                    f"Voice reply failed, falling back to text: {exc}",
                    extra={"context": {"touser": recipient.touser, "text": text[:50]}},
                )
        return await self.send_text_fallback(text, recipient)
