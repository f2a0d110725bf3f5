"""Callback dispatch: decrypted platform events in, replies out."""

import logging
from typing import Optional

from kfbot.config import Settings
from kfbot.logging_config import LoggerAdapter, get_logger
from kfbot.schemas.callback import (
    KF_MSG_OR_EVENT,
    CallbackMessage,
    CallbackResult,
    EventMessage,
    ImageMessage,
    Recipient,
    SyncedMessage,
    TextMessage,
    VoiceMessage,
)
from kfbot.schemas.knowledge import KnowledgeItem
from kfbot.services import crypto_service
from kfbot.services.ai_service import AIService
from kfbot.services.audio_service import AudioConverter
from kfbot.services.cache import RedisCache
from kfbot.services.cursor_store import CursorStore
from kfbot.services.errors import KfBotError, MissingToken, PersistenceError, SignatureInvalid
from kfbot.services.knowledge_service import KnowledgeService
from kfbot.services.llm import OpenAIProvider
from kfbot.services.media_cache import MediaCache
from kfbot.services.prompts import get_prompt
from kfbot.services.response_service import ResponseSynthesizer
from kfbot.services.result import Result
from kfbot.services.speech import IflytekASR, IflytekTTS
from kfbot.services.speech_service import SpeechService
from kfbot.services.sync_service import SyncService
from kfbot.services.wecom_service import WeComService
from kfbot.services.xml_parser import parse_callback_message


class CallbackService:
    def __init__(
        self,
        *,
        token: str,
        encoding_aes_key: str,
        wecom,
        sync_service,
        knowledge,
        ai_service,
        synthesizer,
        speech_service,
        receive_id: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.token = token
        self.encoding_aes_key = encoding_aes_key
        self.receive_id = receive_id
        self.wecom = wecom
        self.sync_service = sync_service
        self.knowledge = knowledge
        self.ai_service = ai_service
        self.synthesizer = synthesizer
        self.speech_service = speech_service
        self.logger = logger or get_logger("callback_service")

    def verify(self, msg_signature: str, timestamp: str, nonce: str, echostr: Optional[str] = None) -> bool:
        return crypto_service.verify_signature(self.token, timestamp, nonce, msg_signature, echostr)

    def authenticate(self, msg_signature: str, timestamp: str, nonce: str, echostr: Optional[str] = None) -> None:
        if not self.verify(msg_signature, timestamp, nonce, echostr):
            raise SignatureInvalid()

    def decrypt_message(self, ciphertext: str) -> str:
        return crypto_service.decrypt_message(ciphertext, self.encoding_aes_key, self.receive_id)

    async def process_encrypted_callback(self, encrypt: str) -> CallbackResult:
        """Decrypt, parse and dispatch one POSTed callback. Never raises."""
        try:
            message = parse_callback_message(self.decrypt_message(encrypt))
        except KfBotError as exc:
            self.logger.error(f"Callback rejected: {exc.message}")
            return CallbackResult(success=False, message=exc.message)

        result = await self.handle_callback(message)
        log = self.logger.info if result.success else self.logger.warning
        log(
            "Callback processed",
            extra={"context": {"msg_type": message.msg_type, "success": result.success, "message": result.message}},
        )
        return result

    async def handle_callback(self, message: CallbackMessage) -> CallbackResult:
        try:
            if isinstance(message, TextMessage):
                return CallbackResult(success=True, message="Text message received", data={"content": message.content})
            if isinstance(message, ImageMessage):
                return CallbackResult(success=True, message="Image message received", data={"media_id": message.media_id})
            if isinstance(message, VoiceMessage):
                return CallbackResult(success=True, message="Voice message received", data={"media_id": message.media_id})
            if isinstance(message, EventMessage):
                return await self._handle_event(message)
            raise TypeError(f"Unhandled callback message: {type(message).__name__}")
        except KfBotError as exc:
            self.logger.error(f"Callback handling failed: {exc.message}")
            return CallbackResult(success=False, message=exc.message)
        except Exception as exc:
            self.logger.exception(f"Unexpected callback failure: {exc}")
            return CallbackResult(success=False, message=str(exc))

    async def _handle_event(self, message: EventMessage) -> CallbackResult:
        if message.event != KF_MSG_OR_EVENT:
            return CallbackResult(
                success=True,
                message=f"Event received: {message.event}",
                data=message.payload.model_dump(exclude_none=True),
            )
        if not message.token:
            raise MissingToken()

        open_kf_id = message.open_kf_id or message.payload.open_kfid or ""
        outcome = await self.sync_service.sync_latest_message(message.token, open_kf_id, message.to_user_name)
        latest = outcome.latest_message
        if latest is None:
            return CallbackResult(success=True, message="No new messages", data={"pages": outcome.pages})

        recipient = Recipient(touser=latest.external_userid, open_kfid=latest.open_kfid or open_kf_id)
        if latest.msgtype == "text" and latest.text is not None:
            result = await self._reply_to_text(latest.text.content, recipient)
        elif latest.msgtype == "voice" and latest.voice is not None:
            result = await self._reply_to_voice(latest, recipient)
        else:
            return CallbackResult(
                success=True,
                message=f"Ignored message type: {latest.msgtype}",
                data={"msgid": latest.msgid},
            )

        log = LoggerAdapter(
            self.logger,
            {"open_kfid": recipient.open_kfid, "touser": recipient.touser, "msgid": latest.msgid},
        )
        if not result.ok:
            log.error(f"Reply failed: {result.error}", extra={"context": {"code": result.error_code}})
            return CallbackResult(success=False, message=result.error, data={"msgid": latest.msgid})
        log.info("Reply sent", extra={"context": {"channel": result.value, "pages": outcome.pages}})
        return CallbackResult(
            success=True,
            message="Reply sent",
            data={"msgid": latest.msgid, "msgtype": latest.msgtype, "channel": result.value},
        )

    async def _reply_to_text(self, content: str, recipient: Recipient) -> Result[str]:
        item = self.knowledge.find_match(content)
        if item is not None:
            self.logger.info("Knowledge match", extra={"context": {"pattern": item.pattern, "text": content[:50]}})
            return await self.reply_with_knowledge(item, recipient)
        answer = await self.ai_service.generate_response(content)
        return await self.synthesizer.synthesize_and_send(answer, recipient)

    async def _reply_to_voice(self, message: SyncedMessage, recipient: Recipient) -> Result[str]:
        audio = await self.wecom.get_media(message.voice.media_id)
        transcript = await self.speech_service.recognize(audio)
        answer = await self.ai_service.generate_response(transcript)
        return await self.synthesizer.synthesize_and_send(answer, recipient)

    async def _ensure_link_thumb(self, item: KnowledgeItem) -> str:
        try:
            if await self.knowledge.check_link_thumb_media_valid(item):
                return item.thumb_media_id
        except PersistenceError as exc:
            self.logger.warning(f"Thumb media lookup failed, re-uploading: {exc.message}")
        path = self.knowledge.resolve_image_path(item)
        if path is None or not path.is_file():
            raise KfBotError(f"Link thumbnail image not found for pattern {item.pattern!r}")
        media_id = await self.wecom.upload_media("image", path.read_bytes(), path.name)
        try:
            await self.knowledge.update_link_thumb_media_id(item.pattern, media_id)
        except PersistenceError as exc:
            self.logger.warning(f"Thumb media not cached: {exc.message}")
        return media_id

    async def _cache_voice(self, pattern: str, media_id: str) -> None:
        try:
            await self.knowledge.update_voice_media_id(pattern, media_id)
        except PersistenceError as exc:
            self.logger.warning(f"Voice media not cached: {exc.message}")

    async def reply_with_knowledge(self, item: KnowledgeItem, recipient: Recipient) -> Result[str]:
        """Link first, then cached voice, then fresh voice, then plain text."""
        if item.link is not None:
            try:
                thumb_media_id = await self._ensure_link_thumb(item)
                await self.synthesizer.send_link(item.link, thumb_media_id, recipient)
                return Result.success("link")
            except Exception as exc:
                self.logger.warning(f"Link reply failed, trying voice: {exc}")

        text = item.reply_text()
        if not self.synthesizer.voice_enabled:
            return await self.synthesizer.send_text_fallback(text, recipient)

        if self.knowledge.check_voice_media_valid(item):
            try:
                await self.synthesizer.send_voice(item.voice_media_id, recipient)
                return Result.success("cached_voice")
            except Exception as exc:
                self.logger.warning(f"Cached voice send failed, regenerating: {exc}")
                try:
                    await self.knowledge.invalidate_voice_media_id(item.pattern)
                except PersistenceError as cache_exc:
                    self.logger.warning(f"Voice media invalidation failed: {cache_exc.message}")

        try:
            media_id = await self.synthesizer.synthesize_voice_media(text)
            await self._cache_voice(item.pattern, media_id)
            await self.synthesizer.send_voice(media_id, recipient)
            return Result.success("voice")
        except Exception as exc:
            self.logger.warning(f"Voice reply failed, falling back to text: {exc}")
        return await self.synthesizer.send_text_fallback(text, recipient)


def build_callback_service(settings: Settings, cache=None) -> CallbackService:
    """Wire every collaborator from settings."""
    if cache is None:
        cache = RedisCache(
            settings.redis_url,
            settings.redis_prefix,
            socket_timeout=settings.redis_socket_timeout_seconds,
            max_retries=settings.redis_max_retries,
            backoff_base=settings.redis_backoff_base_seconds,
            backoff_max=settings.redis_backoff_max_seconds,
        )

    wecom = WeComService(
        settings.wecom_corp_id,
        settings.wecom_secret,
        base_url=settings.wecom_base_url,
        timeout_seconds=settings.wecom_timeout_seconds,
    )
    knowledge = KnowledgeService.from_file(settings.knowledge_path, MediaCache(cache))
    sync_service = SyncService(
        wecom,
        CursorStore.from_url(settings.database_url),
        page_size=settings.sync_page_size,
        page_delay_seconds=settings.sync_page_delay_seconds,
        max_pages=settings.sync_max_pages,
        customer_only=settings.sync_customer_only,
    )
    ai_service = AIService(
        OpenAIProvider(
            settings.openai_api_key,
            default_model=settings.openai_model,
            base_url=settings.openai_base_url,
            timeout_seconds=settings.openai_timeout_seconds,
        ),
        system_prompt=get_prompt("calligraphy_master"),
        model=settings.openai_model,
        transcription_model=settings.openai_transcription_model,
    )
    converter = AudioConverter(settings.ffmpeg_binary, settings.ffmpeg_timeout_seconds)

    tts = asr = None
    if settings.iflytek_app_id and settings.iflytek_api_key and settings.iflytek_api_secret:
        credentials = (settings.iflytek_app_id, settings.iflytek_api_key, settings.iflytek_api_secret)
        tts = IflytekTTS(*credentials, timeout_seconds=settings.tts_timeout_seconds, voice_name=settings.iflytek_voice_name)
        asr = IflytekASR(*credentials, timeout_seconds=settings.asr_timeout_seconds)

    return CallbackService(
        token=settings.wecom_token,
        encoding_aes_key=settings.wecom_encoding_aes_key,
        receive_id=settings.wecom_corp_id if settings.wecom_verify_receive_id else None,
        wecom=wecom,
        sync_service=sync_service,
        knowledge=knowledge,
        ai_service=ai_service,
        synthesizer=ResponseSynthesizer(wecom, tts, converter, voice_enabled=settings.voice_reply_enabled),
        speech_service=SpeechService(
            converter,
            iflytek_asr=asr,
            ai_service=ai_service if settings.openai_api_key else None,
            primary_provider=settings.asr_primary_provider,
            fallback_provider=settings.asr_fallback_provider,
        ),
    )
