import logging
from typing import Optional

from kfbot.logging_config import get_logger
from kfbot.services.errors import AudioConversionError, SpeechRecognitionFailed

SUPPORTED_ASR_PROVIDERS = {"iflytek", "openai"}


def _normalize_asr_provider(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    value = value.strip().lower()
    if value in {"openai_whisper", "whisper"}:
        return "openai"
    if value in {"xfyun", "xunfei"}:
        return "iflytek"
    return value if value in SUPPORTED_ASR_PROVIDERS else None


class SpeechService:
    """Speech recognition for inbound voice messages with primary/fallback providers.

    Input is the platform's AMR buffer. iFlytek gets 16k PCM, Whisper gets a
    re-transcoded mp3 copy. The first non-empty transcript wins.
    """

    def __init__(
        self,
        converter,
        iflytek_asr=None,
        ai_service=None,
        primary_provider: str = "iflytek",
        fallback_provider: Optional[str] = "openai",
        logger: Optional[logging.Logger] = None,
    ):
        self.converter = converter
        self.iflytek_asr = iflytek_asr
        self.ai_service = ai_service
        self.primary = _normalize_asr_provider(primary_provider)
        self.fallback = _normalize_asr_provider(fallback_provider)
        self.logger = logger or get_logger("speech_service")

    def _available(self, provider: Optional[str]) -> bool:
        if provider == "iflytek":
            return self.iflytek_asr is not None
        if provider == "openai":
            return self.ai_service is not None
        return False

    async def _transcribe_with(self, provider: str, amr_bytes: bytes) -> str:
        if provider == "iflytek":
            pcm = await self.converter.amr_to_pcm(amr_bytes)
            return await self.iflytek_asr.recognize_speech(pcm)
        mp3 = await self.converter.amr_to_mp3(amr_bytes)
        return await self.ai_service.transcribe_audio(mp3, "voice.mp3", "audio/mpeg")

    async def recognize(self, amr_bytes: bytes) -> str:
        providers = [self.primary]
        if self.fallback and self.fallback != self.primary:
            providers.append(self.fallback)

        errors = []
        for index, provider in enumerate(providers):
            if not self._available(provider):
                errors.append(f"{provider}: not configured")
                continue
            if index > 0:
                self.logger.info(
                    "ASR primary failed; trying fallback",
                    extra={"context": {"primary": self.primary, "fallback": provider, "status": errors[-1]}},
                )
            try:
                transcript = (await self._transcribe_with(provider, amr_bytes)).strip()
            except (SpeechRecognitionFailed, AudioConversionError) as exc:
                errors.append(f"{provider}: {exc.message}")
                continue
            except Exception as exc:
                errors.append(f"{provider}: {exc}")
                continue
            if transcript:
                self.logger.info(
                    "ASR transcript ready",
                    extra={"context": {"provider": provider, "text_len": len(transcript)}},
                )
                return transcript
            errors.append(f"{provider}: empty_transcript")

        self.logger.warning("ASR failed on all providers", extra={"context": {"errors": errors}})
        raise SpeechRecognitionFailed("; ".join(errors) or "no ASR provider configured")
