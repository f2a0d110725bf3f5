import asyncio
from unittest.mock import AsyncMock, Mock

from kfbot.schemas.callback import Recipient
from kfbot.schemas.knowledge import KnowledgeLink
from kfbot.services.errors import SynthesisFailed, UpstreamApiError
from kfbot.services.response_service import ResponseSynthesizer

RECIPIENT = Recipient(touser="wm-user", open_kfid="wk-1")


def _wecom():
    wecom = Mock()
    wecom.send_text = AsyncMock(return_value={"errcode": 0})
    wecom.send_voice = AsyncMock(return_value={"errcode": 0})
    wecom.send_link = AsyncMock(return_value={"errcode": 0})
    wecom.upload_media = AsyncMock(return_value="voice-media")
    return wecom


def _converter():
    return Mock(mp3_to_amr=AsyncMock(return_value=b"#!AMR\n"))


class TestSynthesizeAndSend:
    def test_voice_path(self):
        wecom = _wecom()
        tts = Mock(text_to_speech=AsyncMock(return_value=b"ID3"))
        synthesizer = ResponseSynthesizer(wecom, tts, _converter())

        result = asyncio.run(synthesizer.synthesize_and_send("hello", RECIPIENT))

        assert result.ok
        assert result.value == "voice"
        wecom.upload_media.assert_awaited_once_with("voice", b"#!AMR\n", "reply.amr")
        wecom.send_voice.assert_awaited_once_with(RECIPIENT, "voice-media")
        wecom.send_text.assert_not_awaited()

    def test_tts_failure_sends_text_once(self):
        wecom = _wecom()
        tts = Mock(text_to_speech=AsyncMock(side_effect=SynthesisFailed("TTS timed out")))
        synthesizer = ResponseSynthesizer(wecom, tts, _converter())

        result = asyncio.run(synthesizer.synthesize_and_send("hello", RECIPIENT))

        assert result.ok
        assert result.value == "text"
        wecom.send_text.assert_awaited_once_with(RECIPIENT, "hello")
        wecom.send_voice.assert_not_awaited()

    def test_upload_failure_sends_text(self):
        wecom = _wecom()
        wecom.upload_media.side_effect = UpstreamApiError("media_upload", 40004, "invalid media type")
        tts = Mock(text_to_speech=AsyncMock(return_value=b"ID3"))
        synthesizer = ResponseSynthesizer(wecom, tts, _converter())

        asyncio.run(synthesizer.synthesize_and_send("hello", RECIPIENT))

        wecom.send_text.assert_awaited_once_with(RECIPIENT, "hello")
        wecom.send_voice.assert_not_awaited()

    def test_text_failure_is_returned_not_raised(self):
        wecom = _wecom()
        wecom.send_text.side_effect = UpstreamApiError("send_msg", 95001, "limit")
        synthesizer = ResponseSynthesizer(wecom, tts=None, converter=None)

        result = asyncio.run(synthesizer.synthesize_and_send("hello", RECIPIENT))

        assert not result.ok
        assert result.error_code == "send_error"

    def test_voice_disabled(self):
        wecom = _wecom()
        tts = Mock(text_to_speech=AsyncMock())
        synthesizer = ResponseSynthesizer(wecom, tts, _converter(), voice_enabled=False)

        asyncio.run(synthesizer.synthesize_and_send("hello", RECIPIENT))

        tts.text_to_speech.assert_not_awaited()
        wecom.send_text.assert_awaited_once_with(RECIPIENT, "hello")


class TestSendLink:
    def test_passes_link_fields(self):
        wecom = _wecom()
        synthesizer = ResponseSynthesizer(wecom)
        link = KnowledgeLink(title="怀素自叙帖", desc="狂草", url="https://example.com")

        asyncio.run(synthesizer.send_link(link, "thumb", RECIPIENT))

        wecom.send_link.assert_awaited_once_with(
            RECIPIENT, title="怀素自叙帖", desc="狂草", url="https://example.com", thumb_media_id="thumb"
        )
