import asyncio
from unittest.mock import Mock, patch

import httpx
import pytest

from kfbot.services.ai_service import EMPTY_RESPONSE, FAILURE_RESPONSE, AIService
from kfbot.services.errors import UpstreamApiError
from kfbot.services.llm import LLMResponse, OpenAIProvider
from kfbot.services.prompts import CALLIGRAPHY_MASTER, get_prompt


class TestGenerateResponse:
    def test_returns_content(self):
        provider = Mock()
        provider.generate.return_value = LLMResponse(content="  笔墨见性  ", model="gpt-4o-mini")
        service = AIService(provider, model="gpt-4o-mini")

        assert asyncio.run(service.generate_response("何为草书")) == "笔墨见性"

        messages, model = provider.generate.call_args.args
        assert model == "gpt-4o-mini"
        assert messages[0] == {"role": "system", "content": CALLIGRAPHY_MASTER.content}
        assert messages[1] == {"role": "user", "content": "何为草书"}

    def test_failure_degrades_to_apology(self):
        provider = Mock()
        provider.generate.side_effect = Exception("OpenAI API error: 500")
        service = AIService(provider)

        assert asyncio.run(service.generate_response("hi")) == FAILURE_RESPONSE

    def test_empty_content(self):
        provider = Mock()
        provider.generate.return_value = LLMResponse(content="", model="m")
        service = AIService(provider)

        assert asyncio.run(service.generate_response("hi")) == EMPTY_RESPONSE

    def test_custom_prompt(self):
        provider = Mock()
        provider.generate.return_value = LLMResponse(content="ok", model="m")
        service = AIService(provider, system_prompt=get_prompt("customer_service"))

        asyncio.run(service.generate_response("hi"))

        messages, _ = provider.generate.call_args.args
        assert messages[0]["content"] == get_prompt("customer_service").content


class TestTranscribeAudio:
    def test_passes_model_and_language(self):
        provider = Mock()
        provider.transcribe_audio.return_value = " 你好 "
        service = AIService(provider, transcription_model="whisper-1", language="zh")

        assert asyncio.run(service.transcribe_audio(b"mp3", "voice.mp3", "audio/mpeg")) == "你好"

        kwargs = provider.transcribe_audio.call_args.kwargs
        assert kwargs["model"] == "whisper-1"
        assert kwargs["language"] == "zh"
        assert kwargs["filename"] == "voice.mp3"


class TestOpenAIProvider:
    def _client(self, handler):
        transport = httpx.MockTransport(handler)
        real_client = httpx.Client

        def factory(*args, **kwargs):
            kwargs["transport"] = transport
            return real_client(*args, **kwargs)

        return patch("kfbot.services.llm.openai_provider.httpx.Client", side_effect=factory)

    def test_generate(self):
        def handler(request):
            assert request.url.path == "/v1/chat/completions"
            assert request.headers["Authorization"] == "Bearer sk-test"
            return httpx.Response(
                200,
                json={"model": "gpt-4o-mini", "choices": [{"message": {"content": "草圣"}}], "usage": {}},
            )

        provider = OpenAIProvider("sk-test")
        with self._client(handler):
            result = provider.generate([{"role": "user", "content": "hi"}])

        assert result.content == "草圣"
        assert result.model == "gpt-4o-mini"

    def test_generate_error_raises(self):
        provider = OpenAIProvider("sk-test")
        with self._client(lambda request: httpx.Response(500, text="boom")):
            with pytest.raises(UpstreamApiError, match="chat_completion failed: 500"):
                provider.generate([{"role": "user", "content": "hi"}])

    def test_transcribe(self):
        def handler(request):
            assert request.url.path == "/v1/audio/transcriptions"
            return httpx.Response(200, text="你好\n")

        provider = OpenAIProvider("sk-test")
        with self._client(handler):
            transcript = provider.transcribe_audio(audio_bytes=b"mp3", filename="voice.mp3", language="zh")

        assert transcript == "你好"

    def test_empty_choices(self):
        provider = OpenAIProvider("sk-test")
        with self._client(lambda request: httpx.Response(200, json={"choices": []})):
            result = provider.generate([{"role": "user", "content": "hi"}], model="gpt-4o")

        assert result.content == ""
        assert result.model == "gpt-4o"

    def test_transport_error_wrapped(self):
        def handler(request):
            raise httpx.ConnectError("refused")

        provider = OpenAIProvider("sk-test")
        with self._client(handler):
            with pytest.raises(UpstreamApiError) as excinfo:
                provider.transcribe_audio(audio_bytes=b"mp3", filename="voice.mp3")

        assert excinfo.value.operation == "transcription"
