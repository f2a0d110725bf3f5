from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class LLMResponse:
    content: str
    model: str
    usage: Optional[dict] = None


class LLMProvider(ABC):
    """Blocking chat + speech-to-text backend. ``AIService`` runs it in a worker thread."""

    @abstractmethod
    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> LLMResponse:
        """Complete a chat. Raises ``UpstreamApiError`` on a non-200 reply."""

    @abstractmethod
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
        """Return the stripped transcript, possibly empty."""
