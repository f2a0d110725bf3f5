from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

DEFAULT_KNOWLEDGE_PATH = Path(__file__).resolve().parent / "knowledge" / "knowledge.yaml"


class Settings(BaseSettings):
    # WeCom customer service
    wecom_corp_id: str = ""
    wecom_secret: str = ""
    wecom_token: str = ""
    wecom_encoding_aes_key: str = ""
    wecom_base_url: str = "https://qyapi.weixin.qq.com/cgi-bin"
    wecom_timeout_seconds: float = 10.0
    wecom_verify_receive_id: bool = False

    # LLM
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"
    openai_transcription_model: str = "whisper-1"
    openai_timeout_seconds: float = 60.0

    # Speech (iFlytek)
    iflytek_app_id: str = ""
    iflytek_api_key: str = ""
    iflytek_api_secret: str = ""
    iflytek_voice_name: str = "xiaoyan"
    tts_timeout_seconds: float = 20.0
    asr_timeout_seconds: float = 20.0
    asr_primary_provider: str = "iflytek"
    asr_fallback_provider: str = "openai"
    voice_reply_enabled: bool = True

    # Media cache
    redis_url: str = "redis://localhost:6379/0"
    redis_prefix: str = "wecom-kf"
    redis_socket_timeout_seconds: float = 0.5
    redis_max_retries: int = 5
    redis_backoff_base_seconds: float = 0.5
    redis_backoff_max_seconds: float = 30.0

    # Cursor store
    database_url: str = "sqlite:///data/kfbot.db"

    knowledge_path: Path = DEFAULT_KNOWLEDGE_PATH

    # Sync loop
    sync_page_size: int = 1000
    sync_page_delay_seconds: float = 0.2
    sync_max_pages: int = 50
    sync_customer_only: bool = False

    ffmpeg_binary: str = "ffmpeg"
    ffmpeg_timeout_seconds: float = 30.0

    log_level: str = "INFO"
    debug: bool = False

    class Config:
        env_file = ".env"
        extra = "ignore"

    @field_validator("sync_page_size")
    @classmethod
    def _limit_page_size(cls, value: int) -> int:
        if value < 1 or value > 1000:
            raise ValueError("sync_page_size must be between 1 and 1000")
        return value

    @field_validator("asr_primary_provider", "asr_fallback_provider")
    @classmethod
    def _normalize_provider(cls, value: str) -> str:
        return (value or "").strip().lower()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
