import base64
import os

import pytest
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

AES_KEY = bytes(range(32))
ENCODING_AES_KEY = base64.b64encode(AES_KEY).decode("ascii").rstrip("=")
CORP_ID = "ww-test-corp"
TOKEN = "t1"


def encrypt_buffer(buffer: bytes, key: bytes = AES_KEY) -> str:
    """AES-256-CBC encrypt an already padded buffer the way WeCom does."""
    assert len(buffer) % 16 == 0
    encryptor = Cipher(algorithms.AES(key), modes.CBC(key[:16])).encryptor()
    return base64.b64encode(encryptor.update(buffer) + encryptor.finalize()).decode("ascii")


def build_buffer(body: bytes, receive_id: str = CORP_ID, pad_byte=None, pad_length=None) -> bytes:
    """random(16) | length(4, BE) | body | receive_id | padding.

    With no pad arguments the buffer gets regular 32-byte block padding.
    """
    base = os.urandom(16) + len(body).to_bytes(4, "big") + body + receive_id.encode("utf-8")
    if pad_byte is None:
        pad = 32 - len(base) % 32
        return base + bytes([pad]) * pad
    tail = bytes([pad_byte]) * (pad_length or 1)
    filler = (-(len(base) + len(tail))) % 16
    return base + b"x" * filler + tail


def encrypt_text(text: str, receive_id: str = CORP_ID) -> str:
    return encrypt_buffer(build_buffer(text.encode("utf-8"), receive_id))


class InMemoryCache:
    """Stand-in for RedisCache with the same key/get_json/set_json surface."""

    def __init__(self, prefix: str = "wecom-kf"):
        self.prefix = prefix
        self.data = {}
        self.ttls = {}

    def key(self, *parts: str) -> str:
        return ":".join([self.prefix, *parts])

    async def get_json(self, key):
        return self.data.get(key)

    async def set_json(self, key, value, ttl_seconds):
        self.data[key] = value
        self.ttls[key] = ttl_seconds

    async def delete(self, key):
        self.data.pop(key, None)
        self.ttls.pop(key, None)


@pytest.fixture
def memory_cache():
    return InMemoryCache()


@pytest.fixture
def mock_env(monkeypatch):
    """Set test environment variables."""
    monkeypatch.setenv("WECOM_TOKEN", TOKEN)
    monkeypatch.setenv("WECOM_ENCODING_AES_KEY", ENCODING_AES_KEY)
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")
