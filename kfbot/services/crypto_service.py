"""WeCom callback crypto: msg_signature check and AES-256-CBC envelope decryption."""

import base64
import binascii
import hashlib
import hmac
from dataclasses import dataclass
from typing import Optional

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from kfbot.services.errors import DecryptionError, InvalidPadding

RANDOM_PREFIX_BYTES = 16
LENGTH_BYTES = 4
HEADER_BYTES = RANDOM_PREFIX_BYTES + LENGTH_BYTES
MAX_PAD_LENGTH = 32
AES_KEY_BYTES = 32


@dataclass(frozen=True)
class DecryptedPayload:
    random_prefix: bytes
    body: bytes
    receive_id: str

    @property
    def text(self) -> str:
        return self.body.decode("utf-8")


def compute_signature(token: str, timestamp: str, nonce: str, echostr: Optional[str] = None) -> str:
    """sha1 over the lexicographically sorted parameters."""
    parts = [token, timestamp, nonce]
    if echostr:
        parts.append(echostr)
    parts.sort()
    return hashlib.sha1("".join(parts).encode("utf-8")).hexdigest()


def verify_signature(
    token: str,
    timestamp: str,
    nonce: str,
    msg_signature: str,
    echostr: Optional[str] = None,
) -> bool:
    if not msg_signature:
        return False
    expected = compute_signature(token, timestamp, nonce, echostr)
    return hmac.compare_digest(expected, msg_signature)


def decode_aes_key(encoding_aes_key: str) -> bytes:
    try:
        key = base64.b64decode(encoding_aes_key + "=", validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError(f"Invalid EncodingAESKey: {exc}") from exc
    if len(key) != AES_KEY_BYTES:
        raise DecryptionError(f"EncodingAESKey must decode to {AES_KEY_BYTES} bytes, got {len(key)}")
    return key


def strip_padding(data: bytes) -> bytes:
    if not data:
        raise InvalidPadding(0)
    pad_length = data[-1]
    if pad_length < 1 or pad_length > MAX_PAD_LENGTH:
        raise InvalidPadding(pad_length)
    return data[:-pad_length]


def split_payload(unpadded: bytes) -> DecryptedPayload:
    if len(unpadded) < HEADER_BYTES:
        raise DecryptionError(f"Decrypted payload too short: {len(unpadded)} bytes")
    body_length = int.from_bytes(unpadded[RANDOM_PREFIX_BYTES:HEADER_BYTES], "big")
    if body_length > len(unpadded) - HEADER_BYTES:
        raise DecryptionError(
            f"Declared message length {body_length} exceeds payload size {len(unpadded) - HEADER_BYTES}"
        )
    body = unpadded[HEADER_BYTES : HEADER_BYTES + body_length]
    receive_id = unpadded[HEADER_BYTES + body_length :].decode("utf-8", errors="replace")
    return DecryptedPayload(
        random_prefix=unpadded[:RANDOM_PREFIX_BYTES],
        body=body,
        receive_id=receive_id,
    )


def decrypt_raw(ciphertext_b64: str, encoding_aes_key: str) -> bytes:
    """AES-256-CBC decrypt with padding disabled. Returns the still-padded buffer."""
    key = decode_aes_key(encoding_aes_key)
    try:
        ciphertext = base64.b64decode(ciphertext_b64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError(f"Invalid base64 ciphertext: {exc}") from exc
    if not ciphertext or len(ciphertext) % 16 != 0:
        raise DecryptionError(f"Ciphertext length {len(ciphertext)} is not a multiple of the block size")

    decryptor = Cipher(algorithms.AES(key), modes.CBC(key[:16])).decryptor()
    try:
        return decryptor.update(ciphertext) + decryptor.finalize()
    except ValueError as exc:
        raise DecryptionError(f"Cipher failure: {exc}") from exc


def decrypt_payload(ciphertext_b64: str, encoding_aes_key: str) -> DecryptedPayload:
    return split_payload(strip_padding(decrypt_raw(ciphertext_b64, encoding_aes_key)))


def decrypt_message(
    ciphertext_b64: str,
    encoding_aes_key: str,
    expected_receive_id: Optional[str] = None,
) -> str:
    """Decrypt a callback ciphertext and return the inner XML (or echostr) text.

    Raises DecryptionError (InvalidPadding for a bad pad byte) on any failure.
    """
    payload = decrypt_payload(ciphertext_b64, encoding_aes_key)
    if expected_receive_id and payload.receive_id != expected_receive_id:
        raise DecryptionError(f"Receive id mismatch: {payload.receive_id!r}")
    try:
        return payload.text
    except UnicodeDecodeError as exc:
        raise DecryptionError(f"Message body is not valid UTF-8: {exc}") from exc
