from kfbot.services.crypto_service import (
    compute_signature,
    decrypt_message,
    verify_signature,
)
from kfbot.services.errors import (
    DecryptionError,
    InvalidPadding,
    KfBotError,
    MessageParseError,
    MissingToken,
    PersistenceError,
    SignatureInvalid,
    SpeechRecognitionFailed,
    SynthesisFailed,
    UnsupportedMessageType,
    UpstreamApiError,
)
from kfbot.services.xml_parser import extract_encrypt, parse_callback_message
