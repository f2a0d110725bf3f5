from typing import Optional


class KfBotError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class SignatureInvalid(KfBotError):
    def __init__(self, message: str = "Invalid msg_signature"):
        super().__init__(message)


class DecryptionError(KfBotError):
    pass


class InvalidPadding(DecryptionError):
    def __init__(self, pad_length: int):
        self.pad_length = pad_length
        super().__init__(f"Invalid padding length: {pad_length}")


class MessageParseError(KfBotError):
    pass


class UnsupportedMessageType(KfBotError):
    def __init__(self, msg_type: Optional[str]):
        self.msg_type = msg_type
        super().__init__(f"Unsupported message type: {msg_type}")


class MissingToken(KfBotError):
    def __init__(self, message: str = "kf_msg_or_event callback is missing Token"):
        super().__init__(message)


class UpstreamApiError(KfBotError):
    """Non-zero error code returned by the platform or a vendor."""

    def __init__(self, operation: str, errcode: Optional[int], errmsg: Optional[str]):
        self.operation = operation
        self.errcode = errcode
        self.errmsg = errmsg
        super().__init__(f"{operation} failed: {errcode} - {errmsg}")


class SpeechRecognitionFailed(KfBotError):
    pass


class SynthesisFailed(KfBotError):
    pass


class AudioConversionError(KfBotError):
    pass


class PersistenceError(KfBotError):
    pass
