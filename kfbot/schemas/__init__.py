from kfbot.schemas.callback import (
    CallbackMessage,
    CallbackResult,
    EventMessage,
    ImageMessage,
    Recipient,
    SyncedMessage,
    SyncPage,
    TextMessage,
    VoiceMessage,
)
from kfbot.schemas.knowledge import KnowledgeItem, KnowledgeLink

__all__ = [
    "CallbackMessage",
    "CallbackResult",
    "EventMessage",
    "ImageMessage",
    "KnowledgeItem",
    "KnowledgeLink",
    "Recipient",
    "SyncPage",
    "SyncedMessage",
    "TextMessage",
    "VoiceMessage",
]
