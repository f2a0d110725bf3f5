from kfbot.models.conversation_cursor import ConversationCursor

__all__ = ["ConversationCursor"]
