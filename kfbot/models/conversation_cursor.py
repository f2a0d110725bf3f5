from sqlalchemy import BigInteger, Column, Text

from kfbot.database import Base


class ConversationCursor(Base):
    __tablename__ = "conversation_cursors"

    conversation_key = Column(Text, primary_key=True)  # open_kfid:corp_user
    cursor = Column(Text, nullable=False, default="")
    last_update_time = Column(BigInteger, nullable=False)  # epoch millis
