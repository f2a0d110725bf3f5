from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

KF_MSG_OR_EVENT = "kf_msg_or_event"


class InboundEnvelope(BaseModel):
    signature: str
    timestamp: str
    nonce: str
    ciphertext: str


class WechatChannels(BaseModel):
    nickname: Optional[str] = None
    shop_nickname: Optional[str] = None
    scene: Optional[int] = None


class EventPayload(BaseModel):
    event_type: str
    open_kfid: Optional[str] = None
    external_userid: Optional[str] = None
    scene: Optional[str] = None
    scene_param: Optional[str] = None
    welcome_code: Optional[str] = None
    fail_msgid: Optional[str] = None
    fail_type: Optional[int] = None
    recall_msgid: Optional[str] = None
    wechat_channels: Optional[WechatChannels] = None


class _CallbackBase(BaseModel):
    to_user_name: str = ""
    from_user_name: str = ""
    create_time: int = 0
    msg_id: Optional[str] = None


class TextMessage(_CallbackBase):
    msg_type: Literal["text"] = "text"
    content: str = ""
    menu_id: Optional[str] = None


class ImageMessage(_CallbackBase):
    msg_type: Literal["image"] = "image"
    media_id: str = ""


class VoiceMessage(_CallbackBase):
    msg_type: Literal["voice"] = "voice"
    media_id: str = ""


class EventMessage(_CallbackBase):
    msg_type: Literal["event"] = "event"
    event: str
    token: Optional[str] = None
    open_kf_id: Optional[str] = None
    payload: EventPayload


CallbackMessage = Union[TextMessage, ImageMessage, VoiceMessage, EventMessage]


class CallbackResult(BaseModel):
    success: bool
    message: Optional[str] = None
    data: Optional[dict[str, Any]] = None


class SyncedText(BaseModel):
    content: str = ""
    menu_id: Optional[str] = None


class SyncedMedia(BaseModel):
    media_id: str = ""


class SyncedMessage(BaseModel):
    """One entry of kf/sync_msg msg_list."""

    model_config = ConfigDict(extra="allow")

    msgid: Optional[str] = None
    msgtype: str
    origin: Optional[int] = None
    send_time: Optional[int] = None
    open_kfid: str = ""
    external_userid: str = ""
    text: Optional[SyncedText] = None
    voice: Optional[SyncedMedia] = None
    image: Optional[SyncedMedia] = None


class SyncPage(BaseModel):
    model_config = ConfigDict(extra="allow")

    errcode: int = 0
    errmsg: str = ""
    next_cursor: str = ""
    has_more: bool = False
    msg_list: list[SyncedMessage] = Field(default_factory=list)


class Recipient(BaseModel):
    touser: str
    open_kfid: str


class SendMessageRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    touser: str
    open_kfid: str
    msgtype: str


class SyncMessagesRequest(BaseModel):
    cursor: str = ""
    token: str = ""
    limit: int = Field(default=1000, ge=1, le=1000)
