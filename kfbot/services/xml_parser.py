import xml.etree.ElementTree as ET
from typing import Optional

from kfbot.schemas.callback import (
    CallbackMessage,
    EventMessage,
    EventPayload,
    ImageMessage,
    TextMessage,
    VoiceMessage,
    WechatChannels,
)
from kfbot.services.errors import MessageParseError, UnsupportedMessageType


def _parse_root(xml_text: str) -> ET.Element:
    if not xml_text or not xml_text.strip():
        raise MessageParseError("Empty XML payload")
    try:
        return ET.fromstring(xml_text.strip())
    except ET.ParseError as exc:
        raise MessageParseError(f"Invalid XML payload: {exc}") from exc


def _text(node: ET.Element, tag: str) -> Optional[str]:
    value = node.findtext(tag)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _int(node: ET.Element, tag: str) -> Optional[int]:
    value = _text(node, tag)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def extract_encrypt(body: str) -> str:
    """Return the <Encrypt> field of a POST callback envelope."""
    root = _parse_root(body)
    encrypt = _text(root, "Encrypt")
    if not encrypt:
        raise MessageParseError("Callback envelope has no Encrypt field")
    return encrypt


def _build_event_payload(root: ET.Element, event_type: str) -> EventPayload:
    channels = None
    channels_node = root.find("WechatChannels")
    if channels_node is not None:
        channels = WechatChannels(
            nickname=_text(channels_node, "Nickname"),
            shop_nickname=_text(channels_node, "ShopNickname"),
            scene=_int(channels_node, "Scene"),
        )
    return EventPayload(
        event_type=event_type,
        open_kfid=_text(root, "OpenKfId"),
        external_userid=_text(root, "ExternalUserId"),
        scene=_text(root, "Scene"),
        scene_param=_text(root, "SceneParam"),
        welcome_code=_text(root, "WelcomeCode"),
        fail_msgid=_text(root, "FailMsgId"),
        fail_type=_int(root, "FailType"),
        recall_msgid=_text(root, "RecallMsgId"),
        wechat_channels=channels,
    )


def parse_callback_message(xml_text: str) -> CallbackMessage:
    """Parse a decrypted callback XML body into a typed message."""
    root = _parse_root(xml_text)
    msg_type = _text(root, "MsgType")

    base = {
        "to_user_name": _text(root, "ToUserName") or "",
        "from_user_name": _text(root, "FromUserName") or "",
        "create_time": _int(root, "CreateTime") or 0,
        "msg_id": _text(root, "MsgId"),
    }

    if msg_type == "text":
        return TextMessage(**base, content=_text(root, "Content") or "", menu_id=_text(root, "MenuId"))
    if msg_type == "image":
        return ImageMessage(**base, media_id=_text(root, "MediaId") or "")
    if msg_type == "voice":
        return VoiceMessage(**base, media_id=_text(root, "MediaId") or "")
    if msg_type == "event":
        event_type = _text(root, "Event")
        if not event_type:
            raise MessageParseError("Event callback has no Event field")
        return EventMessage(
            **base,
            event=event_type,
            token=_text(root, "Token"),
            open_kf_id=_text(root, "OpenKfId"),
            payload=_build_event_payload(root, event_type),
        )

    raise UnsupportedMessageType(msg_type)
