from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import PlainTextResponse

from kfbot.logging_config import get_logger
from kfbot.services.callback_service import CallbackService
from kfbot.services.errors import DecryptionError, MessageParseError, SignatureInvalid
from kfbot.services.xml_parser import extract_encrypt

logger = get_logger("callback_router")

router = APIRouter()

# The platform retries delivery unless it gets exactly this body
ACK_BODY = "success"


def get_callback_service(request: Request) -> CallbackService:
    return request.app.state.callback_service


@router.get("/callback", response_class=PlainTextResponse)
async def verify_callback_url(
    msg_signature: Optional[str] = None,
    timestamp: Optional[str] = None,
    nonce: Optional[str] = None,
    echostr: Optional[str] = None,
    service: CallbackService = Depends(get_callback_service),
):
    """URL verification: check the signature, decrypt echostr, echo the plaintext."""
    if not msg_signature or not timestamp or not nonce or not echostr:
        return PlainTextResponse("Missing required parameters", status_code=400)

    try:
        service.authenticate(msg_signature, timestamp, nonce, echostr)
        plaintext = service.decrypt_message(echostr)
    except SignatureInvalid as e:
        logger.warning(f"Callback URL verification: {e.message}", extra={"context": {"timestamp": timestamp}})
        return PlainTextResponse(e.message, status_code=403)
    except DecryptionError as e:
        logger.warning(f"Callback URL verification: decrypt failed: {e.message}")
        return PlainTextResponse(f"Decryption failed: {e.message}", status_code=400)

    logger.info("Callback URL verified")
    return PlainTextResponse(plaintext)


@router.post("/callback", response_class=PlainTextResponse)
async def receive_callback(
    request: Request,
    background_tasks: BackgroundTasks,
    msg_signature: Optional[str] = None,
    timestamp: Optional[str] = None,
    nonce: Optional[str] = None,
    service: CallbackService = Depends(get_callback_service),
):
    """Acknowledge immediately; decrypt, parse and dispatch in the background."""
    body = (await request.body()).decode("utf-8", errors="replace")

    if not msg_signature or not timestamp or not nonce:
        logger.warning("Callback missing signature parameters")
        return PlainTextResponse(ACK_BODY)

    try:
        encrypt = extract_encrypt(body)
        service.authenticate(msg_signature, timestamp, nonce, encrypt)
    except MessageParseError as e:
        logger.warning(f"Callback body rejected: {e.message}")
        return PlainTextResponse(ACK_BODY)
    except SignatureInvalid as e:
        logger.warning(e.message, extra={"context": {"timestamp": timestamp, "nonce": nonce}})
        return PlainTextResponse(ACK_BODY)

    background_tasks.add_task(service.process_encrypted_callback, encrypt)
    return PlainTextResponse(ACK_BODY)


# Backward-compatible alias used in the WeCom admin console setup
@router.get("/api/wecom/callback", response_class=PlainTextResponse)
async def verify_callback_url_alias(
    msg_signature: Optional[str] = None,
    timestamp: Optional[str] = None,
    nonce: Optional[str] = None,
    echostr: Optional[str] = None,
    service: CallbackService = Depends(get_callback_service),
):
    return await verify_callback_url(msg_signature, timestamp, nonce, echostr, service)


@router.post("/api/wecom/callback", response_class=PlainTextResponse)
async def receive_callback_alias(
    request: Request,
    background_tasks: BackgroundTasks,
    msg_signature: Optional[str] = None,
    timestamp: Optional[str] = None,
    nonce: Optional[str] = None,
    service: CallbackService = Depends(get_callback_service),
):
    return await receive_callback(request, background_tasks, msg_signature, timestamp, nonce, service)
