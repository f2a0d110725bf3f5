from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from kfbot.logging_config import get_logger
from kfbot.schemas.callback import SendMessageRequest, SyncMessagesRequest
from kfbot.services.errors import KfBotError
from kfbot.services.wecom_service import WeComService

logger = get_logger("wecom_router")

router = APIRouter(prefix="/api/wecom", tags=["wecom"])


def get_wecom_service(request: Request) -> WeComService:
    return request.app.state.callback_service.wecom


def _error(operation: str, exc: KfBotError) -> JSONResponse:
    logger.error(f"WeCom {operation} failed: {exc.message}")
    return JSONResponse(status_code=500, content={"error": exc.message})


@router.post("/send")
async def send_message(payload: SendMessageRequest, wecom: WeComService = Depends(get_wecom_service)):
    """Send a raw kf message (text, voice, link, ...) as-is."""
    try:
        return await wecom.send_message(payload.model_dump(exclude_none=True))
    except KfBotError as e:
        return _error("send", e)


@router.get("/servicer/list")
async def servicer_list(open_kfid: str, wecom: WeComService = Depends(get_wecom_service)):
    try:
        return await wecom.get_servicer_list(open_kfid)
    except KfBotError as e:
        return _error("servicer/list", e)


@router.get("/account/list")
async def account_list(offset: int = 0, limit: int = 100, wecom: WeComService = Depends(get_wecom_service)):
    try:
        return await wecom.get_account_list(offset=offset, limit=limit)
    except KfBotError as e:
        return _error("account/list", e)


@router.post("/sync/messages")
async def sync_messages(payload: SyncMessagesRequest, wecom: WeComService = Depends(get_wecom_service)):
    try:
        page = await wecom.sync_message(cursor=payload.cursor, token=payload.token, limit=payload.limit)
    except KfBotError as e:
        return _error("sync/messages", e)
    return page.model_dump()
