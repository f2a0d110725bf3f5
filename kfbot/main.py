from fastapi import FastAPI

from kfbot.config import get_settings
from kfbot.logging_config import get_logger, setup_logging
from kfbot.routers import callback, wecom
from kfbot.services.callback_service import build_callback_service

settings = get_settings()
setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="kfbot",
    description="WeCom customer-service callback bot",
    version="0.1.0",
)

app.include_router(callback.router)
app.include_router(wecom.router)


@app.on_event("startup")
async def start_services() -> None:
    if getattr(app.state, "callback_service", None) is None:
        app.state.callback_service = build_callback_service(settings)
    restored = await app.state.callback_service.knowledge.hydrate()
    logger.info("Services started", extra={"context": {"knowledge_media_restored": restored}})


@app.on_event("shutdown")
async def stop_services() -> None:
    service = getattr(app.state, "callback_service", None)
    if service is None:
        return
    cache = service.knowledge.media_cache.cache
    close = getattr(cache, "close", None)
    if close is not None:
        await close()


@app.get("/health")
async def health():
    return {"status": "ok"}
