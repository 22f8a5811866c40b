import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import List, Optional

from fastapi import FastAPI

from .config import Settings, build_email_captcha_config, build_image_captcha_config, get_settings
from .context import logger
from .services.delivery import DeliveryChannel, LoggingDeliveryChannel
from .services.email_captcha import EmailCaptchaService
from .services.image_captcha import ImageCaptchaService
from .services.images import LocalImageSource
from .services.store import MemoryTTLStore, TTLStore, build_store

STORE_PURGE_INTERVAL_SECONDS = 60


@dataclass
class CaptchaEngine:
    store: TTLStore
    image: ImageCaptchaService
    email: EmailCaptchaService
    delivery: DeliveryChannel


def build_engine(settings: Settings, store: Optional[TTLStore] = None) -> CaptchaEngine:
    store = store or build_store(settings)
    image_source = LocalImageSource(settings.image_dir)
    if not image_source.list_candidates():
        logger.warning(f"Captcha image directory is empty or missing: {settings.image_dir}")
    return CaptchaEngine(
        store=store,
        image=ImageCaptchaService(build_image_captcha_config(settings), store, image_source),
        email=EmailCaptchaService(build_email_captcha_config(settings), store),
        delivery=LoggingDeliveryChannel(),
    )


async def periodic_store_purge(store: MemoryTTLStore):
    """定时清理内存存储中已过期的记录。"""
    while True:
        try:
            await asyncio.sleep(STORE_PURGE_INTERVAL_SECONDS)
            removed = store.purge_expired()
            if removed:
                logger.debug(f"Purged {removed} expired captcha entries")
        except Exception as exc:
            logger.error(f"Captcha store purge failed: {exc}")


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    engine = getattr(app.state, "engine", None)
    if engine is None:
        engine = build_engine(get_settings())
        app.state.engine = engine

    background_tasks: List[asyncio.Task] = []
    if isinstance(engine.store, MemoryTTLStore):
        background_tasks.append(asyncio.create_task(periodic_store_purge(engine.store), name="captcha_store_purge"))
    logger.info("Slidegate API started")
    try:
        yield
    finally:
        for task in background_tasks:
            task.cancel()
        if background_tasks:
            await asyncio.gather(*background_tasks, return_exceptions=True)
        await engine.store.close()
