from typing import Optional

from fastapi import FastAPI

from .context import create_app
from .lifecycle import CaptchaEngine, app_lifespan
from .routes import captcha_router


def build_app(engine: Optional[CaptchaEngine] = None) -> FastAPI:
    app = create_app(lifespan=app_lifespan)
    if engine is not None:
        app.state.engine = engine
    app.include_router(captcha_router)
    return app


__all__ = ["build_app"]
