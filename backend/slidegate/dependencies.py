from typing import Callable

from fastapi import HTTPException, Request

from .context import logger
from .lifecycle import CaptchaEngine
from .utils import first_present

CREDENTIAL_SOURCES = {
    "image": {
        "headers": ("x-captcha-id", "x-captcha-token"),
        "cookies": (("captcha_id", "captcha-id"), ("captcha_token", "captcha-token")),
    },
    "email": {
        "headers": ("x-email-captcha-id", "x-email-captcha-token"),
        "cookies": (("email_captcha_id", "email-captcha-id"), ("email_captcha_token", "email-captcha-token")),
    },
}


def get_engine(request: Request) -> CaptchaEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="验证服务尚未就绪")
    return engine


def read_credentials(request: Request, kind: str):
    """Headers first, then cookies (both underscore and dash spellings)."""
    id_header, token_header = CREDENTIAL_SOURCES[kind]["headers"]
    id_cookies, token_cookies = CREDENTIAL_SOURCES[kind]["cookies"]
    captcha_id = first_present(request.headers.get(id_header), *(request.cookies.get(name) for name in id_cookies))
    token = first_present(request.headers.get(token_header), *(request.cookies.get(name) for name in token_cookies))
    return captcha_id, token


async def enforce_captcha(request: Request, purpose: str, kind: str) -> str:
    captcha_id, token = read_credentials(request, kind)
    if not captcha_id or not token:
        raise HTTPException(status_code=400, detail="Captcha token is missing")

    engine = get_engine(request)
    service = engine.image if kind == "image" else engine.email
    if not await service.redeem_token(captcha_id, token, purpose):
        logger.warning(f"Rejected request guarded by {kind} captcha, purpose: {purpose}")
        raise HTTPException(status_code=400, detail="Captcha token is invalid")
    return captcha_id


def require_image_captcha(purpose: str) -> Callable:
    """Dependency that consumes an image-captcha exchange token for ``purpose``."""

    async def guard(request: Request) -> str:
        return await enforce_captcha(request, purpose, "image")

    return guard


def require_email_captcha(purpose: str) -> Callable:
    async def guard(request: Request) -> str:
        return await enforce_captcha(request, purpose, "email")

    return guard
