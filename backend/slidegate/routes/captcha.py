from fastapi import APIRouter, HTTPException, Request, Response

from ..context import logger
from ..dependencies import enforce_captcha, get_engine
from ..errors import CaptchaError
from ..schemas import (
    CreateImageCaptchaRequest,
    RedeemTokenRequest,
    SendEmailCaptchaRequest,
    VerifyEmailCaptchaRequest,
    VerifyImageCaptchaRequest,
)
from ..services.image_captcha import build_trajectory
from ..utils import error_response, first_present, set_captcha_cookie, success_response, to_data_url


router = APIRouter(prefix="/captcha")


def _captcha_error(exc: CaptchaError):
    return error_response(exc.message, exc.status_code, {"kind": exc.kind.value})


@router.post("/image/create")
async def create_image_captcha(payload: CreateImageCaptchaRequest, request: Request, response: Response):
    """创建图片验证码。"""
    engine = get_engine(request)
    try:
        challenge = await engine.image.create(
            payload.purpose,
            bg_width=payload.bg_width,
            bg_height=payload.bg_height,
            width=payload.width,
            height=payload.height,
        )
    except CaptchaError as exc:
        return _captcha_error(exc)
    except Exception as exc:
        logger.error(f"Failed to create image captcha: {exc}")
        return error_response("验证码生成失败，请稍后重试", 500)

    set_captcha_cookie(response, "captcha_id", challenge.id, challenge.expires_in)
    return success_response(
        "验证码创建成功",
        {
            "id": challenge.id,
            "bg_url": to_data_url(challenge.background_mime, challenge.background_bytes),
            "puzzle_url": to_data_url(challenge.piece_mime, challenge.piece_bytes),
            "width": challenge.background_size.width,
            "height": challenge.background_size.height,
            "piece_width": challenge.piece_size.width,
            "piece_height": challenge.piece_size.height,
            "expires_in": challenge.expires_in,
        },
    )


@router.post("/image/verify")
async def verify_image_captcha(payload: VerifyImageCaptchaRequest, request: Request, response: Response):
    """验证图片验证码。"""
    engine = get_engine(request)
    captcha_id = first_present(payload.id, request.cookies.get("captcha_id"))
    try:
        trajectory = build_trajectory(payload.x, payload.slider_offset_x, payload.duration, payload.trail, payload.y)
        outcome = await engine.image.verify(captcha_id or "", trajectory, payload.purpose)
    except CaptchaError as exc:
        return _captcha_error(exc)

    set_captcha_cookie(response, "captcha_token", outcome.token, outcome.expires_in)
    return success_response(
        "验证成功",
        {"id": outcome.id, "token": outcome.token, "expires_in": outcome.expires_in},
    )


@router.post("/email/send")
async def send_email_captcha(payload: SendEmailCaptchaRequest, request: Request, response: Response):
    """发送邮箱验证码，需先通过图片验证码。"""
    await enforce_captcha(request, payload.purpose, "image")

    engine = get_engine(request)
    try:
        challenge = await engine.email.create(payload.purpose)
    except CaptchaError as exc:
        return _captcha_error(exc)

    try:
        await engine.delivery.deliver(payload.email, payload.purpose, challenge.code, challenge.expires_in)
    except Exception as exc:
        logger.error(f"Failed to deliver email captcha {challenge.id}: {exc}")
        return error_response("验证码发送失败，请稍后重试", 502)

    set_captcha_cookie(response, "email_captcha_id", challenge.id, challenge.expires_in)
    return success_response("验证码已发送", {"id": challenge.id, "expires_in": challenge.expires_in})


@router.post("/email/verify")
async def verify_email_captcha(payload: VerifyEmailCaptchaRequest, request: Request, response: Response):
    """验证邮箱验证码。"""
    engine = get_engine(request)
    captcha_id = first_present(request.cookies.get("email_captcha_id"), payload.id)
    if not captcha_id:
        raise HTTPException(status_code=400, detail="验证码ID不能为空")

    try:
        outcome = await engine.email.verify(captcha_id, payload.code, payload.purpose)
    except CaptchaError as exc:
        return _captcha_error(exc)

    set_captcha_cookie(response, "email_captcha_token", outcome.token, outcome.expires_in)
    return success_response(
        "验证成功",
        {"id": outcome.id, "token": outcome.token, "expires_in": outcome.expires_in},
    )


@router.post("/token/redeem")
async def redeem_captcha_token(payload: RedeemTokenRequest, request: Request):
    """核销一次性验证凭证。"""
    engine = get_engine(request)
    service = engine.image if payload.kind == "image" else engine.email
    valid = await service.redeem_token(payload.id, payload.token, payload.purpose)
    return success_response("凭证有效" if valid else "凭证无效或已使用", {"valid": valid})
