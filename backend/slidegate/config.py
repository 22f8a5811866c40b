"""Centralised environment-driven settings for the verification service."""

from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Iterable, List, NamedTuple

from dotenv import load_dotenv


BASE_DIR = Path(__file__).resolve().parent.parent
PROJECT_ROOT = BASE_DIR.parent

# Ensure variables from .env are loaded before anything else reads from os.environ
_env_candidates: Iterable[Path] = (
    PROJECT_ROOT / ".env",
    BASE_DIR / ".env",
)
for candidate in _env_candidates:
    if candidate.exists():
        load_dotenv(dotenv_path=candidate, override=False)
load_dotenv(override=False)

logger = logging.getLogger(__name__)

STORE_BACKENDS = {"memory", "redis"}


def _split_csv(value: str | None) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _as_int(value: str | None, default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def _as_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _normalize_env(value: str | None) -> str:
    if not value:
        return "production"
    cleaned = value.strip().lower()
    if cleaned == "devlopment":  # tolerate typo from configuration guidance
        cleaned = "development"
    return cleaned


class Size(NamedTuple):
    width: int
    height: int


@dataclass(frozen=True)
class ImageCaptchaConfig:
    ttl_seconds: int
    token_ttl_seconds: int
    tolerance_px: int
    signing_secret: str
    signing_algorithm: str
    default_background_size: Size
    default_piece_size: Size


@dataclass(frozen=True)
class EmailCaptchaConfig:
    ttl_seconds: int
    token_ttl_seconds: int
    code_length: int
    signing_secret: str
    signing_algorithm: str


@dataclass(frozen=True)
class Settings:
    env: str
    is_development: bool
    backend_host: str
    backend_port: int
    log_level: str
    allowed_origins: List[str]
    cookie_secure: bool
    store_backend: str
    redis_url: str
    signing_secret: str
    signing_algorithm: str
    image_dir: Path
    captcha_ttl_seconds: int
    captcha_token_ttl_seconds: int
    captcha_tolerance_px: int
    background_size: Size
    piece_size: Size
    email_code_length: int
    email_code_ttl_seconds: int
    email_token_ttl_seconds: int


@lru_cache()
def get_settings() -> Settings:
    env_value = _normalize_env(os.getenv("ENV"))
    is_development = env_value == "development"

    backend_host = os.getenv("DEV_BACKEND_HOST") if is_development else os.getenv("BACKEND_HOST")
    backend_host = (backend_host or "0.0.0.0").strip()

    backend_port = _as_int(os.getenv("BACKEND_PORT"), 9099)
    dev_port = _as_int(os.getenv("DEV_BACKEND_PORT"), backend_port)
    port = dev_port if is_development else backend_port

    log_level_key = "DEV_LOG_LEVEL" if is_development else "LOG_LEVEL"
    log_level = (os.getenv(log_level_key) or os.getenv("LOG_LEVEL") or "INFO").upper()

    allowed_origins = _split_csv(os.getenv("ALLOWED_ORIGINS"))
    if not allowed_origins:
        allowed_origins = ["*"]

    cookie_secure = _as_bool(os.getenv("COOKIE_SECURE"), not is_development)

    store_backend = (os.getenv("CAPTCHA_STORE") or "memory").strip().lower()
    if store_backend not in STORE_BACKENDS:
        raise RuntimeError(f"CAPTCHA_STORE must be one of {sorted(STORE_BACKENDS)}, got {store_backend!r}")
    redis_url = (os.getenv("REDIS_URL") or "redis://localhost:6379/0").strip()

    signing_secret = os.getenv("CAPTCHA_SIGNING_SECRET")
    if not signing_secret:
        # Tokens minted by one process cannot be redeemed by another with a random secret.
        logger.warning("CAPTCHA_SIGNING_SECRET is not set, generated an ephemeral secret")
        signing_secret = secrets.token_hex(32)
    signing_algorithm = os.getenv("CAPTCHA_SIGNING_ALGORITHM", "HS256").strip() or "HS256"

    image_dir_value = (os.getenv("CAPTCHA_IMAGE_DIR") or "").strip()
    image_dir = Path(image_dir_value) if image_dir_value else PROJECT_ROOT / "public" / "captcha"
    if not image_dir.is_absolute():
        image_dir = PROJECT_ROOT / image_dir

    background_size = Size(
        _as_int(os.getenv("CAPTCHA_BG_WIDTH"), 360),
        _as_int(os.getenv("CAPTCHA_BG_HEIGHT"), 200),
    )
    piece_size = Size(
        _as_int(os.getenv("CAPTCHA_PIECE_WIDTH"), 60),
        _as_int(os.getenv("CAPTCHA_PIECE_HEIGHT"), 60),
    )
    if piece_size.width > background_size.width or piece_size.height > background_size.height:
        raise RuntimeError("CAPTCHA_PIECE_* must not exceed CAPTCHA_BG_*")

    email_code_length = _as_int(os.getenv("EMAIL_CODE_LENGTH"), 6)
    if email_code_length < 1:
        raise RuntimeError("EMAIL_CODE_LENGTH must be positive")

    return Settings(
        env=env_value,
        is_development=is_development,
        backend_host=backend_host,
        backend_port=port,
        log_level=log_level,
        allowed_origins=allowed_origins,
        cookie_secure=cookie_secure,
        store_backend=store_backend,
        redis_url=redis_url,
        signing_secret=signing_secret,
        signing_algorithm=signing_algorithm,
        image_dir=image_dir,
        captcha_ttl_seconds=_as_int(os.getenv("CAPTCHA_TTL_SECONDS"), 60),
        captcha_token_ttl_seconds=_as_int(os.getenv("CAPTCHA_TOKEN_TTL_SECONDS"), 300),
        captcha_tolerance_px=_as_int(os.getenv("CAPTCHA_TOLERANCE_PX"), 10),
        background_size=background_size,
        piece_size=piece_size,
        email_code_length=email_code_length,
        email_code_ttl_seconds=_as_int(os.getenv("EMAIL_CODE_TTL_SECONDS"), 300),
        email_token_ttl_seconds=_as_int(os.getenv("EMAIL_TOKEN_TTL_SECONDS"), 300),
    )


def build_image_captcha_config(settings: Settings) -> ImageCaptchaConfig:
    return ImageCaptchaConfig(
        ttl_seconds=settings.captcha_ttl_seconds,
        token_ttl_seconds=settings.captcha_token_ttl_seconds,
        tolerance_px=settings.captcha_tolerance_px,
        signing_secret=settings.signing_secret,
        signing_algorithm=settings.signing_algorithm,
        default_background_size=settings.background_size,
        default_piece_size=settings.piece_size,
    )


def build_email_captcha_config(settings: Settings) -> EmailCaptchaConfig:
    return EmailCaptchaConfig(
        ttl_seconds=settings.email_code_ttl_seconds,
        token_ttl_seconds=settings.email_token_ttl_seconds,
        code_length=settings.email_code_length,
        signing_secret=settings.signing_secret,
        signing_algorithm=settings.signing_algorithm,
    )


__all__ = [
    "EmailCaptchaConfig",
    "ImageCaptchaConfig",
    "Settings",
    "Size",
    "build_email_captcha_config",
    "build_image_captcha_config",
    "get_settings",
]
