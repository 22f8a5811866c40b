import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings


settings = get_settings()

# Logging configuration
log_level = settings.log_level.upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger(__name__)

CORS_EXPOSE_HEADERS = ["Content-Length", "Content-Type"]


def apply_cors(app: FastAPI) -> None:
    """Credentials are allowed only for explicitly listed origins."""
    origins = settings.allowed_origins
    wildcard = "*" in origins
    if wildcard:
        logger.warning("Wildcard CORS origin configured, captcha cookies will not be sent cross-origin")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if wildcard else origins,
        allow_credentials=not wildcard,
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=CORS_EXPOSE_HEADERS,
    )


def create_app(*, lifespan=None) -> FastAPI:
    app = FastAPI(
        title="Slidegate API",
        description="滑块拼图与邮箱验证码的人机验证服务",
        version="1.0.0",
        lifespan=lifespan,
    )
    apply_cors(app)
    return app
