import math
from dataclasses import dataclass
from typing import Any, Optional

from starlette.concurrency import run_in_threadpool

from ..config import ImageCaptchaConfig, Size
from ..context import logger
from ..errors import CaptchaError, CaptchaValidationError, ErrorKind
from .images import ImageSource
from .puzzle import PuzzleGenerator
from .records import EphemeralRecords
from .store import TTLStore
from .tokens import TokenIssuer
from .trajectory import MAX_TRAIL_POINTS, Trajectory, coerce_trail, score_trajectory

RECORD_NAMESPACE = "captcha:image"
MAX_CANVAS_SIZE = 2000


@dataclass(frozen=True)
class ImageChallenge:
    id: str
    background_bytes: bytes
    piece_bytes: bytes
    background_mime: str
    piece_mime: str
    background_size: Size
    piece_size: Size
    expires_in: int


@dataclass(frozen=True)
class VerifyOutcome:
    id: str
    token: str
    expires_in: int


def normalize_purpose(purpose: Optional[str]) -> str:
    value = str(purpose or "").strip()
    if not value:
        raise CaptchaValidationError("验证码用途不能为空")
    return value


def build_trajectory(
    x: Any,
    slider_offset_x: Any,
    duration: Any,
    trail: Any,
    y: Any = None,
) -> Trajectory:
    """Build a :class:`Trajectory` from loosely typed client values."""
    try:
        final_x = float(x)
        offset = float(slider_offset_x)
        duration_ms = float(duration)
        final_y = float(y) if y is not None else None
    except (TypeError, ValueError):
        raise CaptchaValidationError("验证码参数格式错误")
    if not isinstance(trail, (list, tuple)):
        raise CaptchaValidationError("验证码轨迹数据格式错误")
    if len(trail) > MAX_TRAIL_POINTS:
        raise CaptchaValidationError(f"验证码轨迹点过多，最多 {MAX_TRAIL_POINTS} 个")
    return Trajectory(
        final_x=final_x,
        final_y=final_y,
        slider_offset_x=offset,
        duration_ms=duration_ms,
        samples=coerce_trail(trail),
    )


class ImageCaptchaService:
    def __init__(
        self,
        config: ImageCaptchaConfig,
        store: TTLStore,
        image_source: ImageSource,
        generator: Optional[PuzzleGenerator] = None,
        tokens: Optional[TokenIssuer] = None,
    ):
        self.config = config
        self.image_source = image_source
        self.generator = generator or PuzzleGenerator()
        self.records = EphemeralRecords(store, RECORD_NAMESPACE, config.ttl_seconds)
        self.tokens = tokens or TokenIssuer(
            store,
            config.signing_secret,
            config.signing_algorithm,
            config.token_ttl_seconds,
            namespace=RECORD_NAMESPACE,
        )

    @staticmethod
    def _resolve_size(width: Optional[int], height: Optional[int], default: Size, label: str) -> Size:
        size = Size(
            int(width) if width is not None else default.width,
            int(height) if height is not None else default.height,
        )
        if not (0 < size.width <= MAX_CANVAS_SIZE and 0 < size.height <= MAX_CANVAS_SIZE):
            raise CaptchaValidationError(f"{label}尺寸无效: {size.width}x{size.height}")
        return size

    async def create(
        self,
        purpose: str,
        bg_width: Optional[int] = None,
        bg_height: Optional[int] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
        x: Optional[float] = None,
    ) -> ImageChallenge:
        purpose_value = normalize_purpose(purpose)
        background_size = self._resolve_size(bg_width, bg_height, self.config.default_background_size, "背景")
        piece_size = self._resolve_size(width, height, self.config.default_piece_size, "拼图")
        if piece_size.width > background_size.width or piece_size.height > background_size.height:
            raise CaptchaValidationError("拼图尺寸不能大于背景尺寸")
        if x is not None and not math.isfinite(float(x)):
            raise CaptchaValidationError("拼图位置无效")

        logger.info(
            f"Creating image captcha, purpose: {purpose_value}, "
            f"size: {background_size.width}x{background_size.height}"
        )
        image_path = self.image_source.pick_random_image()
        puzzle = await run_in_threadpool(self.generator.generate, image_path, background_size, piece_size, x)

        record_id = await self.records.put({"x": puzzle.x, "purpose": purpose_value})
        logger.info(f"Image captcha created: {record_id}, ttl: {self.config.ttl_seconds}s")
        return ImageChallenge(
            id=record_id,
            background_bytes=puzzle.background_bytes,
            piece_bytes=puzzle.piece_bytes,
            background_mime=puzzle.background_mime,
            piece_mime=puzzle.piece_mime,
            background_size=background_size,
            piece_size=piece_size,
            expires_in=self.config.ttl_seconds,
        )

    async def verify(self, record_id: str, trajectory: Trajectory, purpose: Optional[str] = None) -> VerifyOutcome:
        if not record_id:
            raise CaptchaValidationError("验证码ID不能为空")
        if not isinstance(trajectory, Trajectory):
            raise CaptchaValidationError("验证码载荷无效")

        record = await self.records.load(record_id)
        stored_purpose = str(record.data.get("purpose") or "")
        if purpose is not None and normalize_purpose(purpose) != stored_purpose:
            logger.warning(f"Image captcha purpose mismatch: {record_id}")
            raise CaptchaError("验证码用途不匹配", ErrorKind.PURPOSE_MISMATCH)

        try:
            expected_x = float(record.data["x"])
        except (KeyError, TypeError, ValueError):
            logger.error(f"Image captcha record has no offset: {record_id}")
            raise CaptchaError("验证码数据损坏", ErrorKind.STORAGE)

        if not math.isfinite(trajectory.final_x):
            raise CaptchaValidationError("验证码参数格式错误")
        if abs(trajectory.final_x - expected_x) > self.config.tolerance_px:
            logger.warning(f"Image captcha offset outside tolerance: {record_id}")
            raise CaptchaError("expected_x_mismatch", ErrorKind.EXPECTED_X_MISMATCH)

        result = score_trajectory(trajectory)
        if not result.ok:
            reason = result.reasons[0] if result.reasons else "verification_failed"
            logger.warning(f"Image captcha trail rejected: {record_id}, reason: {reason}, score: {result.score:.2f}")
            raise CaptchaError(reason, ErrorKind.VERIFICATION_FAILED)

        await self.records.consume(record)
        issued = await self.tokens.mint(record_id, stored_purpose)
        logger.info(f"Image captcha verified: {record_id}")
        return VerifyOutcome(id=record_id, token=issued.token, expires_in=self.config.token_ttl_seconds)

    async def redeem_token(self, record_id: str, token: str, purpose: str) -> bool:
        return await self.tokens.redeem(record_id, token, purpose)


__all__ = [
    "ImageCaptchaService",
    "ImageChallenge",
    "VerifyOutcome",
    "build_trajectory",
    "normalize_purpose",
]
