import hmac
import secrets
from dataclasses import dataclass
from typing import Optional

from ..config import EmailCaptchaConfig
from ..context import logger
from ..errors import CaptchaError, CaptchaValidationError, ErrorKind
from .image_captcha import VerifyOutcome, normalize_purpose
from .records import EphemeralRecords
from .store import TTLStore
from .tokens import TokenIssuer

RECORD_NAMESPACE = "captcha:email"


@dataclass(frozen=True)
class EmailChallenge:
    """Issued code. ``code`` is for the delivery layer only, never the client."""

    id: str
    code: str
    expires_in: int


def generate_code(length: int) -> str:
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


class EmailCaptchaService:
    def __init__(self, config: EmailCaptchaConfig, store: TTLStore, tokens: Optional[TokenIssuer] = None):
        if config.code_length < 1:
            raise ValueError("Email code length must be positive")
        self.config = config
        self.records = EphemeralRecords(store, RECORD_NAMESPACE, config.ttl_seconds)
        self.tokens = tokens or TokenIssuer(
            store,
            config.signing_secret,
            config.signing_algorithm,
            config.token_ttl_seconds,
            namespace=RECORD_NAMESPACE,
        )

    async def create(self, purpose: str) -> EmailChallenge:
        purpose_value = normalize_purpose(purpose)
        code = generate_code(self.config.code_length)
        record_id = await self.records.put({"code": code, "purpose": purpose_value})
        logger.info(f"Email captcha created: {record_id}, purpose: {purpose_value}, ttl: {self.config.ttl_seconds}s")
        return EmailChallenge(id=record_id, code=code, expires_in=self.config.ttl_seconds)

    async def verify(self, record_id: str, code: str, purpose: str) -> VerifyOutcome:
        if not record_id or not code or not purpose:
            raise CaptchaValidationError("验证码ID、验证码和用途不能为空")

        purpose = normalize_purpose(purpose)
        record = await self.records.load(record_id)
        stored_code = str(record.data.get("code") or "")
        if not hmac.compare_digest(stored_code.encode("utf-8"), str(code).encode("utf-8")):
            logger.warning(f"Email captcha code mismatch: {record_id}")
            raise CaptchaError("验证码错误", ErrorKind.CODE_MISMATCH)

        if record.data.get("purpose") != purpose:
            logger.warning(f"Email captcha purpose mismatch: {record_id}")
            raise CaptchaError("验证码用途不匹配", ErrorKind.PURPOSE_MISMATCH)

        await self.records.consume(record)
        issued = await self.tokens.mint(record_id, purpose)
        logger.info(f"Email captcha verified: {record_id}")
        return VerifyOutcome(id=record_id, token=issued.token, expires_in=self.config.token_ttl_seconds)

    async def redeem_token(self, record_id: str, token: str, purpose: str) -> bool:
        return await self.tokens.redeem(record_id, token, purpose)


__all__ = ["EmailCaptchaService", "EmailChallenge", "generate_code"]
