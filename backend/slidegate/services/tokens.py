import hashlib
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import jwt

from ..context import logger
from .store import TTLStore


@dataclass(frozen=True)
class IssuedToken:
    token: str
    issued_at: int
    expires_at: int


class TokenIssuer:
    """Mints and redeems single-use exchange tokens.

    A token is a signed JWT carrying ``id``/``purpose``/``iat``/``exp``. Minting
    also stores a redemption marker keyed by the token digest; redeeming
    compare-and-deletes that marker, so a token is good for one use even
    though its signature stays valid until ``exp``.
    """

    def __init__(
        self,
        store: TTLStore,
        secret: str,
        algorithm: str,
        ttl_seconds: int,
        namespace: str,
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ValueError("Token signing secret must be provided")
        if ttl_seconds <= 0:
            raise ValueError("Token TTL must be positive")
        self.store = store
        self.secret = secret
        self.algorithm = algorithm
        self.ttl_seconds = ttl_seconds
        self.namespace = namespace
        self._clock = clock

    def marker_key(self, token: str) -> str:
        digest = hashlib.sha256(token.encode("utf-8")).hexdigest()
        return f"{self.namespace}:token:{digest}"

    async def mint(self, record_id: str, purpose: str) -> IssuedToken:
        issued_at = int(self._clock())
        expires_at = issued_at + self.ttl_seconds
        payload = {"id": record_id, "purpose": purpose, "iat": issued_at, "exp": expires_at}
        token = jwt.encode(payload, self.secret, algorithm=self.algorithm)

        remaining = max(1, expires_at - int(self._clock()))
        await self.store.set(self.marker_key(token), record_id, remaining)
        return IssuedToken(token=token, issued_at=issued_at, expires_at=expires_at)

    def decode(self, token: str) -> Optional[Dict[str, Any]]:
        try:
            return jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["exp", "iat"]},
            )
        except jwt.ExpiredSignatureError:
            logger.warning("Captcha token expired")
            return None
        except jwt.InvalidTokenError as exc:
            logger.warning(f"Captcha token rejected: {exc}")
            return None

    async def redeem(self, record_id: str, token: str, purpose: str) -> bool:
        if not isinstance(token, str) or not token or not record_id or not purpose:
            return False

        payload = self.decode(token)
        if payload is None:
            return False
        if payload.get("id") != record_id or payload.get("purpose") != purpose:
            logger.warning(f"Captcha token payload mismatch: {record_id}")
            return False

        try:
            consumed = await self.store.delete_if_equals(self.marker_key(token), record_id)
        except Exception as exc:
            logger.error(f"Captcha token marker lookup failed: {exc}")
            return False

        if not consumed:
            logger.warning(f"Captcha token already used or expired: {record_id}")
            return False
        logger.info(f"Captcha token redeemed: {record_id}")
        return True


__all__ = ["IssuedToken", "TokenIssuer"]
