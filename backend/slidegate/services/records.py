import json
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..context import logger
from ..errors import CaptchaNotFoundError, CaptchaStorageError
from .store import TTLStore


@dataclass(frozen=True)
class StoredRecord:
    id: str
    raw: str
    data: Dict[str, Any]


class EphemeralRecords:
    """TTL-bound challenge facts under one key namespace.

    Records are written once, read, and consumed with a compare-and-delete on
    the exact serialized value that was read. Expiry is whatever the backing
    store enforces; an expired record is simply absent.
    """

    def __init__(self, store: TTLStore, namespace: str, ttl_seconds: int):
        if ttl_seconds <= 0:
            raise ValueError("Record TTL must be positive")
        self.store = store
        self.namespace = namespace
        self.ttl_seconds = ttl_seconds

    def key(self, record_id: str) -> str:
        return f"{self.namespace}:{record_id}"

    @staticmethod
    def new_id() -> str:
        return secrets.token_hex(16)

    async def put(self, data: Dict[str, Any]) -> str:
        record_id = self.new_id()
        await self.store.set(self.key(record_id), json.dumps(data, separators=(",", ":")), self.ttl_seconds)
        return record_id

    async def load(self, record_id: str) -> StoredRecord:
        raw = await self.store.get(self.key(record_id))
        if raw is None:
            logger.warning(f"Captcha record missing or expired: {record_id}")
            raise CaptchaNotFoundError()
        data = self._deserialize(raw)
        if data is None:
            logger.error(f"Captcha record corrupted: {record_id}")
            raise CaptchaStorageError("验证码数据损坏")
        return StoredRecord(id=record_id, raw=raw, data=data)

    async def consume(self, record: StoredRecord) -> None:
        # Losing a concurrent race looks exactly like the record having expired.
        if not await self.store.delete_if_equals(self.key(record.id), record.raw):
            logger.warning(f"Captcha record already consumed: {record.id}")
            raise CaptchaNotFoundError()

    @staticmethod
    def _deserialize(raw: str) -> Optional[Dict[str, Any]]:
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError):
            return None
        return payload if isinstance(payload, dict) else None


__all__ = ["EphemeralRecords", "StoredRecord"]
