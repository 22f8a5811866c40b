from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    VALIDATION = "VALIDATION"
    STORAGE = "STORAGE"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    EXPECTED_X_MISMATCH = "EXPECTED_X_MISMATCH"
    CODE_MISMATCH = "CODE_MISMATCH"
    PURPOSE_MISMATCH = "PURPOSE_MISMATCH"


_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 410,
    ErrorKind.VALIDATION: 400,
    ErrorKind.STORAGE: 503,
    ErrorKind.VERIFICATION_FAILED: 400,
    ErrorKind.EXPECTED_X_MISMATCH: 400,
    ErrorKind.CODE_MISMATCH: 400,
    ErrorKind.PURPOSE_MISMATCH: 400,
}


class CaptchaError(Exception):
    def __init__(self, message: str, kind: ErrorKind, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.status_code = status_code if status_code is not None else _STATUS_BY_KIND[kind]


class CaptchaNotFoundError(CaptchaError):
    def __init__(self, message: str = "验证码不存在或已过期"):
        super().__init__(message, ErrorKind.NOT_FOUND)


class CaptchaValidationError(CaptchaError):
    def __init__(self, message: str):
        super().__init__(message, ErrorKind.VALIDATION)


class CaptchaStorageError(CaptchaError):
    def __init__(self, message: str):
        super().__init__(message, ErrorKind.STORAGE)


__all__ = [
    "CaptchaError",
    "CaptchaNotFoundError",
    "CaptchaStorageError",
    "CaptchaValidationError",
    "ErrorKind",
]
