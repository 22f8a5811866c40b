import base64
from typing import Any, Dict, Optional

from fastapi import Response

from .config import get_settings


def success_response(message: str = "操作成功", data: Any = None) -> Dict[str, Any]:
    """成功响应"""
    return {
        "success": True,
        "message": message,
        "data": data or {},
        "code": 200,
    }


def error_response(message: str, code: int = 400, details: Any = None) -> Dict[str, Any]:
    """错误响应"""
    response = {
        "success": False,
        "message": message,
        "code": code,
        "data": {},
    }
    if details:
        response["details"] = details
    return response


def to_data_url(mime: str, payload: bytes) -> str:
    return f"data:{mime};base64,{base64.b64encode(payload).decode('ascii')}"


def set_captcha_cookie(response: Response, key: str, value: str, max_age: int) -> None:
    """写入验证码相关Cookie，前端需要读取，因此不设置httponly。"""
    response.set_cookie(
        key=key,
        value=value,
        max_age=max_age,
        httponly=False,
        secure=get_settings().cookie_secure,
        samesite="lax",
    )


def first_present(*values: Optional[str]) -> Optional[str]:
    for value in values:
        if value and str(value).strip():
            return str(value).strip()
    return None
