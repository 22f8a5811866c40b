from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from .services.trajectory import MAX_TRAIL_POINTS


class CreateImageCaptchaRequest(BaseModel):
    purpose: str
    bg_width: Optional[int] = Field(default=None, gt=0)
    bg_height: Optional[int] = Field(default=None, gt=0)
    width: Optional[int] = Field(default=None, gt=0)
    height: Optional[int] = Field(default=None, gt=0)


class VerifyImageCaptchaRequest(BaseModel):
    id: Optional[str] = None
    purpose: Optional[str] = None
    x: float
    y: Optional[float] = None
    slider_offset_x: float
    duration: float
    trail: List[List[float]] = Field(max_length=MAX_TRAIL_POINTS)


class SendEmailCaptchaRequest(BaseModel):
    email: str = Field(min_length=3, max_length=254)
    purpose: str


class VerifyEmailCaptchaRequest(BaseModel):
    id: Optional[str] = None
    code: str
    purpose: str


class RedeemTokenRequest(BaseModel):
    id: str
    token: str
    purpose: str
    kind: Literal["image", "email"] = "image"
