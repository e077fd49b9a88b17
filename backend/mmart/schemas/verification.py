from typing import Optional

from pydantic import BaseModel, Field


class VerifyCodeRequest(BaseModel):
    code: str = Field(min_length=1, max_length=10)


class SendCodeResponse(BaseModel):
    sent: bool
    expires_in_minutes: int
    message: str


class VerifyCodeResponse(BaseModel):
    verified: bool
    message: str


class VerificationStatusResponse(BaseModel):
    channel: str
    contact: Optional[str] = None
    verified: bool
