from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    # Older frontend pages post accessCode
    code: str = Field(min_length=1, max_length=64, validation_alias=AliasChoices("code", "accessCode"))


class CredentialProfile(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    email: str
    full_name: str | None = None
    phone: str | None = None
    expires_at: datetime
    used_count: int = 0
    last_used_at: datetime | None = None


class SessionResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = True
    token: str
    token_type: str = "bearer"
    expires_in: int
    user: CredentialProfile


class ResendCodeRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class CredentialActionRequest(BaseModel):
    """Support actions on a credential (X-Admin-Secret)."""
    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
