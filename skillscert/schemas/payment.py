from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    """Frontend sends/receives camelCase (sessionId, accessCode, expiresAt)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


class CheckoutSessionRequest(_CamelModel):
    email: EmailStr
    name: str | None = Field(default=None, max_length=200)
    phone: str | None = Field(default=None, max_length=32)
    success_url: str | None = None
    cancel_url: str | None = None

    @field_validator("phone")
    @classmethod
    def phone_digits(cls, v: str | None) -> str | None:
        if v and sum(ch.isdigit() for ch in v) < 8:
            raise ValueError("Teléfono inválido.")
        return v or None


class CheckoutSessionResponse(BaseModel):
    id: str
    url: str


class VerifyPaymentRequest(_CamelModel):
    session_id: str = Field(min_length=1, max_length=255)


class VerifyPaymentResponse(_CamelModel):
    success: bool = True
    email: str
    access_code: str
    expires_at: datetime
    notifications: list[str] = []


class WebhookAck(BaseModel):
    received: bool = True
