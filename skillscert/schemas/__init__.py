from .auth import (
    CredentialActionRequest,
    CredentialProfile,
    LoginRequest,
    MessageResponse,
    ResendCodeRequest,
    SessionResponse,
)
from .payment import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
    WebhookAck,
)

__all__ = [
    "CheckoutSessionRequest",
    "CheckoutSessionResponse",
    "CredentialActionRequest",
    "CredentialProfile",
    "LoginRequest",
    "MessageResponse",
    "ResendCodeRequest",
    "SessionResponse",
    "VerifyPaymentRequest",
    "VerifyPaymentResponse",
    "WebhookAck",
]
