"""Domain errors rendered by the exception handler in skillscert.main."""


class AccessServiceError(Exception):
    status_code = 400
    code = "BAD_REQUEST"
    message = "Solicitud inválida."
    retriable = False

    def __init__(self, message: str | None = None, **extra):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.extra = extra


# ---------- Login ----------
class InvalidCredentialsError(AccessServiceError):
    # Same answer for unknown e-mail and wrong code
    status_code = 401
    code = "INVALID_CREDENTIALS"
    message = "Correo o código de acceso inválido."


class AccountLockedError(AccessServiceError):
    status_code = 423
    code = "ACCOUNT_LOCKED"
    message = "Cuenta bloqueada por demasiados intentos fallidos. Contacta a soporte."


class AccessExpiredError(AccessServiceError):
    status_code = 403
    code = "ACCESS_EXPIRED"
    message = "Acceso expirado. Por favor renueva tu acceso."


class InvalidTokenError(AccessServiceError):
    status_code = 401
    code = "INVALID_TOKEN"
    message = "Token inválido o expirado."


# ---------- Payments ----------
class WebhookSignatureError(AccessServiceError):
    status_code = 400
    code = "INVALID_SIGNATURE"
    message = "Firma de webhook inválida."


class PaymentNotCompletedError(AccessServiceError):
    status_code = 402
    code = "PAYMENT_NOT_COMPLETED"
    message = "El pago aún no se ha completado."
    retriable = True


class PaymentNotFoundError(AccessServiceError):
    status_code = 404
    code = "PAYMENT_NOT_FOUND"
    message = "Sesión de pago no encontrada."


class ProviderUnavailableError(AccessServiceError):
    status_code = 503
    code = "PROVIDER_UNAVAILABLE"
    message = "El proveedor de pagos no responde. Intenta de nuevo en unos segundos."
    retriable = True


class PaymentsNotConfiguredError(AccessServiceError):
    status_code = 503
    code = "PAYMENTS_NOT_CONFIGURED"
    message = "Pagos no configurados."


class PurchaseInProgressError(AccessServiceError):
    status_code = 409
    code = "PURCHASE_IN_PROGRESS"
    message = "El pago se está procesando. Intenta de nuevo en unos segundos."
    retriable = True


class MissingPurchaserEmailError(AccessServiceError):
    status_code = 422
    code = "MISSING_EMAIL"
    message = "El pago no tiene un correo asociado. Contacta a soporte."


class AccessCodeUnavailableError(AccessServiceError):
    """Purchase is completed but its stored code can no longer be decrypted."""

    status_code = 409
    code = "ACCESS_CODE_UNAVAILABLE"
    message = "Tu acceso ya está activo. Solicita un código nuevo con la opción Reenviar código."


class PurchaseRecordingError(Exception):
    """Storage failure while issuing a credential; the transaction was rolled back."""
