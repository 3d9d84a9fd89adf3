"""
Stripe Checkout: session creation, session lookup and webhook verification.

All calls to Stripe go through here so the rest of the code only sees
CheckoutPayment and the domain errors in skillscert.core.errors.
"""
import logging
import time
from dataclasses import dataclass

import stripe

from skillscert.core.config import is_stripe_configured, settings
from skillscert.core.errors import (
    PaymentNotFoundError,
    PaymentsNotConfiguredError,
    ProviderUnavailableError,
    WebhookSignatureError,
)
from skillscert.services.purchases import PurchaserIdentity

logger = logging.getLogger(__name__)

PAID_STATUSES = frozenset({"paid", "no_payment_required"})

# Worth another try: network, throttling, Stripe 5xx
_TRANSIENT_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)

_configured_for: tuple[str, float] | None = None


@dataclass(frozen=True)
class CheckoutPayment:
    reference: str
    payment_status: str
    status: str | None
    identity: PurchaserIdentity
    amount_cents: int | None = None
    currency: str | None = None
    payment_intent: str | None = None

    @property
    def is_paid(self) -> bool:
        return self.payment_status in PAID_STATUSES


def _field(obj, name: str):
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def payment_from_session(session) -> CheckoutPayment:
    """Checkout Session (API object or webhook payload) -> CheckoutPayment."""
    details = _field(session, "customer_details")
    metadata = _field(session, "metadata") or {}
    payment_intent = _field(session, "payment_intent")
    if payment_intent is not None and not isinstance(payment_intent, str):
        payment_intent = _field(payment_intent, "id")
    identity = PurchaserIdentity.build(
        email=_field(details, "email") or _field(session, "customer_email"),
        phone=_field(details, "phone") or _field(metadata, "phone"),
        full_name=_field(metadata, "name") or _field(details, "name"),
    )
    return CheckoutPayment(
        reference=_field(session, "id"),
        payment_status=_field(session, "payment_status") or "unpaid",
        status=_field(session, "status"),
        identity=identity,
        amount_cents=_field(session, "amount_total"),
        currency=_field(session, "currency"),
        payment_intent=payment_intent,
    )


def _configure() -> None:
    global _configured_for

    if not is_stripe_configured():
        raise PaymentsNotConfiguredError()
    key = settings.stripe_secret_key
    if _configured_for != (key, settings.provider_timeout_seconds):
        stripe.api_key = key
        stripe.default_http_client = stripe.new_default_http_client(timeout=settings.provider_timeout_seconds)
        _configured_for = (key, settings.provider_timeout_seconds)


def create_checkout_session(identity: PurchaserIdentity, success_url: str, cancel_url: str) -> tuple[str, str]:
    """Creates a one-item Checkout Session for the course. Returns (session id, hosted url)."""
    _configure()
    metadata = {"source": "skillscert-frontend"}
    if identity.full_name:
        metadata["name"] = identity.full_name
    if identity.phone:
        metadata["phone"] = identity.phone
    try:
        session = stripe.checkout.Session.create(
            payment_method_types=["card"],
            line_items=[
                {
                    "price_data": {
                        "currency": settings.stripe_currency,
                        "product_data": {
                            "name": settings.course_name,
                            "description": settings.course_description,
                        },
                        "unit_amount": settings.course_price_cents,
                    },
                    "quantity": 1,
                }
            ],
            mode="payment",
            success_url=success_url,
            cancel_url=cancel_url,
            customer_email=identity.email or None,
            metadata=metadata,
        )
    except stripe.StripeError as e:
        logger.error("Stripe checkout session creation failed: %s", e)
        raise ProviderUnavailableError() from e
    logger.info("Stripe checkout session created: %s email=%s", session.id, identity.email)
    return session.id, session.url


def retrieve_checkout_payment(reference: str) -> CheckoutPayment:
    """
    Looks the session up with bounded retries. Only transient errors are
    retried; exhausting them raises ProviderUnavailableError, never a payment
    failure. An unknown session id raises PaymentNotFoundError.
    """
    _configure()
    attempts = max(1, settings.provider_max_retries)
    for attempt in range(attempts):
        try:
            session = stripe.checkout.Session.retrieve(reference)
            return payment_from_session(session)
        except stripe.InvalidRequestError as e:
            logger.info("Stripe session not found: %s (%s)", reference, e)
            raise PaymentNotFoundError() from e
        except _TRANSIENT_ERRORS as e:
            if attempt + 1 >= attempts:
                logger.error("Stripe unavailable after %s attempts for %s: %s", attempts, reference, e)
                raise ProviderUnavailableError() from e
            delay = settings.provider_retry_backoff_seconds * (2 ** attempt)
            logger.warning("Stripe lookup failed for %s (attempt %s/%s), retrying in %.2fs: %s", reference, attempt + 1, attempts, delay, e)
            time.sleep(delay)
        except stripe.StripeError as e:
            logger.error("Stripe lookup error for %s: %s", reference, e)
            raise ProviderUnavailableError() from e
    raise ProviderUnavailableError()


def construct_webhook_event(payload: bytes, signature: str | None):
    """Verifies the Stripe-Signature header against the raw body. Raises WebhookSignatureError."""
    if not signature:
        raise WebhookSignatureError("Falta la firma del webhook.")
    try:
        return stripe.Webhook.construct_event(payload, signature, settings.stripe_webhook_secret)
    except ValueError as e:
        logger.warning("Stripe webhook invalid payload: %s", e)
        raise WebhookSignatureError("Payload de webhook inválido.") from e
    except stripe.SignatureVerificationError as e:
        logger.warning("Stripe webhook signature verification failed: %s", e)
        raise WebhookSignatureError() from e
