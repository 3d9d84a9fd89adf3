"""
Stripe Checkout intake: session creation, webhook and synchronous verification.

Both the webhook and /verify-payment end in record_purchase; whichever runs
first issues the credential, the other gets the same result back.
"""
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

from skillscert.core.config import is_webhook_configured, settings
from skillscert.core.database import get_db
from skillscert.core.errors import (
    AccessCodeUnavailableError,
    MissingPurchaserEmailError,
    PaymentNotCompletedError,
    WebhookSignatureError,
)
from skillscert.core.rate_limit import limiter
from skillscert.models import PURCHASE_COMPLETED
from skillscert.schemas import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
    WebhookAck,
)
from skillscert.services import stripe_gateway
from skillscert.services.activity import client_ip, record_audit, record_security_event
from skillscert.services.notifications import schedule_notification
from skillscert.services.purchases import (
    IssuedAccess,
    PurchaserIdentity,
    find_purchase,
    mark_purchase_failed,
    record_checkout_started,
    record_purchase,
)
from skillscert.services.stripe_gateway import CheckoutPayment

log = logging.getLogger("skillscert.payments")

router = APIRouter(tags=["payments"])
_VERIFY_RATE_LIMIT = f"{settings.rate_limit_per_minute}/minute"

_COMPLETION_EVENTS = {"checkout.session.completed", "checkout.session.async_payment_succeeded"}
_FAILURE_EVENTS = {"checkout.session.async_payment_failed", "checkout.session.expired"}


def _frontend_base() -> str:
    return (settings.frontend_url or "").strip().rstrip("/") or "http://localhost:5500"


def _redirect_url(requested: str | None, default: str) -> str:
    """Only redirects back to our own frontend are accepted."""
    base = _frontend_base()
    if requested and (requested == base or requested.startswith(base + "/")):
        return requested
    return default


@router.post("/create-checkout-session", response_model=CheckoutSessionResponse)
@limiter.limit(settings.rate_limit_checkout)
def create_checkout_session(
    request: Request,
    body: CheckoutSessionRequest,
    db: Session = Depends(get_db),
):
    identity = PurchaserIdentity.build(body.email, body.phone, body.name)
    base = _frontend_base()
    success_url = _redirect_url(body.success_url, f"{base}/success.html?session_id={{CHECKOUT_SESSION_ID}}")
    cancel_url = _redirect_url(body.cancel_url, f"{base}/index.html?canceled=true")
    session_id, url = stripe_gateway.create_checkout_session(identity, success_url, cancel_url)
    if not record_checkout_started(db, session_id, identity, settings.course_price_cents, settings.stripe_currency):
        log.warning("Checkout session %s already had a purchase row", session_id)
    record_audit(db, "checkout_created", email=identity.email, ip=client_ip(request), detail=session_id)
    return CheckoutSessionResponse(id=session_id, url=url)


def _record_paid(db: Session, payment: CheckoutPayment) -> IssuedAccess:
    if not payment.identity.email:
        log.error("Paid checkout %s has no purchaser e-mail", payment.reference)
        mark_purchase_failed(db, payment.reference, "missing purchaser email")
        raise MissingPurchaserEmailError()
    issued = record_purchase(
        db,
        payment.reference,
        payment.identity,
        amount_cents=payment.amount_cents,
        currency=payment.currency,
        payment_intent=payment.payment_intent,
    )
    if issued.created:
        record_audit(db, "purchase_recorded", email=issued.email, detail=issued.payment_reference)
    return issued


def _handle_event(db: Session, event_type: str, session_obj) -> IssuedAccess | None:
    payment = stripe_gateway.payment_from_session(session_obj)
    if not payment.reference:
        log.warning("Stripe event %s without a session id; ignored", event_type)
        return None
    if event_type in _COMPLETION_EVENTS:
        if not payment.is_paid:
            # Delayed payment methods: wait for async_payment_succeeded
            log.info("Checkout %s completed with payment_status=%s; waiting", payment.reference, payment.payment_status)
            return None
        try:
            return _record_paid(db, payment)
        except MissingPurchaserEmailError:
            # Redelivery cannot fix this one; acknowledged and left for support
            return None
        except AccessCodeUnavailableError:
            # Already completed; the purchaser recovers through resend-code
            return None
    if event_type in _FAILURE_EVENTS:
        mark_purchase_failed(db, payment.reference, event_type, payment.identity)
    return None


@router.post("/webhook", response_model=WebhookAck)
@router.post("/api/stripe/webhook", response_model=WebhookAck, include_in_schema=False)
async def stripe_webhook(request: Request, background_tasks: BackgroundTasks, db: Session = Depends(get_db)):
    """Raw body is verified against Stripe-Signature before anything is parsed."""
    if not is_webhook_configured():
        log.error("Stripe webhook received but STRIPE_WEBHOOK_SECRET not configured")
        raise HTTPException(status_code=500, detail="Webhook no configurado.")

    payload = await request.body()
    try:
        event = stripe_gateway.construct_webhook_event(payload, request.headers.get("stripe-signature"))
    except WebhookSignatureError as e:
        await run_in_threadpool(
            record_security_event,
            db,
            "webhook_rejected",
            ip=client_ip(request),
            endpoint=request.url.path,
            detail=e.message,
        )
        raise

    event_type = event["type"]
    log.info("Stripe webhook received: %s (event_id=%s)", event_type, event["id"])
    if event_type not in _COMPLETION_EVENTS and event_type not in _FAILURE_EVENTS:
        log.info("Unhandled webhook event type: %s", event_type)
        return WebhookAck()

    # PurchaseRecordingError propagates as 500 so Stripe redelivers
    issued = await run_in_threadpool(_handle_event, db, event_type, event["data"]["object"])
    if issued is not None and issued.created:
        schedule_notification(background_tasks, issued.identity, issued.access_code, issued.expires_at)
    return WebhookAck()


def _verify_response(issued: IssuedAccess, notifications: list[str]) -> VerifyPaymentResponse:
    return VerifyPaymentResponse(
        email=issued.email,
        access_code=issued.access_code,
        expires_at=issued.expires_at,
        notifications=notifications,
    )


@router.post("/verify-payment", response_model=VerifyPaymentResponse)
@router.post("/api/payment/verify", response_model=VerifyPaymentResponse, include_in_schema=False)
@limiter.limit(_VERIFY_RATE_LIMIT)
def verify_payment(
    request: Request,
    body: VerifyPaymentRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    reference = body.session_id
    purchase = find_purchase(db, reference)
    if purchase is not None and purchase.status == PURCHASE_COMPLETED:
        # Already issued: no provider round-trip, same code back
        issued = record_purchase(db, reference, PurchaserIdentity.build(purchase.email))
        return _verify_response(issued, [])

    payment = stripe_gateway.retrieve_checkout_payment(reference)
    if not payment.is_paid:
        log.info("verify-payment: %s not paid yet (payment_status=%s)", reference, payment.payment_status)
        raise PaymentNotCompletedError(payment_status=payment.payment_status)

    issued = _record_paid(db, payment)
    notifications: list[str] = []
    if issued.created:
        notifications = schedule_notification(background_tasks, issued.identity, issued.access_code, issued.expires_at)
    return _verify_response(issued, notifications)
