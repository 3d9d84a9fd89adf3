"""Checkout, webhook and verify-payment endpoints."""
import stripe
from fastapi.testclient import TestClient
from sqlmodel import func, select

from conftest import checkout_session, sign_webhook, webhook_event
from skillscert.core.config import settings
from skillscert.models import (
    PURCHASE_COMPLETED,
    PURCHASE_FAILED,
    PURCHASE_PENDING,
    AccessCredential,
    PurchaseRecord,
    SecurityLog,
)
from skillscert.services import purchases
from skillscert.services.encryption import encrypt_code
from skillscert.services.purchases import find_purchase


def _count(db, model) -> int:
    return db.exec(select(func.count(model.id))).one()


# ---------- webhook + verify scenario ----------


def test_webhook_then_verify_returns_same_code(client: TestClient, db, fixed_code, stripe_sessions, sent_notifications, post_webhook):
    session = checkout_session("cs_test_123", "alice@example.com")
    r = post_webhook("checkout.session.completed", session)
    assert r.status_code == 200
    assert r.json() == {"received": True}
    assert sent_notifications == [("email", "alice@example.com", "AB23XQ7Z")]

    stripe_sessions.sessions["cs_test_123"] = session
    r = client.post("/verify-payment", json={"sessionId": "cs_test_123"})
    assert r.status_code == 200
    j = r.json()
    assert j["success"] is True
    assert j["email"] == "alice@example.com"
    assert j["accessCode"] == "AB23XQ7Z"
    assert "expiresAt" in j
    # Already recorded: no second delivery, no provider round-trip
    assert len(sent_notifications) == 1
    assert stripe_sessions.calls == []

    assert _count(db, PurchaseRecord) == 1
    assert _count(db, AccessCredential) == 1

    r = client.post("/login", json={"email": "alice@example.com", "code": "AB23XQ7Z"})
    assert r.status_code == 200
    assert r.json()["token"]


def test_verify_first_then_webhook_redelivery(client: TestClient, db, fixed_code, stripe_sessions, sent_notifications, post_webhook):
    session = checkout_session("cs_test_123", "alice@example.com", phone="+52 55 1234 5678")
    stripe_sessions.sessions["cs_test_123"] = session
    r = client.post("/api/payment/verify", json={"sessionId": "cs_test_123"})
    assert r.status_code == 200
    assert r.json()["accessCode"] == "AB23XQ7Z"
    assert r.json()["notifications"] == ["email", "whatsapp"]
    assert [s[0] for s in sent_notifications] == ["email", "whatsapp"]

    for _ in range(2):
        r = post_webhook("checkout.session.completed", session, path="/api/stripe/webhook")
        assert r.status_code == 200
    assert len(sent_notifications) == 2
    assert _count(db, PurchaseRecord) == 1
    assert _count(db, AccessCredential) == 1


def test_webhook_rejects_bad_signature(client: TestClient, db):
    payload = webhook_event("checkout.session.completed", checkout_session())
    r = client.post("/webhook", content=payload, headers={"Stripe-Signature": sign_webhook(payload, secret="whsec_wrong")})
    assert r.status_code == 400
    assert r.json()["code"] == "INVALID_SIGNATURE"
    r = client.post("/webhook", content=payload)
    assert r.status_code == 400

    assert _count(db, PurchaseRecord) == 0
    events = db.exec(select(SecurityLog.event)).all()
    assert events == ["webhook_rejected", "webhook_rejected"]


def test_webhook_tampered_payload_rejected(client: TestClient, db):
    payload = webhook_event("checkout.session.completed", checkout_session())
    header = sign_webhook(payload)
    tampered = payload.replace(b"alice@example.com", b"mallory@example.com")
    r = client.post("/webhook", content=tampered, headers={"Stripe-Signature": header})
    assert r.status_code == 400
    assert _count(db, AccessCredential) == 0


def test_webhook_without_secret_is_500(client: TestClient, monkeypatch):
    monkeypatch.setattr(settings, "stripe_webhook_secret", "")
    payload = webhook_event("checkout.session.completed", checkout_session())
    r = client.post("/webhook", content=payload, headers={"Stripe-Signature": sign_webhook(payload)})
    assert r.status_code == 500


def test_webhook_ignores_other_events_and_unpaid_sessions(client: TestClient, db, post_webhook, sent_notifications):
    r = post_webhook("payment_intent.created", {"id": "pi_1", "object": "payment_intent"})
    assert r.status_code == 200
    r = post_webhook("checkout.session.completed", checkout_session(payment_status="unpaid"))
    assert r.status_code == 200
    assert _count(db, PurchaseRecord) == 0
    assert sent_notifications == []


def test_webhook_async_payment_events(client: TestClient, db, fixed_code, post_webhook, sent_notifications):
    r = post_webhook("checkout.session.async_payment_failed", checkout_session("cs_test_async", payment_status="unpaid"))
    assert r.status_code == 200
    assert find_purchase(db, "cs_test_async").status == PURCHASE_FAILED

    r = post_webhook("checkout.session.async_payment_succeeded", checkout_session("cs_test_async"), event_id="evt_test_2")
    assert r.status_code == 200
    db.expire_all()
    assert find_purchase(db, "cs_test_async").status == PURCHASE_COMPLETED
    assert sent_notifications == [("email", "alice@example.com", "AB23XQ7Z")]

    # An expiry arriving late never undoes the completed purchase
    post_webhook("checkout.session.expired", checkout_session("cs_test_async"), event_id="evt_test_3")
    db.expire_all()
    assert find_purchase(db, "cs_test_async").status == PURCHASE_COMPLETED


def test_webhook_storage_failure_is_500_and_retry_succeeds(client: TestClient, db, monkeypatch, post_webhook, sent_notifications):
    def _boom(code):
        raise RuntimeError("disk full")

    monkeypatch.setattr(purchases, "encrypt_code", _boom)
    r = post_webhook("checkout.session.completed", checkout_session())
    assert r.status_code == 500
    assert r.json()["code"] == "PURCHASE_RECORDING_FAILED"
    assert sent_notifications == []
    assert find_purchase(db, "cs_test_123").status == PURCHASE_FAILED

    monkeypatch.setattr(purchases, "encrypt_code", encrypt_code)
    r = post_webhook("checkout.session.completed", checkout_session())
    assert r.status_code == 200
    db.expire_all()
    assert find_purchase(db, "cs_test_123").status == PURCHASE_COMPLETED
    assert len(sent_notifications) == 1


# ---------- verify-payment errors ----------


def test_verify_unpaid_is_402_retriable(client: TestClient, db, stripe_sessions):
    stripe_sessions.sessions["cs_test_123"] = checkout_session(payment_status="unpaid")
    r = client.post("/verify-payment", json={"sessionId": "cs_test_123"})
    assert r.status_code == 402
    j = r.json()
    assert j["code"] == "PAYMENT_NOT_COMPLETED"
    assert j["payment_status"] == "unpaid"
    assert j["retriable"] is True
    assert _count(db, AccessCredential) == 0


def test_verify_unknown_session_is_404(client: TestClient, stripe_sessions):
    r = client.post("/verify-payment", json={"sessionId": "cs_test_missing"})
    assert r.status_code == 404
    assert r.json()["code"] == "PAYMENT_NOT_FOUND"


def test_verify_provider_down_is_503_after_retries(client: TestClient, db, stripe_sessions):
    stripe_sessions.sessions["cs_test_123"] = stripe.APIConnectionError("network down")
    r = client.post("/verify-payment", json={"sessionId": "cs_test_123"})
    assert r.status_code == 503
    j = r.json()
    assert j["code"] == "PROVIDER_UNAVAILABLE"
    assert j["retriable"] is True
    assert len(stripe_sessions.calls) == settings.provider_max_retries
    assert _count(db, PurchaseRecord) == 0


def test_verify_recovers_from_transient_error(client: TestClient, fixed_code, stripe_sessions, sent_notifications):
    stripe_sessions.sessions["cs_test_123"] = [stripe.RateLimitError("slow down"), checkout_session()]
    r = client.post("/verify-payment", json={"sessionId": "cs_test_123"})
    assert r.status_code == 200
    assert r.json()["accessCode"] == "AB23XQ7Z"
    assert len(stripe_sessions.calls) == 2


def test_verify_requires_session_id(client: TestClient):
    r = client.post("/verify-payment", json={})
    assert r.status_code == 422
    assert r.json()["code"] == "VALIDATION_ERROR"


def test_verify_paid_session_without_email_is_422(client: TestClient, db, stripe_sessions):
    stripe_sessions.sessions["cs_test_123"] = checkout_session(email=None)
    r = client.post("/verify-payment", json={"sessionId": "cs_test_123"})
    assert r.status_code == 422
    assert r.json()["code"] == "MISSING_EMAIL"
    assert _count(db, AccessCredential) == 0


# ---------- checkout ----------


def test_create_checkout_session_records_pending_row(client: TestClient, db, monkeypatch):
    created = {}

    class _Session:
        id = "cs_test_new"
        url = "https://checkout.stripe.com/c/pay/cs_test_new"

    def _create(**kwargs):
        created.update(kwargs)
        return _Session()

    monkeypatch.setattr(stripe.checkout.Session, "create", _create)
    r = client.post(
        "/create-checkout-session",
        json={"email": "Alice@Example.com", "name": "Alice", "phone": "+52 55 1234 5678", "successUrl": "https://evil.example/x"},
    )
    assert r.status_code == 200
    assert r.json() == {"id": "cs_test_new", "url": "https://checkout.stripe.com/c/pay/cs_test_new"}
    assert created["customer_email"] == "alice@example.com"
    assert created["metadata"]["phone"] == "+52 55 1234 5678"
    assert created["line_items"][0]["price_data"]["unit_amount"] == settings.course_price_cents
    assert created["success_url"].startswith(settings.frontend_url)
    assert "{CHECKOUT_SESSION_ID}" in created["success_url"]

    purchase = find_purchase(db, "cs_test_new")
    assert purchase.status == PURCHASE_PENDING
    assert purchase.email == "alice@example.com"


def test_create_checkout_session_validates_email(client: TestClient):
    r = client.post("/create-checkout-session", json={"email": "not-an-email"})
    assert r.status_code == 422


def test_create_checkout_session_not_configured(client: TestClient, monkeypatch):
    monkeypatch.setattr(settings, "stripe_secret_key", "")
    r = client.post("/create-checkout-session", json={"email": "alice@example.com"})
    assert r.status_code == 503
    assert r.json()["code"] == "PAYMENTS_NOT_CONFIGURED"


# ---------- stored code no longer readable ----------


def test_completed_reference_after_secret_rotation(client: TestClient, db, fixed_code, stripe_sessions, sent_notifications, post_webhook, monkeypatch):
    session = checkout_session("cs_test_123", "alice@example.com")
    assert post_webhook("checkout.session.completed", session).status_code == 200
    monkeypatch.setattr(settings, "secret_key", "rotated-secret")

    r = client.post("/verify-payment", json={"sessionId": "cs_test_123"})
    assert r.status_code == 409
    assert r.json()["code"] == "ACCESS_CODE_UNAVAILABLE"

    # Redelivery is acknowledged, nothing is re-sent
    r = post_webhook("checkout.session.completed", session)
    assert r.status_code == 200
    assert len(sent_notifications) == 1
    assert find_purchase(db, "cs_test_123").status == PURCHASE_COMPLETED


def test_repeat_purchase_after_secret_rotation_completes(client: TestClient, db, fixed_code, post_webhook, sent_notifications, monkeypatch):
    fixed_code.append("ZZZZ2222")
    assert post_webhook("checkout.session.completed", checkout_session("cs_test_1")).status_code == 200
    monkeypatch.setattr(settings, "secret_key", "rotated-secret")

    r = post_webhook("checkout.session.completed", checkout_session("cs_test_2"), event_id="evt_test_2")
    assert r.status_code == 200
    assert find_purchase(db, "cs_test_2").status == PURCHASE_COMPLETED
    assert sent_notifications[-1] == ("email", "alice@example.com", "ZZZZ2222")
    r = client.post("/login", json={"email": "alice@example.com", "code": "ZZZZ2222"})
    assert r.status_code == 200
