"""Pytest fixtures: test client, in-memory SQLite, fake Stripe, webhook signing."""
import hashlib
import hmac
import json
import os
import time

import pytest
from fastapi.testclient import TestClient

# Must be set before the app (and settings) are imported
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("ACCESS_CODE_HASH_ROUNDS", "4")
os.environ.setdefault("PROVIDER_RETRY_BACKOFF_SECONDS", "0")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ADMIN_SECRET", "test-admin-secret")
os.environ.setdefault("SMTP_HOST", "")
os.environ.setdefault("WHATSAPP_TOKEN", "")

import stripe
from sqlmodel import Session, SQLModel

from skillscert.core import security
from skillscert.core.config import settings
from skillscert.core.database import engine
from skillscert.main import app
from skillscert.services import notifications

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]


@pytest.fixture(autouse=True)
def _fresh_tables():
    """Every test starts from empty tables."""
    from skillscert import models  # noqa: F401

    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    yield


@pytest.fixture
def client():
    """TestClient; lifespan runs init_db."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db():
    with Session(engine) as session:
        yield session


@pytest.fixture
def fixed_code(monkeypatch):
    """Next issued access codes come from this list (then random again)."""
    codes = ["AB23XQ7Z"]
    original = security.generate_access_code

    def _next():
        return codes.pop(0) if codes else original()

    monkeypatch.setattr(security, "generate_access_code", _next)
    return codes


@pytest.fixture
def sent_notifications(monkeypatch):
    """Captures deliveries instead of talking to SMTP / WhatsApp."""
    sent = []

    def _email(identity, code, expires_at):
        sent.append(("email", identity.email, code))
        return notifications.ChannelResult("email", notifications.SENT)

    def _whatsapp(identity, code, expires_at):
        sent.append(("whatsapp", identity.phone, code))
        return notifications.ChannelResult("whatsapp", notifications.SENT)

    monkeypatch.setattr(notifications, "deliver_email", _email)
    monkeypatch.setattr(notifications, "deliver_whatsapp", _whatsapp)
    return sent


def checkout_session(
    session_id: str = "cs_test_123",
    email: str | None = "alice@example.com",
    payment_status: str = "paid",
    phone: str | None = None,
    name: str | None = None,
) -> dict:
    metadata = {}
    if name:
        metadata["name"] = name
    return {
        "id": session_id,
        "object": "checkout.session",
        "status": "complete" if payment_status != "unpaid" else "open",
        "payment_status": payment_status,
        "customer_email": email,
        "customer_details": {"email": email, "phone": phone, "name": name},
        "metadata": metadata,
        "amount_total": settings.course_price_cents,
        "currency": settings.stripe_currency,
        "payment_intent": "pi_test_123",
    }


class FakeStripeSessions:
    """
    Stands in for stripe.checkout.Session.retrieve. Each entry is a session
    dict, an exception instance to raise, or a list of those consumed in order.
    """

    def __init__(self):
        self.sessions: dict = {}
        self.calls: list[str] = []

    def retrieve(self, session_id, *args, **kwargs):
        self.calls.append(session_id)
        value = self.sessions.get(session_id)
        if value is None:
            raise stripe.InvalidRequestError(f"No such checkout.session: '{session_id}'", "id")
        if isinstance(value, list):
            value = value.pop(0) if len(value) > 1 else value[0]
        if isinstance(value, Exception):
            raise value
        return stripe.checkout.Session.construct_from(value, "sk_test_dummy")


@pytest.fixture
def stripe_sessions(monkeypatch):
    fake = FakeStripeSessions()
    monkeypatch.setattr(stripe.checkout.Session, "retrieve", fake.retrieve)
    return fake


def sign_webhook(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Stripe-Signature header: t=<ts>,v1=HMAC_SHA256(secret, "<ts>.<payload>")."""
    ts = timestamp or int(time.time())
    signed = f"{ts}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def webhook_event(event_type: str, session: dict, event_id: str = "evt_test_1") -> bytes:
    return json.dumps(
        {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "data": {"object": session},
        }
    ).encode()


@pytest.fixture
def post_webhook(client):
    def _post(event_type: str, session: dict, path: str = "/webhook", event_id: str = "evt_test_1"):
        payload = webhook_event(event_type, session, event_id)
        return client.post(
            path,
            content=payload,
            headers={"Stripe-Signature": sign_webhook(payload), "Content-Type": "application/json"},
        )

    return _post
