from datetime import datetime

from sqlmodel import Field, SQLModel

PURCHASE_PENDING = "pending"
PURCHASE_COMPLETED = "completed"
PURCHASE_FAILED = "failed"


class PurchaseRecord(SQLModel, table=True):
    """One Stripe Checkout Session. payment_reference is the idempotency key."""

    __tablename__ = "purchase_records"
    id: int | None = Field(default=None, primary_key=True)
    payment_reference: str = Field(unique=True, index=True, max_length=255)
    email: str | None = Field(default=None, index=True)
    phone: str | None = None
    full_name: str | None = None
    amount_cents: int | None = None  # smallest currency unit (50000 = 500.00 MXN)
    currency: str | None = None
    status: str = Field(default=PURCHASE_PENDING, index=True)  # pending | completed | failed
    credential_id: int | None = Field(default=None, foreign_key="access_credentials.id", index=True)
    payment_intent: str | None = None
    failure_reason: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None
