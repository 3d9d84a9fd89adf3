"""
Idempotent purchase recording: one access credential per Stripe Checkout Session.

The webhook and /verify-payment both call record_purchase for the same
payment reference, possibly at the same moment and from different processes.
The unique index on purchase_records.payment_reference and conditional UPDATEs
pick the winner; the loser rolls back and returns the winner's result.
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from skillscert.core import security
from skillscert.core.config import settings
from skillscert.core.errors import AccessCodeUnavailableError, PurchaseInProgressError, PurchaseRecordingError
from skillscert.models import (
    PURCHASE_COMPLETED,
    PURCHASE_FAILED,
    PURCHASE_PENDING,
    AccessCredential,
    PurchaseRecord,
)
from skillscert.services.encryption import decrypt_code, encrypt_code

log = logging.getLogger("skillscert.purchases")

# Re-reads while another worker still owns the reference
CLAIM_RETRIES = 5
CLAIM_RETRY_DELAY_SECONDS = 0.2


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


@dataclass(frozen=True)
class PurchaserIdentity:
    email: str
    phone: str | None = None
    full_name: str | None = None

    @classmethod
    def build(cls, email: str | None, phone: str | None = None, full_name: str | None = None) -> "PurchaserIdentity":
        return cls(
            email=normalize_email(email),
            phone=(phone or "").strip() or None,
            full_name=(full_name or "").strip()[:200] or None,
        )


@dataclass(frozen=True)
class IssuedAccess:
    payment_reference: str
    email: str
    access_code: str
    expires_at: datetime
    credential_id: int
    phone: str | None = None
    full_name: str | None = None
    # True only for the call that actually issued/extended the credential
    created: bool = False

    @property
    def identity(self) -> PurchaserIdentity:
        return PurchaserIdentity(email=self.email, phone=self.phone, full_name=self.full_name)


class _ReferenceTaken(Exception):
    """Another worker claimed the reference or changed the credential under us."""


def find_purchase(db: Session, payment_reference: str) -> PurchaseRecord | None:
    stmt = select(PurchaseRecord).where(PurchaseRecord.payment_reference == payment_reference)
    return db.exec(stmt).first()


def record_purchase(
    db: Session,
    payment_reference: str,
    identity: PurchaserIdentity,
    amount_cents: int | None = None,
    currency: str | None = None,
    payment_intent: str | None = None,
) -> IssuedAccess:
    """
    Issue (or return the already issued) access credential for a paid checkout.

    Completed references return the stored result with created=False and never
    generate a new code. Otherwise the purchase row, the credential and the
    completed status are written in one transaction. On storage failure the
    transaction is rolled back, the reference is marked failed and
    PurchaseRecordingError is raised.
    """
    ref = (payment_reference or "").strip()
    if not ref:
        raise ValueError("payment_reference is required")
    if not identity.email:
        raise ValueError("purchaser e-mail is required")

    for attempt in range(CLAIM_RETRIES + 1):
        purchase = find_purchase(db, ref)
        if purchase is not None and purchase.status == PURCHASE_COMPLETED:
            return _completed_access(db, purchase)
        try:
            return _issue(db, ref, purchase, identity, amount_cents, currency, payment_intent)
        except (_ReferenceTaken, IntegrityError):
            db.rollback()
            log.info("payment_reference=%s taken by a concurrent worker (attempt %s); re-reading", ref, attempt + 1)
            if attempt:
                time.sleep(CLAIM_RETRY_DELAY_SECONDS)
        except Exception as e:
            db.rollback()
            log.exception("Purchase recording failed: payment_reference=%s", ref)
            _record_failure(db, ref, identity, amount_cents, currency, f"{type(e).__name__}: {e}")
            raise PurchaseRecordingError(f"Could not record purchase {ref}") from e
    raise PurchaseInProgressError()


def _completed_access(db: Session, purchase: PurchaseRecord) -> IssuedAccess:
    credential = db.get(AccessCredential, purchase.credential_id) if purchase.credential_id else None
    if credential is None:
        raise PurchaseRecordingError(f"Completed purchase {purchase.payment_reference} has no credential")
    try:
        code = decrypt_code(credential.code_ciphertext)
    except ValueError:
        log.error(
            "Completed purchase %s: stored code for credential_id=%s is unreadable",
            purchase.payment_reference,
            credential.id,
        )
        raise AccessCodeUnavailableError()
    return IssuedAccess(
        payment_reference=purchase.payment_reference,
        email=credential.email,
        access_code=code,
        expires_at=credential.expires_at,
        credential_id=credential.id,
        phone=credential.phone,
        full_name=credential.full_name,
        created=False,
    )


def _issue(
    db: Session,
    ref: str,
    purchase: PurchaseRecord | None,
    identity: PurchaserIdentity,
    amount_cents: int | None,
    currency: str | None,
    payment_intent: str | None,
) -> IssuedAccess:
    now = datetime.utcnow()
    if purchase is None:
        purchase = PurchaseRecord(
            payment_reference=ref,
            email=identity.email,
            phone=identity.phone,
            full_name=identity.full_name,
            amount_cents=amount_cents,
            currency=currency,
            status=PURCHASE_PENDING,
            payment_intent=payment_intent,
        )
        db.add(purchase)
        # IntegrityError here: another worker inserted the same reference
        db.flush()
    else:
        # pending (checkout started) or failed (earlier attempt): claim it. The
        # UPDATE already writes completed; it commits with the credential or not at all.
        claim = (
            update(PurchaseRecord)
            .where(
                PurchaseRecord.payment_reference == ref,
                PurchaseRecord.status != PURCHASE_COMPLETED,
            )
            .values(status=PURCHASE_COMPLETED, completed_at=now, failure_reason=None)
            .execution_options(synchronize_session=False)
        )
        if db.exec(claim).rowcount != 1:
            raise _ReferenceTaken(ref)

    credential, code = _issue_credential(db, identity, now)

    purchase.status = PURCHASE_COMPLETED
    purchase.completed_at = now
    purchase.failure_reason = None
    purchase.credential_id = credential.id
    purchase.email = purchase.email or identity.email
    purchase.phone = purchase.phone or identity.phone
    purchase.full_name = purchase.full_name or identity.full_name
    if amount_cents is not None:
        purchase.amount_cents = amount_cents
    if currency:
        purchase.currency = currency
    if payment_intent:
        purchase.payment_intent = payment_intent
    db.add(purchase)
    db.commit()
    db.refresh(credential)

    log.info(
        "Purchase recorded: payment_reference=%s email=%s credential_id=%s expires_at=%s",
        ref,
        credential.email,
        credential.id,
        credential.expires_at.isoformat(),
    )
    return IssuedAccess(
        payment_reference=ref,
        email=credential.email,
        access_code=code,
        expires_at=credential.expires_at,
        credential_id=credential.id,
        phone=credential.phone,
        full_name=credential.full_name,
        created=True,
    )


def _issue_credential(db: Session, identity: PurchaserIdentity, now: datetime) -> tuple[AccessCredential, str]:
    """Create, extend or re-issue the purchaser's credential inside the caller's transaction."""
    duration = timedelta(days=settings.access_duration_days)
    credential = db.exec(select(AccessCredential).where(AccessCredential.email == identity.email)).first()

    if credential is None:
        code = security.generate_access_code()
        credential = AccessCredential(
            email=identity.email,
            phone=identity.phone,
            full_name=identity.full_name,
            code_hash=security.hash_access_code(code),
            code_ciphertext=encrypt_code(code),
            created_at=now,
            expires_at=now + duration,
            updated_at=now,
        )
        db.add(credential)
        # IntegrityError here: a concurrent purchase for the same e-mail created it
        db.flush()
        return credential, code

    extend = credential.active and credential.expires_at > now and settings.repeat_purchase_policy == "extend"
    code = _readable_code(credential) if extend else None
    if code is not None:
        values = {
            "expires_at": max(credential.expires_at, now) + duration,
            "phone": credential.phone or identity.phone,
            "full_name": credential.full_name or identity.full_name,
            "updated_at": now,
        }
    else:
        # replace policy, nothing left to extend (expired / deactivated), or
        # an extension whose stored code can no longer be decrypted
        code = security.generate_access_code()
        values = {
            "code_hash": security.hash_access_code(code),
            "code_ciphertext": encrypt_code(code),
            "expires_at": (max(credential.expires_at, now) if extend else now) + duration,
            "failed_attempts": 0,
            "locked": False,
            "locked_at": None,
            "active": True,
            "phone": identity.phone or credential.phone,
            "full_name": identity.full_name or credential.full_name,
            "updated_at": now,
        }

    # Guarded on the values just read: a concurrent re-issue/extension makes this a no-op
    stmt = (
        update(AccessCredential)
        .where(
            AccessCredential.id == credential.id,
            AccessCredential.expires_at == credential.expires_at,
            AccessCredential.code_hash == credential.code_hash,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if db.exec(stmt).rowcount != 1:
        raise _ReferenceTaken(identity.email)
    db.refresh(credential)
    return credential, code


def _readable_code(credential: AccessCredential) -> str | None:
    try:
        return decrypt_code(credential.code_ciphertext)
    except ValueError:
        log.warning("Stored code unreadable for credential_id=%s; issuing a new one", credential.id)
        return None


def replace_unreadable_code(db: Session, credential: AccessCredential) -> str | None:
    """
    Fresh code for a credential whose ciphertext no longer decrypts. Expiry and
    lock state are kept. None when a concurrent change got there first.
    """
    code = security.generate_access_code()
    stmt = (
        update(AccessCredential)
        .where(
            AccessCredential.id == credential.id,
            AccessCredential.code_hash == credential.code_hash,
        )
        .values(
            code_hash=security.hash_access_code(code),
            code_ciphertext=encrypt_code(code),
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if db.exec(stmt).rowcount != 1:
        db.rollback()
        return None
    db.commit()
    db.refresh(credential)
    log.info("Access code replaced (unreadable ciphertext): credential_id=%s", credential.id)
    return code


def _record_failure(
    db: Session,
    ref: str,
    identity: PurchaserIdentity,
    amount_cents: int | None,
    currency: str | None,
    reason: str,
) -> None:
    """Leave the reference as failed after a rolled back issuance (never overwrites completed)."""
    try:
        if not _set_failed(db, ref, reason) and find_purchase(db, ref) is None:
            db.add(
                PurchaseRecord(
                    payment_reference=ref,
                    email=identity.email,
                    phone=identity.phone,
                    full_name=identity.full_name,
                    amount_cents=amount_cents,
                    currency=currency,
                    status=PURCHASE_FAILED,
                    failure_reason=reason[:500],
                )
            )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        log.exception("Could not mark payment_reference=%s as failed", ref)


def _set_failed(db: Session, ref: str, reason: str) -> bool:
    stmt = (
        update(PurchaseRecord)
        .where(
            PurchaseRecord.payment_reference == ref,
            PurchaseRecord.status != PURCHASE_COMPLETED,
        )
        .values(status=PURCHASE_FAILED, failure_reason=reason[:500])
        .execution_options(synchronize_session=False)
    )
    return db.exec(stmt).rowcount == 1


def mark_purchase_failed(
    db: Session,
    payment_reference: str,
    reason: str,
    identity: PurchaserIdentity | None = None,
) -> bool:
    """Provider reported the checkout as failed/expired. Completed purchases are left alone."""
    ref = (payment_reference or "").strip()
    if not ref:
        return False
    changed = _set_failed(db, ref, reason)
    if not changed and find_purchase(db, ref) is None:
        db.add(
            PurchaseRecord(
                payment_reference=ref,
                email=identity.email if identity else None,
                phone=identity.phone if identity else None,
                status=PURCHASE_FAILED,
                failure_reason=reason[:500],
            )
        )
        changed = True
    try:
        db.commit()
    except IntegrityError:
        # Inserted concurrently by a recording worker: its state wins
        db.rollback()
        return False
    if changed:
        log.info("Purchase marked failed: payment_reference=%s reason=%s", ref, reason)
    return changed


def record_checkout_started(
    db: Session,
    payment_reference: str,
    identity: PurchaserIdentity,
    amount_cents: int | None,
    currency: str | None,
) -> bool:
    """Pending row written when the checkout session is created. False if it already exists."""
    db.add(
        PurchaseRecord(
            payment_reference=payment_reference,
            email=identity.email,
            phone=identity.phone,
            full_name=identity.full_name,
            amount_cents=amount_cents,
            currency=currency,
            status=PURCHASE_PENDING,
        )
    )
    try:
        db.commit()
        return True
    except IntegrityError:
        db.rollback()
        return False
