"""Support API: X-Admin-Secret only. Statistics and credential unlock/deactivate."""
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import update
from sqlmodel import Session, func, select

from skillscert.api.deps import require_admin
from skillscert.core.database import get_db
from skillscert.models import PURCHASE_COMPLETED, PURCHASE_FAILED, AccessCredential, AuditLog, PurchaseRecord
from skillscert.schemas import CredentialActionRequest
from skillscert.services.activity import client_ip, record_audit
from skillscert.services.purchases import normalize_email

router = APIRouter(prefix="/admin", tags=["admin"])


def _month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


@router.get("/stats")
def admin_stats(
    db: Session = Depends(get_db),
    _: None = Depends(require_admin),
):
    """Active credentials, purchases and revenue this month, logins in the last 24h."""
    now = datetime.utcnow()
    month_start = _month_start(now)
    day_ago = now - timedelta(hours=24)

    active_credentials = db.exec(
        select(func.count(AccessCredential.id))
        .where(AccessCredential.active == True)  # noqa: E712
        .where(AccessCredential.expires_at > now)
    ).one() or 0
    locked_credentials = db.exec(
        select(func.count(AccessCredential.id)).where(AccessCredential.locked == True)  # noqa: E712
    ).one() or 0
    completed = db.exec(
        select(func.count(PurchaseRecord.id)).where(PurchaseRecord.status == PURCHASE_COMPLETED)
    ).one() or 0
    failed = db.exec(
        select(func.count(PurchaseRecord.id)).where(PurchaseRecord.status == PURCHASE_FAILED)
    ).one() or 0
    revenue_month = db.exec(
        select(func.coalesce(func.sum(PurchaseRecord.amount_cents), 0))
        .where(PurchaseRecord.status == PURCHASE_COMPLETED)
        .where(PurchaseRecord.completed_at >= month_start)
    ).one() or 0
    logins_24h = db.exec(
        select(func.count(AuditLog.id)).where(AuditLog.event == "login").where(AuditLog.created_at >= day_ago)
    ).one() or 0

    return {
        "active_credentials": active_credentials,
        "locked_credentials": locked_credentials,
        "purchases_completed": completed,
        "purchases_failed": failed,
        "revenue_this_month_cents": int(revenue_month),
        "logins_last_24h": logins_24h,
    }


def _update_active_credential(db: Session, email: str, **values) -> None:
    """One conditional UPDATE on the active credential for this e-mail; 404 when there is none."""
    stmt = (
        update(AccessCredential)
        .where(
            AccessCredential.email == normalize_email(email),
            AccessCredential.active == True,  # noqa: E712
        )
        .values(updated_at=datetime.utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    if db.exec(stmt).rowcount != 1:
        db.rollback()
        raise HTTPException(status_code=404, detail="Credencial no encontrada.")
    db.commit()


@router.post("/credentials/unlock")
def unlock_credential(
    request: Request,
    body: CredentialActionRequest,
    db: Session = Depends(get_db),
    _: None = Depends(require_admin),
):
    _update_active_credential(db, body.email, locked=False, locked_at=None, failed_attempts=0)
    record_audit(db, "admin_unlock", email=normalize_email(body.email), ip=client_ip(request))
    return {"ok": True}


@router.post("/credentials/deactivate")
def deactivate_credential(
    request: Request,
    body: CredentialActionRequest,
    db: Session = Depends(get_db),
    _: None = Depends(require_admin),
):
    _update_active_credential(db, body.email, active=False)
    record_audit(db, "admin_deactivate", email=normalize_email(body.email), ip=client_ip(request))
    return {"ok": True}
