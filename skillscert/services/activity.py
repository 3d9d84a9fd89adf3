"""Audit and security event rows. Best-effort: a logging failure never fails the request."""
import logging

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from skillscert.models import AuditLog, SecurityLog

log = logging.getLogger("skillscert.activity")


def client_ip(request: Request) -> str:
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    return request.client.host if request.client else ""


def record_audit(db: Session, event: str, email: str | None = None, ip: str | None = None, detail: str | None = None) -> None:
    try:
        db.add(AuditLog(event=event, email=email, ip=ip or None, detail=(detail or None) and detail[:500]))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.warning("AuditLog write failed: event=%s error=%s", event, e)


def record_security_event(
    db: Session,
    event: str,
    email: str | None = None,
    ip: str | None = None,
    endpoint: str | None = None,
    detail: str | None = None,
) -> None:
    try:
        db.add(
            SecurityLog(
                event=event,
                email=email,
                ip=ip or None,
                endpoint=endpoint,
                detail=(detail or None) and detail[:500],
            )
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.warning("SecurityLog write failed: event=%s error=%s", event, e)
