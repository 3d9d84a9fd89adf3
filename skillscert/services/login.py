"""
Access-code login.

Every change to a credential is a single conditional UPDATE so concurrent
attempts against the same e-mail cannot lose a failed-attempt increment or
slip past a lock.
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import case, update
from sqlmodel import Session, select

from skillscert.core import security
from skillscert.core.config import settings
from skillscert.core.errors import (
    AccessExpiredError,
    AccountLockedError,
    InvalidCredentialsError,
    InvalidTokenError,
)
from skillscert.models import AccessCredential
from skillscert.services.encryption import decrypt_code
from skillscert.services.purchases import normalize_email, replace_unreadable_code

log = logging.getLogger("skillscert.login")


@dataclass(frozen=True)
class LoginResult:
    token: str
    token_expires_at: datetime
    credential: AccessCredential


def find_active_credential(db: Session, email: str) -> AccessCredential | None:
    stmt = select(AccessCredential).where(
        AccessCredential.email == normalize_email(email),
        AccessCredential.active == True,  # noqa: E712
    )
    return db.exec(stmt).first()


def authenticate(db: Session, email: str, code: str) -> LoginResult:
    """
    Order of checks: active credential -> lock -> code -> expiry.
    Expiry is only revealed to a caller who presented the right code.
    """
    email = normalize_email(email)
    credential = find_active_credential(db, email)
    if credential is None:
        log.info("Login rejected: no active credential for email=%s", email)
        raise InvalidCredentialsError()
    if credential.locked:
        log.info("Login rejected: credential locked email=%s", email)
        raise AccountLockedError()

    if not security.verify_access_code(code, credential.code_hash):
        locked = _register_failure(db, credential)
        log.warning(
            "Login rejected: wrong code email=%s failed_attempts=%s locked=%s",
            email,
            credential.failed_attempts,
            locked,
        )
        raise InvalidCredentialsError()

    now = datetime.utcnow()
    if credential.expires_at <= now:
        log.info("Login rejected: access expired email=%s expires_at=%s", email, credential.expires_at.isoformat())
        raise AccessExpiredError(expires_at=credential.expires_at.isoformat())

    _register_success(db, credential, now)
    token, token_expires_at = security.create_session_token(credential.email, credential.id)
    log.info("Login ok: email=%s credential_id=%s", email, credential.id)
    return LoginResult(token=token, token_expires_at=token_expires_at, credential=credential)


def _register_failure(db: Session, credential: AccessCredential) -> bool:
    """Atomic increment; locks on reaching the threshold. Returns the lock state after the update."""
    now = datetime.utcnow()
    next_attempts = AccessCredential.failed_attempts + 1
    reaches_limit = next_attempts >= settings.max_failed_attempts
    stmt = (
        update(AccessCredential)
        .where(
            AccessCredential.id == credential.id,
            AccessCredential.locked == False,  # noqa: E712
        )
        .values(
            failed_attempts=next_attempts,
            locked=reaches_limit,
            locked_at=case((reaches_limit, now), else_=AccessCredential.locked_at),
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    db.exec(stmt)
    db.commit()
    db.refresh(credential)
    return credential.locked


def _register_success(db: Session, credential: AccessCredential, now: datetime) -> None:
    stmt = (
        update(AccessCredential)
        .where(
            AccessCredential.id == credential.id,
            AccessCredential.locked == False,  # noqa: E712
            AccessCredential.active == True,  # noqa: E712
        )
        .values(
            failed_attempts=0,
            used_count=AccessCredential.used_count + 1,
            last_used_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    updated = db.exec(stmt).rowcount
    db.commit()
    db.refresh(credential)
    if updated != 1:
        # Locked or deactivated between the read and this update
        if not credential.active:
            raise InvalidCredentialsError()
        raise AccountLockedError()


def credential_from_token(db: Session, payload: dict) -> AccessCredential:
    """Re-checks a decoded session token against storage (used on sensitive operations)."""
    credential = db.get(AccessCredential, payload.get("cid"))
    if credential is None or credential.email != payload.get("sub") or not credential.active:
        raise InvalidTokenError()
    if credential.locked:
        raise AccountLockedError()
    if credential.expires_at <= datetime.utcnow():
        raise AccessExpiredError(expires_at=credential.expires_at.isoformat())
    return credential


def renew_session(db: Session, payload: dict) -> LoginResult:
    credential = credential_from_token(db, payload)
    token, token_expires_at = security.create_session_token(credential.email, credential.id)
    log.info("Session renewed: email=%s credential_id=%s", credential.email, credential.id)
    return LoginResult(token=token, token_expires_at=token_expires_at, credential=credential)


def code_for_resend(db: Session, email: str) -> tuple[AccessCredential, str] | None:
    """
    Current code of an active, unexpired credential; None otherwise (caller
    answers generically). A code that can no longer be decrypted is replaced.
    """
    credential = find_active_credential(db, email)
    if credential is None or credential.expires_at <= datetime.utcnow():
        return None
    try:
        return credential, decrypt_code(credential.code_ciphertext)
    except ValueError:
        log.warning("Stored access code unreadable for credential_id=%s; issuing a new one", credential.id)
    code = replace_unreadable_code(db, credential)
    return (credential, code) if code is not None else None
