import hmac

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from skillscert.core.config import settings
from skillscert.core.database import get_db
from skillscert.core.errors import InvalidTokenError
from skillscert.core.security import decode_session_token
from skillscert.models import AccessCredential
from skillscert.services.login import credential_from_token

security = HTTPBearer(auto_error=False)


def get_token_payload(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    if not credentials:
        raise InvalidTokenError("Inicia sesión para continuar.")
    payload = decode_session_token(credentials.credentials)
    if not payload:
        raise InvalidTokenError()
    return payload


def get_current_credential(
    payload: dict = Depends(get_token_payload),
    db: Session = Depends(get_db),
) -> AccessCredential:
    """Token must still match an active, unlocked, unexpired credential."""
    return credential_from_token(db, payload)


def _admin_secret_constant_time_compare(provided: str | None, expected: str | None) -> bool:
    p = (provided or "").encode("utf-8")
    e = (expected or "").encode("utf-8")
    if len(p) != len(e):
        # Same-length dummy comparison so the mismatch costs the same
        hmac.compare_digest(e, e)
        return False
    return hmac.compare_digest(p, e)


def require_admin(
    x_admin_secret: str | None = Header(None, alias="X-Admin-Secret"),
) -> None:
    expected = (settings.admin_secret or "").strip()
    if not expected:
        raise HTTPException(status_code=503, detail="Administración no configurada (ADMIN_SECRET).")
    if not _admin_secret_constant_time_compare(x_admin_secret, expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No autorizado.")
