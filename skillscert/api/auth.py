from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlmodel import Session

from skillscert.api.deps import get_current_credential, get_token_payload
from skillscert.core.config import settings
from skillscert.core.database import get_db
from skillscert.core.errors import AccessExpiredError, AccountLockedError, InvalidCredentialsError
from skillscert.core.rate_limit import limiter
from skillscert.models import AccessCredential
from skillscert.schemas import (
    CredentialProfile,
    LoginRequest,
    MessageResponse,
    ResendCodeRequest,
    SessionResponse,
)
from skillscert.services.activity import client_ip, record_audit, record_security_event
from skillscert.services.login import LoginResult, authenticate, code_for_resend, renew_session
from skillscert.services.notifications import schedule_notification
from skillscert.services.purchases import PurchaserIdentity, normalize_email

router = APIRouter(tags=["auth"])

_RESEND_MESSAGE = "Si el correo tiene un acceso vigente, te enviamos de nuevo tu código."


def _session_response(result: LoginResult) -> SessionResponse:
    return SessionResponse(
        token=result.token,
        expires_in=settings.session_token_days * 24 * 3600,
        user=CredentialProfile.model_validate(result.credential),
    )


@router.post("/login", response_model=SessionResponse)
@router.post("/auth/login", response_model=SessionResponse)
@limiter.limit(settings.rate_limit_login)
def login(
    request: Request,
    body: LoginRequest,
    db: Session = Depends(get_db),
):
    email = normalize_email(body.email)
    ip = client_ip(request)
    try:
        result = authenticate(db, email, body.code)
    except InvalidCredentialsError:
        record_security_event(db, "failed_login", email=email, ip=ip, endpoint=request.url.path)
        raise
    except AccountLockedError:
        record_security_event(db, "account_locked", email=email, ip=ip, endpoint=request.url.path)
        raise
    except AccessExpiredError:
        record_audit(db, "login_expired", email=email, ip=ip)
        raise
    record_audit(db, "login", email=email, ip=ip)
    return _session_response(result)


@router.get("/auth/me", response_model=CredentialProfile)
def me(credential: AccessCredential = Depends(get_current_credential)):
    return CredentialProfile.model_validate(credential)


@router.post("/auth/renew", response_model=SessionResponse)
def renew(
    request: Request,
    payload: dict = Depends(get_token_payload),
    db: Session = Depends(get_db),
):
    result = renew_session(db, payload)
    record_audit(db, "session_renewed", email=result.credential.email, ip=client_ip(request))
    return _session_response(result)


@router.post("/access/resend-code", response_model=MessageResponse)
@limiter.limit(settings.rate_limit_resend)
def resend_code(
    request: Request,
    body: ResendCodeRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    """Same answer whether or not the e-mail has an active credential."""
    email = normalize_email(body.email)
    found = code_for_resend(db, email)
    if found is not None:
        credential, code = found
        identity = PurchaserIdentity(email=credential.email, phone=credential.phone, full_name=credential.full_name)
        schedule_notification(background_tasks, identity, code, credential.expires_at)
        record_audit(db, "code_resent", email=email, ip=client_ip(request))
    return MessageResponse(message=_RESEND_MESSAGE)
