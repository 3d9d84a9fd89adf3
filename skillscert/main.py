import logging
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# .env from the project root wherever uvicorn is started
_PROJ_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJ_ROOT / ".env")

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlmodel import Session

from skillscert.api.admin import router as admin_router
from skillscert.api.auth import router as auth_router
from skillscert.api.payments import router as payments_router
from skillscert.core.config import is_stripe_configured, is_webhook_configured, settings
from skillscert.core.database import check_database, engine, init_db
from skillscert.core.errors import AccessServiceError, PurchaseRecordingError
from skillscert.core.rate_limit import limiter
from skillscert.logging import setup_logging
from skillscert.models import ErrorLog
from skillscert.services.activity import client_ip, record_security_event
from skillscert.services.email_sender import is_mail_configured
from skillscert.services.whatsapp import is_whatsapp_configured

setup_logging(level=logging.INFO)
log = logging.getLogger("skillscert")


def _cors_origins_list() -> list[str]:
    if not settings.cors_origins or settings.cors_origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in settings.cors_origins.split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    log.info(
        "Stripe configured: %s, webhook secret: %s, SMTP: %s, WhatsApp: %s, repeat purchase policy: %s",
        "yes" if is_stripe_configured() else "NO (STRIPE_SECRET_KEY=sk_...)",
        "yes" if is_webhook_configured() else "NO (STRIPE_WEBHOOK_SECRET=whsec_...)",
        "yes" if is_mail_configured() else "no",
        "yes" if is_whatsapp_configured() else "no",
        settings.repeat_purchase_policy,
    )
    yield


app = FastAPI(
    title="SkillsCert EC0301 Access API",
    description="Stripe Checkout -> access code issuance and login",
    lifespan=lifespan,
)
app.state.limiter = limiter


def _error_response(request: Request, status_code: int, detail: str, code: str | None = None, **extra) -> JSONResponse:
    rid = getattr(request.state, "request_id", None)
    body = {"error": detail, "status_code": status_code}
    if code:
        body["code"] = code
    if rid:
        body["request_id"] = rid
    body.update(extra)
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(AccessServiceError)
def access_error_handler(request: Request, exc: AccessServiceError) -> JSONResponse:
    extra = dict(exc.extra)
    if exc.retriable:
        extra["retriable"] = True
    return _error_response(request, exc.status_code, exc.message, exc.code, **extra)


@app.exception_handler(PurchaseRecordingError)
def purchase_recording_error_handler(request: Request, exc: PurchaseRecordingError) -> JSONResponse:
    # Already logged with traceback by the recorder
    return _error_response(
        request,
        500,
        "No se pudo registrar la compra. Intenta de nuevo en unos minutos.",
        "PURCHASE_RECORDING_FAILED",
        retriable=True,
    )


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    with Session(engine) as db:
        record_security_event(db, "rate_limit", ip=client_ip(request), endpoint=request.url.path, detail=str(exc.detail))
    return _error_response(request, 429, "Demasiadas solicitudes. Espera un minuto e intenta de nuevo.", "RATE_LIMITED")


app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)


def _validation_error_message(exc: RequestValidationError) -> str:
    errs = exc.errors()
    if not errs:
        return "Solicitud inválida."
    first = errs[0]
    loc = list(first.get("loc") or [])
    field = str(loc[-1]) if len(loc) > 0 else None
    if first.get("type") == "missing":
        if field == "email":
            return "Ingresa tu correo electrónico."
        if field in ("code", "accessCode"):
            return "Ingresa tu código de acceso."
        if field in ("sessionId", "session_id"):
            return "Session ID requerido."
        if field == "body":
            return "No se recibieron datos."
        return "Faltan datos requeridos."
    if field == "email":
        return "Correo electrónico inválido."
    if field == "phone":
        return "Teléfono inválido."
    return first.get("msg") or "Solicitud inválida."


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errs = exc.errors()
    log.warning(
        "Request validation error (422): path=%s method=%s detail=%s",
        request.url.path,
        request.method,
        errs,
    )
    # ctx may carry exception objects; keep the response JSON-safe
    errors = [{"loc": list(e.get("loc") or []), "msg": e.get("msg"), "type": e.get("type")} for e in errs]
    return _error_response(request, 422, _validation_error_message(exc), "VALIDATION_ERROR", errors=errors)


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error_response(request, exc.status_code, exc.detail if isinstance(exc.detail, str) else str(exc.detail))


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled exception: path=%s %s", request.url.path, exc)
    try:
        with Session(engine) as db:
            db.add(ErrorLog(
                endpoint=request.url.path,
                method=request.method,
                error_message=str(exc)[:2000],
                stack_trace=traceback.format_exc()[:10000],
            ))
            db.commit()
    except Exception as e:
        log.warning("ErrorLog write failed: %s", e)
    return _error_response(request, 500, "Error inesperado del servidor.")


@app.middleware("http")
async def request_id_and_latency(request: Request, call_next):
    request.state.request_id = str(uuid.uuid4())
    start = time.perf_counter()
    response = await call_next(request)
    latency_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request.state.request_id
    log.info(
        "request_id=%s method=%s path=%s status=%s latency_ms=%.2f",
        request.state.request_id,
        request.method,
        request.url.path,
        response.status_code,
        latency_ms,
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(payments_router)
app.include_router(auth_router)
app.include_router(admin_router)


@app.get("/health")
def health():
    database_ok = check_database()
    return {
        "status": "ok" if database_ok else "degraded",
        "database": "connected" if database_ok else "unavailable",
        "stripe_configured": is_stripe_configured(),
        "webhook_configured": is_webhook_configured(),
        "email_configured": is_mail_configured(),
        "whatsapp_configured": is_whatsapp_configured(),
    }
