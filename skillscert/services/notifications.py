"""
Access-code delivery over e-mail and WhatsApp.

Channels are independent: each runs as its own background task and a failure
in one is logged and reported without touching the other or the already
committed purchase.
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from fastapi import BackgroundTasks

from skillscert.core.config import settings
from skillscert.services import email_sender, whatsapp
from skillscert.services.purchases import PurchaserIdentity

log = logging.getLogger("skillscert.notifications")

SENT = "sent"
FAILED = "failed"
SKIPPED = "skipped"

_WHATSAPP_TEMPLATE = {
    "es": "SkillsCert EC0301: tu código de acceso es {code}. Válido hasta el {date}. Inicia sesión con tu correo y este código.",
    "en": "SkillsCert EC0301: your access code is {code}. Valid until {date}. Sign in with your e-mail and this code.",
}


@dataclass(frozen=True)
class ChannelResult:
    channel: str
    status: str
    detail: str | None = None


@dataclass(frozen=True)
class DeliveryReport:
    email: ChannelResult
    whatsapp: ChannelResult

    @property
    def results(self) -> list[ChannelResult]:
        return [self.email, self.whatsapp]

    @property
    def any_sent(self) -> bool:
        return any(r.status == SENT for r in self.results)


def whatsapp_message(code: str, expires_at: datetime, lang: str | None = None) -> str:
    lang = (lang or settings.notification_lang or "es")[:2]
    template = _WHATSAPP_TEMPLATE.get(lang, _WHATSAPP_TEMPLATE["es"])
    return template.format(code=code, date=email_sender.format_expiry(expires_at, lang))


def deliver_email(identity: PurchaserIdentity, code: str, expires_at: datetime) -> ChannelResult:
    if not identity.email:
        return ChannelResult("email", SKIPPED, "no e-mail")
    if not email_sender.is_mail_configured():
        log.warning("Access code e-mail skipped for %s: SMTP not configured", identity.email)
        return ChannelResult("email", SKIPPED, "not configured")
    try:
        ok = email_sender.send_access_code_email(identity.email, code, expires_at, identity.full_name)
    except Exception as e:
        log.exception("Access code e-mail failed for %s", identity.email)
        return ChannelResult("email", FAILED, str(e)[:200])
    return ChannelResult("email", SENT if ok else FAILED)


def deliver_whatsapp(identity: PurchaserIdentity, code: str, expires_at: datetime) -> ChannelResult:
    if not identity.phone:
        return ChannelResult("whatsapp", SKIPPED, "no phone")
    if not whatsapp.is_whatsapp_configured():
        log.info("Access code WhatsApp skipped for %s: not configured", identity.email)
        return ChannelResult("whatsapp", SKIPPED, "not configured")
    try:
        ok = whatsapp.send_whatsapp_text(identity.phone, whatsapp_message(code, expires_at))
    except Exception as e:
        log.exception("Access code WhatsApp failed for %s", identity.email)
        return ChannelResult("whatsapp", FAILED, str(e)[:200])
    return ChannelResult("whatsapp", SENT if ok else FAILED)


def notify(identity: PurchaserIdentity, code: str, expires_at: datetime) -> DeliveryReport:
    """Synchronous delivery on every channel; never raises."""
    report = DeliveryReport(
        email=deliver_email(identity, code, expires_at),
        whatsapp=deliver_whatsapp(identity, code, expires_at),
    )
    log.info(
        "Access code delivery for %s: %s",
        identity.email,
        ", ".join(f"{r.channel}={r.status}" for r in report.results),
    )
    return report


def schedule_notification(
    background_tasks: BackgroundTasks,
    identity: PurchaserIdentity,
    code: str,
    expires_at: datetime,
) -> list[str]:
    """Queue one task per channel to run after the response is sent. Returns the queued channels."""
    queued = ["email"]
    background_tasks.add_task(deliver_email, identity, code, expires_at)
    if identity.phone:
        background_tasks.add_task(deliver_whatsapp, identity, code, expires_at)
        queued.append("whatsapp")
    return queued
