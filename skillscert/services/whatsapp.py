"""WhatsApp Cloud API text messages (second delivery channel)."""
import logging
import re

import httpx

from skillscert.core.config import settings

logger = logging.getLogger(__name__)


def is_whatsapp_configured() -> bool:
    return bool((settings.whatsapp_phone_number_id or "").strip() and (settings.whatsapp_token or "").strip())


def normalize_phone(phone: str | None) -> str:
    """Digits only, country code included (e.g. +52 55 1234 5678 -> 525512345678)."""
    return re.sub(r"\D", "", phone or "")


def send_whatsapp_text(phone: str, body: str) -> bool:
    """True when the API accepted the message. Failures are logged, not raised."""
    if not is_whatsapp_configured():
        logger.warning("WhatsApp not configured; message not sent")
        return False
    to = normalize_phone(phone)
    if len(to) < 8:
        logger.warning("WhatsApp skipped: unusable phone number %r", phone)
        return False
    url = f"{settings.whatsapp_api_url.rstrip('/')}/{settings.whatsapp_phone_number_id.strip()}/messages"
    try:
        resp = httpx.post(
            url,
            headers={"Authorization": f"Bearer {settings.whatsapp_token.strip()}"},
            json={
                "messaging_product": "whatsapp",
                "to": to,
                "type": "text",
                "text": {"preview_url": False, "body": body},
            },
            timeout=settings.notification_timeout_seconds,
        )
        resp.raise_for_status()
    except Exception:
        logger.warning("Failed to send WhatsApp message to %s", to, exc_info=True)
        return False
    logger.info("WhatsApp message sent to %s", to)
    return True
