"""E-mail delivery: access-code message (es/en, branded HTML) over SMTP."""
import html as html_lib
import logging
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from skillscert.core.config import settings

log = logging.getLogger("skillscert.email")

DEFAULT_LANG = "es"

_ACCESS_SUBJECT = {
    "es": "SkillsCert EC0301: Tu código de acceso",
    "en": "SkillsCert EC0301: Your access code",
}
_ACCESS_GREETING = {
    "es": "Hola {name},",
    "en": "Hi {name},",
}
_ACCESS_INTRO = {
    "es": "Gracias por tu compra. Este es tu código de acceso al sistema EC0301:",
    "en": "Thank you for your purchase. This is your access code for the EC0301 system:",
}
_ACCESS_EXPIRY = {
    "es": "Tu acceso es válido hasta el {date}.",
    "en": "Your access is valid until {date}.",
}
_ACCESS_FOOTER = {
    "es": "Inicia sesión con tu correo y este código. No lo compartas con nadie.",
    "en": "Sign in with your e-mail and this code. Do not share it with anyone.",
}
_ACCESS_BTN = {"es": "Iniciar sesión", "en": "Sign in"}
_FALLBACK_NAME = {"es": "participante", "en": "there"}


def _lang(lang: str | None) -> str:
    lang = (lang or DEFAULT_LANG).strip().lower()[:2]
    return lang if lang in _ACCESS_SUBJECT else DEFAULT_LANG


def format_expiry(expires_at: datetime, lang: str | None = None) -> str:
    if _lang(lang) == "en":
        return expires_at.strftime("%Y-%m-%d")
    return expires_at.strftime("%d/%m/%Y")


def login_url() -> str:
    base = (settings.frontend_url or "").strip().rstrip("/")
    return f"{base}/login.html" if base else ""


def build_access_code_email_html(
    lang: str | None,
    code: str,
    expires_at: datetime,
    full_name: str | None = None,
    link: str | None = None,
) -> tuple[str, str]:
    """Access-code e-mail. (subject, html_body)."""
    lang = _lang(lang)
    subject = _ACCESS_SUBJECT[lang]
    name = html_lib.escape(full_name or _FALLBACK_NAME[lang])
    greeting = _ACCESS_GREETING[lang].format(name=name)
    expiry = _ACCESS_EXPIRY[lang].format(date=format_expiry(expires_at, lang))
    from_name = html_lib.escape(settings.smtp_from_name or "SkillsCert EC0301")
    link = link if link is not None else login_url()
    button = ""
    if link:
        button = f"""<p style="margin:0 0 24px;text-align:center;">
                <a href="{html_lib.escape(link)}" style="display:inline-block;padding:14px 28px;background:#0d9488;color:#ffffff!important;text-decoration:none;font-weight:600;font-size:15px;border-radius:10px;">{_ACCESS_BTN[lang]}</a>
              </p>"""
    html = f"""<!DOCTYPE html>
<html lang="{lang}">
<head>
  <meta charset="UTF-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1.0" />
  <title>{subject}</title>
</head>
<body style="margin:0;padding:0;background-color:#f1f5f9;font-family:'Segoe UI',system-ui,-apple-system,sans-serif;">
  <table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="background-color:#f1f5f9;">
    <tr>
      <td align="center" style="padding:32px 16px;">
        <table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="max-width:480px;background:#ffffff;border-radius:16px;box-shadow:0 4px 24px rgba(10,25,41,0.08);overflow:hidden;">
          <tr>
            <td style="background:linear-gradient(135deg,#1a2d42 0%,#2d4a6f 50%,#0d9488 100%);padding:28px 24px;text-align:center;">
              <div style="font-size:18px;font-weight:600;color:#ffffff;">{from_name}</div>
            </td>
          </tr>
          <tr>
            <td style="padding:28px 24px;">
              <p style="margin:0 0 12px;font-size:16px;line-height:1.6;color:#334155;">{greeting}</p>
              <p style="margin:0 0 20px;font-size:16px;line-height:1.6;color:#334155;">{_ACCESS_INTRO[lang]}</p>
              <p style="margin:0 0 20px;text-align:center;font-family:'Courier New',monospace;font-size:28px;font-weight:700;letter-spacing:0.2em;color:#1a2d42;">{html_lib.escape(code)}</p>
              <p style="margin:0 0 20px;font-size:14px;line-height:1.6;color:#334155;">{expiry}</p>
              {button}
              <p style="margin:0;font-size:13px;line-height:1.5;color:#64748b;">{_ACCESS_FOOTER[lang]}</p>
            </td>
          </tr>
          <tr>
            <td style="padding:16px 24px;border-top:1px solid #e2e8f0;font-size:12px;color:#94a3b8;text-align:center;">
              &copy; {from_name}
            </td>
          </tr>
        </table>
      </td>
    </tr>
  </table>
</body>
</html>"""
    return subject, html


def is_mail_configured() -> bool:
    return bool((settings.smtp_host or "").strip())


def send_email(to: str, subject: str, html_body: str) -> bool:
    """Sends a single HTML e-mail. True on success; failures are logged, not raised."""
    if not is_mail_configured():
        log.warning("SMTP not configured; email not sent to %s", to)
        return False
    host = settings.smtp_host.strip()
    port = int(settings.smtp_port or 587)
    user = (settings.smtp_user or "").strip()
    password = (settings.smtp_password or "").strip()
    from_addr = (settings.smtp_from or "noreply@skillscert.mx").strip()
    from_name = (settings.smtp_from_name or "").strip()
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{from_name} <{from_addr}>" if from_name else from_addr
    msg["To"] = to
    msg.attach(MIMEText(html_body, "html", "utf-8"))
    try:
        with smtplib.SMTP(host, port, timeout=settings.notification_timeout_seconds) as smtp:
            if settings.smtp_use_tls:
                smtp.starttls()
            if user and password:
                smtp.login(user, password)
            smtp.sendmail(from_addr, [to], msg.as_string())
        log.info("Email sent to %s subject=%s", to, subject[:50])
        return True
    except Exception as e:
        log.exception("Failed to send email to %s: %s", to, e)
        return False


def send_access_code_email(
    to_email: str,
    code: str,
    expires_at: datetime,
    full_name: str | None = None,
    lang: str | None = None,
) -> bool:
    subject, html = build_access_code_email_html(lang or settings.notification_lang, code, expires_at, full_name)
    return send_email(to_email, subject, html)
