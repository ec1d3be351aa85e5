"""SMTP email sink with encrypted SMTP credentials.

SMTP password may be stored encrypted using Fernet (AES-128-CBC) derived from SECRET_KEY.
"""

import base64
import hashlib
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate, make_msgid
from html import escape

from cryptography.fernet import Fernet

from ..config import Settings
from ..notifications.enums import Channel
from .channels import SendResult

logger = logging.getLogger(__name__)


# ── Credential encryption ─────────────────────────────────────────────


def _derive_fernet_key(secret: str) -> bytes:
    """Derive a Fernet key from the app SECRET_KEY using SHA-256."""
    digest = hashlib.sha256(secret.encode()).digest()
    return base64.urlsafe_b64encode(digest)


def encrypt_value(plaintext: str, secret: str) -> str:
    return Fernet(_derive_fernet_key(secret)).encrypt(plaintext.encode()).decode()


def decrypt_value(ciphertext: str, secret: str) -> str:
    return Fernet(_derive_fernet_key(secret)).decrypt(ciphertext.encode()).decode()


# ── Message building ───────────────────────────────────────────────────


def build_message(settings: Settings, to_addr: str, title: str, body: str) -> MIMEMultipart:
    """Build a multipart (plain + HTML) message with the usual anti-spam headers."""
    msg = MIMEMultipart("alternative")
    msg["From"] = formataddr((settings.smtp_sender_name, settings.smtp_user))
    msg["To"] = to_addr
    msg["Reply-To"] = settings.smtp_user
    msg["Date"] = formatdate(localtime=True)
    msg["Message-ID"] = make_msgid(domain=settings.smtp_user.split("@")[-1] if "@" in settings.smtp_user else "local")
    msg["Subject"] = title

    paragraphs = "".join(
        f'<p style="margin:0 0 12px; color:#374151; font-size:15px; line-height:1.6;">{escape(p)}</p>'
        for p in body.split("\n\n")
        if p.strip()
    )
    html_body = f"""\
<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{escape(title)}</title></head>
<body style="margin:0; padding:24px; background-color:#f4f4f5; font-family:Arial,Helvetica,sans-serif;">
  <div style="max-width:600px; margin:0 auto; background-color:#ffffff; border-radius:8px; padding:32px;">
    <h1 style="margin:0 0 16px; color:#1e40af; font-size:20px;">{escape(title)}</h1>
    {paragraphs}
  </div>
</body>
</html>"""

    msg.attach(MIMEText(body, "plain", "utf-8"))
    msg.attach(MIMEText(html_body, "html", "utf-8"))
    return msg


class SmtpEmailSink:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def _password(self) -> str:
        password = self._settings.smtp_password
        # Fernet tokens start with 'gAAAAA'
        if password.startswith("gAAAAA"):
            password = decrypt_value(password, self._settings.secret_key)
        return password

    def send(self, channel: Channel, contact: str, title: str, body: str) -> SendResult:
        msg = build_message(self._settings, contact, title, body)
        try:
            with smtplib.SMTP(self._settings.smtp_host, self._settings.smtp_port, timeout=15) as server:
                server.ehlo()
                server.starttls()
                server.ehlo()
                server.login(self._settings.smtp_user, self._password())
                server.send_message(msg)
        except Exception as exc:
            logger.warning("SMTP delivery to %s failed: %s", contact, exc)
            return SendResult.failed(f"smtp: {exc}")
        return SendResult.sent(provider_ref=msg["Message-ID"])
