"""
SMTP email sender for opswatch notifications.

Handles:
  - SMTP connection with TLS
  - MIME multipart construction (HTML + plaintext fallback)
  - Single-alert mails and digest mails covering several alerts
  - Credential management (env vars > channel configuration)
"""
import os
import ssl
import smtplib
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate
from html import escape

logger = logging.getLogger("opswatch.notifications.email")

SEVERITY_COLORS = {
    "emergency": "#B71C1C",
    "critical": "#FF1744",
    "warning": "#FFC107",
    "info": "#2196F3",
}


class EmailSender:
    """
    SMTP email sender.

    Credential resolution order:
      1. Environment variables: OPSWATCH_SMTP_USER, OPSWATCH_SMTP_PASS
      2. Channel configuration: smtp_username, smtp_password
    """

    def __init__(self, configuration: dict):
        self.smtp_host = configuration.get("smtp_host", "")
        self.smtp_port = configuration.get("smtp_port", 587)
        self.use_tls = configuration.get("use_tls", True)
        self.from_address = configuration.get("from_address", "")
        self.to_address = configuration.get("to_address", "")
        self.from_name = configuration.get("from_name", "opswatch")

        self.username = os.environ.get("OPSWATCH_SMTP_USER", configuration.get("smtp_username", ""))
        self.password = os.environ.get("OPSWATCH_SMTP_PASS", configuration.get("smtp_password", ""))

    def is_configured(self) -> bool:
        """Check if all required SMTP fields are present."""
        return all([self.smtp_host, self.from_address, self.to_address,
                    self.username, self.password])

    def send_alert(self, message: dict) -> bool:
        """Send one alert mail for a ``{severity, title, description}`` message."""
        if not self.is_configured():
            logger.warning("Email not configured - skipping alert send")
            return False

        severity = message.get("severity", "info")
        subject = f"[{severity.upper()}] opswatch: {message.get('title', '')}"
        plain = f"{severity.upper()}: {message.get('title', '')}\n{message.get('description', '')}"
        return self._send(self._build(subject, plain, _alert_html(message)))

    def send_digest(self, messages: list, subject: str = "opswatch alert digest") -> bool:
        """Send several messages as one mail."""
        if not messages:
            return True
        if not self.is_configured():
            logger.warning("Email not configured - skipping digest send")
            return False

        plain = "\n\n".join(
            f"{m.get('severity', 'info').upper()}: {m.get('title', '')}\n{m.get('description', '')}"
            for m in messages
        )
        html = "".join(_alert_html(m) for m in messages)
        return self._send(self._build(f"{subject} ({len(messages)})", plain, html))

    def test_connection(self) -> dict:
        """Test SMTP connectivity without sending an email."""
        try:
            context = ssl.create_default_context()
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=10) as server:
                server.ehlo()
                if self.use_tls:
                    server.starttls(context=context)
                    server.ehlo()
                server.login(self.username, self.password)
                return {"status": "ok", "message": "SMTP connection successful"}
        except smtplib.SMTPAuthenticationError as e:
            return {"status": "error", "message": f"Authentication failed: {e}"}
        except smtplib.SMTPConnectError as e:
            return {"status": "error", "message": f"Connection failed: {e}"}
        except Exception as e:
            return {"status": "error", "message": str(e)}

    def _build(self, subject, plain, html):
        msg = MIMEMultipart("alternative")
        msg["From"] = formataddr((self.from_name, self.from_address))
        msg["To"] = self.to_address
        msg["Subject"] = subject
        msg["Date"] = formatdate(localtime=True)
        msg.attach(MIMEText(plain, "plain", "utf-8"))
        msg.attach(MIMEText(html, "html", "utf-8"))
        return msg

    def _send(self, msg: MIMEMultipart) -> bool:
        """Internal: send a constructed MIME message via SMTP."""
        try:
            context = ssl.create_default_context()
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                server.ehlo()
                if self.use_tls:
                    server.starttls(context=context)
                    server.ehlo()
                server.login(self.username, self.password)
                server.send_message(msg)
            logger.info(f"Email sent to {self.to_address}: {msg['Subject']}")
            return True
        except smtplib.SMTPAuthenticationError:
            logger.error("SMTP authentication failed. Check username/password.")
            return False
        except smtplib.SMTPRecipientsRefused:
            logger.error(f"Recipient refused: {self.to_address}")
            return False
        except Exception as e:
            logger.error(f"Email send failed: {e}")
            return False


def _alert_html(message):
    severity = message.get("severity", "info")
    color = SEVERITY_COLORS.get(severity, SEVERITY_COLORS["info"])
    return f"""
    <div style="font-family: system-ui, sans-serif; max-width: 520px; margin: 0 auto 12px;
                padding: 16px; background: #F0F1F6; border-radius: 8px;
                border-left: 4px solid {color};">
        <h3 style="margin-top: 0; color: {color};">{escape(severity.upper())}: {escape(message.get('title', ''))}</h3>
        <p>{escape(message.get('description', ''))}</p>
    </div>
    """
