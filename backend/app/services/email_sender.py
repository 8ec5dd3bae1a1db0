import logging
import os
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

logger = logging.getLogger(__name__)


class EmailSender:
    """SMTP delivery for appointment emails; disabled without SMTP_HOST."""

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: Optional[bool] = None,
        from_address: Optional[str] = None,
    ):
        self.host = host if host is not None else os.getenv("SMTP_HOST", "").strip()
        raw_port = os.getenv("SMTP_PORT", "587").strip()
        self.port = port or (int(raw_port) if raw_port.isdigit() else 587)
        self.username = username if username is not None else os.getenv("SMTP_USERNAME", "")
        self.password = password if password is not None else os.getenv("SMTP_PASSWORD", "")
        if use_tls is None:
            use_tls = os.getenv("SMTP_USE_TLS", "true").strip().lower() in {"1", "true", "yes"}
        self.use_tls = use_tls
        self.from_address = from_address or os.getenv("EMAIL_FROM_ADDRESS", "no-reply@slotwise.local")

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def _connect(self) -> smtplib.SMTP:
        if self.use_tls:
            server = smtplib.SMTP(self.host, self.port, timeout=10)
            server.starttls()
        else:
            server = smtplib.SMTP_SSL(self.host, self.port, timeout=10)
        if self.username and self.password:
            server.login(self.username, self.password)
        return server

    def send(self, to_email: str, subject: str, plain_text: str, html_content: Optional[str] = None) -> bool:
        if not self.enabled:
            logger.info("Email disabled: SMTP_HOST not set; skipping %r to %s", subject, to_email)
            return False
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_address
        msg["To"] = to_email
        msg.attach(MIMEText(plain_text, "plain"))
        if html_content:
            msg.attach(MIMEText(html_content, "html"))
        server = self._connect()
        try:
            server.sendmail(self.from_address, [to_email], msg.as_string())
        finally:
            server.quit()
        logger.info("Email sent to %s", to_email)
        return True


email_sender = EmailSender()
