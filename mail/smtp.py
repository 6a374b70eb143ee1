"""SMTP mail backend (STARTTLS)."""

import logging
import smtplib
from typing import List, Optional

from guiaflow import GuiaFlow
from .base import Mailer, MailError, Attachment, build_mime

logger = logging.getLogger(__name__)


class SmtpMailer(Mailer):
    """Mail backend using a plain SMTP submission server.

    Connects per message, upgrades with STARTTLS and logs in only when both
    user and password are configured.
    """

    def __init__(self, host: Optional[str] = None, port: Optional[int] = None,
                 user: Optional[str] = None, password: Optional[str] = None,
                 sender: Optional[str] = None, timeout: float = 30.0,
                 smtp_factory=smtplib.SMTP) -> None:
        self.host = host or GuiaFlow.smtp_host
        self.port = port or GuiaFlow.smtp_port
        self.user = user if user is not None else GuiaFlow.smtp_user
        self.password = password if password is not None else GuiaFlow.smtp_password
        self.sender = sender or GuiaFlow.mail_from or self.user
        self.timeout = timeout
        self._smtp_factory = smtp_factory

    @property
    def name(self) -> str:
        return "smtp"

    def send(self, to: str, subject: str, html: str,
             attachments: Optional[List[Attachment]] = None) -> None:
        msg = build_mime(self.sender, to, subject, html, attachments)
        try:
            with self._smtp_factory(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.ehlo()
                if smtp.has_extn("starttls"):
                    smtp.starttls()
                    smtp.ehlo()
                if self.user and self.password:
                    smtp.login(self.user, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise MailError(f"SMTP send to {to} via {self.host}:{self.port} failed: {e}")
        logger.info("E-mail sent to %s via SMTP (%d attachments)", to, len(attachments or []))
