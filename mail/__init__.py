"""Mail transport abstraction for GuiaFlow.

Provides a uniform interface for sending the monthly guide e-mails:
- GmailMailer: Gmail API with domain-wide delegation
- SmtpMailer: SMTP with STARTTLS (default)

Usage:
    from mail import create_mailer, Attachment

    mailer = create_mailer("smtp")
    mailer.send("client@example.com", subject, html, [Attachment("guia.pdf", data)])
"""

from typing import Optional

from guiaflow import GuiaFlow
from .base import Mailer, MailError, Attachment, build_mime
from .smtp import SmtpMailer


def create_mailer(backend: Optional[str] = None) -> Mailer:
    """Create a mailer for the specified backend.

    Args:
        backend: "gmail" or "smtp"; defaults to the configured MAIL_BACKEND

    Returns:
        Mailer instance for the specified backend

    Raises:
        ValueError: If backend is not recognized
    """
    backend = (backend or GuiaFlow.mail_backend or "smtp").lower()

    if backend == "gmail":
        from .gmail import GmailMailer
        return GmailMailer()
    elif backend == "smtp":
        return SmtpMailer()
    else:
        raise ValueError(
            f"Unknown mail backend: {backend}. "
            "Must be 'gmail' or 'smtp'"
        )


__all__ = [
    'Mailer',
    'MailError',
    'Attachment',
    'build_mime',
    'SmtpMailer',
    'create_mailer',
]
