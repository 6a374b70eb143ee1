"""Base classes for mail backends.

This module defines the abstract interface that all mail transports must
implement, plus the MIME message builder they share.
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import List, Optional

from guiaflow.errors import GuiaFlowError


class MailError(GuiaFlowError):
    """Base exception for mail operations."""
    pass


@dataclass
class Attachment:
    """A file attached to an outgoing message.

    Attributes:
        filename: Name shown to the recipient
        content: Raw file bytes
        content_type: MIME type, "maintype/subtype"
    """
    filename: str
    content: bytes
    content_type: str = "application/pdf"

    @classmethod
    def from_path(cls, path: str, filename: Optional[str] = None,
                  content_type: str = "application/pdf") -> "Attachment":
        with open(path, "rb") as f:
            content = f.read()
        return cls(filename=filename or os.path.basename(path), content=content,
                   content_type=content_type)


def build_mime(sender: str, to: str, subject: str, html: str,
               attachments: Optional[List[Attachment]] = None) -> EmailMessage:
    """Build a multipart message: HTML body plus attachments.

    Non-ASCII subjects and filenames are RFC 2047/2231 encoded by the email
    package.
    """
    msg = EmailMessage()
    if sender:
        msg["From"] = sender
    msg["To"] = to
    msg["Subject"] = subject
    msg["Date"] = formatdate(localtime=True)
    msg["Message-ID"] = make_msgid()
    msg.set_content(html, subtype="html", charset="utf-8")

    for attachment in attachments or []:
        maintype, _, subtype = attachment.content_type.partition("/")
        msg.add_attachment(
            attachment.content,
            maintype=maintype,
            subtype=subtype or "octet-stream",
            filename=attachment.filename,
        )
    return msg


class Mailer(ABC):
    """Abstract base class for mail transports.

    ``send`` either delivers the whole message with every attachment or
    raises MailError; there is no partial send.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name (e.g., 'gmail', 'smtp')."""
        pass

    @abstractmethod
    def send(self, to: str, subject: str, html: str,
             attachments: Optional[List[Attachment]] = None) -> None:
        """Send one HTML message.

        Args:
            to: Recipient address
            subject: Subject line (may contain non-ASCII)
            html: HTML body
            attachments: Files to attach

        Raises:
            MailError: If the message could not be sent
        """
        pass
