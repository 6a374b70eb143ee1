"""Gmail API mail backend.

Sends as a Workspace user through a service account with domain-wide
delegation. The service account must be granted the gmail.send scope for
the delegated user in the Workspace admin console.
"""

import base64
import logging
from typing import List, Optional

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from guiaflow import GuiaFlow
from guiaflow.errors import ConfigError
from utils.google_auth import GMAIL_SCOPES, load_credentials
from .base import Mailer, MailError, Attachment, build_mime

logger = logging.getLogger(__name__)


class GmailMailer(Mailer):
    """Mail backend using the Gmail API (users.messages.send)."""

    def __init__(self, delegated_user: Optional[str] = None,
                 sender: Optional[str] = None, service=None) -> None:
        """Initialize the Gmail backend.

        Args:
            delegated_user: Workspace user to send as
            sender: From address; defaults to the delegated user
            service: Prebuilt Gmail v1 service (tests)

        Raises:
            ConfigError: If no delegated user is configured
        """
        self.delegated_user = delegated_user or GuiaFlow.gmail_delegated_user
        self.sender = sender or GuiaFlow.mail_from or self.delegated_user
        if service is not None:
            self.service = service
            return
        if not self.delegated_user:
            raise ConfigError("GMAIL_DELEGATED_USER is required for the Gmail backend")
        creds = load_credentials(GMAIL_SCOPES, subject=self.delegated_user)
        self.service = build("gmail", "v1", credentials=creds, cache_discovery=False)

    @property
    def name(self) -> str:
        return "gmail"

    def send(self, to: str, subject: str, html: str,
             attachments: Optional[List[Attachment]] = None) -> None:
        msg = build_mime(self.sender, to, subject, html, attachments)
        raw = base64.urlsafe_b64encode(msg.as_bytes()).decode("ascii")
        try:
            self.service.users().messages().send(userId="me", body={"raw": raw}).execute()
        except HttpError as e:
            raise MailError(f"Gmail API rejected message to {to}: HTTP {e.resp.status}")
        except OSError as e:
            raise MailError(f"Gmail API unreachable while sending to {to}: {e}")
        logger.info("E-mail sent to %s via Gmail API (%d attachments)", to, len(attachments or []))
