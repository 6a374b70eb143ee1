"""Service account credentials shared by the Drive, Sheets and Gmail clients."""

import json
import logging
import os
from typing import List, Optional

from google.oauth2 import service_account

from guiaflow import GuiaFlow
from guiaflow.errors import ConfigError

logger = logging.getLogger(__name__)

DRIVE_SCOPES = ["https://www.googleapis.com/auth/drive"]
SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets.readonly"]
GMAIL_SCOPES = ["https://www.googleapis.com/auth/gmail.send"]


def load_credentials(scopes: List[str], subject: Optional[str] = None,
                     credentials_file: Optional[str] = None,
                     credentials_json: Optional[str] = None) -> service_account.Credentials:
    """Build service account credentials for the given scopes.

    Inline JSON (GOOGLE_SERVICE_ACCOUNT_JSON) takes precedence over the key
    file. ``subject`` impersonates a Workspace user (domain-wide delegation),
    which the Gmail backend needs to send as that user.

    Raises:
        ConfigError: If no usable credentials are configured
    """
    credentials_json = credentials_json or GuiaFlow.credentials_json
    credentials_file = credentials_file or GuiaFlow.credentials_file

    try:
        if credentials_json:
            info = json.loads(credentials_json)
            creds = service_account.Credentials.from_service_account_info(info, scopes=scopes)
        else:
            if not credentials_file:
                raise ConfigError("GOOGLE_APPLICATION_CREDENTIALS is not set")
            path = os.path.abspath(credentials_file)
            if not os.path.isfile(path):
                raise ConfigError(f"Credentials file not found: {path}")
            creds = service_account.Credentials.from_service_account_file(path, scopes=scopes)
    except ConfigError:
        raise
    except (ValueError, KeyError) as e:
        raise ConfigError(f"Invalid service account credentials: {e}")

    if subject:
        creds = creds.with_subject(subject)
    logger.debug("Loaded service account credentials for %s", creds.service_account_email)
    return creds
