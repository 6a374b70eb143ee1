"""Google Sheets client registry."""

import logging
from typing import List, Optional

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from guiaflow import GuiaFlow
from utils.google_auth import SHEETS_SCOPES, load_credentials
from utils.retry import retry_on_transient_error, is_transient_network_error, TRANSIENT_HTTP_STATUS_CODES
from .base import ClientRegistry, ClientRecord, RegistryError, parse_rows

logger = logging.getLogger(__name__)

CLIENT_RANGE = "A:B"


def _is_retryable_sheets_error(exc: Exception) -> bool:
    if isinstance(exc, HttpError):
        return exc.resp.status in TRANSIENT_HTTP_STATUS_CODES
    return is_transient_network_error(exc)


class SheetsRegistry(ClientRegistry):
    """Client list read from columns A:B of a spreadsheet's first sheet."""

    def __init__(self, sheet_id: Optional[str] = None, service=None) -> None:
        self.sheet_id = sheet_id or GuiaFlow.sheet_id
        if not self.sheet_id:
            raise RegistryError("SHEET_ID is not configured")
        if service is not None:
            self.service = service
        else:
            creds = load_credentials(SHEETS_SCOPES)
            self.service = build("sheets", "v4", credentials=creds, cache_discovery=False)

    @property
    def display_name(self) -> str:
        return f"Google Sheet {self.sheet_id}"

    def list_clients(self) -> List[ClientRecord]:
        request = self.service.spreadsheets().values().get(
            spreadsheetId=self.sheet_id,
            range=CLIENT_RANGE,
            valueRenderOption="UNFORMATTED_VALUE",
        )

        @retry_on_transient_error(is_retryable=_is_retryable_sheets_error)
        def fetch():
            return request.execute()

        try:
            data = fetch()
        except HttpError as e:
            raise RegistryError(f"Failed to read client sheet {self.sheet_id}: HTTP {e.resp.status}")
        except OSError as e:
            raise RegistryError(f"Failed to read client sheet {self.sheet_id}: {e}")

        clients = parse_rows(data.get("values") or [])
        logger.info("Loaded %d clients from %s", len(clients), self.display_name)
        return clients
