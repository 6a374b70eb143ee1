"""CSV client registry for local runs."""

import csv
import logging
from typing import List

from .base import ClientRegistry, ClientRecord, RegistryError, parse_rows

logger = logging.getLogger(__name__)


class CsvRegistry(ClientRegistry):
    """Client list read from a two-column CSV file (name, email), no header."""

    def __init__(self, path: str) -> None:
        self.path = path

    @property
    def display_name(self) -> str:
        return self.path

    def list_clients(self) -> List[ClientRecord]:
        try:
            with open(self.path, "r", encoding="utf-8-sig", newline="") as f:
                clients = parse_rows(csv.reader(f))
        except OSError as e:
            raise RegistryError(f"Failed to read client list {self.path}: {e}")
        except csv.Error as e:
            raise RegistryError(f"Malformed client list {self.path}: {e}")
        logger.info("Loaded %d clients from %s", len(clients), self.path)
        return clients
