"""Base classes for client registries.

A registry is a two-column table, client name and e-mail, with data from
the first row on (no header). Rows with a blank name or e-mail are dropped.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List, Sequence

from guiaflow.errors import GuiaFlowError

logger = logging.getLogger(__name__)


class RegistryError(GuiaFlowError):
    """Base exception for client registry operations."""
    pass


@dataclass(frozen=True)
class ClientRecord:
    """One client row.

    Attributes:
        name: Client name, matching the client's folder under the clients root
        email: Recipient address for the monthly guides
    """
    name: str
    email: str


def _cell(row: Sequence, index: int) -> str:
    if index >= len(row) or row[index] is None:
        return ""
    return str(row[index]).strip()


def parse_rows(rows: Iterable[Sequence]) -> List[ClientRecord]:
    """Turn raw (name, email) rows into records, skipping blank ones."""
    clients = []
    for row in rows:
        name, email = _cell(row, 0), _cell(row, 1)
        if not name or not email:
            if name or email:
                logger.debug("Skipping incomplete registry row: %r", list(row)[:2])
            continue
        clients.append(ClientRecord(name=name, email=email))
    return clients


class ClientRegistry(ABC):
    """Abstract base class for client registries."""

    @property
    @abstractmethod
    def display_name(self) -> str:
        pass

    @abstractmethod
    def list_clients(self) -> List[ClientRecord]:
        """Read the current client list. Called once per distribution run.

        Raises:
            RegistryError: If the registry can't be read
        """
        pass
