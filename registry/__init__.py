"""Client registry abstraction for GuiaFlow.

- SheetsRegistry: Google Sheets, columns A:B (production)
- CsvRegistry: local CSV file (tests, local runs)

Usage:
    from registry import create_registry

    registry = create_registry()
    for client in registry.list_clients():
        ...
"""

from typing import Optional

from guiaflow import GuiaFlow
from .base import ClientRegistry, ClientRecord, RegistryError, parse_rows
from .csvfile import CsvRegistry


def create_registry(csv_path: Optional[str] = None) -> ClientRegistry:
    """Create the configured registry.

    A CSV path (argument or CLIENTS_CSV) selects the CSV registry; otherwise
    the spreadsheet named by SHEET_ID is used.

    Raises:
        RegistryError: If neither source is configured
    """
    csv_path = csv_path or GuiaFlow.clients_csv
    if csv_path:
        return CsvRegistry(csv_path)
    from .sheets import SheetsRegistry
    return SheetsRegistry()


__all__ = [
    'ClientRegistry',
    'ClientRecord',
    'RegistryError',
    'parse_rows',
    'CsvRegistry',
    'create_registry',
]
