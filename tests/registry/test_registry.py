"""Tests for the client registries."""

from unittest.mock import MagicMock

import pytest
from googleapiclient.errors import HttpError

from registry import ClientRecord, CsvRegistry, RegistryError, create_registry, parse_rows
from registry.sheets import SheetsRegistry


class TestParseRows:

    def test_trims_and_skips_incomplete_rows(self):
        rows = [
            [" ACME ", " financeiro@acme.com.br "],
            ["Sem E-mail"],
            ["", "orphan@example.com"],
            [],
            ["Beta", "beta@example.com", "extra column"],
        ]
        assert parse_rows(rows) == [
            ClientRecord("ACME", "financeiro@acme.com.br"),
            ClientRecord("Beta", "beta@example.com"),
        ]

    def test_non_string_cells(self):
        assert parse_rows([[123, "x@example.com"], [None, "y@example.com"]]) == [
            ClientRecord("123", "x@example.com")]


class TestCsvRegistry:

    def test_reads_two_columns(self, tmp_path):
        path = tmp_path / "clientes.csv"
        path.write_text("\ufeffACME,financeiro@acme.com.br\n"
                        "\"Padaria Pão, Quente\",padaria@example.com\n"
                        ",\n", encoding="utf-8")

        clients = CsvRegistry(str(path)).list_clients()

        assert clients == [
            ClientRecord("ACME", "financeiro@acme.com.br"),
            ClientRecord("Padaria Pão, Quente", "padaria@example.com"),
        ]

    def test_missing_file(self, tmp_path):
        with pytest.raises(RegistryError):
            CsvRegistry(str(tmp_path / "missing.csv")).list_clients()

    def test_factory_prefers_csv(self, tmp_path):
        registry = create_registry(str(tmp_path / "clientes.csv"))
        assert isinstance(registry, CsvRegistry)


class TestSheetsRegistry:

    def test_reads_values(self):
        service = MagicMock()
        get = service.spreadsheets.return_value.values.return_value.get
        get.return_value.execute.return_value = {
            "values": [["ACME", "financeiro@acme.com.br"], ["Beta"]]}

        clients = SheetsRegistry(sheet_id="sheet123", service=service).list_clients()

        assert clients == [ClientRecord("ACME", "financeiro@acme.com.br")]
        kwargs = get.call_args.kwargs
        assert kwargs["spreadsheetId"] == "sheet123"
        assert kwargs["range"] == "A:B"

    def test_empty_sheet(self):
        service = MagicMock()
        service.spreadsheets.return_value.values.return_value.get.return_value \
            .execute.return_value = {}
        assert SheetsRegistry(sheet_id="s", service=service).list_clients() == []

    def test_permission_error_is_not_retried(self):
        service = MagicMock()
        execute = service.spreadsheets.return_value.values.return_value.get.return_value.execute
        execute.side_effect = HttpError(MagicMock(status=403, reason="Forbidden"), b"forbidden")

        with pytest.raises(RegistryError):
            SheetsRegistry(sheet_id="s", service=service).list_clients()
        assert execute.call_count == 1

    def test_requires_sheet_id(self, monkeypatch):
        from guiaflow import GuiaFlow
        monkeypatch.setattr(GuiaFlow, "sheet_id", "")
        with pytest.raises(RegistryError):
            SheetsRegistry(service=MagicMock())
