"""Tests for client/period folder resolution, against LocalDriver."""

import logging

import pytest

from storage import LocalDriver
from workflows.folders import (
    find_client_folder,
    find_exact_subfolder_by_name,
    find_or_create_subfolder,
    parse_period,
    pick_month_folder,
)


@pytest.fixture
def driver(tmp_path):
    (tmp_path / "Clientes").mkdir()
    return LocalDriver(str(tmp_path))


class TestFindOrCreate:

    def test_creates_when_missing(self, driver):
        folder = find_or_create_subfolder(driver, "Clientes", "ACME")
        assert folder.name == "ACME"
        assert [f.name for f in driver.list_folders("Clientes")] == ["ACME"]

    def test_twice_yields_same_folder(self, driver):
        first = find_or_create_subfolder(driver, "Clientes", "ACME")
        second = find_or_create_subfolder(driver, "Clientes", "ACME")
        assert first.id == second.id
        assert len(driver.list_folders("Clientes")) == 1

    def test_reuses_folder_with_other_case(self, driver):
        driver.create_folder("Clientes", "ACME")
        folder = find_or_create_subfolder(driver, "Clientes", "Acme")
        assert folder.name == "ACME"
        assert len(driver.list_folders("Clientes")) == 1

    def test_prefers_exact_case(self, driver):
        driver.create_folder("Clientes", "acme")
        driver.create_folder("Clientes", "Acme")
        assert find_or_create_subfolder(driver, "Clientes", "Acme").name == "Acme"

    def test_trims_name(self, driver):
        folder = find_or_create_subfolder(driver, "Clientes", "  ACME  ")
        assert folder.name == "ACME"

    def test_empty_name_rejected(self, driver):
        with pytest.raises(ValueError):
            find_or_create_subfolder(driver, "Clientes", "   ")


class TestLookups:

    def test_exact_subfolder_ignores_case_and_spaces(self, driver):
        driver.create_folder("Clientes", "Padaria Pão Quente")
        folder = find_exact_subfolder_by_name(driver, "Clientes", " padaria pão quente ")
        assert folder is not None
        assert folder.name == "Padaria Pão Quente"

    def test_exact_subfolder_missing(self, driver):
        driver.create_folder("Clientes", "ACME")
        assert find_exact_subfolder_by_name(driver, "Clientes", "ACM") is None

    def test_find_client_folder(self, driver):
        driver.create_folder("Clientes", "ACME")
        assert find_client_folder(driver, "Clientes", "ACME").id == "Clientes/ACME"
        assert find_client_folder(driver, "Clientes", "acme ").id == "Clientes/ACME"
        assert find_client_folder(driver, "Clientes", "Other") is None
        assert find_client_folder(driver, "Clientes", "") is None


class TestPeriods:

    @pytest.mark.parametrize("name,expected", [
        ("03-2025", (2025, 3)),
        (" 12-2024 ", (2024, 12)),
        ("13-2024", None),
        ("3-2025", None),
        ("2025-03", None),
        ("Notas", None),
        (None, None),
    ])
    def test_parse_period(self, name, expected):
        assert parse_period(name) == expected

    def test_most_recent(self, driver):
        client = driver.create_folder("Clientes", "ACME")
        for name in ("02-2024", "01-2025", "12-2024", "Outros"):
            driver.create_folder(client.id, name)
        assert pick_month_folder(driver, client.id).name == "01-2025"

    def test_preferred_when_present(self, driver):
        client = driver.create_folder("Clientes", "ACME")
        for name in ("01-2025", "12-2024"):
            driver.create_folder(client.id, name)
        assert pick_month_folder(driver, client.id, "12-2024").name == "12-2024"

    def test_preferred_missing_falls_back_with_warning(self, driver, caplog):
        client = driver.create_folder("Clientes", "ACME")
        for name in ("01-2025", "12-2024"):
            driver.create_folder(client.id, name)
        with caplog.at_level(logging.WARNING, logger="workflows.folders"):
            folder = pick_month_folder(driver, client.id, "06-2023")
        assert folder.name == "01-2025"
        assert "06-2023" in caplog.text

    def test_no_period_folders(self, driver):
        client = driver.create_folder("Clientes", "ACME")
        driver.create_folder(client.id, "Notas")
        assert pick_month_folder(driver, client.id) is None
