"""Tests for the click command-line interface."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner
from rich.console import Console

from cardscan.cli.main import cli


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    """Keep rich tables on one line per row."""
    monkeypatch.setattr("cardscan.cli.main.console", Console(width=200))


def _invoke(services, *args):
    return CliRunner().invoke(cli, list(args), obj={"services": services})


class TestCli:
    def test_add_and_list_contacts(self, services):
        result = _invoke(services, "contacts", "add", "--name", "Jane Doe", "--company", "Acme Corp")
        assert result.exit_code == 0, result.output
        assert "Saved" in result.output

        listing = _invoke(services, "contacts", "list")
        assert listing.exit_code == 0
        assert "Jane Doe" in listing.output

    def test_add_all_card_fields(self, services, memory_store):
        result = _invoke(
            services, "contacts", "add",
            "--name", "Jane Doe",
            "--phone", "555-0100",
            "--fax-phone", "555-0109",
            "--address", "1 Main St",
        )
        assert result.exit_code == 0, result.output

        stored = memory_store.data["business_cards"]
        assert '"phone": "555-0100"' in stored
        assert '"faxPhone": "555-0109"' in stored
        assert '"address": "1 Main St"' in stored

    def test_add_requires_name_or_company(self, services):
        result = _invoke(services, "contacts", "add", "--email", "x@y.com")
        assert result.exit_code == 1
        assert "Please add at least a name or company." in result.output

    def test_events(self, services):
        assert _invoke(services, "events", "add", "Expo").exit_code == 0
        listing = _invoke(services, "events", "list")
        assert "Expo" in listing.output
        assert "Non-Categorized" in listing.output

        assert _invoke(services, "events", "delete", "non-categorized").exit_code == 1

    def test_categories(self, services):
        result = _invoke(services, "categories", "list")
        assert result.exit_code == 0
        assert "Hot Leads" in result.output

    def test_export_json(self, services, tmp_path):
        _invoke(services, "contacts", "add", "--name", "Jane Doe")
        out = tmp_path / "cards.json"

        result = _invoke(services, "export", "--format", "json", "--output", str(out))

        assert result.exit_code == 0, result.output
        records = json.loads(out.read_text())
        assert records[0]["name"] == "Jane Doe"
        assert records[0]["event"] == "Non-Categorized"
