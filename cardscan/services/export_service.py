"""Export contacts as CSV, JSON or spreadsheet rows.

Filtering by events works on the *resolved* event id: a null or stale
``event_id`` counts as the Non-Categorized event. An empty selection means
every contact. Relative order of the contact list is always preserved.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime
from typing import Iterable

import httpx

from cardscan.config import settings
from cardscan.models import Contact
from cardscan.services.event_registry import EventRegistry

logger = logging.getLogger(__name__)

CSV_HEADERS = [
    "Name", "Title", "Company", "Email", "Phone",
    "Website", "Address", "Notes", "Event", "Timestamp",
]

# Contact attributes exported verbatim, in column order
EXPORT_FIELDS = ["name", "title", "company", "email", "phone", "website", "address", "notes"]


def format_timestamp(created_at: str | None, fmt: str | None = None) -> str:
    """Render an ISO timestamp in local time; empty string when missing or unparsable."""
    if not created_at:
        return ""
    try:
        parsed = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
    except ValueError:
        return ""
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone()
    return parsed.strftime(fmt or settings.export_timestamp_format)


def csv_cell(value: str | None) -> str:
    """Quote a cell, doubling embedded double quotes."""
    text = value or ""
    return '"' + text.replace('"', '""') + '"'


def export_filename(today: date | None = None) -> str:
    today = today or date.today()
    return f"business-cards-{today.isoformat()}.csv"


class ExportService:
    """Builds export payloads; event names come from the event registry snapshot."""

    def __init__(
        self,
        events: EventRegistry,
        timestamp_format: str | None = None,
        webhook_url: str | None = None,
        sheet_id: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.events = events
        self.timestamp_format = timestamp_format or settings.export_timestamp_format
        self.webhook_url = webhook_url if webhook_url is not None else settings.sheets_webhook_url
        self.sheet_id = sheet_id if sheet_id is not None else settings.sheets_sheet_id
        self._transport = transport

    def select(self, contacts: list[Contact], event_ids: Iterable[str] | None = None) -> list[Contact]:
        wanted = set(event_ids or [])
        if not wanted:
            return list(contacts)
        return [c for c in contacts if self.events.resolve_event_id(c.event_id) in wanted]

    def _event_name(self, contact: Contact) -> str:
        return self.events.get_by_id(contact.event_id).name

    def to_csv(self, contacts: list[Contact], event_ids: Iterable[str] | None = None) -> str:
        lines = [",".join(CSV_HEADERS)]
        for contact in self.select(contacts, event_ids):
            cells = [getattr(contact, f) for f in EXPORT_FIELDS]
            cells.append(self._event_name(contact))
            cells.append(format_timestamp(contact.created_at, self.timestamp_format))
            lines.append(",".join(csv_cell(c) for c in cells))
        return "\n".join(lines)

    def to_json(self, contacts: list[Contact], event_ids: Iterable[str] | None = None) -> str:
        records = []
        for contact in self.select(contacts, event_ids):
            record = {f: getattr(contact, f) for f in EXPORT_FIELDS}
            record["event"] = self._event_name(contact)
            record["timestamp"] = format_timestamp(contact.created_at, self.timestamp_format) or None
            records.append(record)
        return json.dumps(records, indent=2)

    def sheet_rows(self, contacts: list[Contact], event_ids: Iterable[str] | None = None) -> list[dict]:
        rows = []
        for contact in self.select(contacts, event_ids):
            row = {f: getattr(contact, f) or "" for f in EXPORT_FIELDS}
            row["event"] = self._event_name(contact)
            row["timestamp"] = format_timestamp(contact.created_at, self.timestamp_format)
            rows.append(row)
        return rows

    async def push_to_sheet(self, rows: list[dict]) -> bool:
        """POST rows to the spreadsheet webhook. Never raises."""
        if not self.webhook_url:
            logger.warning("Sheets webhook not configured – export skipped")
            return False
        if not rows:
            logger.info("No rows to send to the sheet")
            return False
        try:
            async with httpx.AsyncClient(timeout=settings.llm_timeout_seconds, transport=self._transport) as client:
                resp = await client.post(
                    self.webhook_url,
                    json={"sheetId": self.sheet_id, "data": rows},
                    follow_redirects=True,
                )
        except httpx.HTTPError as exc:
            logger.error("Sheets export failed: %s", exc)
            return False
        if not resp.is_success:
            logger.error("Sheets export returned HTTP %d", resp.status_code)
            return False
        logger.info("Sent %d row(s) to sheet %s", len(rows), self.sheet_id or "(default)")
        return True
