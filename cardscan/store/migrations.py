"""Upgrade persisted contact records to the current field set.

Stored contacts predate several optional fields. Everything downstream
assumes every field is present with ``None`` meaning "no value", so on each
load we add the missing keys. Only *absent* keys are touched: an explicit
``null`` or any stored value is left exactly as it was, which makes the
upgrade idempotent.
"""

from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

# Optional fields added after the first release, with the value an absent key gets
CONTACT_FIELD_DEFAULTS: dict[str, Any] = {
    "eventId": None,
    "linkedinUrl": None,
    "profilePhotoUrl": None,
    "officePhone": None,
    "cellPhone": None,
    "faxPhone": None,
    "categoryIds": [],
}


def migrate_contact_record(record: dict) -> dict:
    """Return a copy of ``record`` with every missing newer field filled in."""
    migrated = dict(record)
    for key, default in CONTACT_FIELD_DEFAULTS.items():
        if key not in migrated:
            migrated[key] = list(default) if isinstance(default, list) else default
    return migrated


def migrate_contact_records(records: list[Any]) -> tuple[list[Any], bool]:
    """Migrate a stored collection.

    Returns ``(migrated, changed)`` where ``changed`` is True when the
    serialised form differs, i.e. the caller should write the collection back
    once. Non-dict entries are passed through untouched.
    """
    migrated = [
        migrate_contact_record(r) if isinstance(r, dict) else r
        for r in records
    ]
    changed = json.dumps(records) != json.dumps(migrated)
    if changed:
        logger.info("Migrated %d stored contact record(s) to current schema", len(records))
    return migrated, changed
