"""Turn user-entered or scanned fields into a new Contact.

This is the one place a contact is validated before it exists: at least a
name or a company is required. The repository itself accepts legacy records
that break this rule.
"""

from __future__ import annotations

import uuid

from cardscan.models import Contact, ContactDraft, utc_now_iso

MISSING_NAME_OR_COMPANY = "Please add at least a name or company."


class ContactValidationError(ValueError):
    """User-visible rejection raised before anything is persisted."""


def _trimmed_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def new_contact_from_draft(draft: ContactDraft, event_id: str | None = None) -> Contact:
    """Validate ``draft`` and build a Contact with a fresh id and timestamp.

    ``event_id`` overrides the draft's own event choice when given.
    """
    fields = {
        name: _trimmed_or_none(value)
        for name, value in draft.model_dump(exclude={"event_id", "category_ids"}).items()
    }
    if not fields.get("name") and not fields.get("company"):
        raise ContactValidationError(MISSING_NAME_OR_COMPANY)

    return Contact(
        id=uuid.uuid4().hex,
        created_at=utc_now_iso(),
        event_id=_trimmed_or_none(event_id or draft.event_id),
        category_ids=draft.category_ids,
        profile_photo_url=None,
        **fields,
    )
