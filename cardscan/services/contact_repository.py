"""Canonical list of contacts, persisted as one collection under one key.

Every mutation is a read-modify-write of the same in-memory list, serialised
by a lock and applied in the order the calls were made. ``add`` holds the
lock while it enriches, so an edit or delete issued after an add always sees
the added contact (the enrichment timeout bounds the wait). Each mutation
writes the whole collection once. A failed write is logged and the
in-memory list is NOT rolled back; it stays ahead of storage until the next
successful write or a ``refetch``.

Stored records that cannot be parsed are kept as raw JSON and written back
unchanged after the readable contacts, so an unrelated edit never deletes
them. Only ``clear_all`` removes them.

There is no protection against another process writing the same key: the
last write wins.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from pydantic import ValidationError

from cardscan.config import settings
from cardscan.models import IMMUTABLE_CONTACT_FIELDS, Contact
from cardscan.services.enrichment_service import EnrichmentPipeline
from cardscan.store.kv_store import KeyValueStore
from cardscan.store.migrations import migrate_contact_records

logger = logging.getLogger(__name__)

CONTACTS_STORAGE_KEY = "business_cards"


class ContactRepository:
    """Owns the contact collection; enriches new contacts before storing them."""

    def __init__(
        self,
        store: KeyValueStore,
        pipeline: EnrichmentPipeline | None = None,
        enrichment_timeout: float | None = None,
    ):
        self.store = store
        self.pipeline = pipeline
        self.enrichment_timeout = (
            enrichment_timeout if enrichment_timeout is not None
            else settings.enrichment_timeout_seconds
        )
        self._contacts: list[Contact] = []
        self._unreadable: list[Any] = []
        self._loaded = False
        self._lock = asyncio.Lock()

    # -- loading -----------------------------------------------------------

    async def load(self) -> list[Contact]:
        """Read, migrate (writing back once if anything changed) and parse."""
        async with self._lock:
            return await self._load()

    async def _load(self) -> list[Contact]:
        stored = await self.store.get(CONTACTS_STORAGE_KEY)
        if stored is None:
            records: list = []
        elif not isinstance(stored, list):
            logger.error("Stored contacts are not a list – treating as empty")
            records = []
        else:
            records, changed = migrate_contact_records(stored)
            if changed and not await self.store.set(CONTACTS_STORAGE_KEY, records):
                logger.error("Error writing back migrated contacts")

        contacts: list[Contact] = []
        unreadable: list[Any] = []
        for record in records:
            try:
                contacts.append(Contact.model_validate(record))
            except ValidationError as exc:
                logger.warning("Keeping unreadable stored contact as-is: %s", exc)
                unreadable.append(record)
        self._contacts = contacts
        self._unreadable = unreadable
        self._loaded = True
        return list(self._contacts)

    async def refetch(self) -> list[Contact]:
        """Reload from storage to pick up changes made by another process."""
        return await self.load()

    async def ensure_loaded(self) -> None:
        if not self._loaded:
            await self.load()

    async def _ensure_loaded_locked(self) -> None:
        if not self._loaded:
            await self._load()

    async def _save(self) -> bool:
        records = [c.to_storage() for c in self._contacts] + self._unreadable
        ok = await self.store.set(CONTACTS_STORAGE_KEY, records)
        if not ok:
            logger.error("Error saving contacts – in-memory list kept (%d)", len(self._contacts))
        return ok

    # -- reads -------------------------------------------------------------

    async def list(self) -> list[Contact]:
        await self.ensure_loaded()
        return list(self._contacts)

    def get(self, contact_id: str) -> Contact | None:
        for contact in self._contacts:
            if contact.id == contact_id:
                return contact
        return None

    def contacts_for_events(
        self,
        event_ids: set[str] | list[str],
        resolve_event_id: Callable[[str | None], str],
    ) -> list[Contact]:
        """Contacts whose resolved event id is in ``event_ids``, order preserved."""
        wanted = set(event_ids)
        return [c for c in self._contacts if resolve_event_id(c.event_id) in wanted]

    # -- writes ------------------------------------------------------------

    async def _enrich(self, contact: Contact) -> Contact:
        """Enriched copy of ``contact``, or ``contact`` itself on any failure."""
        if self.pipeline is None:
            return contact
        try:
            result = await asyncio.wait_for(
                self.pipeline.enrich(contact), timeout=self.enrichment_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Enrichment for contact %s exceeded %.0fs – saving unenriched",
                contact.id, self.enrichment_timeout,
            )
            return contact
        except Exception:
            logger.exception("Enrichment failed for contact %s – saving unenriched", contact.id)
            return contact
        return result.contact

    async def add(self, contact: Contact) -> Contact:
        """Enrich, append and persist. Completes even when enrichment fails."""
        async with self._lock:
            await self._ensure_loaded_locked()
            if self.get(contact.id) is not None:
                raise ValueError(f"Contact id {contact.id!r} already exists")
            enriched = await self._enrich(contact)
            self._contacts = [*self._contacts, enriched]
            await self._save()
        logger.info("Added contact %s", enriched.id)
        return enriched

    async def update(self, contact_id: str, changes: dict) -> Contact | None:
        """Shallow merge: each supplied field replaces the old value, others are kept.

        ``id`` and ``created_at`` never change. Returns None for an unknown id.
        """
        changes = dict(changes)
        for key in IMMUTABLE_CONTACT_FIELDS:
            if key in changes:
                logger.warning("Ignoring attempt to change immutable contact field %s", key)
                changes.pop(key)
        unknown = [k for k in changes if k not in Contact.model_fields]
        for key in unknown:
            logger.warning("Ignoring unknown contact field %s", key)
            changes.pop(key)

        async with self._lock:
            await self._ensure_loaded_locked()
            for index, contact in enumerate(self._contacts):
                if contact.id == contact_id:
                    updated = Contact.model_validate({**contact.model_dump(), **changes})
                    contacts = list(self._contacts)
                    contacts[index] = updated
                    self._contacts = contacts
                    await self._save()
                    return updated
            return None

    async def delete(self, contact_id: str) -> bool:
        async with self._lock:
            await self._ensure_loaded_locked()
            remaining = [c for c in self._contacts if c.id != contact_id]
            if len(remaining) == len(self._contacts):
                return False
            self._contacts = remaining
            await self._save()
            logger.info("Deleted contact %s", contact_id)
            return True

    async def clear_all(self) -> bool:
        """Remove the whole collection key, unreadable records included."""
        async with self._lock:
            ok = await self.store.delete(CONTACTS_STORAGE_KEY)
            if not ok:
                logger.error("Error clearing contacts from storage")
            self._contacts = []
            self._unreadable = []
            self._loaded = True
            return ok
