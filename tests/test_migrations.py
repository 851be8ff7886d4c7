"""Tests for upgrading stored contact records to the current field set."""

from __future__ import annotations

import pytest

from cardscan.models import Contact
from cardscan.services.contact_repository import CONTACTS_STORAGE_KEY, ContactRepository
from cardscan.store.migrations import (
    CONTACT_FIELD_DEFAULTS,
    migrate_contact_record,
    migrate_contact_records,
)


class TestMigrateRecord:
    def test_adds_missing_fields(self, sample_contact_record):
        migrated = migrate_contact_record(sample_contact_record)
        for key, default in CONTACT_FIELD_DEFAULTS.items():
            assert migrated[key] == default
        assert migrated["name"] == "Jane Doe"

    def test_does_not_mutate_input(self, sample_contact_record):
        migrate_contact_record(sample_contact_record)
        assert "linkedinUrl" not in sample_contact_record

    def test_existing_values_kept(self, sample_contact_record):
        record = {**sample_contact_record, "linkedinUrl": "https://linkedin.com/in/jane", "cellPhone": ""}
        migrated = migrate_contact_record(record)
        assert migrated["linkedinUrl"] == "https://linkedin.com/in/jane"
        # Empty string is a stored value, not an absent key
        assert migrated["cellPhone"] == ""

    def test_explicit_null_untouched(self, sample_contact_record):
        record = {**sample_contact_record, "categoryIds": None}
        migrated = migrate_contact_record(record)
        assert migrated["categoryIds"] is None

    def test_category_default_not_shared(self, sample_contact_record):
        a = migrate_contact_record(sample_contact_record)
        b = migrate_contact_record(sample_contact_record)
        a["categoryIds"].append("hot")
        assert b["categoryIds"] == []


class TestMigrateCollection:
    def test_changed_flag(self, sample_contact_record):
        migrated, changed = migrate_contact_records([sample_contact_record])
        assert changed is True
        assert len(migrated) == 1

    def test_idempotent(self, sample_contact_record):
        once, _ = migrate_contact_records([sample_contact_record])
        twice, changed = migrate_contact_records(once)
        assert changed is False
        assert twice == once

    def test_non_dict_entries_pass_through(self):
        migrated, changed = migrate_contact_records(["garbage", 3])
        assert migrated == ["garbage", 3]
        assert changed is False


class TestLoadWritesBackOnce:
    @pytest.mark.asyncio
    async def test_single_write_back(self, memory_store, sample_contact_record):
        await memory_store.set(CONTACTS_STORAGE_KEY, [sample_contact_record])
        memory_store.writes.clear()

        repo = ContactRepository(memory_store)
        contacts = await repo.load()

        assert memory_store.writes == [CONTACTS_STORAGE_KEY]
        assert contacts[0].linkedin_url is None
        assert contacts[0].category_ids == []
        stored = await memory_store.get(CONTACTS_STORAGE_KEY)
        assert stored[0]["officePhone"] is None
        assert stored[0]["categoryIds"] == []

    @pytest.mark.asyncio
    async def test_no_write_when_current(self, memory_store, sample_contact_record):
        current = migrate_contact_record(sample_contact_record)
        await memory_store.set(CONTACTS_STORAGE_KEY, [current])
        memory_store.writes.clear()

        repo = ContactRepository(memory_store)
        await repo.load()
        await repo.load()

        assert memory_store.writes == []

    @pytest.mark.asyncio
    async def test_unreadable_record_skipped(self, memory_store, sample_contact_record):
        await memory_store.set(CONTACTS_STORAGE_KEY, [sample_contact_record, {"name": "no id"}])

        repo = ContactRepository(memory_store)
        contacts = await repo.load()

        assert [c.id for c in contacts] == [sample_contact_record["id"]]

    @pytest.mark.asyncio
    async def test_unreadable_record_survives_later_write(self, memory_store, sample_contact_record):
        numeric_phone = {**sample_contact_record, "id": "legacy", "phone": 5550100}
        await memory_store.set(CONTACTS_STORAGE_KEY, [sample_contact_record, numeric_phone, "garbage"])

        repo = ContactRepository(memory_store)
        await repo.load()
        await repo.update(sample_contact_record["id"], {"notes": "Follow up"})

        stored = await memory_store.get(CONTACTS_STORAGE_KEY)
        assert stored[0]["notes"] == "Follow up"
        assert stored[1]["id"] == "legacy"
        assert stored[1]["phone"] == 5550100
        assert stored[2] == "garbage"

    @pytest.mark.asyncio
    async def test_clear_all_removes_unreadable_records(self, memory_store, sample_contact_record):
        await memory_store.set(CONTACTS_STORAGE_KEY, [{**sample_contact_record, "id": None}])

        repo = ContactRepository(memory_store)
        await repo.load()
        await repo.clear_all()
        await repo.add(Contact(id="c1", name="Jane"))

        stored = await memory_store.get(CONTACTS_STORAGE_KEY)
        assert [r["id"] for r in stored] == ["c1"]

    @pytest.mark.asyncio
    async def test_missing_created_at_stays_missing(self, memory_store, sample_contact_record):
        record = {k: v for k, v in sample_contact_record.items() if k != "createdAt"}
        await memory_store.set(CONTACTS_STORAGE_KEY, [record])

        repo = ContactRepository(memory_store)
        first = await repo.load()
        second = await repo.load()
        await repo.update(record["id"], {"notes": "Follow up"})

        assert first[0].created_at is None
        assert second[0].created_at is None
        stored = await memory_store.get(CONTACTS_STORAGE_KEY)
        assert stored[0]["createdAt"] is None
