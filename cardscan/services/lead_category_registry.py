"""Lead categories: a flat set of coloured tags.

Contacts hold an ordered list of category ids. Deleting a category does not
rewrite any contact; ``get_categories_for_card`` drops ids that no longer
exist at read time instead.
"""

from __future__ import annotations

import asyncio
import logging
import uuid

from pydantic import ValidationError

from cardscan.models import LeadCategory, LeadCategoryCreate
from cardscan.store.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

CATEGORIES_STORAGE_KEY = "lead_categories"

DEFAULT_CATEGORIES = [
    LeadCategory(id="hot", title="Hot Leads", description="High priority leads ready to close", color="#EF4444"),
    LeadCategory(id="warm", title="Warm Leads", description="Interested prospects with potential", color="#F97316"),
    LeadCategory(id="cold", title="Cold Leads", description="Early stage or low interest leads", color="#3B82F6"),
    LeadCategory(id="suppliers", title="Suppliers", description="Vendor and supplier contacts", color="#10B981"),
    LeadCategory(id="partners", title="Partners", description="Partnership and collaboration contacts", color="#8B5CF6"),
]


class LeadCategoryRegistry:
    """Owns the in-memory category list and its storage key."""

    def __init__(self, store: KeyValueStore):
        self.store = store
        self._categories: list[LeadCategory] = []
        self._loaded = False
        self._lock = asyncio.Lock()

    async def load(self) -> list[LeadCategory]:
        """(Re)load from storage, seeding the starter set when nothing is stored."""
        async with self._lock:
            stored = await self.store.get(CATEGORIES_STORAGE_KEY)
            if not isinstance(stored, list):
                if stored is not None:
                    logger.error("Stored lead categories are not a list – reseeding defaults")
                self._categories = [c.model_copy() for c in DEFAULT_CATEGORIES]
                self._loaded = True
                await self._save()
                return list(self._categories)

            categories: list[LeadCategory] = []
            for record in stored:
                try:
                    categories.append(LeadCategory.model_validate(record))
                except ValidationError as exc:
                    logger.warning("Skipping unreadable stored lead category: %s", exc)
            self._categories = categories
            self._loaded = True
            return list(self._categories)

    async def ensure_loaded(self) -> None:
        if not self._loaded:
            await self.load()

    async def _save(self) -> bool:
        ok = await self.store.set(
            CATEGORIES_STORAGE_KEY, [c.to_storage() for c in self._categories],
        )
        if not ok:
            logger.error("Error saving lead categories – in-memory list kept")
        return ok

    async def list(self) -> list[LeadCategory]:
        await self.ensure_loaded()
        return list(self._categories)

    def get_by_id(self, category_id: str) -> LeadCategory | None:
        for category in self._categories:
            if category.id == category_id:
                return category
        return None

    def get_categories_for_card(self, category_ids: list[str] | None) -> list[LeadCategory]:
        """Existing categories among ``category_ids``; dangling ids are dropped silently."""
        wanted = set(category_ids or [])
        return [c for c in self._categories if c.id in wanted]

    async def add(self, fields: LeadCategoryCreate) -> LeadCategory:
        await self.ensure_loaded()
        async with self._lock:
            category = LeadCategory(
                id=uuid.uuid4().hex,
                title=fields.title,
                description=fields.description.strip(),
                color=fields.color,
            )
            self._categories = [*self._categories, category]
            await self._save()
            logger.info("Added lead category %s (%s)", category.id, category.title)
            return category

    async def update(self, category_id: str, changes: dict) -> LeadCategory | None:
        await self.ensure_loaded()
        async with self._lock:
            changes = {k: v for k, v in changes.items() if k != "id"}
            for index, category in enumerate(self._categories):
                if category.id == category_id:
                    updated = LeadCategory.model_validate({**category.model_dump(), **changes})
                    categories = list(self._categories)
                    categories[index] = updated
                    self._categories = categories
                    await self._save()
                    return updated
            return None

    async def delete(self, category_id: str) -> bool:
        """Remove a category; contacts keep the now-dangling id."""
        await self.ensure_loaded()
        async with self._lock:
            remaining = [c for c in self._categories if c.id != category_id]
            if len(remaining) == len(self._categories):
                return False
            self._categories = remaining
            await self._save()
            logger.info("Deleted lead category %s", category_id)
            return True
