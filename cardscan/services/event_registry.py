"""Event collection with a permanent "Non-Categorized" sentinel.

Contacts point at events through a soft ``event_id``. A null id, or an id
whose event was deleted, resolves to the sentinel at read time; deleting an
event never touches the contacts that reference it.

Exactly one sentinel exists after the first load. It cannot be deleted and
its name cannot be changed.
"""

from __future__ import annotations

import asyncio
import logging
import uuid

from pydantic import ValidationError

from cardscan.models import NON_CATEGORIZED_EVENT_ID, Event, EventCreate, utc_now_iso
from cardscan.store.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

EVENTS_STORAGE_KEY = "events"

DEFAULT_COLORS = [
    "#4F46E5",  # Indigo
    "#059669",  # Emerald
    "#DC2626",  # Red
    "#D97706",  # Amber
    "#7C3AED",  # Violet
    "#0891B2",  # Cyan
    "#C2410C",  # Orange
    "#BE185D",  # Pink
]

SENTINEL_COLOR = "#6B7280"


def make_sentinel_event() -> Event:
    return Event(
        id=NON_CATEGORIZED_EVENT_ID,
        name="Non-Categorized",
        description="Cards without a specific event",
        color=SENTINEL_COLOR,
        created_at=utc_now_iso(),
    )


class SentinelEventError(Exception):
    """Raised when an operation would delete the Non-Categorized event."""


class EventRegistry:
    """Owns the in-memory event list and its storage key."""

    def __init__(self, store: KeyValueStore):
        self.store = store
        self._events: list[Event] = []
        self._loaded = False
        self._lock = asyncio.Lock()

    # -- loading -----------------------------------------------------------

    async def load(self) -> list[Event]:
        """(Re)load from storage, creating or repairing the sentinel as needed."""
        async with self._lock:
            stored = await self.store.get(EVENTS_STORAGE_KEY)
            if not isinstance(stored, list):
                if stored is not None:
                    logger.error("Stored events are not a list – starting from the sentinel only")
                self._events = [make_sentinel_event()]
                self._loaded = True
                await self._save()
                return list(self._events)

            events: list[Event] = []
            for record in stored:
                try:
                    events.append(Event.model_validate(record))
                except ValidationError as exc:
                    logger.warning("Skipping unreadable stored event: %s", exc)

            events, repaired = self._ensure_single_sentinel(events)
            self._events = events
            self._loaded = True
            if repaired:
                await self._save()
            return list(self._events)

    async def ensure_loaded(self) -> None:
        if not self._loaded:
            await self.load()

    @staticmethod
    def _ensure_single_sentinel(events: list[Event]) -> tuple[list[Event], bool]:
        sentinels = [e for e in events if e.is_sentinel]
        if len(sentinels) == 1:
            return events, False
        others = [e for e in events if not e.is_sentinel]
        if sentinels:
            logger.warning("Found %d Non-Categorized events – keeping the first", len(sentinels))
            return [sentinels[0], *others], True
        logger.warning("Non-Categorized event missing from storage – recreating it")
        return [make_sentinel_event(), *others], True

    async def _save(self) -> bool:
        ok = await self.store.set(EVENTS_STORAGE_KEY, [e.to_storage() for e in self._events])
        if not ok:
            logger.error("Error saving events – in-memory list kept")
        return ok

    # -- reads -------------------------------------------------------------

    async def list(self) -> list[Event]:
        await self.ensure_loaded()
        return list(self._events)

    def get_non_categorized(self) -> Event:
        for event in self._events:
            if event.is_sentinel:
                return event
        # Only reachable before the first load
        return make_sentinel_event()

    def get_by_id(self, event_id: str | None) -> Event:
        """Resolve a contact's event reference; never returns None.

        Null, unknown and stale ids all resolve to the sentinel.
        """
        if event_id:
            for event in self._events:
                if event.id == event_id:
                    return event
        return self.get_non_categorized()

    def resolve_event_id(self, event_id: str | None) -> str:
        return self.get_by_id(event_id).id

    def most_recent_user_event(self) -> Event | None:
        """Newest non-sentinel event, the default pick for a fresh scan."""
        user_events = [e for e in self._events if not e.is_sentinel]
        if not user_events:
            return None
        return max(user_events, key=lambda e: e.created_at)

    # -- writes ------------------------------------------------------------

    async def add(self, fields: EventCreate) -> Event:
        await self.ensure_loaded()
        async with self._lock:
            color = fields.color or DEFAULT_COLORS[len(self._events) % len(DEFAULT_COLORS)]
            event = Event(
                id=uuid.uuid4().hex,
                name=fields.name,
                description=fields.description,
                color=color,
                created_at=utc_now_iso(),
            )
            self._events = [*self._events, event]
            await self._save()
            logger.info("Added event %s (%s)", event.id, event.name)
            return event

    async def update(self, event_id: str, changes: dict) -> Event | None:
        """Shallow-merge ``changes``; returns None for an unknown id.

        ``id`` and ``created_at`` are immutable, and the sentinel keeps its name.
        """
        await self.ensure_loaded()
        async with self._lock:
            changes = {k: v for k, v in changes.items() if k not in ("id", "created_at")}
            if event_id == NON_CATEGORIZED_EVENT_ID and "name" in changes:
                logger.warning("Ignoring rename of the Non-Categorized event")
                changes.pop("name")

            for index, event in enumerate(self._events):
                if event.id == event_id:
                    updated = Event.model_validate({**event.model_dump(), **changes})
                    events = list(self._events)
                    events[index] = updated
                    self._events = events
                    await self._save()
                    return updated
            return None

    async def delete(self, event_id: str) -> bool:
        """Remove an event. Contacts referencing it are left untouched.

        Raises ``SentinelEventError`` for the sentinel; returns False for an
        unknown id.
        """
        await self.ensure_loaded()
        if event_id == NON_CATEGORIZED_EVENT_ID:
            logger.warning("Cannot delete the Non-Categorized event")
            raise SentinelEventError("Cannot delete the Non-Categorized event")
        async with self._lock:
            remaining = [e for e in self._events if e.id != event_id]
            if len(remaining) == len(self._events):
                return False
            self._events = remaining
            await self._save()
            logger.info("Deleted event %s", event_id)
            return True
