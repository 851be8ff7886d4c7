"""Wires the process-wide services together once, for explicit injection."""

from __future__ import annotations

from dataclasses import dataclass

from cardscan.clients.llm_client import LLMClient
from cardscan.services.auth_service import AuthService
from cardscan.services.card_scanner import CardScanner
from cardscan.services.contact_repository import ContactRepository
from cardscan.services.enrichment_service import EnrichmentPipeline
from cardscan.services.event_registry import EventRegistry
from cardscan.services.export_service import ExportService
from cardscan.services.lead_category_registry import LeadCategoryRegistry
from cardscan.store.kv_store import KeyValueStore, build_store


@dataclass
class Services:
    store: KeyValueStore
    events: EventRegistry
    categories: LeadCategoryRegistry
    contacts: ContactRepository
    scanner: CardScanner
    exporter: ExportService
    auth: AuthService

    async def load_all(self) -> None:
        await self.events.load()
        await self.categories.load()
        await self.contacts.load()


def build_services(store: KeyValueStore | None = None, llm: LLMClient | None = None) -> Services:
    store = store or build_store()
    llm = llm or LLMClient()
    events = EventRegistry(store)
    return Services(
        store=store,
        events=events,
        categories=LeadCategoryRegistry(store),
        contacts=ContactRepository(store, pipeline=EnrichmentPipeline(llm)),
        scanner=CardScanner(llm),
        exporter=ExportService(events),
        auth=AuthService(store),
    )
