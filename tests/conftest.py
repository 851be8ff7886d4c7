"""Shared test fixtures."""

from __future__ import annotations

import json
import os
from typing import Any, Callable

import httpx
import pytest

# Local SQLite store, no external services, auth disabled
os.environ["STORAGE_BACKEND"] = "sql"
os.environ["DATABASE_URL"] = "sqlite:///./test_cardscan.db"
os.environ["LLM_PROVIDER"] = "toolkit"
os.environ["LLM_ENDPOINT"] = "http://llm.test/text/llm/"
os.environ["OPENAI_API_KEY"] = ""
os.environ["CARDSCAN_API_KEY"] = ""  # disable auth for tests
os.environ["SHEETS_WEBHOOK_URL"] = ""
os.environ["PASSWORD_HASH_ITERATIONS"] = "1000"

from cardscan.clients.llm_client import LLMClient
from cardscan.services.container import Services, build_services
from cardscan.store.kv_store import KeyValueStore, SQLKeyValueStore

LLM_ENDPOINT = "http://llm.test/text/llm/"


class MemoryStore(KeyValueStore):
    """In-memory store that round-trips values through JSON like the real backends."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.fail_writes = False
        self.writes: list[str] = []

    async def get(self, key: str) -> Any | None:
        raw = self.data.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> bool:
        if self.fail_writes:
            return False
        self.writes.append(key)
        self.data[key] = json.dumps(value)
        return True

    async def delete(self, key: str) -> bool:
        if self.fail_writes:
            return False
        self.data.pop(key, None)
        return True


def completion_response(payload: Any) -> httpx.Response:
    """A toolkit-style completion carrying ``payload`` as JSON text."""
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return httpx.Response(200, json={"completion": text})


def system_prompt(request: httpx.Request) -> str:
    body = json.loads(request.content)
    return body["messages"][0]["content"]


def make_llm(handler: Callable[[httpx.Request], httpx.Response]) -> LLMClient:
    return LLMClient(
        provider="toolkit",
        endpoint=LLM_ENDPOINT,
        timeout=2.0,
        transport=httpx.MockTransport(handler),
    )


def _unreachable(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("LLM service unreachable", request=request)


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def sql_store(tmp_path) -> SQLKeyValueStore:
    """Fresh SQLite-backed store per test."""
    return SQLKeyValueStore(f"sqlite:///{tmp_path / 'kv.db'}")


@pytest.fixture
def offline_llm() -> LLMClient:
    """LLM client whose every call fails with a connection error."""
    return make_llm(_unreachable)


@pytest.fixture
def services(memory_store, offline_llm) -> Services:
    return build_services(store=memory_store, llm=offline_llm)


@pytest.fixture
def sample_contact_record() -> dict:
    """A contact as the first mobile release stored it (no newer fields)."""
    return {
        "id": "1700000000000",
        "name": "Jane Doe",
        "title": "VP Sales",
        "company": "Acme Corp",
        "email": "jane@acme.example",
        "phone": "555-0100",
        "website": "acme.example",
        "address": "1 Main St",
        "notes": "Met at the booth",
        "createdAt": "2024-03-01T15:30:00.000Z",
    }
