"""Key-based persistence adapter.

Contract shared by every backend:

- ``get(key)`` returns the deserialised value, or ``None`` when the key is
  absent, the stored text is not valid JSON, or the backend failed.
- ``set(key, value)`` replaces the whole value and returns True on success.
- ``delete(key)`` returns True on success (deleting an absent key succeeds).

Nothing here raises to the caller and nothing retries: failures are logged
and reported through the return value so the caller decides what to do.
There is no merge/append at this level and no cross-key transaction.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx
from sqlalchemy.orm import sessionmaker

from cardscan.config import settings
from cardscan.store.database import Base, KeyValueEntry, get_engine

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Async key -> JSON value store."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any) -> bool:
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        ...


def _decode(key: str, raw: str | None) -> Any | None:
    if raw is None or raw == "":
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as exc:
        logger.error("Stored value for %r is not valid JSON – treating as missing: %s", key, exc)
        return None


# ---------------------------------------------------------------------------
# Local durable store (SQLAlchemy)
# ---------------------------------------------------------------------------

class SQLKeyValueStore(KeyValueStore):
    """Durable store in a single SQL table; blocking DB work runs in a thread."""

    def __init__(self, url: str | None = None):
        self.engine = get_engine(url)
        Base.metadata.create_all(self.engine)
        self._session_factory = sessionmaker(bind=self.engine)

    async def get(self, key: str) -> Any | None:
        try:
            raw = await asyncio.to_thread(self._read, key)
        except Exception as exc:
            logger.error("Storage read failed for %r: %s", key, exc)
            return None
        return _decode(key, raw)

    async def set(self, key: str, value: Any) -> bool:
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as exc:
            logger.error("Value for %r is not JSON-serialisable: %s", key, exc)
            return False
        try:
            await asyncio.to_thread(self._write, key, payload)
        except Exception as exc:
            logger.error("Storage write failed for %r: %s", key, exc)
            return False
        return True

    async def delete(self, key: str) -> bool:
        try:
            await asyncio.to_thread(self._remove, key)
        except Exception as exc:
            logger.error("Storage delete failed for %r: %s", key, exc)
            return False
        return True

    def _read(self, key: str) -> str | None:
        with self._session_factory() as session:
            entry = session.get(KeyValueEntry, key)
            return entry.value if entry else None

    def _write(self, key: str, payload: str) -> None:
        with self._session_factory() as session:
            entry = session.get(KeyValueEntry, key)
            if entry is None:
                session.add(KeyValueEntry(key=key, value=payload))
            else:
                entry.value = payload
            session.commit()

    def _remove(self, key: str) -> None:
        with self._session_factory() as session:
            entry = session.get(KeyValueEntry, key)
            if entry is not None:
                session.delete(entry)
                session.commit()


# ---------------------------------------------------------------------------
# Remote namespaced key-value service
# ---------------------------------------------------------------------------

class RemoteKeyValueStore(KeyValueStore):
    """Namespaced KV service at ``{endpoint}/{namespace}/{key}`` with bearer auth."""

    def __init__(
        self,
        endpoint: str | None = None,
        namespace: str | None = None,
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.endpoint = (endpoint if endpoint is not None else settings.kv_endpoint).rstrip("/")
        self.namespace = namespace if namespace is not None else settings.kv_namespace
        self.token = token if token is not None else settings.kv_token
        self.timeout = timeout
        self._transport = transport
        if not self.configured:
            logger.warning("Remote KV store not configured – all storage calls will fail")

    @property
    def configured(self) -> bool:
        return bool(self.endpoint and self.namespace and self.token)

    async def get(self, key: str) -> Any | None:
        ok, data = await self._request("GET", key)
        return data if ok else None

    async def set(self, key: str, value: Any) -> bool:
        ok, _ = await self._request("PUT", key, value)
        return ok

    async def delete(self, key: str) -> bool:
        ok, _ = await self._request("DELETE", key)
        return ok

    async def _request(self, method: str, key: str, body: Any = None) -> tuple[bool, Any | None]:
        """Return ``(success, data)``. A 404 is a successful read of nothing."""
        if not self.configured:
            logger.error("Remote KV configuration missing")
            return False, None

        url = f"{self.endpoint}/{self.namespace}/{key}"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.token}",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.request(
                    method,
                    url,
                    headers=headers,
                    content=json.dumps(body) if body is not None else None,
                )
        except httpx.TimeoutException:
            logger.error("KV %s %s timed out", method, key)
            return False, None
        except httpx.HTTPError as exc:
            logger.error("KV %s %s failed: %s", method, key, exc)
            return False, None

        if resp.status_code == 404:
            return True, None
        if not resp.is_success:
            logger.error("KV request failed: %d - %s", resp.status_code, resp.text[:200])
            return False, None

        text = resp.text
        if not text:
            return True, None
        try:
            return True, json.loads(text)
        except ValueError:
            # Writes commonly answer with a non-JSON acknowledgement
            logger.debug("KV %s %s response not JSON, treating as success", method, key)
            return True, None


def build_store() -> KeyValueStore:
    """Pick the storage backend from settings."""
    if settings.storage_backend == "remote":
        return RemoteKeyValueStore()
    return SQLKeyValueStore()
