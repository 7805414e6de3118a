"""Async HTTP client for the memory vault REST API.

Provides :class:`MemoryVaultClient`, the downstream sink of the sync engine:

- **Upsert** -- look up the memory for an event id; ``PUT`` it if it
  exists, otherwise ``POST`` a new one.
- **Delete** -- look up the memory for an event id and ``DELETE`` it.
  A missing memory counts as success so deletes are idempotent.

A failed lookup fails the operation, so a retried upsert never stores a
second memory for one event id.  Both operations are best-effort: HTTP
failures and transport errors are logged and reported as ``False`` rather
than raised.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from cal_memsync.exceptions import VaultError
from cal_memsync.models.memory import MemoryEntry

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 10.0  # seconds


class MemorySink(Protocol):
    """The two operations the sync engine needs from a downstream store."""

    async def upsert(self, user_id: str, entry: MemoryEntry) -> bool: ...

    async def delete(self, user_id: str, event_id: str) -> bool: ...


class MemoryVaultClient:
    """Memory vault sink backed by :class:`httpx.AsyncClient`.

    Args:
        base_url: Vault base URL, e.g. ``"http://localhost:8000"``.
        http_client: Optional pre-built client.  Pass one built on
            ``httpx.MockTransport`` in tests.  A client created here is
            closed by :meth:`aclose`.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # Sink operations
    # ------------------------------------------------------------------

    async def upsert(self, user_id: str, entry: MemoryEntry) -> bool:
        """Store *entry*, replacing any memory with the same event id.

        Returns:
            ``True`` if the vault accepted the write.
        """
        event_id = entry.event_id
        try:
            existing = await self._find_memory(user_id, event_id)
        except (httpx.HTTPError, VaultError) as exc:
            logger.error("Memory lookup failed for event %s, not storing: %s", event_id, exc)
            return False

        if existing is not None:
            if await self._update(user_id, existing["id"], entry):
                return True
            logger.warning("Update of memory %s failed, storing a new one", existing["id"])

        return await self._store(user_id, entry)

    async def delete(self, user_id: str, event_id: str) -> bool:
        """Remove the memory for *event_id*.

        Returns:
            ``True`` if the memory was deleted or did not exist.
        """
        try:
            existing = await self._find_memory(user_id, event_id)
        except (httpx.HTTPError, VaultError) as exc:
            logger.error("Memory lookup failed for event %s: %s", event_id, exc)
            return False

        if existing is None:
            logger.info("No memory found to delete for event %s", event_id)
            return True

        try:
            response = await self._http.delete(f"{self._base_url}/memories/{existing['id']}")
        except httpx.HTTPError as exc:
            logger.error("Error deleting memory for event %s: %s", event_id, exc)
            return False

        if response.is_success or response.status_code == 404:
            logger.info("Memory deleted for user %s, event %s", user_id, event_id)
            return True

        logger.error(
            "Failed to delete memory for event %s: HTTP %d", event_id, response.status_code
        )
        return False

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _find_memory(self, user_id: str, event_id: str) -> dict[str, Any] | None:
        """Return the first memory tagged with *event_id*, or ``None``.

        Raises:
            httpx.HTTPError: On transport errors or a non-2xx response.
            VaultError: If the response body is not the expected shape.
        """
        response = await self._http.get(
            f"{self._base_url}/memories/search",
            params={"user_id": user_id, "query": f"event_id:{event_id}", "limit": 1},
        )
        response.raise_for_status()

        try:
            payload = response.json()
        except ValueError as exc:
            raise VaultError("Memory search returned invalid JSON", response.status_code) from exc

        if not isinstance(payload, dict):
            raise VaultError("Memory search returned unexpected payload", response.status_code)

        memories = payload.get("memories") or []
        if not memories:
            return None
        first = memories[0]
        if not isinstance(first, dict) or "id" not in first:
            raise VaultError("Memory search result has no id", response.status_code)
        return first

    async def _store(self, user_id: str, entry: MemoryEntry) -> bool:
        body = entry.model_dump(mode="json")
        body["user_id"] = user_id
        try:
            response = await self._http.post(f"{self._base_url}/memories", json=body)
        except httpx.HTTPError as exc:
            logger.error("Error storing memory for event %s: %s", entry.event_id, exc)
            return False

        if response.is_success:
            logger.info("Memory stored for user %s, event %s", user_id, entry.event_id)
            return True

        logger.error(
            "Failed to store memory for event %s: HTTP %d",
            entry.event_id,
            response.status_code,
        )
        return False

    async def _update(self, user_id: str, memory_id: str, entry: MemoryEntry) -> bool:
        body = {
            "content": entry.content,
            "title": entry.title,
            "tags": entry.tags,
            "metadata": entry.metadata.model_dump(mode="json"),
            "user_id": user_id,
        }
        try:
            response = await self._http.put(f"{self._base_url}/memories/{memory_id}", json=body)
        except httpx.HTTPError as exc:
            logger.warning("Error updating memory %s: %s", memory_id, exc)
            return False

        if response.is_success:
            logger.info("Memory updated for user %s, event %s", user_id, entry.event_id)
            return True
        return False
