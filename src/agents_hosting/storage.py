"""Key/value storage contract with optimistic concurrency on ``eTag``."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol

from .errors import ETagConflictError

logger = logging.getLogger(__name__)

StoreItem = dict[str, Any]


class Storage(Protocol):
    """Interface expected from storage backends."""

    async def read(self, keys: list[str]) -> dict[str, StoreItem]:
        """Return the stored items for the keys that exist."""
        ...

    async def write(self, changes: dict[str, StoreItem]) -> None:
        """Write items, rejecting any whose ``eTag`` no longer matches."""
        ...

    async def delete(self, keys: list[str]) -> None:
        """Remove items. Missing keys are ignored."""
        ...


class MemoryStorage:
    """Process-local storage that keeps JSON copies of each item.

    Every write assigns a new integer ``eTag``. A write whose item carries an
    ``eTag`` other than ``"*"`` must match the stored one.
    """

    def __init__(self, initial: dict[str, StoreItem] | None = None) -> None:
        self._memory: dict[str, str] = {}
        self._etag = 1
        self._lock = asyncio.Lock()
        for key, value in (initial or {}).items():
            self._memory[key] = json.dumps(value)

    async def read(self, keys: list[str]) -> dict[str, StoreItem]:
        if not keys:
            raise ValueError("Storage.read(): Keys are required.")
        return {key: json.loads(self._memory[key]) for key in keys if key in self._memory}

    async def write(self, changes: dict[str, StoreItem]) -> None:
        if not changes:
            raise ValueError("Storage.write(): Changes are required.")
        async with self._lock:
            for key, item in changes.items():
                stored = self._memory.get(key)
                new_etag = item.get("eTag")
                if stored is None or new_etag in (None, "*"):
                    self._save(key, item)
                    continue
                if json.loads(stored).get("eTag") != new_etag:
                    logger.warning("eTag conflict writing %s", key)
                    raise ETagConflictError(f'Storage: error writing "{key}" due to eTag conflict.')
                self._save(key, item)

    async def delete(self, keys: list[str]) -> None:
        if not keys:
            raise ValueError("Storage.delete(): Keys are required.")
        for key in keys:
            self._memory.pop(key, None)

    def _save(self, key: str, item: StoreItem) -> None:
        self._memory[key] = json.dumps({**item, "eTag": str(self._etag)})
        self._etag += 1
