"""
Key-Value Store - The only persistence primitive the service relies on.

Offers get / set / delete / list-by-prefix over bytes, plus JSON helpers.
Single-key calls are atomic; nothing spans more than one key. Deleting an
absent key is a success, so concurrent purges of the same keys are safe.

set_if_absent is the one conditional primitive. The base implementation is a
plain check-then-set and therefore racy; backends that can make it atomic
(insert-or-fail, dict lookup under the event loop) override it.
"""

from abc import ABC, abstractmethod
from typing import Any

import orjson

from app.exceptions import StoreError


class KeyValueStore(ABC):
    """Abstract key-value store contract."""

    #: True when set_if_absent is atomic on the key.
    atomic_conditional_put: bool = False

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Return the stored bytes, or None when the key is absent."""

    @abstractmethod
    async def set(self, key: str, value: bytes) -> None:
        """Create or overwrite a key."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key. Absent keys are not an error."""

    @abstractmethod
    async def list_keys(self, prefix: str) -> list[str]:
        """Return every key starting with prefix, in lexicographic order."""

    async def set_if_absent(self, key: str, value: bytes) -> bool:
        """
        Write key only if it does not exist yet.

        Returns True if this call created the key. Not atomic in the base
        class: two callers can both observe absence and both write.
        """
        if await self.get(key) is not None:
            return False
        await self.set(key, value)
        return True

    async def get_json(self, key: str) -> Any | None:
        """Return the decoded JSON value, or None when the key is absent."""
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError as exc:
            raise StoreError("get", key, f"value is not valid JSON: {exc}") from exc

    async def set_json(self, key: str, value: Any) -> None:
        """Encode value as JSON and store it."""
        await self.set(key, orjson.dumps(value))

    async def set_json_if_absent(self, key: str, value: Any) -> bool:
        """JSON flavour of set_if_absent."""
        return await self.set_if_absent(key, orjson.dumps(value))

    async def ping(self) -> None:
        """Probe connectivity. Raises StoreError when the backend is unreachable."""
        await self.get("__ping__")

    async def close(self) -> None:
        """Release backend resources."""


class MemoryKeyValueStore(KeyValueStore):
    """
    Dict-backed store for development and tests.

    Each coroutine runs without awaiting inside, so every call is atomic with
    respect to other tasks on the same event loop.
    """

    atomic_conditional_put = True

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    async def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    async def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def list_keys(self, prefix: str) -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))

    async def set_if_absent(self, key: str, value: bytes) -> bool:
        if key in self._data:
            return False
        self._data[key] = bytes(value)
        return True

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def snapshot(self) -> dict[str, bytes]:
        """Copy of the current contents."""
        return dict(self._data)
