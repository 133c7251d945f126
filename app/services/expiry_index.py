"""
Expiry Index - Time-ordered secondary index of ephemeral resources.

Keys are expiry/{epoch_ms:013d}:{name}. The zero-padded millisecond prefix
makes lexicographic key order equal to expiry order, so a prefix listing
returns entries soonest-first. The value is empty; the key carries
everything.
"""

from datetime import datetime

from app.db.store import KeyValueStore
from app.models.domain import ExpiryIndexEntry, to_millis

INDEX_PREFIX = "expiry/"
_MILLIS_WIDTH = 13


class ResourceExpiryIndex:
    """Add, remove and enumerate expiry index entries."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    @staticmethod
    def key_for(expires_at: datetime, name: str) -> str:
        millis = to_millis(expires_at)
        if millis < 0:
            raise ValueError(f"Expiry before epoch: {expires_at!r}")
        return f"{INDEX_PREFIX}{millis:0{_MILLIS_WIDTH}d}:{name}"

    @staticmethod
    def parse_key(key: str) -> ExpiryIndexEntry:
        """
        Decode an index key.

        Raises:
            ValueError: key does not follow the expiry/{millis}:{name} layout
        """
        if not key.startswith(INDEX_PREFIX):
            raise ValueError(f"Not an expiry index key: {key!r}")
        millis, sep, name = key[len(INDEX_PREFIX) :].partition(":")
        if not sep or not name or len(millis) != _MILLIS_WIDTH or not millis.isdigit():
            raise ValueError(f"Malformed expiry index key: {key!r}")
        return ExpiryIndexEntry(expires_at_millis=int(millis), resource_name=name)

    async def add(self, expires_at: datetime, name: str) -> str:
        key = self.key_for(expires_at, name)
        await self.store.set(key, b"")
        return key

    async def remove(self, expires_at: datetime, name: str) -> None:
        await self.store.delete(self.key_for(expires_at, name))

    async def keys(self) -> list[str]:
        """Every index key, soonest expiry first."""
        return await self.store.list_keys(INDEX_PREFIX)

    async def entries(self) -> list[ExpiryIndexEntry]:
        """Every well-formed entry, soonest expiry first. Malformed keys are skipped."""
        entries = []
        for key in await self.keys():
            try:
                entries.append(self.parse_key(key))
            except ValueError:
                continue
        return entries
