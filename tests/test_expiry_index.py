"""
Tests for the Resource Expiry Index key layout and enumeration.
"""

from datetime import UTC, datetime, timedelta

import pytest
from hypothesis import given
from hypothesis import strategies as st

from app.models.domain import ExpiryIndexEntry, to_millis
from app.services.expiry_index import ResourceExpiryIndex

MOMENT = datetime(2026, 1, 1, 12, 0, 0, 123456, tzinfo=UTC)


class TestKeyLayout:
    """Tests for key_for / parse_key."""

    def test_key_format(self):
        key = ResourceExpiryIndex.key_for(MOMENT, "cat")
        assert key == f"expiry/{to_millis(MOMENT):013d}:cat"
        assert key == "expiry/1767268800123:cat"

    def test_parse_key(self):
        entry = ResourceExpiryIndex.parse_key("expiry/1767268800123:cat")
        assert entry == ExpiryIndexEntry(expires_at_millis=1767268800123, resource_name="cat")
        assert entry.expires_at == datetime(2026, 1, 1, 12, 0, 0, 123000, tzinfo=UTC)

    @pytest.mark.parametrize(
        "key",
        [
            "expiry/",
            "expiry/1767268800123",
            "expiry/1767268800123:",
            "expiry/abc:cat",
            "expiry/123:cat",
            "resources/cat",
            "expiry/17672688001234:cat",
        ],
    )
    def test_malformed_keys(self, key):
        with pytest.raises(ValueError):
            ResourceExpiryIndex.parse_key(key)

    def test_lexicographic_order_is_time_order(self):
        early = ResourceExpiryIndex.key_for(MOMENT, "zzz")
        late = ResourceExpiryIndex.key_for(MOMENT + timedelta(milliseconds=1), "aaa")
        assert early < late

    @given(
        millis=st.integers(min_value=0, max_value=9_999_999_999_999),
        name=st.from_regex(r"[a-z0-9_-]{1,64}", fullmatch=True),
    )
    def test_key_parse_inverse(self, millis, name):
        """parse_key undoes key_for for every valid name and instant."""
        entry = ExpiryIndexEntry(expires_at_millis=millis, resource_name=name)
        key = ResourceExpiryIndex.key_for(entry.expires_at, name)
        assert ResourceExpiryIndex.parse_key(key) == entry


class TestEnumeration:
    """Tests for add / remove / entries."""

    @pytest.mark.asyncio
    async def test_entries_sorted_by_expiry(self, store):
        index = ResourceExpiryIndex(store)
        await index.add(MOMENT + timedelta(hours=2), "b")
        await index.add(MOMENT, "c")
        await index.add(MOMENT + timedelta(hours=1), "a")

        names = [entry.resource_name for entry in await index.entries()]

        assert names == ["c", "a", "b"]

    @pytest.mark.asyncio
    async def test_remove(self, store):
        index = ResourceExpiryIndex(store)
        await index.add(MOMENT, "cat")

        await index.remove(MOMENT, "cat")
        await index.remove(MOMENT, "cat")

        assert await index.entries() == []

    @pytest.mark.asyncio
    async def test_entries_skip_malformed_keys(self, store):
        index = ResourceExpiryIndex(store)
        await index.add(MOMENT, "cat")
        await store.set("expiry/garbage", b"")

        assert [e.resource_name for e in await index.entries()] == ["cat"]
        assert len(await index.keys()) == 2

    def test_is_due(self):
        entry = ExpiryIndexEntry(to_millis(MOMENT), "cat")
        assert entry.is_due(MOMENT)
        assert not entry.is_due(MOMENT - timedelta(milliseconds=1))
