"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.

The SQL backend persists the key-value store in a single table. Values are
opaque bytes; the schema knows nothing about accounts, sessions or resources.
"""

from datetime import UTC, datetime

from sqlalchemy import DateTime, Index, LargeBinary, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class KVEntry(Base):
    """
    ORM model for kv_entries table.

    One row per key. The primary key (namespace, key) makes insert-or-fail
    usable as an atomic conditional put.
    """

    __tablename__ = "kv_entries"

    namespace: Mapped[str] = mapped_column(String(64), primary_key=True)
    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        Index("idx_kv_entries_updated_at", "updated_at"),
        # Prefix listing (LIKE 'prefix%') regardless of database collation
        Index(
            "idx_kv_entries_key_prefix",
            "namespace",
            "key",
            postgresql_ops={"key": "text_pattern_ops"},
        ),
    )

    def __repr__(self) -> str:
        return f"<KVEntry(namespace={self.namespace}, key={self.key}, size={len(self.value)})>"
