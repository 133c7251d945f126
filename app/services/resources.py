"""
Resource Lifecycle Coordinator - Create, read, expire and sweep resources.

A resource is three keys: the metadata record under resources/{name}, the
payload under payloads/{id}, and for ephemeral resources one expiry index
entry. Nothing spans keys, so every purge deletes in the same order
(payload, metadata, index entry) and every delete is idempotent. A lazy
expiry on read and a sweep racing on the same resource both finish cleanly.

Expired resources are removed two ways:
- lazily, when a read observes that expires_at has passed
- by sweep(), which walks the expiry index and purges everything due
"""

import re
import secrets
import time
from datetime import timedelta

from structlog import get_logger

from app.db.store import KeyValueStore
from app.exceptions import (
    DuplicateResourceNameError,
    ForbiddenError,
    GoneError,
    InvalidFieldError,
    NotFoundError,
    PayloadMissingError,
    StoreError,
)
from app.models.domain import (
    Clock,
    ExpiryIndexEntry,
    ExpiryOutcome,
    Resource,
    SweepResult,
    from_millis,
    to_millis,
    utc_now,
)
from app.observability.metrics import metrics
from app.observability.tracing import trace_operation
from app.services.expiry_index import ResourceExpiryIndex

logger = get_logger(__name__)

MAX_NAME_LENGTH = 64
_NAME_RE = re.compile(r"[a-z0-9_-]{1,64}")
_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9_-]+")
_REPEATED_DASHES = re.compile(r"-{2,}")


def sanitize_name(raw: str | None) -> str:
    """
    Turn a requested name into a lowercase slug.

    No name (or a blank one) gets a random 8-hex-digit name. A name with
    nothing usable left after sanitizing is rejected.
    """
    if raw is None or not raw.strip():
        return secrets.token_hex(4)
    slug = _INVALID_NAME_CHARS.sub("-", raw.strip().lower())
    slug = _REPEATED_DASHES.sub("-", slug).strip("-")
    slug = slug[:MAX_NAME_LENGTH].strip("-")
    if not slug:
        raise InvalidFieldError("name", "must contain letters, digits, dashes or underscores")
    return slug


def resource_key(name: str) -> str:
    return f"resources/{name}"


class ResourceLifecycleCoordinator:
    """Owns resource records, payloads and their expiry index entries."""

    def __init__(
        self,
        store: KeyValueStore,
        index: ResourceExpiryIndex | None = None,
        clock: Clock = utc_now,
        min_ttl: timedelta | None = None,
        max_ttl: timedelta | None = None,
    ) -> None:
        self.store = store
        self.index = index or ResourceExpiryIndex(store)
        self.clock = clock
        self.min_ttl = min_ttl
        self.max_ttl = max_ttl

    # ========================================================================
    # Creation
    # ========================================================================

    def validate_ttl(self, ttl: timedelta) -> None:
        if ttl <= timedelta(0):
            raise InvalidFieldError("expires_in", "must be positive")
        if self.min_ttl is not None and ttl < self.min_ttl:
            raise InvalidFieldError(
                "expires_in", f"must be at least {int(self.min_ttl.total_seconds())} seconds"
            )
        if self.max_ttl is not None and ttl > self.max_ttl:
            raise InvalidFieldError(
                "expires_in", f"must be at most {int(self.max_ttl.total_seconds())} seconds"
            )

    async def create(
        self,
        name: str | None,
        payload: bytes,
        content_type: str,
        owner_id: str | None = None,
        ttl: timedelta | None = None,
        metadata: dict[str, str] | None = None,
    ) -> Resource:
        """
        Store a new resource, ephemeral when ttl is given.

        Raises:
            InvalidFieldError: bad name, empty payload or ttl out of bounds
            DuplicateResourceNameError: name is held by a live resource
        """
        name = sanitize_name(name)
        if not payload:
            raise InvalidFieldError("file", "upload is empty")
        if ttl is not None:
            self.validate_ttl(ttl)

        existing = await self._load(name)
        if existing is not None:
            # An expired holder does not keep the name
            outcome = await self.lazy_expire_check(existing)
            if outcome is ExpiryOutcome.LIVE:
                metrics.record_resource_operation("create", "conflict")
                raise DuplicateResourceNameError(name)

        resource_id = secrets.token_hex(16)
        resource = Resource(
            id=resource_id,
            name=name,
            content_type=content_type,
            size=len(payload),
            payload_key=f"payloads/{resource_id}",
            created_at=self.clock(),
            owner_id=owner_id,
            metadata=dict(metadata or {}),
        )
        await self.store.set(resource.payload_key, payload)

        if ttl is None:
            await self._write_record(resource)
        else:
            resource = await self.create_ephemeral(resource, ttl)

        metrics.record_resource_operation("create", "success")
        metrics.upload_size_bytes.observe(resource.size)
        logger.info(
            "resource_created",
            name=resource.name,
            resource_id=resource.id,
            owner_id=resource.owner_id,
            size=resource.size,
            content_type=resource.content_type,
            expires_at=resource.expires_at.isoformat() if resource.expires_at else None,
        )
        return resource

    async def create_ephemeral(self, resource: Resource, ttl: timedelta) -> Resource:
        """
        Persist resource with expires_at = now + ttl and register it in the index.

        expires_at is truncated to whole milliseconds so the record and its
        index key agree exactly.
        """
        self.validate_ttl(ttl)
        expires_at = from_millis(to_millis(self.clock() + ttl))
        ephemeral = Resource(
            id=resource.id,
            name=resource.name,
            content_type=resource.content_type,
            size=resource.size,
            payload_key=resource.payload_key,
            created_at=resource.created_at,
            owner_id=resource.owner_id,
            expires_at=expires_at,
            metadata=resource.metadata,
        )
        await self._write_record(ephemeral)
        await self.index.add(expires_at, ephemeral.name)
        return ephemeral

    async def _write_record(self, resource: Resource) -> None:
        """Write the metadata record unless the name was taken meanwhile."""
        if await self.store.set_json_if_absent(resource_key(resource.name), resource.to_record()):
            return
        # Lost a race with a concurrent upload of the same name
        await self.store.delete(resource.payload_key)
        metrics.record_resource_operation("create", "conflict")
        logger.warning("resource_create_race_lost", name=resource.name, resource_id=resource.id)
        raise DuplicateResourceNameError(resource.name)

    # ========================================================================
    # Reads and lazy expiry
    # ========================================================================

    async def _load(self, name: str) -> Resource | None:
        # Stored names are lowercase slugs; lookups are case-insensitive
        name = name.strip().lower()
        if not _NAME_RE.fullmatch(name):
            return None
        record = await self.store.get_json(resource_key(name))
        if record is None:
            return None
        return Resource.from_record(record)

    async def _purge(self, resource: Resource) -> None:
        """Delete payload, metadata record, then index entry. A failure stops the purge."""
        await self.store.delete(resource.payload_key)
        await self.store.delete(resource_key(resource.name))
        if resource.expires_at is not None:
            await self.index.remove(resource.expires_at, resource.name)

    async def lazy_expire_check(self, resource: Resource) -> ExpiryOutcome:
        """Purge resource if its expiry has passed."""
        if not resource.is_expired(self.clock()):
            return ExpiryOutcome.LIVE
        await self._purge(resource)
        metrics.record_resource_operation("lazy_expire", "purged")
        logger.info("resource_lazily_expired", name=resource.name, resource_id=resource.id)
        return ExpiryOutcome.EXPIRED_AND_PURGED

    async def describe(self, name: str) -> Resource:
        """
        Return resource metadata.

        Raises:
            NotFoundError: no such resource
            GoneError: the resource had expired (and is now purged)
        """
        resource = await self._load(name)
        if resource is None:
            metrics.record_resource_operation("read", "not_found")
            raise NotFoundError(name)
        if await self.lazy_expire_check(resource) is ExpiryOutcome.EXPIRED_AND_PURGED:
            metrics.record_resource_operation("read", "gone")
            raise GoneError(name)
        return resource

    async def fetch(self, name: str) -> tuple[Resource, bytes]:
        """Return metadata and payload. A record without payload is a PayloadMissingError."""
        resource = await self.describe(name)
        payload = await self.store.get(resource.payload_key)
        if payload is None:
            metrics.record_resource_operation("read", "payload_missing")
            logger.warning(
                "resource_payload_missing",
                name=name,
                resource_id=resource.id,
            )
            raise PayloadMissingError(name, resource.payload_key)
        metrics.record_resource_operation("read", "success")
        return resource, payload

    async def delete(self, name: str, account_id: str) -> Resource:
        """
        Owner-initiated purge.

        Raises:
            NotFoundError: no such resource
            ForbiddenError: account_id does not own it (anonymous uploads have no owner)
        """
        resource = await self._load(name)
        if resource is None:
            raise NotFoundError(name)
        if resource.owner_id is None or resource.owner_id != account_id:
            metrics.record_resource_operation("delete", "forbidden")
            logger.warning(
                "resource_delete_forbidden",
                name=name,
                account_id=account_id,
                owner_id=resource.owner_id,
            )
            raise ForbiddenError("delete resource")

        await self._purge(resource)
        metrics.record_resource_operation("delete", "success")
        logger.info("resource_deleted", name=name, resource_id=resource.id, account_id=account_id)
        return resource

    # ========================================================================
    # Sweep
    # ========================================================================

    async def _sweep_entry(self, key: str, entry: ExpiryIndexEntry) -> bool:
        """
        Handle one due entry. Returns True if a resource was purged.

        The resource is purged only if it is itself expired, so a live
        successor that reused the name is left alone. The entry is deleted
        either way.
        """
        resource = await self._load(entry.resource_name)
        purged = False
        if resource is not None and resource.is_expired(self.clock()):
            await self._purge(resource)
            purged = True
        await self.store.delete(key)
        return purged

    async def sweep(self) -> SweepResult:
        """
        Purge every resource whose index entry is due.

        Safe to run repeatedly and concurrently. A failure on one entry is
        logged and counted and the sweep moves on; only failing to list the
        index aborts the run.
        """
        start = time.perf_counter()
        scanned = purged = orphans_removed = failed = 0

        with trace_operation("expiry_sweep") as span:
            try:
                keys = await self.index.keys()
            except StoreError:
                metrics.record_sweep(False, time.perf_counter() - start)
                logger.error("expiry_sweep_enumeration_failed")
                raise

            now = self.clock()
            for key in keys:
                scanned += 1
                try:
                    entry = self.index.parse_key(key)
                except ValueError:
                    failed += 1
                    logger.warning("expiry_index_key_malformed", key=key)
                    continue

                if not entry.is_due(now):
                    continue

                try:
                    if await self._sweep_entry(key, entry):
                        purged += 1
                    else:
                        orphans_removed += 1
                except Exception:
                    failed += 1
                    logger.exception(
                        "expiry_sweep_entry_failed",
                        key=key,
                        name=entry.resource_name,
                    )

            span.set_attribute("scanned", scanned)
            span.set_attribute("purged", purged)
            span.set_attribute("orphans_removed", orphans_removed)
            span.set_attribute("failed", failed)

        duration = time.perf_counter() - start
        metrics.record_sweep(
            True,
            duration,
            purged=purged,
            orphans_removed=orphans_removed,
            failed=failed,
        )
        logger.info(
            "sweep_completed",
            scanned=scanned,
            purged=purged,
            orphans_removed=orphans_removed,
            failed=failed,
            duration_ms=int(duration * 1000),
        )
        return SweepResult(
            scanned=scanned,
            purged=purged,
            orphans_removed=orphans_removed,
            failed=failed,
        )
