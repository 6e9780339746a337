"""SQLite-backed persistence for providers, properties, locations and logs."""
from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from holiday_catalog.config.providers import ProviderDefinition
from holiday_catalog.core.clock import Clock, to_iso, utc_now
from holiday_catalog.errors import CatalogError, LocationHierarchyError, SyncInProgressError
from holiday_catalog.feeds.models import ImageRecord, PropertyRecord

from .amenities import AMENITIES
from .records import (
    CachedGeocode,
    LocationRecord,
    LocationType,
    ProviderRecord,
    QueryCount,
    SyncCounters,
    SyncLogRecord,
    SyncStatus,
    UpsertResult,
)

SCHEMA_VERSION = 2

VALID_JOURNAL_MODES = frozenset({"delete", "truncate", "persist", "memory", "wal", "off"})
VALID_SYNCHRONOUS_MODES = frozenset({"off", "normal", "full", "extra"})

SEARCH_DOCUMENT_COLUMNS: tuple[str, ...] = (
    "id",
    "slug",
    "name",
    "description",
    "short_description",
    "property_type",
    "location_id",
    "location_name",
    "postcode",
    "latitude",
    "longitude",
    "sleeps",
    "bedrooms",
    "bathrooms",
    "price_from",
    "price_currency",
    "affiliate_url",
    "provider_id",
    "provider_slug",
    "is_active",
    "featured",
    "primary_image",
    "amenities",
)


def _json_dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), default=str)


def _json_loads(value: Optional[str]) -> Any:
    if not value:
        return {}
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return {}


def _bool(value: Any) -> int:
    return 1 if bool(value) else 0


def _decimal_text(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _float_or_none(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


logger = logging.getLogger(__name__)


class SqliteStore:
    """Thin async wrapper over sqlite3 for structured persistence."""

    def __init__(
        self,
        db_path: Path,
        *,
        clock: Clock = utc_now,
        busy_timeout_ms: int = 2000,
        journal_mode: str | None = "wal",
        synchronous: str | None = "normal",
    ) -> None:
        self._path = db_path
        self._clock = clock
        self._busy_timeout_ms = busy_timeout_ms
        self._journal_mode = self._normalize_journal_mode(journal_mode)
        self._synchronous = self._normalize_synchronous(synchronous)
        self._connection: sqlite3.Connection | None = None
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # lifecycle

    async def initialize(self) -> None:
        if self._connection is not None:
            return
        async with self._lock:
            if self._connection is None:
                conn = await asyncio.to_thread(self._open_connection)
                self._connection = conn

    async def close(self) -> None:
        if self._connection is None:
            return
        conn = self._connection
        self._connection = None
        await asyncio.to_thread(conn.close)

    def _open_connection(self) -> sqlite3.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.execute(f"PRAGMA busy_timeout = {int(max(self._busy_timeout_ms, 0))};")
        if self._journal_mode:
            conn.execute(f"PRAGMA journal_mode = {self._journal_mode.upper()};")
        if self._synchronous:
            conn.execute(f"PRAGMA synchronous = {self._synchronous.upper()};")
        try:
            self._apply_migrations(conn)
            self._seed_amenities(conn)
        except sqlite3.OperationalError as exc:
            conn.close()
            logger.error(
                "SQLite migration failed (path=%s, timeout_ms=%s): %s",
                self._path,
                self._busy_timeout_ms,
                exc,
            )
            raise
        return conn

    @staticmethod
    def _normalize_journal_mode(value: str | None) -> str | None:
        if value is None:
            return None
        mode = value.strip().lower()
        if not mode:
            return None
        if mode not in VALID_JOURNAL_MODES:
            raise ValueError(
                f"Unsupported SQLite journal_mode '{value}'. Expected one of: {sorted(VALID_JOURNAL_MODES)}"
            )
        return mode

    @staticmethod
    def _normalize_synchronous(value: str | None) -> str | None:
        if value is None:
            return None
        mode = value.strip().lower()
        if not mode:
            return None
        if mode not in VALID_SYNCHRONOUS_MODES:
            raise ValueError(
                f"Unsupported SQLite synchronous mode '{value}'. Expected one of: {sorted(VALID_SYNCHRONOUS_MODES)}"
            )
        return mode

    def _apply_migrations(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );
            """
        )
        current = self._get_schema_version(conn)
        if current >= SCHEMA_VERSION:
            return
        for version in range(current + 1, SCHEMA_VERSION + 1):
            script = MIGRATIONS.get(version)
            if not script:
                raise RuntimeError(f"Missing migration script for version {version}")
            conn.executescript(script)
            conn.execute(
                "INSERT INTO meta(key, value) VALUES('schema_version', ?)\n"
                "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                (str(version),),
            )
        conn.commit()

    def _get_schema_version(self, conn: sqlite3.Connection) -> int:
        cursor = conn.execute("SELECT value FROM meta WHERE key='schema_version'")
        row = cursor.fetchone()
        if not row:
            return 0
        try:
            return int(row[0])
        except (TypeError, ValueError):
            return 0

    def _seed_amenities(self, conn: sqlite3.Connection) -> None:
        with conn:
            conn.executemany(
                """
                INSERT INTO amenities(slug, name, icon, category) VALUES(?, ?, ?, ?)
                ON CONFLICT(slug) DO UPDATE SET
                    name=excluded.name,
                    icon=excluded.icon,
                    category=excluded.category
                """,
                [(seed.slug, seed.name, seed.icon, seed.category) for seed in AMENITIES],
            )

    def _require_connection(self) -> sqlite3.Connection:
        if not self._connection:
            raise RuntimeError("SQLite store has not been initialised")
        return self._connection

    def _now(self) -> str:
        return to_iso(self._clock())

    # ------------------------------------------------------------------
    # row mapping

    @staticmethod
    def _row_to_provider(row: sqlite3.Row) -> ProviderRecord:
        return ProviderRecord(
            id=int(row["id"]),
            slug=row["slug"],
            name=row["name"],
            adapter=row["adapter"],
            config=_json_loads(row["config_json"]),
            sync_frequency=row["sync_frequency"],
            is_active=bool(row["is_active"]),
            last_sync_at=row["last_sync_at"],
            next_sync_at=row["next_sync_at"],
        )

    @staticmethod
    def _row_to_location(row: sqlite3.Row) -> LocationRecord:
        return LocationRecord(
            id=int(row["id"]),
            parent_id=row["parent_id"],
            type=LocationType(row["type"]),
            name=row["name"],
            slug=row["slug"],
            postcode=row["postcode"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            property_count=int(row["property_count"] or 0),
        )

    @staticmethod
    def _row_to_sync_log(row: sqlite3.Row) -> SyncLogRecord:
        return SyncLogRecord(
            id=int(row["id"]),
            provider_id=int(row["provider_id"]),
            status=SyncStatus(row["status"]),
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            properties_fetched=int(row["properties_fetched"] or 0),
            properties_created=int(row["properties_created"] or 0),
            properties_updated=int(row["properties_updated"] or 0),
            properties_deactivated=int(row["properties_deactivated"] or 0),
            properties_failed=int(row["properties_failed"] or 0),
            error_message=row["error_message"],
            error_trace=row["error_trace"],
        )

    # ------------------------------------------------------------------
    # providers

    async def upsert_provider(self, definition: ProviderDefinition) -> ProviderRecord:
        """Insert or refresh a provider row from its TOML definition."""

        def _op() -> ProviderRecord:
            conn = self._require_connection()
            now = self._now()
            with conn:
                conn.execute(
                    """
                    INSERT INTO affiliate_providers(
                        slug, name, adapter, config_json, sync_frequency, is_active, created_at, updated_at
                    ) VALUES(?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(slug) DO UPDATE SET
                        name=excluded.name,
                        adapter=excluded.adapter,
                        config_json=excluded.config_json,
                        sync_frequency=excluded.sync_frequency,
                        is_active=excluded.is_active,
                        updated_at=excluded.updated_at
                    """,
                    (
                        definition.slug,
                        definition.name,
                        definition.adapter.value,
                        _json_dumps(definition.config_json()),
                        definition.sync_frequency.value,
                        _bool(definition.is_active),
                        now,
                        now,
                    ),
                )
                row = conn.execute(
                    "SELECT * FROM affiliate_providers WHERE slug=?", (definition.slug,)
                ).fetchone()
            return self._row_to_provider(row)

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def get_provider(self, slug: str) -> ProviderRecord | None:
        def _op() -> ProviderRecord | None:
            conn = self._require_connection()
            row = conn.execute("SELECT * FROM affiliate_providers WHERE slug=?", (slug,)).fetchone()
            return self._row_to_provider(row) if row else None

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def list_providers(self, *, active_only: bool = False) -> list[ProviderRecord]:
        def _op() -> list[ProviderRecord]:
            conn = self._require_connection()
            sql = "SELECT * FROM affiliate_providers"
            if active_only:
                sql += " WHERE is_active=1"
            sql += " ORDER BY slug"
            return [self._row_to_provider(row) for row in conn.execute(sql).fetchall()]

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def mark_provider_synced(
        self,
        provider_id: int,
        *,
        synced_at: datetime,
        interval: Optional[timedelta],
    ) -> None:
        def _op() -> None:
            conn = self._require_connection()
            next_sync = to_iso(synced_at + interval) if interval is not None else None
            with conn:
                conn.execute(
                    """
                    UPDATE affiliate_providers
                    SET last_sync_at=?, next_sync_at=?, updated_at=?
                    WHERE id=?
                    """,
                    (to_iso(synced_at), next_sync, self._now(), provider_id),
                )

        async with self._lock:
            await asyncio.to_thread(_op)

    # ------------------------------------------------------------------
    # locations

    async def get_location(self, location_id: int) -> LocationRecord | None:
        def _op() -> LocationRecord | None:
            conn = self._require_connection()
            row = conn.execute("SELECT * FROM locations WHERE id=?", (location_id,)).fetchone()
            return self._row_to_location(row) if row else None

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def find_location_by_postcode(self, postcode: str) -> LocationRecord | None:
        def _op() -> LocationRecord | None:
            conn = self._require_connection()
            row = conn.execute("SELECT * FROM locations WHERE postcode=?", (postcode,)).fetchone()
            return self._row_to_location(row) if row else None

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def find_or_create_location(
        self,
        *,
        type: LocationType,
        name: str,
        slug: str,
        parent: LocationRecord | None = None,
        postcode: str | None = None,
        latitude: float | None = None,
        longitude: float | None = None,
    ) -> LocationRecord:
        """Return the matching location, creating it when absent.

        Concurrent callers racing on the same key both end up with the single
        row that won the insert: the unique indexes turn the loser's insert
        into a no-op and the follow-up select returns the winner.
        """
        if parent is not None and not parent.type.is_broader_than(type):
            raise LocationHierarchyError(
                f"Cannot place {type.value} '{slug}' under {parent.type.value} '{parent.slug}'"
            )
        parent_id = parent.id if parent is not None else None

        def _op() -> LocationRecord:
            conn = self._require_connection()
            now = self._now()
            node_slug = slug
            if postcode is not None:
                row = conn.execute("SELECT * FROM locations WHERE postcode=?", (postcode,)).fetchone()
                if row is not None:
                    return self._row_to_location(row)
                # The postcode index is the identity of a postcode node; its slug only has to be free.
                node_slug = self._available_location_slug(conn, slug or type.value, parent_id, type)
            with conn:
                conn.execute(
                    """
                    INSERT OR IGNORE INTO locations(
                        parent_id, type, name, slug, postcode, latitude, longitude, created_at, updated_at
                    ) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (parent_id, type.value, name, node_slug, postcode, latitude, longitude, now, now),
                )
            if postcode is not None:
                row = conn.execute("SELECT * FROM locations WHERE postcode=?", (postcode,)).fetchone()
            elif parent_id is None:
                row = conn.execute(
                    "SELECT * FROM locations WHERE parent_id IS NULL AND slug=? AND type=?",
                    (slug, type.value),
                ).fetchone()
            else:
                row = conn.execute(
                    "SELECT * FROM locations WHERE parent_id=? AND slug=? AND type=?",
                    (parent_id, slug, type.value),
                ).fetchone()
            if row is None:
                raise CatalogError(f"Location '{slug}' could not be created or found")
            return self._row_to_location(row)

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def refresh_location_counts(self) -> None:
        """Recount active properties under every location, descendants included."""

        def _op() -> None:
            conn = self._require_connection()
            with conn:
                conn.execute(
                    """
                    WITH RECURSIVE tree(ancestor_id, location_id) AS (
                        SELECT id, id FROM locations
                        UNION ALL
                        SELECT tree.ancestor_id, child.id
                        FROM tree JOIN locations AS child ON child.parent_id = tree.location_id
                    )
                    UPDATE locations SET property_count = (
                        SELECT COUNT(p.id)
                        FROM tree
                        JOIN properties AS p ON p.location_id = tree.location_id AND p.is_active = 1
                        WHERE tree.ancestor_id = locations.id
                    )
                    """
                )

        async with self._lock:
            await asyncio.to_thread(_op)

    # ------------------------------------------------------------------
    # geocode cache

    async def get_cached_geocode(self, postcode: str) -> CachedGeocode | None:
        def _op() -> CachedGeocode | None:
            conn = self._require_connection()
            row = conn.execute(
                "SELECT * FROM geocode_cache WHERE postcode=? AND expires_at > ?",
                (postcode, self._now()),
            ).fetchone()
            if not row:
                return None
            return CachedGeocode(
                postcode=row["postcode"],
                latitude=row["latitude"],
                longitude=row["longitude"],
                district=row["district"],
                payload=_json_loads(row["payload_json"]),
                expires_at=row["expires_at"],
            )

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def cache_geocode(
        self,
        postcode: str,
        *,
        latitude: float,
        longitude: float,
        district: str | None,
        payload: dict[str, Any],
        ttl: timedelta,
    ) -> None:
        def _op() -> None:
            conn = self._require_connection()
            now = self._clock()
            with conn:
                conn.execute(
                    """
                    INSERT INTO geocode_cache(postcode, latitude, longitude, district, payload_json, cached_at, expires_at)
                    VALUES(?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(postcode) DO UPDATE SET
                        latitude=excluded.latitude,
                        longitude=excluded.longitude,
                        district=excluded.district,
                        payload_json=excluded.payload_json,
                        cached_at=excluded.cached_at,
                        expires_at=excluded.expires_at
                    """,
                    (postcode, latitude, longitude, district, _json_dumps(payload), to_iso(now), to_iso(now + ttl)),
                )

        async with self._lock:
            await asyncio.to_thread(_op)

    # ------------------------------------------------------------------
    # properties

    async def upsert_property(
        self,
        *,
        provider_id: int,
        provider_slug: str,
        record: PropertyRecord,
        location_id: int | None,
    ) -> UpsertResult:
        """Write one property with its images and amenities in a single transaction."""

        def _op() -> UpsertResult:
            conn = self._require_connection()
            now = self._now()
            with conn:
                row = conn.execute(
                    "SELECT id FROM properties WHERE provider_id=? AND external_id=?",
                    (provider_id, record.external_id),
                ).fetchone()
                existing_id = int(row["id"]) if row else None
                slug = self._available_slug(conn, record.slug, provider_slug, existing_id)
                values = (
                    record.name,
                    slug,
                    record.description,
                    record.short_description,
                    record.property_type.value,
                    location_id,
                    record.address_line_1,
                    record.address_line_2,
                    record.postcode,
                    record.latitude,
                    record.longitude,
                    record.sleeps,
                    record.bedrooms,
                    record.bathrooms,
                    _decimal_text(record.price_from),
                    record.price_currency,
                    record.affiliate_url,
                    _decimal_text(record.commission_rate),
                    _bool(record.is_active),
                    _bool(record.featured),
                    now,
                )
                if existing_id is None:
                    cursor = conn.execute(
                        """
                        INSERT INTO properties(
                            name, slug, description, short_description, property_type, location_id,
                            address_line_1, address_line_2, postcode, latitude, longitude,
                            sleeps, bedrooms, bathrooms, price_from, price_currency, affiliate_url,
                            commission_rate, is_active, featured, last_synced_at,
                            provider_id, external_id, created_at, updated_at
                        ) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        values + (provider_id, record.external_id, now, now),
                    )
                    property_id = int(cursor.lastrowid)
                    created = True
                else:
                    conn.execute(
                        """
                        UPDATE properties SET
                            name=?, slug=?, description=?, short_description=?, property_type=?, location_id=?,
                            address_line_1=?, address_line_2=?, postcode=?, latitude=?, longitude=?,
                            sleeps=?, bedrooms=?, bathrooms=?, price_from=?, price_currency=?, affiliate_url=?,
                            commission_rate=?, is_active=?, featured=?, last_synced_at=?, updated_at=?
                        WHERE id=?
                        """,
                        values + (now, existing_id),
                    )
                    property_id = existing_id
                    created = False
                self._replace_images(conn, property_id, record.images, now)
                self._sync_amenities(conn, property_id, record.amenities)
            return UpsertResult(property_id=property_id, slug=slug, created=created)

        async with self._lock:
            return await asyncio.to_thread(_op)

    def _available_slug(
        self,
        conn: sqlite3.Connection,
        base: str,
        provider_slug: str,
        property_id: int | None,
    ) -> str:
        def _taken(candidate: str) -> bool:
            row = conn.execute(
                "SELECT id FROM properties WHERE slug=? AND (? IS NULL OR id != ?)",
                (candidate, property_id, property_id),
            ).fetchone()
            return row is not None

        if not _taken(base):
            return base
        candidate = f"{base}-{provider_slug}"
        suffix = 2
        while _taken(candidate):
            candidate = f"{base}-{provider_slug}-{suffix}"
            suffix += 1
        return candidate

    @staticmethod
    def _available_location_slug(
        conn: sqlite3.Connection,
        base: str,
        parent_id: int | None,
        type: LocationType,
    ) -> str:
        def _taken(candidate: str) -> bool:
            row = conn.execute(
                "SELECT id FROM locations WHERE parent_id IS ? AND slug=? AND type=?",
                (parent_id, candidate, type.value),
            ).fetchone()
            return row is not None

        candidate = base
        suffix = 2
        while _taken(candidate):
            candidate = f"{base}-{suffix}"
            suffix += 1
        return candidate

    def _replace_images(
        self,
        conn: sqlite3.Connection,
        property_id: int,
        images: Sequence[ImageRecord],
        now: str,
    ) -> None:
        conn.execute("DELETE FROM property_images WHERE property_id=?", (property_id,))
        if not images:
            return
        conn.executemany(
            """
            INSERT INTO property_images(
                property_id, url, thumbnail_url, alt_text, display_order, is_primary, created_at
            ) VALUES(?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    property_id,
                    image.url,
                    image.thumbnail_url,
                    image.alt_text,
                    image.display_order,
                    _bool(image.is_primary),
                    now,
                )
                for image in images
            ],
        )

    def _sync_amenities(self, conn: sqlite3.Connection, property_id: int, slugs: Sequence[str]) -> None:
        conn.execute("DELETE FROM property_amenities WHERE property_id=?", (property_id,))
        if not slugs:
            return
        placeholders = ",".join("?" for _ in slugs)
        conn.execute(
            f"""
            INSERT OR IGNORE INTO property_amenities(property_id, amenity_id)
            SELECT ?, id FROM amenities WHERE slug IN ({placeholders})
            """,
            (property_id, *slugs),
        )

    async def deactivate_missing(self, provider_id: int, *, seen_since: str) -> int:
        """Deactivate this provider's active properties not synced since ``seen_since``."""

        def _op() -> int:
            conn = self._require_connection()
            with conn:
                cursor = conn.execute(
                    """
                    UPDATE properties SET is_active=0, updated_at=?
                    WHERE provider_id=? AND is_active=1
                      AND (last_synced_at IS NULL OR last_synced_at < ?)
                    """,
                    (self._now(), provider_id, seen_since),
                )
                return int(cursor.rowcount or 0)

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def get_property(self, property_id: int) -> dict[str, Any] | None:
        def _op() -> dict[str, Any] | None:
            conn = self._require_connection()
            row = conn.execute("SELECT * FROM properties WHERE id=?", (property_id,)).fetchone()
            if not row:
                return None
            record = dict(row)
            record["images"] = [
                dict(image)
                for image in conn.execute(
                    """
                    SELECT url, thumbnail_url, alt_text, display_order, is_primary
                    FROM property_images WHERE property_id=? ORDER BY display_order
                    """,
                    (property_id,),
                ).fetchall()
            ]
            record["amenities"] = [
                amenity["slug"]
                for amenity in conn.execute(
                    """
                    SELECT a.slug FROM property_amenities pa
                    JOIN amenities a ON a.id = pa.amenity_id
                    WHERE pa.property_id=? ORDER BY a.slug
                    """,
                    (property_id,),
                ).fetchall()
            ]
            return record

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def find_property_id(self, provider_id: int, external_id: str) -> int | None:
        def _op() -> int | None:
            conn = self._require_connection()
            row = conn.execute(
                "SELECT id FROM properties WHERE provider_id=? AND external_id=?",
                (provider_id, external_id),
            ).fetchone()
            return int(row["id"]) if row else None

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def count_properties(self, *, provider_id: int | None = None, active_only: bool = False) -> int:
        def _op() -> int:
            conn = self._require_connection()
            clauses: list[str] = []
            params: list[Any] = []
            if provider_id is not None:
                clauses.append("provider_id=?")
                params.append(provider_id)
            if active_only:
                clauses.append("is_active=1")
            sql = "SELECT COUNT(*) FROM properties"
            if clauses:
                sql += " WHERE " + " AND ".join(clauses)
            return int(conn.execute(sql, params).fetchone()[0])

        async with self._lock:
            return await asyncio.to_thread(_op)

    # ------------------------------------------------------------------
    # sync logs

    async def begin_sync(self, provider_id: int, *, stale_after: timedelta) -> SyncLogRecord:
        """Open a ``started`` run, refusing while a fresh one is still open."""

        def _op() -> SyncLogRecord:
            conn = self._require_connection()
            now_dt = self._clock()
            now = to_iso(now_dt)
            cutoff = to_iso(now_dt - stale_after)
            with conn:
                stale = conn.execute(
                    """
                    UPDATE sync_logs
                    SET status='failed', completed_at=?, error_message='Run exceeded its timeout without finishing'
                    WHERE provider_id=? AND status='started' AND started_at < ?
                    """,
                    (now, provider_id, cutoff),
                )
                if stale.rowcount:
                    logger.warning("Marked %s stale sync run(s) failed for provider %s", stale.rowcount, provider_id)
                running = conn.execute(
                    "SELECT id FROM sync_logs WHERE provider_id=? AND status='started' LIMIT 1",
                    (provider_id,),
                ).fetchone()
                if running:
                    raise SyncInProgressError(
                        f"Provider {provider_id} already has sync run {running['id']} in progress"
                    )
                cursor = conn.execute(
                    "INSERT INTO sync_logs(provider_id, status, started_at, created_at) VALUES(?, 'started', ?, ?)",
                    (provider_id, now, now),
                )
                row = conn.execute("SELECT * FROM sync_logs WHERE id=?", (cursor.lastrowid,)).fetchone()
            return self._row_to_sync_log(row)

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def finalize_sync(self, log_id: int, counters: SyncCounters) -> SyncLogRecord:
        return await self._close_sync(log_id, SyncStatus.SUCCESS, counters, None, None)

    async def mark_sync_failed(
        self,
        log_id: int,
        counters: SyncCounters,
        *,
        message: str,
        trace: str | None = None,
    ) -> SyncLogRecord:
        return await self._close_sync(log_id, SyncStatus.FAILED, counters, message[:1024], trace)

    async def _close_sync(
        self,
        log_id: int,
        status: SyncStatus,
        counters: SyncCounters,
        message: str | None,
        trace: str | None,
    ) -> SyncLogRecord:
        def _op() -> SyncLogRecord:
            conn = self._require_connection()
            with conn:
                conn.execute(
                    """
                    UPDATE sync_logs SET
                        status=?,
                        completed_at=?,
                        properties_fetched=?,
                        properties_created=?,
                        properties_updated=?,
                        properties_deactivated=?,
                        properties_failed=?,
                        error_message=?,
                        error_trace=?
                    WHERE id=?
                    """,
                    (
                        status.value,
                        self._now(),
                        counters.fetched,
                        counters.created,
                        counters.updated,
                        counters.deactivated,
                        counters.failed,
                        message,
                        trace,
                        log_id,
                    ),
                )
                row = conn.execute("SELECT * FROM sync_logs WHERE id=?", (log_id,)).fetchone()
            return self._row_to_sync_log(row)

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def recent_sync_logs(self, provider_id: int | None = None, *, limit: int = 20) -> list[SyncLogRecord]:
        def _op() -> list[SyncLogRecord]:
            conn = self._require_connection()
            if provider_id is None:
                rows = conn.execute(
                    "SELECT * FROM sync_logs ORDER BY id DESC LIMIT ?", (limit,)
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM sync_logs WHERE provider_id=? ORDER BY id DESC LIMIT ?",
                    (provider_id, limit),
                ).fetchall()
            return [self._row_to_sync_log(row) for row in rows]

        async with self._lock:
            return await asyncio.to_thread(_op)

    # ------------------------------------------------------------------
    # search logs

    async def record_search(
        self,
        *,
        query: str | None,
        normalized_query: str,
        results_count: int,
        filters: dict[str, Any] | None = None,
        user_id: int | None = None,
        session_id: str | None = None,
        ip_address: str | None = None,
    ) -> int:
        def _op() -> int:
            conn = self._require_connection()
            with conn:
                cursor = conn.execute(
                    """
                    INSERT INTO search_logs(
                        query, normalized_query, filters_json, results_count,
                        user_id, session_id, ip_address, searched_at
                    ) VALUES(?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        query,
                        normalized_query,
                        _json_dumps(filters) if filters else None,
                        int(results_count),
                        user_id,
                        session_id,
                        ip_address,
                        self._now(),
                    ),
                )
                return int(cursor.lastrowid)

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def query_counts(self, *, since: datetime, limit: int, zero_results_only: bool = False) -> list[QueryCount]:
        def _op() -> list[QueryCount]:
            conn = self._require_connection()
            sql = """
                SELECT normalized_query, COUNT(*) AS occurrences
                FROM search_logs
                WHERE searched_at >= ? AND normalized_query != ''
            """
            if zero_results_only:
                sql += " AND results_count = 0"
            sql += " GROUP BY normalized_query ORDER BY occurrences DESC, normalized_query ASC LIMIT ?"
            rows = conn.execute(sql, (to_iso(since), limit)).fetchall()
            return [QueryCount(query=row[0], count=int(row[1])) for row in rows]

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def search_log_summary(self, *, since: datetime) -> dict[str, Any]:
        def _op() -> dict[str, Any]:
            conn = self._require_connection()
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    COUNT(DISTINCT CASE WHEN normalized_query != '' THEN normalized_query END) AS unique_queries,
                    AVG(results_count) AS avg_results,
                    SUM(CASE WHEN results_count = 0 THEN 1 ELSE 0 END) AS zero_results
                FROM search_logs
                WHERE searched_at >= ?
                """,
                (to_iso(since),),
            ).fetchone()
            return {
                "total": int(row["total"] or 0),
                "unique_queries": int(row["unique_queries"] or 0),
                "avg_results": float(row["avg_results"] or 0.0),
                "zero_results": int(row["zero_results"] or 0),
            }

        async with self._lock:
            return await asyncio.to_thread(_op)

    # ------------------------------------------------------------------
    # search documents

    async def fetch_index_documents(self, *, active_only: bool = False) -> list[dict[str, Any]]:
        """Build denormalized search documents straight from the property tables."""

        def _op() -> list[dict[str, Any]]:
            conn = self._require_connection()
            sql = """
                SELECT
                    p.id, p.slug, p.name, p.description, p.short_description, p.property_type,
                    p.location_id, l.name AS location_name, p.postcode, p.latitude, p.longitude,
                    p.sleeps, p.bedrooms, p.bathrooms, p.price_from, p.price_currency, p.affiliate_url,
                    p.provider_id, ap.slug AS provider_slug, p.is_active, p.featured,
                    (
                        SELECT i.url FROM property_images i
                        WHERE i.property_id = p.id
                        ORDER BY i.is_primary DESC, i.display_order ASC
                        LIMIT 1
                    ) AS primary_image,
                    (
                        SELECT group_concat(slug, ',') FROM (
                            SELECT a.slug FROM property_amenities pa
                            JOIN amenities a ON a.id = pa.amenity_id
                            WHERE pa.property_id = p.id
                            ORDER BY a.slug
                        )
                    ) AS amenities
                FROM properties p
                JOIN affiliate_providers ap ON ap.id = p.provider_id
                LEFT JOIN locations l ON l.id = p.location_id
            """
            if active_only:
                sql += " WHERE p.is_active = 1"
            sql += " ORDER BY p.id"
            documents: list[dict[str, Any]] = []
            for row in conn.execute(sql).fetchall():
                document = dict(row)
                document["price_from"] = _float_or_none(document["price_from"])
                document["is_active"] = bool(document["is_active"])
                document["featured"] = bool(document["featured"])
                document["amenities"] = [slug for slug in (document["amenities"] or "").split(",") if slug]
                documents.append(document)
            return documents

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def replace_search_documents(self, documents: Iterable[dict[str, Any]]) -> int:
        rows = [self._document_row(document) for document in documents]

        def _op() -> int:
            conn = self._require_connection()
            now = self._now()
            placeholders = ",".join("?" for _ in SEARCH_DOCUMENT_COLUMNS)
            columns = ", ".join(SEARCH_DOCUMENT_COLUMNS)
            with conn:
                conn.execute("DELETE FROM search_documents")
                conn.executemany(
                    f"INSERT INTO search_documents({columns}, indexed_at) VALUES({placeholders}, ?)",
                    [row + (now,) for row in rows],
                )
            return len(rows)

        async with self._lock:
            return await asyncio.to_thread(_op)

    @staticmethod
    def _document_row(document: dict[str, Any]) -> tuple[Any, ...]:
        values: list[Any] = []
        for column in SEARCH_DOCUMENT_COLUMNS:
            value = document.get(column)
            if column == "amenities":
                value = _json_dumps(list(value or []))
            elif column in ("is_active", "featured"):
                value = _bool(value)
            values.append(value)
        return tuple(values)

    async def clear_search_documents(self) -> None:
        def _op() -> None:
            conn = self._require_connection()
            with conn:
                conn.execute("DELETE FROM search_documents")

        async with self._lock:
            await asyncio.to_thread(_op)

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Run a read-only query and return rows as dictionaries."""

        def _op() -> list[dict[str, Any]]:
            conn = self._require_connection()
            return [dict(row) for row in conn.execute(sql, tuple(params)).fetchall()]

        async with self._lock:
            return await asyncio.to_thread(_op)


MIGRATIONS: dict[int, str] = {
    1: """
        CREATE TABLE IF NOT EXISTS affiliate_providers (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            slug TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL,
            adapter TEXT NOT NULL,
            config_json TEXT NOT NULL DEFAULT '{}',
            sync_frequency TEXT NOT NULL DEFAULT 'daily',
            is_active INTEGER NOT NULL DEFAULT 1,
            last_sync_at TEXT,
            next_sync_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS locations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            parent_id INTEGER REFERENCES locations(id),
            type TEXT NOT NULL CHECK (type IN ('country', 'region', 'district', 'postcode')),
            name TEXT NOT NULL,
            slug TEXT NOT NULL,
            postcode TEXT,
            latitude REAL,
            longitude REAL,
            property_count INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE (parent_id, slug, type)
        );
        CREATE UNIQUE INDEX IF NOT EXISTS idx_locations_postcode ON locations(postcode) WHERE postcode IS NOT NULL;
        CREATE UNIQUE INDEX IF NOT EXISTS idx_locations_root ON locations(slug, type) WHERE parent_id IS NULL;
        CREATE INDEX IF NOT EXISTS idx_locations_parent ON locations(parent_id);

        CREATE TABLE IF NOT EXISTS properties (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            provider_id INTEGER NOT NULL REFERENCES affiliate_providers(id),
            external_id TEXT NOT NULL,
            name TEXT NOT NULL,
            slug TEXT NOT NULL UNIQUE,
            description TEXT,
            short_description TEXT,
            property_type TEXT NOT NULL DEFAULT 'cottage',
            location_id INTEGER REFERENCES locations(id),
            address_line_1 TEXT,
            address_line_2 TEXT,
            postcode TEXT,
            latitude REAL,
            longitude REAL,
            sleeps INTEGER NOT NULL DEFAULT 0 CHECK (sleeps >= 0),
            bedrooms INTEGER NOT NULL DEFAULT 0 CHECK (bedrooms >= 0),
            bathrooms INTEGER NOT NULL DEFAULT 0 CHECK (bathrooms >= 0),
            price_from TEXT,
            price_currency TEXT NOT NULL DEFAULT 'GBP',
            affiliate_url TEXT NOT NULL,
            commission_rate TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,
            featured INTEGER NOT NULL DEFAULT 0,
            last_synced_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE (provider_id, external_id)
        );
        CREATE INDEX IF NOT EXISTS idx_properties_active ON properties(is_active);
        CREATE INDEX IF NOT EXISTS idx_properties_location ON properties(location_id);

        CREATE TABLE IF NOT EXISTS property_images (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            property_id INTEGER NOT NULL REFERENCES properties(id) ON DELETE CASCADE,
            url TEXT NOT NULL,
            thumbnail_url TEXT,
            alt_text TEXT,
            display_order INTEGER NOT NULL DEFAULT 0,
            is_primary INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_property_images_property ON property_images(property_id, display_order);

        CREATE TABLE IF NOT EXISTS amenities (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            slug TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL,
            icon TEXT,
            category TEXT
        );

        CREATE TABLE IF NOT EXISTS property_amenities (
            property_id INTEGER NOT NULL REFERENCES properties(id) ON DELETE CASCADE,
            amenity_id INTEGER NOT NULL REFERENCES amenities(id) ON DELETE CASCADE,
            PRIMARY KEY (property_id, amenity_id)
        );

        CREATE TABLE IF NOT EXISTS sync_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            provider_id INTEGER NOT NULL REFERENCES affiliate_providers(id),
            status TEXT NOT NULL,
            started_at TEXT NOT NULL,
            completed_at TEXT,
            properties_fetched INTEGER NOT NULL DEFAULT 0,
            properties_created INTEGER NOT NULL DEFAULT 0,
            properties_updated INTEGER NOT NULL DEFAULT 0,
            properties_deactivated INTEGER NOT NULL DEFAULT 0,
            properties_failed INTEGER NOT NULL DEFAULT 0,
            error_message TEXT,
            error_trace TEXT,
            created_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_sync_logs_provider_status ON sync_logs(provider_id, status);

        CREATE TABLE IF NOT EXISTS search_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            query TEXT,
            normalized_query TEXT NOT NULL DEFAULT '',
            filters_json TEXT,
            results_count INTEGER NOT NULL DEFAULT 0,
            user_id INTEGER,
            session_id TEXT,
            ip_address TEXT,
            searched_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_search_logs_searched_at ON search_logs(searched_at);
        CREATE INDEX IF NOT EXISTS idx_search_logs_query ON search_logs(normalized_query);

        CREATE TABLE IF NOT EXISTS geocode_cache (
            postcode TEXT PRIMARY KEY,
            latitude REAL,
            longitude REAL,
            district TEXT,
            payload_json TEXT,
            cached_at TEXT NOT NULL,
            expires_at TEXT NOT NULL
        );
    """,
    2: """
        CREATE TABLE IF NOT EXISTS search_documents (
            id INTEGER PRIMARY KEY,
            slug TEXT NOT NULL,
            name TEXT NOT NULL,
            description TEXT,
            short_description TEXT,
            property_type TEXT NOT NULL,
            location_id INTEGER,
            location_name TEXT,
            postcode TEXT,
            latitude REAL,
            longitude REAL,
            sleeps INTEGER NOT NULL DEFAULT 0,
            bedrooms INTEGER NOT NULL DEFAULT 0,
            bathrooms INTEGER NOT NULL DEFAULT 0,
            price_from REAL,
            price_currency TEXT,
            affiliate_url TEXT,
            provider_id INTEGER,
            provider_slug TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,
            featured INTEGER NOT NULL DEFAULT 0,
            primary_image TEXT,
            amenities TEXT NOT NULL DEFAULT '[]',
            indexed_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_search_documents_active ON search_documents(is_active, featured);
        CREATE INDEX IF NOT EXISTS idx_search_documents_type ON search_documents(property_type);
    """,
}
