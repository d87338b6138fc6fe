# src/storage/snapshot_store.py

"""SQLite-backed persistence for snapshots, products, cache and history."""

import json
import logging
import sqlite3
import threading
from pathlib import Path

from src.config.settings import Settings
from src.estimation.calibration import CalibrationProfile
from src.models.cache_entry import CacheEntry
from src.models.canonical_product import CanonicalProduct
from src.models.market_snapshot import MarketSnapshot
from src.services.contracts import PersistenceStore

logger = logging.getLogger("pageone.storage")

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS canonical_products (
    asin        TEXT NOT NULL,
    marketplace TEXT NOT NULL,
    data        TEXT NOT NULL,
    updated_at  REAL NOT NULL,
    PRIMARY KEY (asin, marketplace)
);

CREATE TABLE IF NOT EXISTS market_snapshots (
    snapshot_id TEXT PRIMARY KEY,
    keyword     TEXT NOT NULL,
    marketplace TEXT NOT NULL,
    tier        TEXT NOT NULL,
    created_at  REAL NOT NULL,
    data        TEXT NOT NULL,
    products    TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_snapshots_keyword_created
    ON market_snapshots(keyword, marketplace, created_at);

CREATE TABLE IF NOT EXISTS cache_entries (
    scope      TEXT NOT NULL,
    key        TEXT NOT NULL,
    payload    TEXT NOT NULL,
    fetched_at REAL NOT NULL,
    expires_at REAL NOT NULL,
    source     TEXT NOT NULL DEFAULT '',
    PRIMARY KEY (scope, key)
);

CREATE TABLE IF NOT EXISTS keyword_observations (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    keyword       TEXT NOT NULL,
    marketplace   TEXT NOT NULL,
    snapshot_id   TEXT NOT NULL
                  REFERENCES market_snapshots(snapshot_id)
                  ON DELETE CASCADE,
    total_units   INTEGER NOT NULL,
    total_revenue REAL NOT NULL,
    observed_at   REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_observations_keyword_date
    ON keyword_observations(keyword, marketplace, observed_at);

CREATE TABLE IF NOT EXISTS calibration_profiles (
    profile_key TEXT NOT NULL,
    kind        TEXT NOT NULL,
    multiplier  REAL NOT NULL,
    confidence  TEXT NOT NULL,
    sample_size INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (profile_key, kind)
);
"""


class SnapshotStore(PersistenceStore):
    """SQLite implementation of :class:`PersistenceStore`.

    One connection is shared across threads and serialised with a lock,
    so calls from ``asyncio.to_thread`` are safe.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        path = db_path or Settings.SNAPSHOT_DB_PATH
        if str(path) != ":memory:":
            path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(_SCHEMA)
        logger.debug("SnapshotStore opened at %s", path)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # ── Products & snapshots ─────────────────────────────

    def upsert_products(
        self,
        products: list[CanonicalProduct],
        marketplace: str,
        observed_at: float,
    ) -> int:
        with self._lock:
            self._conn.executemany(
                "INSERT INTO canonical_products "
                "(asin, marketplace, data, updated_at) "
                "VALUES (?, ?, ?, ?) "
                "ON CONFLICT(asin, marketplace) DO UPDATE SET "
                "data=excluded.data, updated_at=excluded.updated_at "
                "WHERE excluded.updated_at >= canonical_products.updated_at",
                [
                    (
                        p.asin,
                        marketplace,
                        json.dumps(p.to_dict()),
                        observed_at,
                    )
                    for p in products
                ],
            )
            self._conn.commit()
        return len(products)

    def get_product(
        self, asin: str, marketplace: str, since: float = 0.0,
    ) -> CanonicalProduct | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT data FROM canonical_products "
                "WHERE asin = ? AND marketplace = ? AND updated_at >= ?",
                (asin, marketplace, since),
            ).fetchone()
        if row is None:
            return None
        return CanonicalProduct.from_dict(json.loads(row[0]))

    def save_snapshot(
        self,
        snapshot: MarketSnapshot,
        products: list[CanonicalProduct],
    ) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO market_snapshots "
                "(snapshot_id, keyword, marketplace, tier, created_at, "
                " data, products) "
                "VALUES (?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(snapshot_id) DO UPDATE SET "
                "tier=excluded.tier, data=excluded.data, "
                "products=excluded.products",
                (
                    snapshot.snapshot_id,
                    snapshot.keyword,
                    snapshot.marketplace,
                    snapshot.tier,
                    snapshot.created_at,
                    json.dumps(snapshot.to_dict()),
                    json.dumps([p.to_dict() for p in products]),
                ),
            )
            self._conn.commit()
        logger.debug(
            "Saved snapshot %s (%s, %d products)",
            snapshot.snapshot_id,
            snapshot.tier,
            len(products),
        )

    def load_snapshot(
        self, snapshot_id: str,
    ) -> tuple[MarketSnapshot, list[CanonicalProduct]] | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT data, products FROM market_snapshots "
                "WHERE snapshot_id = ?",
                (snapshot_id,),
            ).fetchone()
        if row is None:
            return None
        snapshot = MarketSnapshot.from_dict(json.loads(row[0]))
        products = [
            CanonicalProduct.from_dict(p) for p in json.loads(row[1])
        ]
        return snapshot, products

    def latest_snapshot_id(
        self, keyword: str, marketplace: str,
    ) -> str | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT snapshot_id FROM market_snapshots "
                "WHERE keyword = ? AND marketplace = ? "
                "ORDER BY created_at DESC, rowid DESC LIMIT 1",
                (keyword, marketplace),
            ).fetchone()
        return row[0] if row else None

    # ── Cache rows ───────────────────────────────────────

    def get_cache_entry(self, scope: str, key: str) -> CacheEntry | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT payload, fetched_at, expires_at, source "
                "FROM cache_entries WHERE scope = ? AND key = ?",
                (scope, key),
            ).fetchone()
        if row is None:
            return None
        return CacheEntry(
            scope=scope,
            key=key,
            payload=json.loads(row[0]),
            fetched_at=row[1],
            expires_at=row[2],
            source=row[3],
        )

    def upsert_cache_entry(self, entry: CacheEntry) -> bool:
        with self._lock:
            cur = self._conn.execute(
                "INSERT INTO cache_entries "
                "(scope, key, payload, fetched_at, expires_at, source) "
                "VALUES (?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(scope, key) DO UPDATE SET "
                "payload=excluded.payload, "
                "fetched_at=excluded.fetched_at, "
                "expires_at=excluded.expires_at, "
                "source=excluded.source "
                "WHERE excluded.fetched_at >= cache_entries.fetched_at",
                (
                    entry.scope,
                    entry.key,
                    json.dumps(entry.payload),
                    entry.fetched_at,
                    entry.expires_at,
                    entry.source,
                ),
            )
            self._conn.commit()
        written = cur.rowcount > 0
        if not written:
            logger.debug(
                "Ignored older cache write for %s/%s",
                entry.scope,
                entry.key,
            )
        return written

    def extend_cache_entry(
        self, scope: str, key: str, expires_at: float,
    ) -> bool:
        with self._lock:
            cur = self._conn.execute(
                "UPDATE cache_entries SET expires_at = ? "
                "WHERE scope = ? AND key = ? AND expires_at < ?",
                (expires_at, scope, key, expires_at),
            )
            self._conn.commit()
        return cur.rowcount > 0

    def delete_cache_entry(self, scope: str, key: str) -> bool:
        with self._lock:
            cur = self._conn.execute(
                "DELETE FROM cache_entries WHERE scope = ? AND key = ?",
                (scope, key),
            )
            self._conn.commit()
        return cur.rowcount > 0

    # ── History & calibration ────────────────────────────

    def record_keyword_observation(
        self,
        keyword: str,
        marketplace: str,
        snapshot_id: str,
        total_units: int,
        total_revenue: float,
        observed_at: float,
    ) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO keyword_observations "
                "(keyword, marketplace, snapshot_id, total_units, "
                " total_revenue, observed_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    keyword,
                    marketplace,
                    snapshot_id,
                    total_units,
                    total_revenue,
                    observed_at,
                ),
            )
            self._conn.commit()

    def keyword_observations(
        self,
        keyword: str,
        marketplace: str,
        since: float,
        exclude_snapshot_id: str | None = None,
    ) -> list[int]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT total_units FROM keyword_observations "
                "WHERE keyword = ? AND marketplace = ? "
                "AND observed_at >= ? AND snapshot_id != ? "
                "ORDER BY observed_at ASC, id ASC",
                (keyword, marketplace, since, exclude_snapshot_id or ""),
            ).fetchall()
        return [r[0] for r in rows]

    def get_calibration_profile(
        self, profile_key: str, kind: str,
    ) -> CalibrationProfile | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT multiplier, confidence, sample_size "
                "FROM calibration_profiles "
                "WHERE profile_key = ? AND kind = ?",
                (profile_key, kind),
            ).fetchone()
        if row is None:
            return None
        return CalibrationProfile(
            profile_key=profile_key,
            kind=kind,
            multiplier=row[0],
            confidence=row[1],
            sample_size=row[2],
        )

    def upsert_calibration_profile(self, profile: CalibrationProfile) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT INTO calibration_profiles "
                "(profile_key, kind, multiplier, confidence, sample_size) "
                "VALUES (?, ?, ?, ?, ?) "
                "ON CONFLICT(profile_key, kind) DO UPDATE SET "
                "multiplier=excluded.multiplier, "
                "confidence=excluded.confidence, "
                "sample_size=excluded.sample_size",
                (
                    profile.profile_key,
                    profile.kind,
                    profile.multiplier,
                    profile.confidence,
                    profile.sample_size,
                ),
            )
            self._conn.commit()
