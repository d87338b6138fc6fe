# src/services/contracts.py

"""Interfaces the engine consumes: listing, enrichment and persistence.

Implementations are blocking; the assembler runs them through
``asyncio.to_thread``.
"""

from abc import ABC, abstractmethod
from typing import Any

from src.estimation.calibration import CalibrationProfile
from src.models.cache_entry import CacheEntry
from src.models.canonical_product import CanonicalProduct
from src.models.market_snapshot import MarketSnapshot


class ListingProvider(ABC):
    """Source of raw Page-1 listing records for a keyword."""

    name: str = "listing"

    @abstractmethod
    def fetch_page_one(
        self, keyword: str, marketplace: str,
    ) -> list[dict[str, Any]]:
        """Return raw listing dicts in page order."""


class CatalogEnricher(ABC):
    """Authoritative brand, category, sales rank and fulfillment."""

    name: str = "catalog"

    @abstractmethod
    def enrich(self, asins: list[str]) -> dict[str, dict[str, Any]]:
        """Map asin -> dict with any of brand, category, sales_rank,
        fulfillment."""


class PricingEnricher(ABC):
    """Authoritative buy-box price and fulfillment."""

    name: str = "pricing"

    @abstractmethod
    def enrich(self, asins: list[str]) -> dict[str, dict[str, Any]]:
        """Map asin -> dict with any of price, fulfillment."""


class PersistenceStore(ABC):
    """Durable rows for products, snapshots, cache, history, calibration."""

    # ── Products & snapshots ─────────────────────────────

    @abstractmethod
    def upsert_products(
        self,
        products: list[CanonicalProduct],
        marketplace: str,
        observed_at: float,
    ) -> int:
        """Upsert canonical product rows; return the row count."""

    @abstractmethod
    def get_product(
        self, asin: str, marketplace: str, since: float = 0.0,
    ) -> CanonicalProduct | None:
        """Stored canonical record for *asin* updated at or after *since*."""

    @abstractmethod
    def save_snapshot(
        self,
        snapshot: MarketSnapshot,
        products: list[CanonicalProduct],
    ) -> None:
        """Insert or replace a snapshot and its product set."""

    @abstractmethod
    def load_snapshot(
        self, snapshot_id: str,
    ) -> tuple[MarketSnapshot, list[CanonicalProduct]] | None:
        """Snapshot and products by id, or None."""

    @abstractmethod
    def latest_snapshot_id(
        self, keyword: str, marketplace: str,
    ) -> str | None:
        """Id of the most recently created snapshot for the pair."""

    # ── Cache rows ───────────────────────────────────────

    @abstractmethod
    def get_cache_entry(self, scope: str, key: str) -> CacheEntry | None:
        """Persisted cache row, fresh or stale."""

    @abstractmethod
    def upsert_cache_entry(self, entry: CacheEntry) -> bool:
        """Write unless a newer row exists; True when written."""

    @abstractmethod
    def extend_cache_entry(
        self, scope: str, key: str, expires_at: float,
    ) -> bool:
        """Push expiry forward only; True when it moved."""

    @abstractmethod
    def delete_cache_entry(self, scope: str, key: str) -> bool:
        """Remove a persisted cache row; True when one existed."""

    # ── History & calibration ────────────────────────────

    @abstractmethod
    def record_keyword_observation(
        self,
        keyword: str,
        marketplace: str,
        snapshot_id: str,
        total_units: int,
        total_revenue: float,
        observed_at: float,
    ) -> None:
        """Record a keyword's Page-1 totals at a point in time."""

    @abstractmethod
    def keyword_observations(
        self,
        keyword: str,
        marketplace: str,
        since: float,
        exclude_snapshot_id: str | None = None,
    ) -> list[int]:
        """Total-unit observations since *since*, oldest first."""

    @abstractmethod
    def get_calibration_profile(
        self, profile_key: str, kind: str,
    ) -> CalibrationProfile | None:
        """Profile for a keyword or category key."""

    @abstractmethod
    def upsert_calibration_profile(self, profile: CalibrationProfile) -> None:
        """Insert or replace a calibration profile."""
