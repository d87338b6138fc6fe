# src/services/snapshot_assembler.py

"""Builds Page-1 market snapshots end to end.

Fetch -> normalise -> enrich -> canonicalise -> Tier-1 -> aggregates ->
persist, then a detached Tier-2 refinement of the persisted snapshot.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from src.analysis.market_aggregates import MarketAggregator
from src.config.settings import Settings
from src.errors import InsufficientDataError
from src.estimation.tier1_estimator import Tier1Estimator
from src.estimation.tier2_refiner import Tier2Refiner
from src.filters.canonicalizer import Canonicalizer
from src.filters.listing_normalizer import ListingNormalizer
from src.models.canonical_product import CanonicalProduct
from src.models.market_snapshot import MarketSnapshot
from src.services.contracts import (
    CatalogEnricher,
    ListingProvider,
    PersistenceStore,
    PricingEnricher,
)
from src.services.enrichment import CallBudget, EnrichmentService
from src.services.integrity import verify_integrity
from src.services.refinement_queue import JobFn, RefinementQueue
from src.storage.cache_manager import CacheManager

logger = logging.getLogger("pageone.assembler")

STATUS_READY = "ready"
STATUS_INSUFFICIENT = "insufficient_data"

CONTEXT_TOP_PRODUCTS = 10


@dataclass
class BuildResult:
    """Outcome of a snapshot build or lookup."""

    status: str
    keyword: str
    marketplace: str
    snapshot: MarketSnapshot | None = None
    products: list[CanonicalProduct] = field(
        default_factory=lambda: list[CanonicalProduct]()
    )
    rejected_count: int = 0
    from_cache: bool = False
    stale: bool = False
    message: str = ""

    @property
    def ready(self) -> bool:
        return self.status == STATUS_READY

    def to_context(self) -> dict[str, Any]:
        """Read-only view for downstream narrative generation."""
        context: dict[str, Any] = {
            "status": self.status,
            "keyword": self.keyword,
            "marketplace": self.marketplace,
            "message": self.message,
        }
        if self.snapshot is None:
            return context
        context["market"] = self.snapshot.to_dict()
        context["top_products"] = [
            {
                "asin": p.asin,
                "title": p.title,
                "brand": p.brand,
                "price": p.price,
                "organic_rank": p.organic_rank,
                "sponsored": p.sponsored,
                "estimated_monthly_units": p.estimated_monthly_units,
                "estimated_monthly_revenue": p.estimated_monthly_revenue,
                "revenue_share_pct": p.revenue_share_pct,
            }
            for p in self.products[:CONTEXT_TOP_PRODUCTS]
        ]
        return context


def normalize_keyword(keyword: str) -> str:
    """Lower-case and collapse whitespace."""
    return " ".join(keyword.lower().split())


class SnapshotAssembler:
    """Coordinates providers, estimation, persistence and refinement."""

    def __init__(
        self,
        provider: ListingProvider,
        store: PersistenceStore,
        catalog: CatalogEnricher | None = None,
        pricing: PricingEnricher | None = None,
        cache: CacheManager | None = None,
        queue: RefinementQueue | None = None,
        clock: Callable[[], float] = time.time,
        max_enrichment_calls: int = Settings.MAX_ENRICHMENT_CALLS,
    ) -> None:
        self.provider = provider
        self.store = store
        self._clock = clock
        self.cache = cache or CacheManager(store, clock=clock)
        self.queue = queue or RefinementQueue(clock=clock)
        self.enrichment = EnrichmentService(
            catalog=catalog, pricing=pricing, cache=self.cache
        )
        self.refiner = Tier2Refiner(store, self.enrichment, clock=clock)
        self.max_enrichment_calls = max_enrichment_calls

    # ── Public API ───────────────────────────────────────

    async def build_snapshot(
        self,
        keyword: str,
        marketplace: str = Settings.DEFAULT_MARKETPLACE,
        caller_id: str | None = None,
    ) -> BuildResult:
        """Build, persist and return a Tier-1 snapshot.

        The fetch and the enrichment calls share one Tier-1 deadline.
        Queues a Tier-2 refinement that the caller never waits for.
        Returns ``insufficient_data`` when no usable listing survives.
        """
        keyword = normalize_keyword(keyword)
        marketplace = marketplace.upper()
        budget = CallBudget(self.max_enrichment_calls)
        deadline = asyncio.get_running_loop().time() + Settings.TIER1_TIMEOUT

        raws = await self._fetch(keyword, marketplace, deadline)
        listings, rejected = ListingNormalizer.normalize_all(
            raws, self.provider.name, marketplace
        )

        asins = list(dict.fromkeys(listing.asin for listing in listings))
        asins = asins[:Settings.PAGE_ONE_CAP]
        overrides: dict[str, dict[str, dict[str, Any]]] = {}
        if asins:
            unranked = sorted({
                listing.asin for listing in listings
                if listing.sales_rank is None and listing.asin in asins
            })
            stored = await asyncio.to_thread(
                self._stored_facts, unranked, marketplace
            )
            if stored:
                overrides["stored"] = stored
            overrides.update(await self.enrichment.enrich(
                asins, marketplace, budget, caller_id, deadline=deadline
            ))

        products, dropped = Canonicalizer.canonicalize(
            listings, marketplace, overrides
        )
        if not products:
            error = InsufficientDataError(keyword, marketplace)
            logger.warning("%s", error)
            return BuildResult(
                status=STATUS_INSUFFICIENT,
                keyword=keyword,
                marketplace=marketplace,
                rejected_count=rejected + dropped,
                message=str(error),
            )

        now = self._clock()
        known_total = await self._known_total(keyword, marketplace, now)
        tier1 = Tier1Estimator.estimate(
            products, known_total_units=known_total
        )

        snapshot = MarketSnapshot(
            snapshot_id=uuid.uuid4().hex,
            keyword=keyword,
            marketplace=marketplace,
            created_at=now,
            stale_at=now + Settings.SNAPSHOT_STALE_AFTER,
            competition_level=tier1.competition_level,
        )
        MarketAggregator.refresh(snapshot, products)
        verify_integrity(snapshot, products)

        await asyncio.to_thread(self.store.save_snapshot, snapshot, products)
        await asyncio.to_thread(
            self._persist_products, products, marketplace, now
        )
        await self._cache_snapshot(snapshot, products, caller_id)

        logger.info(
            "Built %s snapshot %s for '%s' (%s): %d products, "
            "%d units, confidence %d",
            snapshot.tier,
            snapshot.snapshot_id,
            keyword,
            marketplace,
            snapshot.product_count,
            snapshot.total_monthly_units_est,
            snapshot.confidence_score,
        )

        self.queue.submit(
            snapshot.snapshot_id,
            self._refinement_job(snapshot, products, budget, caller_id),
        )
        return BuildResult(
            status=STATUS_READY,
            keyword=keyword,
            marketplace=marketplace,
            snapshot=snapshot,
            products=products,
            rejected_count=rejected + dropped,
        )

    async def peek_snapshot(
        self,
        keyword: str,
        marketplace: str = Settings.DEFAULT_MARKETPLACE,
        caller_id: str | None = None,
    ) -> BuildResult | None:
        """Cached snapshot for the pair, fresh or stale; None on a miss.

        Makes no provider calls, so the caller can decide whether a live
        build is worth paying for.
        """
        keyword = normalize_keyword(keyword)
        marketplace = marketplace.upper()
        hit = await self.cache.get(
            self.snapshot_key(keyword, marketplace), caller_id
        )
        if hit is None:
            return None
        snapshot = MarketSnapshot.from_dict(hit.payload["snapshot"])
        products = [
            CanonicalProduct.from_dict(p) for p in hit.payload["products"]
        ]
        return BuildResult(
            status=STATUS_READY,
            keyword=keyword,
            marketplace=marketplace,
            snapshot=snapshot,
            products=products,
            from_cache=True,
            stale=hit.stale or snapshot.is_stale(self._clock()),
        )

    async def invalidate_snapshot(
        self,
        keyword: str,
        marketplace: str = Settings.DEFAULT_MARKETPLACE,
        caller_id: str | None = None,
    ) -> int:
        """Drop every cached copy of the pair's snapshot.

        Persisted snapshots stay; only cache entries go. Returns the
        number of entries removed.
        """
        keyword = normalize_keyword(keyword)
        marketplace = marketplace.upper()
        return await self.cache.invalidate(
            self.snapshot_key(keyword, marketplace), caller_id
        )

    async def refine(
        self, snapshot_id: str, caller_id: str | None = None,
    ) -> bool:
        """Queue a Tier-2 refinement for a persisted snapshot.

        Returns False when the snapshot is unknown or a refinement of
        it is already running.
        """
        if self.queue.is_in_flight(snapshot_id):
            return False
        loaded = await asyncio.to_thread(self.store.load_snapshot, snapshot_id)
        if loaded is None:
            logger.warning("Cannot refine unknown snapshot %s", snapshot_id)
            return False
        snapshot, products = loaded
        budget = CallBudget(self.max_enrichment_calls)
        return self.queue.submit(
            snapshot_id,
            self._refinement_job(snapshot, products, budget, caller_id),
        )

    async def drain(self) -> None:
        """Wait for queued refinements and cache refreshes."""
        await self.queue.drain()
        await self.cache.drain()

    @staticmethod
    def snapshot_key(keyword: str, marketplace: str) -> str:
        return f"snapshot:{marketplace}:{keyword}"

    # ── Private helpers ──────────────────────────────────

    async def _fetch(
        self, keyword: str, marketplace: str, deadline: float,
    ) -> list[dict[str, Any]]:
        """Raw listings from the provider; empty on any failure."""
        timeout = max(deadline - asyncio.get_running_loop().time(), 0.0)
        try:
            raws = await asyncio.wait_for(
                asyncio.to_thread(
                    self.provider.fetch_page_one, keyword, marketplace
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                "%s timed out after %.1fs for '%s'",
                self.provider.name,
                timeout,
                keyword,
            )
            return []
        except Exception as exc:
            logger.error(
                "%s failed for '%s': %s",
                self.provider.name,
                keyword,
                exc,
                exc_info=exc,
            )
            return []
        return raws if isinstance(raws, list) else []

    async def _known_total(
        self, keyword: str, marketplace: str, now: float,
    ) -> int | None:
        """Most recent stored Page-1 total inside the history window."""
        since = now - Settings.HISTORY_WINDOW_DAYS * 86400
        history = await asyncio.to_thread(
            self.store.keyword_observations, keyword, marketplace, since
        )
        return history[-1] if history else None

    def _stored_facts(
        self, asins: list[str], marketplace: str,
    ) -> dict[str, dict[str, Any]]:
        """Recent stored sales ranks for *asins*; runs on a worker thread."""
        since = self._clock() - Settings.STORED_FACTS_TTL
        facts: dict[str, dict[str, Any]] = {}
        for asin in asins:
            stored = self.store.get_product(asin, marketplace, since)
            if stored is not None and stored.sales_rank is not None:
                facts[asin] = {
                    "sales_rank": stored.sales_rank,
                    "category": stored.category,
                }
        if facts:
            logger.debug(
                "Reusing %d stored sales ranks (%s)", len(facts), marketplace
            )
        return facts

    def _persist_products(
        self,
        products: list[CanonicalProduct],
        marketplace: str,
        now: float,
    ) -> None:
        """Upsert canonical records, skipping ones carrying a reused rank.

        Rewriting a reused rank would renew its timestamp and keep it
        alive past its TTL.
        """
        live = [
            p for p in products
            if p.provenance.get("sales_rank") != "stored"
        ]
        if live:
            self.store.upsert_products(live, marketplace, now)

    async def _cache_snapshot(
        self,
        snapshot: MarketSnapshot,
        products: list[CanonicalProduct],
        caller_id: str | None,
    ) -> None:
        await self.cache.put(
            self.snapshot_key(snapshot.keyword, snapshot.marketplace),
            {
                "snapshot": snapshot.to_dict(),
                "products": [p.to_dict() for p in products],
            },
            source=snapshot.tier,
            caller_id=caller_id,
        )

    def _refinement_job(
        self,
        snapshot: MarketSnapshot,
        products: list[CanonicalProduct],
        budget: CallBudget,
        caller_id: str | None,
    ) -> JobFn:
        async def job() -> None:
            refined, items = await self.refiner.refine(
                snapshot, products, budget, caller_id
            )
            latest = await asyncio.to_thread(
                self.store.latest_snapshot_id,
                snapshot.keyword,
                snapshot.marketplace,
            )
            if latest != snapshot.snapshot_id:
                logger.info(
                    "Discarding Tier-2 result for %s; superseded by %s",
                    snapshot.snapshot_id,
                    latest,
                )
                return
            verify_integrity(refined, items)
            await asyncio.to_thread(self.store.save_snapshot, refined, items)
            await asyncio.to_thread(
                self._persist_products,
                items,
                refined.marketplace,
                refined.refined_at or self._clock(),
            )
            await asyncio.to_thread(
                self.store.record_keyword_observation,
                refined.keyword,
                refined.marketplace,
                refined.snapshot_id,
                refined.total_monthly_units_est,
                refined.total_monthly_revenue_est,
                refined.refined_at or self._clock(),
            )
            await self._cache_snapshot(refined, items, caller_id)

        return job
