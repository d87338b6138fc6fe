# tests/test_tier2_refiner.py

"""Tests for Tier-2 refinement of a Tier-1 snapshot."""

import unittest
from pathlib import Path
from typing import Any

from src.analysis.market_aggregates import MarketAggregator
from src.estimation.calibration import CalibrationProfile
from src.estimation.tier1_estimator import Tier1Estimator
from src.estimation.tier2_refiner import Tier2Refiner
from src.models.canonical_product import CanonicalProduct
from src.models.market_snapshot import (
    TIER1_PARTIAL,
    TIER2_REFINED,
    MarketSnapshot,
)
from src.services.contracts import CatalogEnricher
from src.services.enrichment import CallBudget, EnrichmentService
from src.services.integrity import verify_integrity
from src.storage.snapshot_store import SnapshotStore

NOW = 1_700_000_000.0


class _RankCatalog(CatalogEnricher):
    """Catalog that knows the sales rank of every product."""

    def __init__(self) -> None:
        self.calls = 0

    def enrich(self, asins: list[str]) -> dict[str, dict[str, Any]]:
        self.calls += 1
        return {a: {"sales_rank": 100} for a in asins}


def _tier1(
    ranks: list[int | None], category: str | None = None,
) -> tuple[MarketSnapshot, list[CanonicalProduct]]:
    products = [
        CanonicalProduct(
            asin=f"B{i:09d}",
            title=f"Item {i}",
            page_position=i,
            organic_rank=i,
            sponsored=False,
            price=20.0,
            review_count=300,
            sales_rank=rank,
            category=category,
        )
        for i, rank in enumerate(ranks, start=1)
    ]
    Tier1Estimator.estimate(products, known_total_units=1000)
    snapshot = MarketSnapshot(
        snapshot_id="s1",
        keyword="garlic press",
        marketplace="US",
        created_at=NOW,
        stale_at=NOW + 86400,
    )
    MarketAggregator.refresh(snapshot, products)
    return snapshot, products


class TestTier2Refiner(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self) -> None:
        self.store = SnapshotStore(Path(":memory:"))
        self.refiner = Tier2Refiner(self.store, clock=lambda: NOW)

    async def asyncTearDown(self) -> None:
        self.store.close()

    async def test_curve_units_and_tier1_fallback(self) -> None:
        """Ranked products use the curve; unranked keep Tier-1 units."""
        snapshot, products = _tier1([1, None])
        tier1_second = products[1].estimated_monthly_units

        refined, items = await self.refiner.refine(
            snapshot, products, CallBudget(4)
        )

        self.assertEqual(refined.tier, TIER2_REFINED)
        self.assertEqual(refined.refined_at, NOW)
        self.assertEqual(items[0].estimated_monthly_units, 7940)
        self.assertEqual(items[1].estimated_monthly_units, tier1_second)
        self.assertEqual(refined.total_monthly_units_est, 7940 + tier1_second)
        self.assertTrue(
            all(p.estimate_writer == "tier2_calibration" for p in items)
        )
        verify_integrity(refined, items)

    async def test_inputs_untouched(self) -> None:
        """Refinement works on copies."""
        snapshot, products = _tier1([1, 50])
        before = [p.to_dict() for p in products]

        await self.refiner.refine(snapshot, products, CallBudget(4))

        self.assertEqual(snapshot.tier, TIER1_PARTIAL)
        self.assertEqual([p.to_dict() for p in products], before)

    async def test_history_blend(self) -> None:
        """Observations inside the window are blended 70/30."""
        for i in range(3):
            old = MarketSnapshot(f"old{i}", "garlic press", "US")
            self.store.save_snapshot(old, [])
            self.store.record_keyword_observation(
                "garlic press", "US", f"old{i}", 12000, 0.0, NOW - 3600 * i
            )
        # Outside the 30-day window
        self.store.save_snapshot(MarketSnapshot("ancient", "garlic press", "US"), [])
        self.store.record_keyword_observation(
            "garlic press", "US", "ancient", 1, 0.0, NOW - 40 * 86400
        )
        snapshot, products = _tier1([1, 1])

        refined, _ = await self.refiner.refine(
            snapshot, products, CallBudget(4)
        )

        # 0.7 * 15880 + 0.3 * 12000
        self.assertEqual(refined.total_monthly_units_est, 14716)

    async def test_keyword_calibration_logged(self) -> None:
        """A keyword profile wins over the category profile."""
        self.store.upsert_calibration_profile(
            CalibrationProfile("garlic press", "keyword", 0.5, "high", 30)
        )
        self.store.upsert_calibration_profile(
            CalibrationProfile("Toys & Games", "category", 2.0)
        )
        snapshot, products = _tier1([1], category="Toys & Games")

        refined, _ = await self.refiner.refine(
            snapshot, products, CallBudget(4)
        )

        self.assertEqual(refined.total_monthly_units_est, 17880 // 2)
        self.assertEqual(len(refined.calibration_log), 1)
        entry = refined.calibration_log[0]
        self.assertEqual(entry["kind"], "keyword")
        self.assertEqual(entry["units_before"], 17880)

    async def test_category_calibration_fallback(self) -> None:
        """The dominant category profile applies without a keyword one."""
        self.store.upsert_calibration_profile(
            CalibrationProfile("Toys & Games", "category", 2.0)
        )
        snapshot, products = _tier1([1], category="Toys & Games")

        refined, _ = await self.refiner.refine(
            snapshot, products, CallBudget(4)
        )

        self.assertEqual(refined.total_monthly_units_est, 17880 * 2)
        self.assertEqual(refined.calibration_log[0]["kind"], "category")

    async def test_catalog_fills_missing_ranks_within_budget(self) -> None:
        catalog = _RankCatalog()
        refiner = Tier2Refiner(
            self.store, EnrichmentService(catalog=catalog), clock=lambda: NOW
        )
        snapshot, products = _tier1([None, None])

        refined, items = await refiner.refine(
            snapshot, products, CallBudget(4)
        )

        self.assertEqual(catalog.calls, 1)
        self.assertEqual([p.sales_rank for p in items], [100, 100])
        self.assertEqual(items[0].provenance["sales_rank"], "catalog")
        self.assertEqual(refined.total_monthly_units_est, 2000 * 2)

    async def test_exhausted_budget_keeps_tier1_units(self) -> None:
        """No budget means no catalog calls and unchanged units."""
        catalog = _RankCatalog()
        refiner = Tier2Refiner(
            self.store, EnrichmentService(catalog=catalog), clock=lambda: NOW
        )
        budget = CallBudget(1)
        budget.try_consume()
        snapshot, products = _tier1([None, None])

        refined, items = await refiner.refine(snapshot, products, budget)

        self.assertEqual(catalog.calls, 0)
        self.assertEqual(refined.total_monthly_units_est, 1000)
        self.assertEqual(
            [p.estimated_monthly_units for p in items],
            [p.estimated_monthly_units for p in products],
        )

    async def test_duplicate_ranks_fall_back_to_tier1(self) -> None:
        """A rank shared by eight listings is dropped before the curve."""
        snapshot, products = _tier1([3] * 8 + [50])
        tier1_units = [p.estimated_monthly_units for p in products]

        with self.assertLogs("pageone.estimation", level="WARNING"):
            _, items = await self.refiner.refine(
                snapshot, products, CallBudget(4)
            )

        self.assertTrue(all(p.sales_rank is None for p in items[:8]))
        self.assertEqual(items[0].provenance["sales_rank"], "duplicate_dropped")
        self.assertEqual(items[8].sales_rank, 50)
        self.assertEqual(
            [p.estimated_monthly_units for p in items[:8]], tier1_units[:8]
        )
        self.assertEqual(items[8].estimated_monthly_units, 5000)
        self.assertEqual(products[0].sales_rank, 3)

    async def test_empty_products(self) -> None:
        snapshot = MarketSnapshot("s1", "garlic press", "US")
        refined, items = await self.refiner.refine(snapshot, [], CallBudget(4))
        self.assertEqual(items, [])
        self.assertEqual(refined.tier, TIER1_PARTIAL)


if __name__ == "__main__":
    unittest.main()
