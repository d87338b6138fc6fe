# tests/test_snapshot_assembler.py

"""End-to-end snapshot builds with stub providers and an in-memory store."""

import threading
import time
import unittest
from pathlib import Path
from typing import Any
from unittest.mock import patch

from src.config.settings import Settings
from src.models.canonical_product import CanonicalProduct
from src.models.market_snapshot import TIER1_PARTIAL, TIER2_REFINED
from src.services.contracts import ListingProvider, PricingEnricher
from src.services.refinement_queue import JobFn, RefinementQueue
from src.services.snapshot_assembler import (
    STATUS_INSUFFICIENT,
    SnapshotAssembler,
    normalize_keyword,
)
from src.storage.snapshot_store import SnapshotStore


def _raw(asin: str, position: int, sponsored: bool | None) -> dict[str, Any]:
    return {
        "asin": asin,
        "title": f"Garlic press {position}",
        "position": position,
        "price": f"${10 + position}.99",
        "rating": "4.4 out of 5 stars",
        "reviews": str(100 * position),
        "is_sponsored": sponsored,
        "brand": "OXO" if position % 2 else "Zulay",
    }


_PAGE: list[dict[str, Any]] = [
    _raw("B0SPONS001", 1, True),
    _raw("B000000002", 2, False),
    _raw("B000000003", 3, False),
    _raw("B000000004", 4, None),
    _raw("B000000005", 5, False),
    _raw("B0SPONS001", 6, False),
    {"asin": "PLACEHOLDER-1", "title": "filler"},
]


class _StubProvider(ListingProvider):
    name = "stub_search"

    def __init__(
        self,
        pages: list[list[dict[str, Any]]] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.pages = pages if pages is not None else [_PAGE]
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def fetch_page_one(
        self, keyword: str, marketplace: str,
    ) -> list[dict[str, Any]]:
        self.calls.append((keyword, marketplace))
        if self.error is not None:
            raise self.error
        return self.pages[min(len(self.calls), len(self.pages)) - 1]


class _FlatPricing(PricingEnricher):
    def enrich(self, asins: list[str]) -> dict[str, dict[str, Any]]:
        return {a: {"price": 30.0, "fulfillment": "FBA"} for a in asins}


class _SlowPricing(PricingEnricher):
    """Pricing call that blocks until released."""

    def __init__(self) -> None:
        self.release = threading.Event()

    def enrich(self, asins: list[str]) -> dict[str, dict[str, Any]]:
        self.release.wait(2.0)
        return {a: {"price": 30.0} for a in asins}


class _HeldQueue(RefinementQueue):
    """Queue that holds jobs so tests decide when they run."""

    def __init__(self) -> None:
        super().__init__()
        self.held: dict[str, JobFn] = {}

    def submit(self, snapshot_id: str, job: JobFn) -> bool:
        self.held[snapshot_id] = job
        return True


class _Clock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestSnapshotAssembler(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self) -> None:
        self.store = SnapshotStore(Path(":memory:"))
        self.clock = _Clock()

    async def asyncTearDown(self) -> None:
        self.store.close()

    def _assembler(
        self, provider: ListingProvider | None = None, **kwargs: Any,
    ) -> SnapshotAssembler:
        return SnapshotAssembler(
            provider or _StubProvider(), self.store, clock=self.clock, **kwargs
        )

    async def test_ready_tier1_snapshot(self) -> None:
        """A normal page yields a persisted Tier-1 snapshot."""
        assembler = self._assembler()
        result = await assembler.build_snapshot("  Garlic   PRESS ", "us")

        self.assertTrue(result.ready)
        self.assertEqual(result.keyword, "garlic press")
        self.assertEqual(result.marketplace, "US")
        snapshot = result.snapshot
        assert snapshot is not None
        self.assertEqual(snapshot.tier, TIER1_PARTIAL)
        self.assertEqual(snapshot.product_count, 5)
        # One placeholder plus one collapsed duplicate
        self.assertEqual(result.rejected_count, 2)
        self.assertEqual(
            sum(p.estimated_monthly_units for p in result.products),
            snapshot.total_monthly_units_est,
        )
        self.assertEqual(
            [p.page_position for p in result.products], [2, 3, 4, 5, 6]
        )
        boosted = result.products[-1]
        self.assertEqual(boosted.asin, "B0SPONS001")
        self.assertIs(boosted.sponsored, False)
        self.assertEqual(boosted.page_position, 6)
        self.assertTrue(boosted.is_algorithm_boosted)

        stored = self.store.load_snapshot(snapshot.snapshot_id)
        assert stored is not None
        self.assertEqual(stored[0].tier, TIER1_PARTIAL)
        self.assertIsNotNone(self.store.get_product("B000000002", "US"))
        await assembler.drain()

    async def test_refinement_runs_detached(self) -> None:
        """Tier-2 replaces the stored snapshot after the build returns."""
        assembler = self._assembler()
        result = await assembler.build_snapshot("garlic press")
        assert result.snapshot is not None
        self.assertEqual(result.snapshot.tier, TIER1_PARTIAL)

        await assembler.drain()

        stored = self.store.load_snapshot(result.snapshot.snapshot_id)
        assert stored is not None
        refined, products = stored
        self.assertEqual(refined.tier, TIER2_REFINED)
        self.assertTrue(
            all(p.estimate_writer == "tier2_calibration" for p in products)
        )
        self.assertEqual(
            self.store.keyword_observations("garlic press", "US", 0.0),
            [refined.total_monthly_units_est],
        )

        peeked = await assembler.peek_snapshot("garlic press")
        assert peeked is not None and peeked.snapshot is not None
        self.assertEqual(peeked.snapshot.tier, TIER2_REFINED)

    async def test_next_build_uses_observed_total(self) -> None:
        """A refined total becomes the next Tier-1 total."""
        assembler = self._assembler()
        first = await assembler.build_snapshot("garlic press")
        await assembler.drain()
        stored = self.store.load_snapshot(first.snapshot.snapshot_id)  # type: ignore[union-attr]
        assert stored is not None

        self.clock.now += 60
        second = await assembler.build_snapshot("garlic press")
        assert second.snapshot is not None
        self.assertEqual(
            second.snapshot.total_monthly_units_est,
            stored[0].total_monthly_units_est,
        )
        await assembler.drain()

    async def test_superseded_refinement_discarded(self) -> None:
        """A refinement of an older snapshot is thrown away."""
        queue = _HeldQueue()
        assembler = self._assembler(queue=queue)
        first = await assembler.build_snapshot("garlic press")
        self.clock.now += 60
        second = await assembler.build_snapshot("garlic press")
        assert first.snapshot is not None and second.snapshot is not None
        first_id = first.snapshot.snapshot_id
        second_id = second.snapshot.snapshot_id

        with self.assertLogs("pageone.assembler", level="INFO") as logs:
            await queue.held[first_id]()
        self.assertTrue(any("superseded" in line for line in logs.output))
        stored = self.store.load_snapshot(first_id)
        assert stored is not None
        self.assertEqual(stored[0].tier, TIER1_PARTIAL)
        self.assertEqual(
            self.store.keyword_observations("garlic press", "US", 0.0), []
        )

        await queue.held[second_id]()
        stored = self.store.load_snapshot(second_id)
        assert stored is not None
        self.assertEqual(stored[0].tier, TIER2_REFINED)

    async def test_empty_page_is_insufficient_data(self) -> None:
        """No listings means no snapshot."""
        assembler = self._assembler(_StubProvider(pages=[[]]))
        result = await assembler.build_snapshot("garlic press")

        self.assertEqual(result.status, STATUS_INSUFFICIENT)
        self.assertFalse(result.ready)
        self.assertIsNone(result.snapshot)
        self.assertIn("garlic press", result.message)
        self.assertIsNone(self.store.latest_snapshot_id("garlic press", "US"))

    async def test_only_invalid_listings_is_insufficient_data(self) -> None:
        assembler = self._assembler(
            _StubProvider(pages=[[{"asin": "KEYWORD-1", "title": "x"}]])
        )
        result = await assembler.build_snapshot("garlic press")
        self.assertEqual(result.status, STATUS_INSUFFICIENT)
        self.assertEqual(result.rejected_count, 1)

    async def test_provider_error_is_insufficient_data(self) -> None:
        """Provider failures are logged, not raised."""
        assembler = self._assembler(
            _StubProvider(error=ConnectionError("search down"))
        )
        with self.assertLogs("pageone.assembler", level="ERROR"):
            result = await assembler.build_snapshot("garlic press")
        self.assertEqual(result.status, STATUS_INSUFFICIENT)

    async def test_pricing_overrides_applied(self) -> None:
        assembler = self._assembler(pricing=_FlatPricing())
        result = await assembler.build_snapshot("garlic press")

        self.assertTrue(all(p.price == 30.0 for p in result.products))
        self.assertTrue(
            all(p.provenance["price"] == "pricing" for p in result.products)
        )
        assert result.snapshot is not None
        self.assertEqual(result.snapshot.fulfillment_mix["FBA"], 100.0)
        await assembler.drain()

    async def test_peek_fresh_then_stale(self) -> None:
        """Peeks read the cache only and report staleness."""
        assembler = self._assembler(queue=_HeldQueue())
        self.assertIsNone(await assembler.peek_snapshot("garlic press"))

        await assembler.build_snapshot("garlic press")
        fresh = await assembler.peek_snapshot("Garlic Press")
        assert fresh is not None
        self.assertTrue(fresh.from_cache)
        self.assertFalse(fresh.stale)

        self.clock.now += 2 * 86400
        stale = await assembler.peek_snapshot("garlic press")
        assert stale is not None
        self.assertTrue(stale.stale)

    async def test_refine_on_demand(self) -> None:
        """Known snapshots can be requeued; unknown ones cannot."""
        queue = _HeldQueue()
        assembler = self._assembler(queue=queue)
        self.assertFalse(await assembler.refine("missing"))

        result = await assembler.build_snapshot("garlic press")
        assert result.snapshot is not None
        queue.held.clear()
        self.assertTrue(await assembler.refine(result.snapshot.snapshot_id))
        self.assertIn(result.snapshot.snapshot_id, queue.held)

    async def test_deadline_covers_fetch_and_enrichment(self) -> None:
        """A slow enricher cannot push the build past the Tier-1 budget."""
        pricing = _SlowPricing()
        self.addCleanup(pricing.release.set)
        assembler = self._assembler(pricing=pricing, queue=_HeldQueue())

        started = time.monotonic()
        with patch.object(Settings, "TIER1_TIMEOUT", 0.5):
            result = await assembler.build_snapshot("garlic press")
        elapsed = time.monotonic() - started
        pricing.release.set()

        self.assertTrue(result.ready)
        self.assertLess(elapsed, 1.0)
        self.assertFalse(any(
            p.provenance.get("price") == "pricing" for p in result.products
        ))

    async def test_recent_stored_ranks_reused(self) -> None:
        """Stored ranks inside the TTL fill gaps and are not rewritten."""
        def stored(asin: str, rank: int) -> CanonicalProduct:
            return CanonicalProduct(
                asin=asin,
                title="old",
                page_position=1,
                organic_rank=1,
                sponsored=False,
                sales_rank=rank,
                category="Kitchen",
            )

        self.store.upsert_products(
            [stored("B000000002", 450)], "US", self.clock.now - 3600
        )
        self.store.upsert_products(
            [stored("B000000003", 900)], "US", self.clock.now - 3 * 86400
        )
        assembler = self._assembler(queue=_HeldQueue())
        result = await assembler.build_snapshot("garlic press")
        by_asin = {p.asin: p for p in result.products}

        reused = by_asin["B000000002"]
        self.assertEqual(reused.sales_rank, 450)
        self.assertEqual(reused.category, "Kitchen")
        self.assertEqual(reused.provenance["sales_rank"], "stored")
        self.assertIsNone(by_asin["B000000003"].sales_rank)

        recent = self.clock.now - 1
        self.assertIsNone(self.store.get_product("B000000002", "US", recent))
        self.assertIsNotNone(
            self.store.get_product("B000000003", "US", recent)
        )

    async def test_competition_readings_on_snapshot(self) -> None:
        """Tier-1 demand band and competition readings reach the snapshot."""
        assembler = self._assembler(queue=_HeldQueue())
        result = await assembler.build_snapshot("garlic press")
        snapshot = result.snapshot
        assert snapshot is not None

        # Five non-sponsored listings put demand in the low band
        self.assertEqual(snapshot.competition_level, "low")
        self.assertEqual(snapshot.ppc.sponsored_count, 0)
        self.assertEqual(snapshot.ppc.ad_intensity_label, "Low")
        self.assertEqual(snapshot.competitive_pressure.level, "Low")
        market = result.to_context()["market"]
        self.assertEqual(market["competition_level"], "low")
        self.assertIn("cpi", market["competitive_pressure"])

    async def test_invalidate_drops_cached_copies(self) -> None:
        """Invalidation empties every cache scope but keeps the snapshot."""
        assembler = self._assembler(queue=_HeldQueue())
        result = await assembler.build_snapshot(
            "garlic press", caller_id="ana"
        )
        assert result.snapshot is not None

        dropped = await assembler.invalidate_snapshot(
            "Garlic Press", "us", caller_id="ana"
        )

        self.assertEqual(dropped, 3)
        self.assertIsNone(
            await assembler.peek_snapshot("garlic press", caller_id="ana")
        )
        self.assertIsNotNone(
            self.store.load_snapshot(result.snapshot.snapshot_id)
        )

    async def test_to_context(self) -> None:
        assembler = self._assembler(queue=_HeldQueue())
        result = await assembler.build_snapshot("garlic press")
        context = result.to_context()

        self.assertEqual(context["status"], "ready")
        self.assertEqual(context["market"]["product_count"], 5)
        self.assertEqual(len(context["top_products"]), 5)
        self.assertIn("revenue_share_pct", context["top_products"][0])


class TestNormalizeKeyword(unittest.TestCase):

    def test_case_and_whitespace(self) -> None:
        self.assertEqual(normalize_keyword("  Garlic \t PRESS "), "garlic press")


if __name__ == "__main__":
    unittest.main()
