# src/estimation/tier2_refiner.py

"""Tier-2 refinement: sales-rank curves, history blending, calibration."""

import asyncio
import copy
import logging
import time
from collections.abc import Callable

from src.analysis.market_aggregates import MarketAggregator
from src.config.settings import Settings
from src.estimation.allocation import allocate_units, apply_allocation
from src.estimation.bsr_curves import (
    null_duplicate_sales_ranks,
    units_from_rank,
)
from src.estimation.calibration import (
    CalibrationProfile,
    apply_calibration,
    blend_with_history,
)
from src.filters.override_passes import override_pass
from src.models.canonical_product import CanonicalProduct
from src.models.market_snapshot import TIER2_REFINED, MarketSnapshot
from src.services.contracts import PersistenceStore
from src.services.enrichment import CallBudget, EnrichmentService

logger = logging.getLogger("pageone.estimation")

WRITER = "tier2_calibration"


class Tier2Refiner:
    """Refine a Tier-1 snapshot into a ``tier2-refined`` copy."""

    def __init__(
        self,
        store: PersistenceStore,
        enrichment: EnrichmentService | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.enrichment = enrichment
        self._clock = clock

    async def refine(
        self,
        snapshot: MarketSnapshot,
        products: list[CanonicalProduct],
        budget: CallBudget,
        caller_id: str | None = None,
    ) -> tuple[MarketSnapshot, list[CanonicalProduct]]:
        """Return refined copies; the inputs are left untouched."""
        refined = copy.deepcopy(snapshot)
        items = copy.deepcopy(products)
        if not items:
            return refined, items

        await self._fill_sales_ranks(refined, items, budget, caller_id)
        null_duplicate_sales_ranks(items)

        current = [self._current_units(p) for p in items]
        total = sum(current)

        since = self._clock() - Settings.HISTORY_WINDOW_DAYS * 86400
        history = await asyncio.to_thread(
            self.store.keyword_observations,
            refined.keyword,
            refined.marketplace,
            since,
            refined.snapshot_id,
        )
        blend = blend_with_history(total, history)
        total = blend.units

        profile = await asyncio.to_thread(
            self._find_profile, refined.keyword, items
        )
        total, log_entry = apply_calibration(total, profile)
        if log_entry is not None:
            refined.calibration_log.append(log_entry)

        units = allocate_units([float(u) for u in current], total)
        apply_allocation(items, units, WRITER)

        MarketAggregator.refresh(refined, items)
        refined.tier = TIER2_REFINED
        refined.refined_at = self._clock()

        logger.info(
            "Tier-2 refined %s: %d -> %d units (history points=%d, "
            "blended=%s, calibrated=%s)",
            refined.snapshot_id,
            snapshot.total_monthly_units_est,
            refined.total_monthly_units_est,
            blend.history_points,
            blend.applied,
            log_entry is not None,
        )
        return refined, items

    # ── Private helpers ──────────────────────────────────

    @staticmethod
    def _current_units(product: CanonicalProduct) -> int:
        """Curve units when a sales rank is known, else Tier-1 units."""
        if product.sales_rank is not None and product.sales_rank > 0:
            return units_from_rank(product.sales_rank, product.category)
        return product.estimated_monthly_units

    async def _fill_sales_ranks(
        self,
        snapshot: MarketSnapshot,
        products: list[CanonicalProduct],
        budget: CallBudget,
        caller_id: str | None,
    ) -> None:
        """Look up missing per-product facts through the catalog."""
        if self.enrichment is None or self.enrichment.catalog is None:
            return
        missing = [p.asin for p in products if p.sales_rank is None]
        if not missing:
            return
        facts = await self.enrichment.lookup(
            self.enrichment.catalog,
            missing,
            snapshot.marketplace,
            budget,
            caller_id,
        )
        if facts:
            override_pass("catalog").apply(products, facts)
        still_missing = sum(1 for p in products if p.sales_rank is None)
        if still_missing:
            logger.info(
                "%d products keep Tier-1 estimates (no sales rank)",
                still_missing,
            )

    def _find_profile(
        self, keyword: str, products: list[CanonicalProduct],
    ) -> CalibrationProfile | None:
        """Keyword profile first, then the dominant category's."""
        profile = self.store.get_calibration_profile(keyword, "keyword")
        if profile is not None:
            return profile
        categories = [p.category for p in products if p.category]
        if not categories:
            return None
        dominant = max(sorted(set(categories)), key=categories.count)
        return self.store.get_calibration_profile(dominant, "category")
