# src/estimation/tier1_estimator.py

"""Tier-1 fast estimator: rank-decay allocation of a Page-1 total."""

import logging
from dataclasses import dataclass

from src.config.settings import Settings
from src.estimation.allocation import allocate_units, apply_allocation
from src.estimation.page_one_demand import estimate_page_one_demand
from src.models.canonical_product import CanonicalProduct

logger = logging.getLogger("pageone.estimation")

WRITER = "tier1_allocation"


@dataclass
class Tier1Result:
    """Totals written by a Tier-1 pass."""

    total_units: int
    total_revenue: float
    total_source: str  # "history" or "heuristic"
    competition_level: str = "unknown"  # Page-1 demand band


class Tier1Estimator:
    """Synchronous estimator; makes no external calls."""

    @staticmethod
    def demand_weight(product: CanonicalProduct) -> float:
        """Rank-decay weight, damped for sponsored or unknown listings."""
        rank = product.organic_rank or product.page_position or 1
        weight = 1.0 / (max(rank, 1) ** Settings.RANK_DECAY_EXPONENT)
        if product.sponsored is True:
            weight *= Settings.SPONSORED_WEIGHT_FACTOR
        elif product.sponsored is None:
            weight *= Settings.UNKNOWN_SPONSORED_WEIGHT_FACTOR
        return weight

    @staticmethod
    def estimate(
        products: list[CanonicalProduct],
        known_total_units: int | None = None,
        category: str | None = None,
    ) -> Tier1Result:
        """Allocate a Page-1 unit total across *products* in place.

        *known_total_units* is a previously observed total for the
        keyword; without one the heuristic Page-1 demand is used. The
        demand band is reported either way.
        """
        demand = estimate_page_one_demand(products, category)
        if known_total_units is not None and known_total_units > 0:
            total_units, source = int(known_total_units), "history"
        else:
            total_units, source = demand.total_monthly_units, "heuristic"

        weights = [Tier1Estimator.demand_weight(p) for p in products]
        units = allocate_units(weights, total_units)
        total_revenue = apply_allocation(products, units, WRITER)

        logger.info(
            "Tier-1 allocated %d units / %.2f revenue across %d products "
            "(total from %s, %s competition)",
            total_units,
            total_revenue,
            len(products),
            source,
            demand.competition_level,
        )
        return Tier1Result(
            total_units, total_revenue, source, demand.competition_level
        )
