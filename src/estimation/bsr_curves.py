# src/estimation/bsr_curves.py

"""Category-keyed sales-rank -> monthly-units curves.

Each curve is a list of ``(max_rank, intercept, slope)`` segments giving
``units = intercept - slope * rank`` for ranks up to ``max_rank``; the
final segment has no upper bound. Every curve is non-increasing in rank
and never returns less than one unit.
"""

import logging
from collections import Counter

from src.config.settings import Settings
from src.models.canonical_product import CanonicalProduct

logger = logging.getLogger("pageone.estimation")

Segment = tuple[float, float, float]

DEFAULT_CURVE = "default"

BSR_CURVES: dict[str, list[Segment]] = {
    "Home & Kitchen": [
        (100, 12000, 80),
        (500, 5000, 8),
        (2000, 1500, 0.6),
        (10000, 800, 0.06),
        (50000, 400, 0.006),
        (100000, 150, 0.001),
        (float("inf"), 50, 0.0001),
    ],
    "Sports & Outdoors": [
        (100, 10000, 70),
        (500, 4000, 6),
        (2000, 1200, 0.5),
        (10000, 600, 0.04),
        (50000, 300, 0.004),
        (100000, 120, 0.0008),
        (float("inf"), 40, 0.00008),
    ],
    "Beauty & Personal Care": [
        (100, 15000, 100),
        (500, 6000, 10),
        (2000, 2000, 0.8),
        (10000, 1000, 0.08),
        (50000, 500, 0.008),
        (100000, 200, 0.0015),
        (float("inf"), 60, 0.0001),
    ],
    "Toys & Games": [
        (100, 18000, 120),
        (500, 7000, 12),
        (2000, 2500, 1.0),
        (10000, 1200, 0.1),
        (50000, 600, 0.01),
        (100000, 250, 0.002),
        (float("inf"), 80, 0.00015),
    ],
    "Kitchen & Dining": [
        (100, 11000, 75),
        (500, 4500, 7),
        (2000, 1400, 0.55),
        (10000, 750, 0.055),
        (50000, 380, 0.0055),
        (100000, 140, 0.0009),
        (float("inf"), 45, 0.00009),
    ],
    DEFAULT_CURVE: [
        (100, 8000, 60),
        (500, 3500, 5),
        (2000, 1000, 0.4),
        (10000, 500, 0.04),
        (50000, 250, 0.004),
        (100000, 100, 0.0007),
        (float("inf"), 30, 0.00006),
    ],
}


def curve_for(category: str | None) -> list[Segment]:
    """Curve for *category*, matched case-insensitively, else default."""
    if category:
        lowered = category.strip().lower()
        for name, curve in BSR_CURVES.items():
            if name.lower() == lowered:
                return curve
    return BSR_CURVES[DEFAULT_CURVE]


def units_from_rank(rank: int, category: str | None = None) -> int:
    """Estimated monthly units for a main-category sales rank."""
    if rank < 1:
        raise ValueError(f"Sales rank must be positive, got {rank}")
    curve = curve_for(category)
    units = 1.0
    previous = float("inf")
    for max_rank, intercept, slope in curve:
        if rank <= max_rank:
            units = intercept - slope * rank
            break
    # Segment joins are not continuous; keep the curve monotonic
    for max_rank, intercept, slope in curve:
        if max_rank >= rank:
            break
        previous = min(previous, intercept - slope * max_rank)
    units = min(units, previous)
    return max(int(round(units)), 1)


def null_duplicate_sales_ranks(
    products: list[CanonicalProduct],
    min_count: int | None = None,
) -> set[int]:
    """Clear sales ranks shared by *min_count* or more products.

    One rank repeated across many listings is a scrape artifact, not a
    real rank. Returns the ranks that were dropped.
    """
    threshold = (
        Settings.BSR_DUPLICATE_MIN_COUNT if min_count is None else min_count
    )
    counts = Counter(
        p.sales_rank for p in products if p.sales_rank is not None
    )
    dropped = {rank for rank, count in counts.items() if count >= threshold}
    if not dropped:
        return dropped
    for product in products:
        if product.sales_rank in dropped:
            product.sales_rank = None
            product.provenance["sales_rank"] = "duplicate_dropped"
    for rank in sorted(dropped):
        logger.warning(
            "Sales rank %d shared by %d products; treated as missing",
            rank,
            counts[rank],
        )
    return dropped
