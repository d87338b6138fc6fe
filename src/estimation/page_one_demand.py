# src/estimation/page_one_demand.py

"""Heuristic total Page-1 demand from aggregate listing signals.

The total is estimated first and allocated across products afterwards,
which keeps per-product numbers from running away.
"""

import logging
import statistics
from dataclasses import dataclass

from src.config.settings import Settings
from src.models.canonical_product import CanonicalProduct

logger = logging.getLogger("pageone.estimation")

# Higher multiplier = higher-volume category
CATEGORY_MULTIPLIERS: dict[str, float] = {
    "electronics": 1.3,
    "home": 1.1,
    "beauty": 1.2,
    "health": 1.0,
    "default": 1.0,
}

# Competition bands as (min units, max units)
_LOW_BAND = (2000, 6000)
_MEDIUM_BAND = (6000, 15000)
_HIGH_BAND = (15000, 35000)


@dataclass
class PageOneDemand:
    """Estimated total Page-1 monthly demand."""

    total_monthly_units: int
    competition_level: str  # "low", "medium", "high"


def category_key(category: str | None) -> str:
    """Map a free-form category name onto a multiplier key."""
    if not category:
        return "default"
    lowered = category.lower()
    if "electronic" in lowered:
        return "electronics"
    if "beauty" in lowered:
        return "beauty"
    if "health" in lowered:
        return "health"
    if "home" in lowered or "kitchen" in lowered:
        return "home"
    return "default"


def review_multiplier(median_reviews: float) -> float:
    """More reviews means a more established, higher-volume market."""
    if median_reviews < 100:
        return 0.7
    if median_reviews < 500:
        return 1.0
    if median_reviews < 1500:
        return 1.3
    return 1.6


def estimate_page_one_demand(
    products: list[CanonicalProduct],
    category: str | None = None,
) -> PageOneDemand:
    """Estimate total monthly units for the Page-1 set.

    Listings not known to be sponsored count as organic. Returns zero
    units when every listing is sponsored.
    """
    organic = [p for p in products if p.sponsored is not True]
    reviews = [
        p.review_count for p in organic
        if p.review_count is not None and p.review_count > 0
    ]
    median_reviews = statistics.median(reviews) if reviews else 0.0

    if not organic:
        return PageOneDemand(0, "low")

    organic_count = len(organic)
    units = organic_count * Settings.BASE_UNITS_PER_ORGANIC_LISTING
    units = round(units * review_multiplier(median_reviews))

    if category is None:
        categories = [p.category for p in products if p.category]
        if categories:
            category = max(
                sorted(set(categories)), key=categories.count
            )
    units = round(units * CATEGORY_MULTIPLIERS[category_key(category)])

    if organic_count < 8 or median_reviews < 100:
        (low, high), band = _LOW_BAND, "low"
    elif organic_count < 15 and median_reviews < 1500:
        (low, high), band = _MEDIUM_BAND, "medium"
    else:
        (low, high), band = _HIGH_BAND, "high"
    units = max(low, min(high, units))

    logger.debug(
        "Page-1 demand: organic=%d median_reviews=%.0f category=%s "
        "-> %d units (%s band)",
        organic_count,
        median_reviews,
        category_key(category),
        units,
        band,
    )
    return PageOneDemand(units, band)
