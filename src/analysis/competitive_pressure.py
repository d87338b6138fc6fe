# src/analysis/competitive_pressure.py

"""Competitive Pressure Index: one 0-100 number for Page-1 difficulty.

Four banded components add up to the base score:

* review barrier (average reviews), 0-40
* sponsored competition (share of sponsored listings), 0-25
* brand dominance (top brand's share of listings), 0-20
* listing density (listings on Page-1), 0-15

The base is then scaled by the seller's stage and experience, so the
same market reads harder for a new seller than for a scaling one.
"""

import logging

from src.analysis.brand_aggregator import UNBRANDED
from src.config.settings import Settings
from src.models.canonical_product import CanonicalProduct
from src.models.market_snapshot import CompetitivePressure

logger = logging.getLogger("pageone.analysis")

# (lower bound, points), checked top-down
_REVIEW_BANDS = ((10000, 40), (5000, 30), (2000, 20), (500, 10))
_SPONSORED_BANDS = ((50, 25), (30, 18), (15, 12), (5, 6))
_DOMINANCE_BANDS = ((60, 20), (40, 15), (25, 10), (15, 5))
_DENSITY_BANDS = ((40, 15), (25, 10), (15, 6), (8, 3))


def _band_points(value: float, bands: tuple[tuple[int, int], ...]) -> int:
    for lower, points in bands:
        if value >= lower:
            return points
    return 0


def pressure_level(cpi: int) -> str:
    if cpi <= 30:
        return "Low"
    if cpi <= 60:
        return "Moderate"
    if cpi <= 80:
        return "High"
    return "Extreme"


def seller_modifier(
    seller_stage: str | None, experience_months: int | None,
) -> float:
    """Multiplier for the seller's stage, eased by months of experience."""
    modifier = Settings.SELLER_STAGE_MODIFIERS.get(
        (seller_stage or "").lower(), 1.0
    )
    if experience_months:
        if experience_months >= 24:
            modifier *= 0.85
        elif experience_months >= 12:
            modifier *= 0.95
    return modifier


class CompetitivePressureIndex:
    """Reproducible, explainable Page-1 difficulty score."""

    @staticmethod
    def calculate(
        products: list[CanonicalProduct],
        seller_stage: str | None = None,
        experience_months: int | None = None,
    ) -> CompetitivePressure:
        if not products:
            return CompetitivePressure(
                explanation="No Page 1 listings available"
            )
        total = len(products)

        reviews = [
            p.review_count for p in products
            if p.review_count is not None and p.review_count > 0
        ]
        avg_reviews = sum(reviews) / len(reviews) if reviews else 0.0
        sponsored_pct = (
            sum(1 for p in products if p.is_sponsored) / total * 100
        )
        brand_counts: dict[str, int] = {}
        for product in products:
            if product.brand != UNBRANDED:
                brand_counts[product.brand] = (
                    brand_counts.get(product.brand, 0) + 1
                )
        top_brand_pct = (
            max(brand_counts.values()) / total * 100 if brand_counts else 0.0
        )

        review_score = _band_points(avg_reviews, _REVIEW_BANDS)
        sponsored_score = _band_points(sponsored_pct, _SPONSORED_BANDS)
        dominance_score = _band_points(top_brand_pct, _DOMINANCE_BANDS)
        density_score = _band_points(total, _DENSITY_BANDS)
        base = review_score + sponsored_score + dominance_score + density_score

        modifier = seller_modifier(seller_stage, experience_months)
        cpi = min(100, max(0, int(base * modifier + 0.5)))
        level = pressure_level(cpi)

        parts = [f"CPI: {cpi} ({level} pressure)"]
        if review_score:
            parts.append(
                f"Review barrier: {int(avg_reviews + 0.5):,} avg reviews "
                f"({review_score} pts)"
            )
        if sponsored_score:
            parts.append(
                f"Paid competition: {int(sponsored_pct + 0.5)}% sponsored "
                f"({sponsored_score} pts)"
            )
        if dominance_score:
            parts.append(
                f"Brand control: {int(top_brand_pct + 0.5)}% top brand "
                f"({dominance_score} pts)"
            )
        if density_score:
            parts.append(
                f"Page 1 density: {total} listings ({density_score} pts)"
            )
        if modifier != 1.0:
            parts.append(
                f"Seller context: {seller_stage or 'experienced'} "
                f"({modifier:.2f}x modifier applied)"
            )

        logger.debug("Competitive pressure %d (%s), base %d", cpi, level, base)
        return CompetitivePressure(
            cpi=cpi,
            level=level,
            review_barrier_score=review_score,
            sponsored_competition_score=sponsored_score,
            brand_dominance_score=dominance_score,
            listing_density_score=density_score,
            seller_modifier=round(modifier, 4),
            explanation=" | ".join(parts),
        )
