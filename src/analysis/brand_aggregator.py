# src/analysis/brand_aggregator.py

"""Brand bucketing, revenue concentration and moat classification."""

import logging

from src.models.canonical_product import CanonicalProduct
from src.models.market_snapshot import BrandConcentration, BrandShare

logger = logging.getLogger("pageone.analysis")

UNBRANDED = "Unbranded"

# Lower-cased spellings that collapse into one bucket
_BRAND_ALIASES: dict[str, str] = {
    "amazon basics": "Amazon",
    "amazonbasics": "Amazon",
    "amazon": "Amazon",
}

_UNBRANDED_VALUES: frozenset[str] = frozenset({
    "",
    "unknown",
    "generic",
    "n/a",
    "na",
    "none",
    "unbranded",
    "no brand",
})


class BrandAggregator:
    """Compute brand concentration over a canonical product set."""

    @staticmethod
    def normalize_brand(raw: str | None) -> str:
        """Map a raw brand string onto its bucket name."""
        if not raw or not isinstance(raw, str):
            return UNBRANDED
        cleaned = " ".join(raw.split())
        lowered = cleaned.lower()
        if lowered in _UNBRANDED_VALUES:
            return UNBRANDED
        return _BRAND_ALIASES.get(lowered, cleaned)

    @staticmethod
    def moat_strength(top_1_pct: float, top_3_pct: float) -> str:
        """Classify moat strength from top-1 / top-3 revenue share."""
        if top_1_pct >= 35 or top_3_pct >= 65:
            return "strong"
        if top_1_pct >= 25 or top_3_pct >= 50:
            return "moderate"
        if top_1_pct >= 15:
            return "weak"
        return "none"

    @staticmethod
    def analyze(products: list[CanonicalProduct]) -> BrandConcentration:
        """Brand concentration for *products*.

        Never raises: an internal error degrades to an empty ``none``
        result so the snapshot can still be produced.
        """
        try:
            return BrandAggregator._analyze(products)
        except Exception:
            logger.exception(
                "Brand aggregation failed for %d products", len(products)
            )
            return BrandConcentration()

    # ── Private helpers ──────────────────────────────────────

    @staticmethod
    def _analyze(products: list[CanonicalProduct]) -> BrandConcentration:
        revenue: dict[str, float] = {}
        counts: dict[str, int] = {}

        for product in products:
            bucket = BrandAggregator.normalize_brand(
                product.brand if product.brand != UNBRANDED
                else product.brand_raw
            )
            revenue[bucket] = (
                revenue.get(bucket, 0.0)
                + max(product.estimated_monthly_revenue, 0.0)
            )
            counts[bucket] = counts.get(bucket, 0) + 1

        total = sum(revenue.values())

        def share(value: float) -> float:
            return round(value / total * 100, 2) if total > 0 else 0.0

        branded = sorted(
            (b for b in revenue if b != UNBRANDED),
            key=lambda b: (-revenue[b], b),
        )
        top_1 = share(sum(revenue[b] for b in branded[:1]))
        top_3 = share(sum(revenue[b] for b in branded[:3]))
        top_5 = share(sum(revenue[b] for b in branded[:5]))

        ordered = sorted(revenue, key=lambda b: (-revenue[b], b))
        breakdown = [
            BrandShare(
                brand=b,
                asin_count=counts[b],
                total_revenue=round(revenue[b], 2),
                revenue_share_pct=share(revenue[b]),
            )
            for b in ordered
        ]

        return BrandConcentration(
            page1_brand_count=len(revenue),
            top_1_brand_share_pct=top_1,
            top_3_brand_share_pct=top_3,
            top_5_brand_share_pct=top_5,
            moat_strength=BrandAggregator.moat_strength(top_1, top_3),
            breakdown=breakdown,
        )
