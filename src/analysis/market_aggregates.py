# src/analysis/market_aggregates.py

"""Market aggregates derived from the canonical product set only."""

import logging
import statistics

from src.analysis.brand_aggregator import BrandAggregator
from src.analysis.competitive_pressure import CompetitivePressureIndex
from src.analysis.confidence_scorer import ConfidenceScorer
from src.analysis.ppc_indicators import PPCAnalyzer
from src.models.canonical_product import CanonicalProduct
from src.models.market_snapshot import MarketSnapshot, PriceBand, ReviewStats

logger = logging.getLogger("pageone.analysis")

FULFILLMENT_KEYS: tuple[str, ...] = ("FBA", "FBM", "AMZ", "UNKNOWN")

REVIEW_BARRIER_TOP_N = 10


class MarketAggregator:
    """Compute price, review, rating, sponsorship and fulfillment stats."""

    @staticmethod
    def price_band(products: list[CanonicalProduct]) -> PriceBand:
        prices = [p.price for p in products if p.price and p.price > 0]
        if not prices:
            return PriceBand()
        low, high = min(prices), max(prices)
        avg = sum(prices) / len(prices)
        spread = (high - low) / avg if avg else 0.0
        if spread < 0.2:
            tightness = "tight"
        elif spread < 0.5:
            tightness = "moderate"
        else:
            tightness = "wide"
        return PriceBand(
            min_price=round(low, 2),
            max_price=round(high, 2),
            avg_price=round(avg, 2),
            tightness=tightness,
        )

    @staticmethod
    def review_stats(products: list[CanonicalProduct]) -> ReviewStats:
        counts = sorted(
            p.review_count for p in products if p.review_count is not None
        )
        if not counts:
            return ReviewStats()
        if len(counts) >= 2:
            p25, _, p75 = statistics.quantiles(
                counts, n=4, method="inclusive"
            )
        else:
            p25 = p75 = float(counts[0])
        return ReviewStats(
            avg_reviews=round(sum(counts) / len(counts), 1),
            median_reviews=float(statistics.median(counts)),
            p25_reviews=round(p25, 1),
            p75_reviews=round(p75, 1),
            review_barrier=MarketAggregator.review_barrier(products),
        )

    @staticmethod
    def review_barrier(products: list[CanonicalProduct]) -> float | None:
        """Median review count of the top-10 organic products."""
        organic = sorted(
            (p for p in products if p.organic_rank is not None),
            key=lambda p: p.organic_rank or 0,
        )[:REVIEW_BARRIER_TOP_N]
        counts = [p.review_count for p in organic if p.review_count is not None]
        if not counts:
            return None
        return float(statistics.median(counts))

    @staticmethod
    def sponsored_density(products: list[CanonicalProduct]) -> float:
        if not products:
            return 0.0
        sponsored = sum(1 for p in products if p.is_sponsored)
        return round(sponsored / len(products) * 100, 1)

    @staticmethod
    def fulfillment_mix(products: list[CanonicalProduct]) -> dict[str, float]:
        mix = {key: 0.0 for key in FULFILLMENT_KEYS}
        if not products:
            return mix
        for product in products:
            key = (
                product.fulfillment if product.fulfillment in mix
                else "UNKNOWN"
            )
            mix[key] += 1
        return {
            key: round(count / len(products) * 100, 1)
            for key, count in mix.items()
        }

    @staticmethod
    def refresh(
        snapshot: MarketSnapshot, products: list[CanonicalProduct],
    ) -> MarketSnapshot:
        """Recompute every derived field of *snapshot* from *products*."""
        snapshot.product_count = len(products)
        snapshot.total_monthly_units_est = sum(
            p.estimated_monthly_units for p in products
        )
        snapshot.total_monthly_revenue_est = round(
            sum(p.estimated_monthly_revenue for p in products), 2
        )
        snapshot.price_band = MarketAggregator.price_band(products)
        snapshot.review_stats = MarketAggregator.review_stats(products)
        ratings = [p.rating for p in products if p.rating is not None]
        snapshot.avg_rating = (
            round(sum(ratings) / len(ratings), 2) if ratings else None
        )
        snapshot.sponsored_density_pct = MarketAggregator.sponsored_density(
            products
        )
        snapshot.fulfillment_mix = MarketAggregator.fulfillment_mix(products)
        snapshot.brand_stats = BrandAggregator.analyze(products)
        snapshot.ppc = PPCAnalyzer.analyze(
            products,
            snapshot.review_stats.review_barrier,
            snapshot.price_band.avg_price,
            snapshot.brand_stats.top_1_brand_share_pct,
        )
        # Seller-neutral; callers rescore for their own stage
        snapshot.competitive_pressure = CompetitivePressureIndex.calculate(
            products
        )

        confidence = ConfidenceScorer.score(
            products, snapshot.sponsored_density_pct
        )
        snapshot.confidence_score = confidence.score
        snapshot.confidence_level = confidence.level
        snapshot.confidence_reason = confidence.reason
        return snapshot
