# src/analysis/ppc_indicators.py

"""Advertising-pressure indicators derived from the Page-1 set."""

import logging

from src.config.settings import Settings
from src.models.canonical_product import CanonicalProduct
from src.models.market_snapshot import PPCIndicators

logger = logging.getLogger("pageone.analysis")

MAX_SIGNALS = 3


def _half_up(value: float) -> int:
    return int(value + 0.5)


class PPCAnalyzer:
    """Score how ad-heavy a Page-1 market looks."""

    @staticmethod
    def price_competition(
        products: list[CanonicalProduct], avg_price: float | None,
    ) -> float | None:
        """(p90 - p10) / average price over at least ten priced listings."""
        minimum = Settings.PRICE_COMPETITION_MIN_LISTINGS
        if not avg_price or avg_price <= 0 or len(products) < minimum:
            return None
        prices = sorted(p.price for p in products if p.price and p.price > 0)
        if len(prices) < minimum:
            return None
        p10 = prices[int(len(prices) * 0.1)]
        p90 = prices[int(len(prices) * 0.9)]
        if p90 <= p10:
            return None
        return round((p90 - p10) / avg_price, 4)

    @staticmethod
    def analyze(
        products: list[CanonicalProduct],
        review_barrier: float | None,
        avg_price: float | None,
        dominance: float,
    ) -> PPCIndicators:
        """Indicators with at most three signals explaining the label."""
        total = len(products)
        sponsored_count = sum(1 for p in products if p.is_sponsored)
        sponsored_pct = (
            _half_up(sponsored_count / total * 100) if total else 0
        )
        price_competition = PPCAnalyzer.price_competition(
            products, avg_price
        )

        score = 0
        signals: list[str] = []

        if sponsored_pct >= 50:
            score += 3
            signals.append(
                f"High sponsored density ({sponsored_pct}% of listings)"
            )
        elif sponsored_pct >= 25:
            score += 2
            signals.append(
                f"Moderate sponsored density ({sponsored_pct}% of listings)"
            )
        elif sponsored_pct > 0:
            score += 1

        if review_barrier is not None:
            if review_barrier >= 5000:
                score += 2
                signals.append(
                    f"High review barrier ({_half_up(review_barrier):,} "
                    "median reviews in top 10)"
                )
            elif review_barrier >= 1000:
                score += 1
                if sponsored_pct < 25:
                    signals.append(
                        f"Moderate review barrier "
                        f"({_half_up(review_barrier):,} median reviews)"
                    )

        # Tight price range: sellers compete on ads, not price
        if price_competition is not None and price_competition < 0.3:
            score += 1
            signals.append(
                f"Tight price competition "
                f"({price_competition * 100:.0f}% spread)"
            )

        if dominance >= 40:
            score += 1
            if sponsored_pct < 50:
                signals.append(
                    f"High brand dominance ({dominance:g}% top brand share)"
                )

        if score >= 4:
            label = "High"
        elif score >= 2:
            label = "Medium"
        else:
            label = "Low"

        if not signals and total:
            signals.append(f"Sponsored density: {sponsored_pct}%")

        logger.debug(
            "PPC indicators: sponsored=%d%% score=%d label=%s",
            sponsored_pct,
            score,
            label,
        )
        return PPCIndicators(
            sponsored_pct=sponsored_pct,
            sponsored_count=sponsored_count,
            review_barrier=review_barrier,
            price_competition=price_competition,
            dominance=dominance,
            ad_intensity_label=label,
            signals=signals[:MAX_SIGNALS],
        )
