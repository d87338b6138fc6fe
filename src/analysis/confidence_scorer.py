# src/analysis/confidence_scorer.py

"""Deterministic confidence score for a Page-1 snapshot."""

import logging
import statistics
from dataclasses import dataclass

from src.config.settings import Settings
from src.models.canonical_product import CanonicalProduct

logger = logging.getLogger("pageone.analysis")


@dataclass
class ConfidenceResult:
    """Score in [0, 100], its level and the per-factor reasons."""

    score: int
    level: str  # "high", "medium", "low"
    reasons: list[str]

    @property
    def reason(self) -> str:
        return ". ".join(self.reasons) + "."


class ConfidenceScorer:
    """Score listing coverage, review dispersion and sponsored density."""

    @staticmethod
    def coverage_points(listing_count: int) -> tuple[int, str]:
        if listing_count >= 15:
            return 40, "Strong listing coverage (15+ products)"
        if listing_count >= 8:
            return 25, "Moderate listing coverage (8-14 products)"
        if listing_count >= 5:
            return 10, "Limited listing coverage (5-7 products)"
        return 0, "Sparse listing coverage (< 5 products)"

    @staticmethod
    def dispersion_points(review_counts: list[int]) -> tuple[int, str]:
        if not review_counts:
            return 0, "No review data available"
        dispersion = statistics.pstdev(review_counts)
        if dispersion > 1000:
            return 30, "High review diversity indicates established market"
        if dispersion > 500:
            return 20, "Moderate review diversity"
        if dispersion > 0:
            return 10, "Low review diversity - market may be new"
        return 0, "No review diversity"

    @staticmethod
    def sponsored_points(density_pct: float) -> tuple[int, str]:
        if density_pct < 20:
            return 30, "Low sponsored density suggests organic competition"
        if density_pct < 40:
            return 15, "Moderate sponsored density"
        return 5, "High sponsored density may indicate paid competition"

    @staticmethod
    def level_for(score: int) -> str:
        if score >= Settings.CONFIDENCE_HIGH_THRESHOLD:
            return "high"
        if score >= Settings.CONFIDENCE_MEDIUM_THRESHOLD:
            return "medium"
        return "low"

    @staticmethod
    def score(
        products: list[CanonicalProduct],
        sponsored_density_pct: float,
    ) -> ConfidenceResult:
        """Score a canonical set; every factor contributes a reason."""
        reviews = [
            p.review_count for p in products if p.review_count is not None
        ]
        factors = (
            ConfidenceScorer.coverage_points(len(products)),
            ConfidenceScorer.dispersion_points(reviews),
            ConfidenceScorer.sponsored_points(sponsored_density_pct),
        )
        score = max(0, min(100, sum(points for points, _ in factors)))
        result = ConfidenceResult(
            score=score,
            level=ConfidenceScorer.level_for(score),
            reasons=[reason for _, reason in factors],
        )
        logger.debug(
            "Confidence %d (%s): %s", score, result.level, result.reason
        )
        return result
