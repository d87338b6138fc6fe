# tests/test_competitive_pressure.py

"""Tests for the Competitive Pressure Index."""

import unittest

from src.analysis.competitive_pressure import (
    CompetitivePressureIndex,
    pressure_level,
    seller_modifier,
)
from src.models.canonical_product import CanonicalProduct


def _products(
    count: int,
    reviews: int | None = 0,
    sponsored: int = 0,
    brand: str = "Unbranded",
) -> list[CanonicalProduct]:
    return [
        CanonicalProduct(
            asin=f"B{i + 1:09d}",
            title=f"Item {i + 1}",
            page_position=i + 1,
            organic_rank=None if i < sponsored else i + 1,
            sponsored=i < sponsored,
            review_count=reviews,
            brand=brand,
        )
        for i in range(count)
    ]


class TestPressureLevel(unittest.TestCase):

    def test_boundaries(self) -> None:
        """Upper bounds are inclusive."""
        cases = {
            0: "Low", 30: "Low", 31: "Moderate", 60: "Moderate",
            61: "High", 80: "High", 81: "Extreme", 100: "Extreme",
        }
        for cpi, level in cases.items():
            with self.subTest(cpi=cpi):
                self.assertEqual(pressure_level(cpi), level)


class TestSellerModifier(unittest.TestCase):

    def test_neutral_without_context(self) -> None:
        self.assertEqual(seller_modifier(None, None), 1.0)
        self.assertEqual(seller_modifier("veteran", None), 1.0)

    def test_stage_and_experience_multiply(self) -> None:
        """Experience eases the stage modifier."""
        self.assertEqual(seller_modifier("new", None), 1.2)
        self.assertAlmostEqual(seller_modifier("existing", 12), 0.9 * 0.95)
        self.assertAlmostEqual(seller_modifier("Scaling", 30), 0.8 * 0.85)
        self.assertAlmostEqual(seller_modifier(None, 24), 0.85)


class TestCompetitivePressureIndex(unittest.TestCase):

    def test_empty_page(self) -> None:
        """No listings means a zero score with an explanation."""
        result = CompetitivePressureIndex.calculate([])
        self.assertEqual(result.cpi, 0)
        self.assertEqual(result.level, "Low")
        self.assertEqual(result.explanation, "No Page 1 listings available")

    def test_light_market(self) -> None:
        """Only the review and density bands score."""
        result = CompetitivePressureIndex.calculate(_products(10, reviews=600))
        self.assertEqual(result.review_barrier_score, 10)
        self.assertEqual(result.sponsored_competition_score, 0)
        self.assertEqual(result.brand_dominance_score, 0)
        self.assertEqual(result.listing_density_score, 3)
        self.assertEqual(result.cpi, 13)
        self.assertEqual(result.level, "Low")
        self.assertEqual(
            result.explanation,
            "CPI: 13 (Low pressure) | "
            "Review barrier: 600 avg reviews (10 pts) | "
            "Page 1 density: 10 listings (3 pts)",
        )

    def test_saturated_market(self) -> None:
        """Every band maxed out reads Extreme."""
        products = _products(40, reviews=12000, sponsored=20, brand="Acme")
        result = CompetitivePressureIndex.calculate(products)
        self.assertEqual(result.cpi, 100)
        self.assertEqual(result.level, "Extreme")
        self.assertEqual(result.sponsored_competition_score, 25)
        self.assertEqual(result.brand_dominance_score, 20)

    def test_new_seller_clamped(self) -> None:
        """Scaling above 100 is clamped."""
        products = _products(40, reviews=12000, sponsored=20, brand="Acme")
        result = CompetitivePressureIndex.calculate(products, "new")
        self.assertEqual(result.cpi, 100)
        self.assertEqual(result.seller_modifier, 1.2)

    def test_experienced_scaling_seller(self) -> None:
        """Stage and experience lower the score for the same market."""
        products = _products(40, reviews=12000, sponsored=20, brand="Acme")
        result = CompetitivePressureIndex.calculate(products, "scaling", 24)
        self.assertEqual(result.cpi, 68)
        self.assertEqual(result.level, "High")
        self.assertIn("Seller context: scaling (0.68x", result.explanation)

    def test_new_seller_modifier_in_explanation(self) -> None:
        result = CompetitivePressureIndex.calculate(
            _products(10, reviews=600), "new"
        )
        self.assertEqual(result.cpi, 16)
        self.assertTrue(
            result.explanation.endswith(
                "Seller context: new (1.20x modifier applied)"
            )
        )

    def test_zero_and_missing_reviews_ignored(self) -> None:
        """Only positive review counts feed the average."""
        products = _products(4, reviews=0) + _products(4, reviews=None)
        result = CompetitivePressureIndex.calculate(products)
        self.assertEqual(result.review_barrier_score, 0)
        self.assertEqual(result.listing_density_score, 3)

    def test_unbranded_not_counted_as_brand(self) -> None:
        products = _products(5, brand="Acme") + _products(15)
        result = CompetitivePressureIndex.calculate(products)
        self.assertEqual(result.brand_dominance_score, 10)


if __name__ == "__main__":
    unittest.main()
