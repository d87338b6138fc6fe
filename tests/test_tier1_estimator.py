# tests/test_tier1_estimator.py

"""Tests for Page-1 demand, unit allocation and the Tier-1 estimator."""

import unittest

from src.errors import IntegrityViolation
from src.estimation.allocation import (
    allocate_units,
    apply_allocation,
    market_average_price,
)
from src.estimation.page_one_demand import (
    category_key,
    estimate_page_one_demand,
    review_multiplier,
)
from src.estimation.tier1_estimator import Tier1Estimator
from src.models.canonical_product import CanonicalProduct


def _products(
    count: int,
    reviews: int = 200,
    price: float | None = 20.0,
    sponsored: bool | None = False,
    category: str | None = None,
) -> list[CanonicalProduct]:
    return [
        CanonicalProduct(
            asin=f"B{i:09d}",
            title=f"Item {i}",
            page_position=i,
            organic_rank=i if sponsored is False else None,
            sponsored=sponsored,
            price=price,
            review_count=reviews,
            category=category,
        )
        for i in range(1, count + 1)
    ]


class TestAllocateUnits(unittest.TestCase):
    """Largest-remainder allocation."""

    def test_sums_exactly_to_total(self) -> None:
        """Rounding never loses or invents a unit."""
        weights = [1 / (r ** 0.7) for r in range(1, 31)]
        for total in (1, 7, 999, 12345):
            with self.subTest(total=total):
                self.assertEqual(sum(allocate_units(weights, total)), total)

    def test_ties_go_to_earlier_index(self) -> None:
        """Equal remainders favour the earlier product."""
        self.assertEqual(allocate_units([1.0, 1.0, 1.0], 10), [4, 3, 3])

    def test_zero_total_or_empty(self) -> None:
        self.assertEqual(allocate_units([1.0, 2.0], 0), [0, 0])
        self.assertEqual(allocate_units([], 100), [])

    def test_all_zero_weights_split_evenly(self) -> None:
        """Zero weights fall back to an even split."""
        self.assertEqual(allocate_units([0.0, 0.0], 5), [3, 2])


class TestApplyAllocation(unittest.TestCase):
    """Revenue derivation from allocated units."""

    def test_missing_price_uses_market_average(self) -> None:
        """Unpriced products earn revenue at the market average price."""
        products = _products(3)
        products[0].price = 10.0
        products[1].price = 30.0
        products[2].price = None
        self.assertEqual(market_average_price(products), 20.0)

        total = apply_allocation(products, [10, 10, 5], "tier1_allocation")
        self.assertEqual(products[2].estimated_monthly_revenue, 100.0)
        self.assertEqual(total, 500.0)
        self.assertEqual(
            [p.revenue_share_pct for p in products], [20.0, 60.0, 20.0]
        )

    def test_unknown_writer_rejected(self) -> None:
        """Only registered estimate writers may assign units."""
        with self.assertRaises(IntegrityViolation):
            apply_allocation(_products(1), [5], "brand_aggregator")


class TestPageOneDemand(unittest.TestCase):
    """Heuristic Page-1 total."""

    def test_review_multiplier_steps(self) -> None:
        """Step boundaries are inclusive on the lower edge."""
        self.assertEqual(review_multiplier(50), 0.7)
        self.assertEqual(review_multiplier(100), 1.0)
        self.assertEqual(review_multiplier(1499), 1.3)
        self.assertEqual(review_multiplier(5000), 1.6)

    def test_category_key(self) -> None:
        self.assertEqual(category_key("Consumer Electronics"), "electronics")
        self.assertEqual(category_key("Home & Kitchen"), "home")
        self.assertEqual(category_key(None), "default")
        self.assertEqual(category_key("Toys"), "default")

    def test_all_sponsored_is_zero(self) -> None:
        """A fully sponsored page has no organic demand."""
        demand = estimate_page_one_demand(_products(5, sponsored=True))
        self.assertEqual(demand.total_monthly_units, 0)

    def test_thin_market_clamped_up_to_low_band(self) -> None:
        """Few listings with few reviews are lifted to the low-band floor."""
        demand = estimate_page_one_demand(_products(5, reviews=50))
        self.assertEqual(demand.total_monthly_units, 2000)
        self.assertEqual(demand.competition_level, "low")

    def test_medium_market_clamped_to_band_floor(self) -> None:
        """A mid-sized market lands on the medium-band floor."""
        demand = estimate_page_one_demand(_products(10, reviews=200))
        self.assertEqual(demand.total_monthly_units, 6000)
        self.assertEqual(demand.competition_level, "medium")

    def test_high_market_category_multiplier(self) -> None:
        """The category multiplier applies inside the high band."""
        demand = estimate_page_one_demand(
            _products(20, reviews=2000, category="Electronics")
        )
        # 20 * 400 * 1.6 * 1.3
        self.assertEqual(demand.total_monthly_units, 16640)
        self.assertEqual(demand.competition_level, "high")

    def test_unknown_sponsorship_counts_as_organic(self) -> None:
        demand = estimate_page_one_demand(_products(5, sponsored=None))
        self.assertGreater(demand.total_monthly_units, 0)


class TestTier1Estimator(unittest.TestCase):
    """End-to-end Tier-1 allocation."""

    def test_units_sum_to_total(self) -> None:
        """Allocated units add up to the heuristic total."""
        products = _products(12)
        result = Tier1Estimator.estimate(products)
        self.assertEqual(
            sum(p.estimated_monthly_units for p in products),
            result.total_units,
        )
        self.assertEqual(result.total_source, "heuristic")
        self.assertTrue(
            all(p.estimate_writer == "tier1_allocation" for p in products)
        )

    def test_known_total_used(self) -> None:
        """A stored keyword total replaces the heuristic."""
        products = _products(4)
        result = Tier1Estimator.estimate(products, known_total_units=1000)
        self.assertEqual(result.total_units, 1000)
        self.assertEqual(result.total_source, "history")
        self.assertAlmostEqual(
            result.total_revenue,
            sum(p.estimated_monthly_revenue for p in products),
            places=2,
        )

    def test_units_decay_with_rank(self) -> None:
        """Better organic rank never earns fewer units."""
        products = _products(6)
        Tier1Estimator.estimate(products, known_total_units=6000)
        units = [p.estimated_monthly_units for p in products]
        self.assertEqual(units, sorted(units, reverse=True))

    def test_sponsored_weight_damped(self) -> None:
        """Sponsored and unknown listings get damped weights."""
        organic, sponsored, unknown = _products(3)
        for p in (sponsored, unknown):
            p.page_position = 1
            p.organic_rank = None
        organic.page_position = 1
        sponsored.sponsored = True
        unknown.sponsored = None
        w = Tier1Estimator.demand_weight
        self.assertEqual(w(sponsored), w(organic) * 0.5)
        self.assertEqual(w(unknown), w(organic) * 0.75)

    def test_competition_level_reported_with_known_total(self) -> None:
        """The demand band is reported even when history sets the total."""
        products = _products(20, reviews=2000)
        result = Tier1Estimator.estimate(products, known_total_units=500)
        self.assertEqual(result.total_units, 500)
        self.assertEqual(result.competition_level, "high")

    def test_all_sponsored_page_gets_zero_units(self) -> None:
        products = _products(3, sponsored=True)
        result = Tier1Estimator.estimate(products)
        self.assertEqual(result.total_units, 0)
        self.assertEqual(result.total_revenue, 0.0)
        self.assertEqual(result.competition_level, "low")


if __name__ == "__main__":
    unittest.main()
