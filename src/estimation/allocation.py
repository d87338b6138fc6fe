# src/estimation/allocation.py

"""Integer unit allocation and revenue derivation shared by both tiers."""

import math

from src.config.settings import Settings
from src.models.canonical_product import CanonicalProduct


def allocate_units(weights: list[float], total: int) -> list[int]:
    """Split *total* in proportion to *weights* by largest remainder.

    The returned integers always sum to *total*. Ties on the fractional
    part go to the earlier index.
    """
    if not weights or total <= 0:
        return [0] * len(weights)
    weight_sum = sum(w for w in weights if w > 0)
    if weight_sum <= 0:
        weights = [1.0] * len(weights)
        weight_sum = float(len(weights))

    quotas = [max(w, 0.0) / weight_sum * total for w in weights]
    units = [math.floor(q) for q in quotas]
    leftover = total - sum(units)
    order = sorted(
        range(len(quotas)),
        key=lambda i: (-(quotas[i] - units[i]), i),
    )
    for i in order[:leftover]:
        units[i] += 1
    return units


def market_average_price(products: list[CanonicalProduct]) -> float:
    """Mean of known prices, or the configured fallback."""
    prices = [p.price for p in products if p.price and p.price > 0]
    if not prices:
        return Settings.FALLBACK_MEDIAN_PRICE
    return sum(prices) / len(prices)


def apply_allocation(
    products: list[CanonicalProduct],
    units: list[int],
    writer: str,
) -> float:
    """Write units and revenue onto *products*; return total revenue.

    Revenue uses each product's own price, or the market average price
    when it has none, rounded to cents. Revenue shares are recomputed.
    """
    avg_price = market_average_price(products)
    for product, product_units in zip(products, units):
        price = product.price if product.price else avg_price
        product.assign_estimate(
            product_units, round(product_units * price, 2), writer
        )

    total_revenue = round(
        sum(p.estimated_monthly_revenue for p in products), 2
    )
    for product in products:
        product.revenue_share_pct = (
            round(product.estimated_monthly_revenue / total_revenue * 100, 2)
            if total_revenue > 0 else 0.0
        )
    return total_revenue
