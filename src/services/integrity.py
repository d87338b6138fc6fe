# src/services/integrity.py

"""Integrity checks run before a snapshot is returned or persisted."""

import logging

from src.errors import IntegrityViolation
from src.models.canonical_product import CanonicalProduct
from src.models.market_snapshot import MarketSnapshot

logger = logging.getLogger("pageone.integrity")

_REVENUE_TOLERANCE = 0.01


def verify_integrity(
    snapshot: MarketSnapshot, products: list[CanonicalProduct],
) -> None:
    """Raise :class:`IntegrityViolation` when the snapshot is inconsistent.

    Checks unique identifiers, that product units and revenue sum to the
    snapshot totals, and that every estimate came from an estimation step.
    """
    asins = [p.asin for p in products]
    if len(asins) != len(set(asins)):
        duplicates = sorted({a for a in asins if asins.count(a) > 1})
        raise IntegrityViolation(
            f"Duplicate identifiers in {snapshot.snapshot_id}: "
            f"{', '.join(duplicates)}"
        )

    if snapshot.product_count != len(products):
        raise IntegrityViolation(
            f"Snapshot {snapshot.snapshot_id} reports "
            f"{snapshot.product_count} products, has {len(products)}"
        )

    units = sum(p.estimated_monthly_units for p in products)
    if units != snapshot.total_monthly_units_est:
        raise IntegrityViolation(
            f"Units sum {units} != snapshot total "
            f"{snapshot.total_monthly_units_est} ({snapshot.snapshot_id})"
        )

    revenue = sum(p.estimated_monthly_revenue for p in products)
    if abs(revenue - snapshot.total_monthly_revenue_est) > _REVENUE_TOLERANCE:
        raise IntegrityViolation(
            f"Revenue sum {revenue:.2f} != snapshot total "
            f"{snapshot.total_monthly_revenue_est:.2f} "
            f"({snapshot.snapshot_id})"
        )

    unestimated = [
        p.asin for p in products
        if p.estimate_writer is None and p.estimated_monthly_units
    ]
    if unestimated:
        raise IntegrityViolation(
            f"Estimates without a writer: {', '.join(unestimated)}"
        )

    logger.debug(
        "Integrity verified for %s (%d products)",
        snapshot.snapshot_id,
        len(products),
    )
