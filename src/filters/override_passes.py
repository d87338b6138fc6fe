# src/filters/override_passes.py

"""Field-level authoritative overrides applied to canonical products."""

import logging
import math
from dataclasses import dataclass
from typing import Any

from src.analysis.brand_aggregator import BrandAggregator
from src.models.canonical_product import CanonicalProduct
from src.models.listing import FULFILLMENT_VALUES

logger = logging.getLogger("pageone.filters")

SCRAPED_SOURCE = "scraped"


@dataclass(frozen=True)
class OverridePass:
    """One provider that is authoritative for a fixed set of fields."""

    source: str
    fields: tuple[str, ...]

    def apply(
        self,
        products: list[CanonicalProduct],
        overrides: dict[str, dict[str, Any]],
    ) -> int:
        """Write present override values; return the number of writes."""
        written = 0
        for product in products:
            values = overrides.get(product.asin)
            if not values:
                continue
            for name in self.fields:
                value = _coerce(name, values.get(name))
                if value is None:
                    continue
                if name == "brand":
                    product.brand_raw = value
                    product.brand = BrandAggregator.normalize_brand(value)
                else:
                    setattr(product, name, value)
                product.provenance[name] = self.source
                written += 1
        if written:
            logger.debug(
                "%s override pass wrote %d fields", self.source, written
            )
        return written


# Later passes win over earlier ones for shared fields
OVERRIDE_PASSES: tuple[OverridePass, ...] = (
    OverridePass("stored", ("category", "sales_rank")),
    OverridePass(
        "catalog", ("brand", "category", "sales_rank", "fulfillment")
    ),
    OverridePass("pricing", ("price", "fulfillment")),
)


def override_pass(source: str) -> OverridePass:
    """The registered pass for *source*."""
    for candidate in OVERRIDE_PASSES:
        if candidate.source == source:
            return candidate
    raise KeyError(f"No override pass for source '{source}'")


def apply_override_passes(
    products: list[CanonicalProduct],
    overrides_by_source: dict[str, dict[str, dict[str, Any]]],
    passes: tuple[OverridePass, ...] = OVERRIDE_PASSES,
) -> int:
    """Run every pass in order against its provider's override map."""
    total = 0
    for override_pass in passes:
        overrides = overrides_by_source.get(override_pass.source)
        if overrides:
            total += override_pass.apply(products, overrides)
    return total


# ── Private helpers ──────────────────────────────────────


def _coerce(name: str, value: Any) -> Any:
    """Validated override value, or None when absent or unusable."""
    if value is None or isinstance(value, bool):
        return None
    if name in ("brand", "category"):
        if isinstance(value, str) and value.strip():
            return " ".join(value.split())
        return None
    if name == "fulfillment":
        if isinstance(value, str):
            upper = value.strip().upper()
            if upper in FULFILLMENT_VALUES and upper != "UNKNOWN":
                return upper
        return None
    if name == "sales_rank":
        try:
            rank = float(str(value).replace(",", ""))
        except ValueError:
            return None
        return int(rank) if math.isfinite(rank) and rank >= 1 else None
    if name == "price":
        try:
            price = float(value)
        except (TypeError, ValueError):
            return None
        return round(price, 2) if math.isfinite(price) and price > 0 else None
    return value
