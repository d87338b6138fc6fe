# src/models/canonical_product.py

"""Canonical (deduplicated, ranked) Page-1 product model."""

from dataclasses import asdict, dataclass, field
from typing import Any

from src.errors import IntegrityViolation

# The only pipeline steps allowed to write unit/revenue estimates
ESTIMATE_WRITERS: frozenset[str] = frozenset({
    "tier1_allocation",
    "tier2_calibration",
})


@dataclass
class CanonicalProduct:
    """One unique identifier on Page-1 after deduplication."""

    asin: str
    title: str
    page_position: int
    organic_rank: int | None
    sponsored: bool | None
    appearance_count: int = 1
    is_algorithm_boosted: bool = False
    price: float | None = None
    rating: float | None = None
    review_count: int | None = None
    image_url: str | None = None
    brand_raw: str | None = None
    brand: str = "Unbranded"
    fulfillment: str = "UNKNOWN"
    sales_rank: int | None = None
    category: str | None = None
    estimated_monthly_units: int = 0
    estimated_monthly_revenue: float = 0.0
    revenue_share_pct: float = 0.0
    estimate_writer: str | None = None
    provenance: dict[str, str] = field(
        default_factory=lambda: dict[str, str]()
    )

    @property
    def is_sponsored(self) -> bool:
        """True only for listings known to be sponsored."""
        return self.sponsored is True

    def assign_estimate(
        self, units: int, revenue: float, writer: str,
    ) -> None:
        """Write unit and revenue estimates on behalf of *writer*.

        Raises :class:`IntegrityViolation` for any writer other than the
        Tier-1 allocation and the Tier-2 calibration steps.
        """
        if writer not in ESTIMATE_WRITERS:
            raise IntegrityViolation(
                f"{writer!r} may not write estimates for {self.asin}"
            )
        if units < 0 or revenue < 0:
            raise IntegrityViolation(
                f"Negative estimate for {self.asin}: "
                f"units={units} revenue={revenue}"
            )
        self.estimated_monthly_units = units
        self.estimated_monthly_revenue = revenue
        self.estimate_writer = writer

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a plain dict (persisted / JSON form)."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CanonicalProduct":
        """Rebuild a product from its persisted dict."""
        known = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in data.items() if k in known})
