# src/models/listing.py

"""Listing data model for inter-module data flow."""

from dataclasses import dataclass, field

FULFILLMENT_VALUES: frozenset[str] = frozenset({"FBA", "FBM", "AMZ", "UNKNOWN"})


@dataclass
class Listing:
    """One observed occurrence of a product on a Page-1 result list."""

    asin: str
    title: str
    position: int
    price: float | None = None
    rating: float | None = None
    review_count: int | None = None
    image_url: str | None = None
    brand: str | None = None
    fulfillment: str = "UNKNOWN"  # "FBA", "FBM", "AMZ", "UNKNOWN"
    sponsored: bool | None = None  # None = unknown
    sales_rank: int | None = None
    category: str | None = None
    source: str = ""
    field_sources: dict[str, str] = field(
        default_factory=lambda: dict[str, str]()
    )
