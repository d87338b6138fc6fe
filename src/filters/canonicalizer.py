# src/filters/canonicalizer.py

"""Page-1 canonicalization: dedup, rank semantics, overrides, page cap."""

import logging
from typing import Any

from src.analysis.brand_aggregator import BrandAggregator
from src.config.settings import Settings
from src.filters.listing_normalizer import ListingNormalizer
from src.filters.override_passes import SCRAPED_SOURCE, apply_override_passes
from src.models.canonical_product import CanonicalProduct
from src.models.listing import Listing

logger = logging.getLogger("pageone.filters")

# Fields whose winning source is tracked in CanonicalProduct.provenance
PROVENANCE_FIELDS: tuple[str, ...] = (
    "price",
    "brand",
    "fulfillment",
    "sales_rank",
    "category",
)

# Fields a survivor may borrow from its duplicates when missing
_FILLABLE_FIELDS: tuple[str, ...] = (
    "price",
    "rating",
    "review_count",
    "image_url",
    "brand",
    "sales_rank",
    "category",
)


class Canonicalizer:
    """Collapse Page-1 listings into one authoritative record per asin."""

    @staticmethod
    def _sponsorship_priority(sponsored: bool | None) -> int:
        """Organic beats unknown beats sponsored."""
        if sponsored is False:
            return 0
        if sponsored is None:
            return 1
        return 2

    @staticmethod
    def _survivor_key(listing: Listing) -> tuple[int, int]:
        return (
            Canonicalizer._sponsorship_priority(listing.sponsored),
            listing.position,
        )

    @staticmethod
    def canonicalize(
        listings: list[Listing],
        marketplace: str = Settings.DEFAULT_MARKETPLACE,
        overrides_by_source: (
            dict[str, dict[str, dict[str, Any]]] | None
        ) = None,
        cap: int | None = None,
    ) -> tuple[list[CanonicalProduct], int]:
        """Build the canonical product set.

        Steps:
        1. Drop listings whose identifier fails the marketplace format.
        2. Group by asin and keep one survivor per group.
        3. Assign organic ranks to known-organic survivors.
        4. Apply the override passes, recording provenance.
        5. Truncate to the page cap, preserving page order.

        Returns the canonical products and the count of dropped listings
        (invalid identifiers plus collapsed duplicates).
        """
        if cap is None:
            cap = Settings.PAGE_ONE_CAP

        groups: dict[str, list[Listing]] = {}
        invalid = 0
        for listing in listings:
            asin = ListingNormalizer.clean_identifier(
                listing.asin, marketplace
            )
            if asin is None:
                invalid += 1
                continue
            groups.setdefault(asin, []).append(listing)

        if invalid:
            logger.info(
                "Canonicalization rejected %d listings with invalid "
                "identifiers",
                invalid,
            )

        products = [
            Canonicalizer._merge_group(asin, group)
            for asin, group in groups.items()
        ]
        products.sort(key=lambda p: (p.page_position, p.asin))

        organic_rank = 0
        for product in products:
            if product.sponsored is False:
                organic_rank += 1
                product.organic_rank = organic_rank

        if overrides_by_source:
            apply_override_passes(products, overrides_by_source)

        duplicates = sum(len(g) - 1 for g in groups.values())
        if duplicates:
            logger.info(
                "Canonicalization collapsed %d duplicate listings",
                duplicates,
            )
        if len(products) > cap:
            logger.info(
                "Truncating %d canonical products to page cap %d",
                len(products),
                cap,
            )
            products = products[:cap]

        return products, invalid + duplicates

    # ── Private helpers ──────────────────────────────────────

    @staticmethod
    def _merge_group(asin: str, group: list[Listing]) -> CanonicalProduct:
        """Pick the survivor and fill its gaps from the other occurrences."""
        ordered = sorted(group, key=Canonicalizer._survivor_key)
        survivor = ordered[0]
        appearances = len(group)

        values: dict[str, Any] = {}
        sources: dict[str, str] = {}
        for name in _FILLABLE_FIELDS:
            for listing in ordered:
                value = getattr(listing, name)
                if value is not None:
                    values[name] = value
                    sources[name] = listing.field_sources.get(
                        name, listing.source
                    )
                    break

        fulfillment = next(
            (
                listing.fulfillment for listing in ordered
                if listing.fulfillment != "UNKNOWN"
            ),
            "UNKNOWN",
        )

        product = CanonicalProduct(
            asin=asin,
            title=survivor.title,
            page_position=survivor.position,
            organic_rank=None,
            sponsored=survivor.sponsored,
            appearance_count=appearances,
            is_algorithm_boosted=(
                appearances >= Settings.ALGORITHM_BOOST_MIN_APPEARANCES
            ),
            price=values.get("price"),
            rating=values.get("rating"),
            review_count=values.get("review_count"),
            image_url=values.get("image_url"),
            brand_raw=values.get("brand"),
            brand=BrandAggregator.normalize_brand(values.get("brand")),
            fulfillment=fulfillment,
            sales_rank=values.get("sales_rank"),
            category=values.get("category"),
        )

        for name in PROVENANCE_FIELDS:
            if name == "fulfillment":
                if fulfillment != "UNKNOWN":
                    product.provenance[name] = SCRAPED_SOURCE
                continue
            if name in values:
                product.provenance[name] = (
                    sources[name] if sources[name] == "title_parse"
                    else SCRAPED_SOURCE
                )
        return product
