# src/filters/listing_normalizer.py

"""Listing normalisation: loosely typed provider dicts -> strict Listings."""

import logging
import math
import re
from typing import Any

from src.config.settings import Settings
from src.models.listing import FULFILLMENT_VALUES, Listing

logger = logging.getLogger("pageone.filters")

# Placeholder identifiers emitted by upstream fallbacks; never real products
_PLACEHOLDER_PREFIXES: tuple[str, ...] = (
    "KEYWORD-",
    "ESTIMATED-",
    "INFERRED-",
    "PLACEHOLDER-",
)

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")

# Abbreviated counts as rendered on result cards: "12.3K", "1.2M"
_ABBREVIATED_COUNT_RE = re.compile(r"(\d+(?:\.\d+)?)\s*([KkMm])\b")
_COUNT_SUFFIXES: dict[str, int] = {"K": 1_000, "M": 1_000_000}

# Title-prefix brand patterns: 1-3 capitalised words, or an all-caps token
_TITLE_BRAND_RE = re.compile(r"^([A-Z][a-zA-Z]+(?:\s+[A-Z][a-zA-Z]+){0,2})")
_TITLE_CAPS_BRAND_RE = re.compile(r"^([A-Z]{2,}(?:\s+[A-Z]{2,})?)")

_FBA_DELIVERY_MARKERS: tuple[str, ...] = (
    "shipped by amazon",
    "fulfilled by amazon",
    "ships from amazon",
)


class ListingNormalizer:
    """Map raw provider records onto :class:`Listing`.

    Malformed fields become ``None`` instead of raising. Records whose
    identifier does not match the marketplace format are rejected.
    """

    @staticmethod
    def identifier_pattern(marketplace: str) -> re.Pattern[str]:
        """Compiled identifier regex for *marketplace*."""
        pattern = Settings.IDENTIFIER_PATTERNS.get(
            marketplace.upper(), Settings.DEFAULT_IDENTIFIER_PATTERN
        )
        return re.compile(pattern)

    @staticmethod
    def clean_identifier(
        value: Any, marketplace: str = Settings.DEFAULT_MARKETPLACE,
    ) -> str | None:
        """Return the upper-cased identifier, or None when invalid."""
        if not isinstance(value, str):
            return None
        asin = value.strip().upper()
        if not asin or asin.startswith(_PLACEHOLDER_PREFIXES):
            return None
        if not ListingNormalizer.identifier_pattern(marketplace).match(asin):
            return None
        return asin

    @staticmethod
    def normalize(
        raw: dict[str, Any],
        source: str,
        marketplace: str = Settings.DEFAULT_MARKETPLACE,
    ) -> Listing | None:
        """Normalise one raw record; None when the identifier is invalid."""
        asin = ListingNormalizer.clean_identifier(
            raw.get("asin", raw.get("ASIN")), marketplace
        )
        if asin is None:
            logger.debug(
                "Rejected listing with invalid identifier %r (source=%s)",
                raw.get("asin", raw.get("ASIN")),
                source,
            )
            return None

        title = raw.get("title", raw.get("Title")) or ""
        if not isinstance(title, str):
            title = str(title)
        title = " ".join(title.split())

        listing = Listing(
            asin=asin,
            title=title,
            position=_to_int(raw.get("position", raw.get("rank"))) or 0,
            price=_parse_price(raw.get("price")),
            rating=_parse_rating(raw.get("rating")),
            review_count=_parse_reviews(
                raw.get("review_count", raw.get("reviews"))
            ),
            image_url=_parse_image(
                raw.get("image_url", raw.get("image"))
            ),
            sponsored=_parse_sponsored(raw),
            source=source,
        )

        sources = listing.field_sources
        for name in ("price", "rating", "review_count", "image_url"):
            if getattr(listing, name) is not None:
                sources[name] = source
        if listing.sponsored is not None:
            sources["sponsored"] = source

        explicit_brand = raw.get("brand", raw.get("Brand"))
        if isinstance(explicit_brand, str) and explicit_brand.strip():
            listing.brand = explicit_brand.strip()
            sources["brand"] = source
        else:
            inferred = infer_brand_from_title(title)
            if inferred:
                listing.brand = inferred
                sources["brand"] = "title_parse"

        rank, category = _extract_sales_rank(raw)
        if rank is not None:
            listing.sales_rank = rank
            sources["sales_rank"] = source
        if category:
            listing.category = category
            sources["category"] = source

        listing.fulfillment = infer_fulfillment(raw)
        if listing.fulfillment != "UNKNOWN":
            sources["fulfillment"] = source

        return listing

    @staticmethod
    def normalize_all(
        raws: list[dict[str, Any]],
        source: str,
        marketplace: str = Settings.DEFAULT_MARKETPLACE,
    ) -> tuple[list[Listing], int]:
        """Normalise a batch, assigning positions by input order if missing.

        Returns the listings and the count of rejected records.
        """
        listings: list[Listing] = []
        rejected = 0

        for index, raw in enumerate(raws, start=1):
            if not isinstance(raw, dict):
                rejected += 1
                continue
            listing = ListingNormalizer.normalize(raw, source, marketplace)
            if listing is None:
                rejected += 1
                continue
            if listing.position <= 0:
                listing.position = index
            listings.append(listing)

        if rejected:
            logger.info(
                "Normalisation rejected %d of %d %s listings",
                rejected,
                len(raws),
                source,
            )

        return listings, rejected


def infer_brand_from_title(title: str | None) -> str | None:
    """Best-effort brand guess from the leading words of a title."""
    if not title or not title.strip():
        return None
    match = _TITLE_BRAND_RE.match(title)
    if match:
        return match.group(1).strip()
    match = _TITLE_CAPS_BRAND_RE.match(title)
    if match:
        return match.group(1).strip()
    return None


def infer_fulfillment(raw: dict[str, Any]) -> str:
    """Infer the fulfillment channel; UNKNOWN rather than guessing FBM."""
    explicit = raw.get("fulfillment")
    if isinstance(explicit, str) and explicit.upper() in FULFILLMENT_VALUES:
        if explicit.upper() != "UNKNOWN":
            return explicit.upper()

    sold_by = raw.get("sold_by")
    if isinstance(sold_by, str) and sold_by.strip().lower() in (
        "amazon", "amazon.com", "amazon.co.uk", "amazon.ca", "amazon.ae",
    ):
        return "AMZ"

    if raw.get("is_prime") is True:
        return "FBA"

    delivery = raw.get("delivery")
    if isinstance(delivery, dict):
        delivery = " ".join(
            str(delivery.get(k) or "")
            for k in ("tagline", "text", "message")
        )
    if isinstance(delivery, str) and delivery.strip():
        text = delivery.lower()
        if any(marker in text for marker in _FBA_DELIVERY_MARKERS):
            return "FBA"
        if "ships from" in text and "amazon" not in text:
            return "FBM"

    if raw.get("is_fba") is True or raw.get("fba") is True:
        return "FBA"

    return "UNKNOWN"


# ── Private helpers ──────────────────────────────────────


def _to_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    number: float | None = None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        match = _NUMBER_RE.search(value.replace(",", ""))
        if match:
            number = float(match.group())
    if number is None or not math.isfinite(number):
        return None
    return number


def _to_int(value: Any) -> int | None:
    number = _to_float(value)
    if number is None:
        return None
    return int(number)


def _parse_price(value: Any) -> float | None:
    if isinstance(value, dict):
        value = value.get("value", value.get("raw"))
    price = _to_float(value)
    if price is None or price <= 0:
        return None
    return round(price, 2)


def _parse_rating(value: Any) -> float | None:
    rating = _to_float(value)
    if rating is None or not 0 <= rating <= 5:
        return None
    return rating


def _parse_reviews(value: Any) -> int | None:
    if isinstance(value, dict):
        value = value.get("count")
    if isinstance(value, str):
        match = _ABBREVIATED_COUNT_RE.search(value.replace(",", ""))
        if match:
            scale = _COUNT_SUFFIXES[match.group(2).upper()]
            return round(float(match.group(1)) * scale)
    count = _to_int(value)
    if count is None or count < 0:
        return None
    return count


def _parse_image(value: Any) -> str | None:
    if isinstance(value, dict):
        value = value.get("link")
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _parse_sponsored(raw: dict[str, Any]) -> bool | None:
    for key in ("is_sponsored", "isSponsored", "sponsored"):
        value = raw.get(key)
        if isinstance(value, bool):
            return value
    return None


def _extract_sales_rank(
    raw: dict[str, Any],
) -> tuple[int | None, str | None]:
    """Main-category sales rank and category, if any."""
    ranks = raw.get("bestsellers_rank")
    if isinstance(ranks, list) and ranks and isinstance(ranks[0], dict):
        main = ranks[0]
        rank = _to_int(main.get("rank"))
        if rank is not None and rank > 0:
            category = main.get("category") or main.get("category_name")
            return rank, category if isinstance(category, str) else None

    for key in ("main_category_bsr", "bsr"):
        rank = _to_int(raw.get(key))
        if rank is not None and rank > 0:
            category = raw.get("main_category") or raw.get("category")
            return rank, category if isinstance(category, str) else None

    category = raw.get("main_category") or raw.get("category")
    return None, category if isinstance(category, str) else None
