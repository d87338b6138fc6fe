# src/scrapers/amazon_scraper.py

"""Page-one listing provider backed by Amazon search result pages."""

from typing import Any
from urllib.parse import quote_plus

from bs4 import Tag

from src.scrapers.base_scraper import BaseScraper


class AmazonSearchScraper(BaseScraper):
    """Parse the first search results page into raw listing dicts."""

    def __init__(self) -> None:
        super().__init__("amazon_search")

    def _domain(self, marketplace: str) -> str:
        domains = self.settings.MARKETPLACE_DOMAINS
        return domains.get(
            marketplace.upper(),
            domains[self.settings.DEFAULT_MARKETPLACE],
        )

    def _get_homepage(self, marketplace: str) -> str:
        return f"https://{self._domain(marketplace)}/"

    def search_url(self, keyword: str, marketplace: str) -> str:
        return f"https://{self._domain(marketplace)}/s?k={quote_plus(keyword)}"

    def _select(self, card: Tag, key: str) -> Tag | None:
        selector = self.selectors.get(key, "")
        return card.select_one(selector) if selector else None

    def _text(self, card: Tag, key: str) -> str | None:
        el = self._select(card, key)
        if el is None:
            return None
        text = el.get_text(" ", strip=True)
        return text or None

    def _is_sponsored(self, card: Tag) -> bool:
        if self._select(card, "sponsored_label") is not None:
            return True
        return any(
            span.get_text(strip=True).lower() == "sponsored"
            for span in card.select("span")
        )

    def _parse_card(self, card: Tag, position: int) -> dict[str, Any]:
        """Parse one result card into a raw listing dict."""
        image_el = self._select(card, "image")
        raw: dict[str, Any] = {
            "asin": str(card.get("data-asin", "")).strip(),
            "title": self._text(card, "title") or "",
            "position": position,
            "price": self.extract_price(self._text(card, "price")),
            "rating": self._text(card, "rating"),
            "reviews": self._text(card, "reviews"),
            "image": image_el.get("src") if image_el else None,
            "is_sponsored": self._is_sponsored(card),
            "is_prime": self._select(card, "prime_badge") is not None,
            "delivery": self._text(card, "delivery"),
        }
        brand = self._text(card, "brand")
        if brand:
            raw["brand"] = brand
        return raw

    def fetch_page_one(
        self, keyword: str, marketplace: str,
    ) -> list[dict[str, Any]]:
        """Raw listings from page one, in display order."""
        try:
            url = self.search_url(keyword, marketplace)
            self.logger.info(
                "[%s] Fetching page one for '%s' (%s)",
                self.name,
                keyword,
                marketplace,
            )
            soup = self._get_page(url, marketplace)
            if not soup:
                return []

            listings: list[dict[str, Any]] = []
            for card in soup.select(self.selectors["product_card"]):
                if not str(card.get("data-asin", "")).strip():
                    continue
                listings.append(self._parse_card(card, len(listings) + 1))

            self.logger.info(
                "[%s] Parsed %d listings for '%s'",
                self.name,
                len(listings),
                keyword,
            )
            return listings
        except Exception as e:
            self.logger.error(
                "[%s] Search failed: %s", self.name, e, exc_info=True
            )
            return []
