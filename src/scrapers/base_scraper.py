# src/scrapers/base_scraper.py

"""Scraping transport shared by every page-one listing provider.

A provider fetches one search page per call. Failures are absorbed here
(retries, adaptive delay, circuit breaker, cloudscraper fallback) so a
provider either returns parsed HTML or ``None``.
"""

import json
import logging
import re
import time
from abc import abstractmethod
from typing import Any

import cloudscraper  # type: ignore[import-untyped]
from bs4 import BeautifulSoup
from curl_cffi import requests as curl_requests

from src.config.settings import Settings
from src.services.contracts import ListingProvider

# Statuses that mean "slow down" rather than "broken"
THROTTLE_STATUSES: frozenset[int] = frozenset({403, 429, 503})

# Cloudflare interstitial markers, checked before the CAPTCHA keyword scan
_CF_CHALLENGE_MARKERS: tuple[str, ...] = (
    "challenges.cloudflare.com",
    "cdn-cgi/challenge-platform",
    "just a moment",
    "cf-turnstile",
    "cf_chl_opt",
)

# Result pages longer than this are real content even if they mention
# a CAPTCHA keyword somewhere in a product title
_CONTENT_PAGE_MIN_LENGTH = 5000


class CircuitBreaker:
    """Consecutive-failure breaker with a timed half-open trial."""

    def __init__(self, threshold: int, cooldown: float) -> None:
        self.threshold = threshold
        self.cooldown = cooldown
        self.failures: int = 0
        self.is_open: bool = False
        self.opened_at: float = 0.0

    def blocks(self) -> bool:
        """True while open and still cooling down."""
        if not self.is_open:
            return False
        if time.time() - self.opened_at >= self.cooldown:
            # half-open: let one trial request through
            self.is_open = False
            return False
        return True

    def succeed(self) -> None:
        self.failures = 0
        self.is_open = False
        self.opened_at = 0.0

    def fail(self) -> bool:
        """Count a failure; return True when this one trips the breaker."""
        self.failures += 1
        if self.failures >= self.threshold and not self.is_open:
            self.is_open = True
            self.opened_at = time.time()
            return True
        return False


class AdaptiveDelay:
    """Request spacing that doubles on throttling, up to a cap."""

    def __init__(self, base: float, max_multiplier: int) -> None:
        self.base = base
        self.ceiling = base * max_multiplier
        self.current: float = base

    def escalate(self) -> float:
        self.current = min(self.current * 2, self.ceiling)
        return self.current

    def reset(self) -> None:
        self.current = self.base

    def wait(self, factor: int = 1) -> None:
        time.sleep(self.current * factor)


class BaseScraper(ListingProvider):
    """HTML listing provider with retries, backoff and a circuit breaker.

    Subclasses implement :meth:`fetch_page_one` and
    :meth:`_get_homepage`; CSS selectors come from ``selectors.json``
    under the scraper's ``name``.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.logger = logging.getLogger(f"pageone.scrapers.{name}")
        self.settings = Settings()
        self.selectors: dict[str, str] = self._load_selectors()
        self.session = curl_requests.Session(
            impersonate=self.settings.IMPERSONATE_BROWSER
        )
        self.breaker = CircuitBreaker(
            self.settings.CIRCUIT_BREAKER_THRESHOLD,
            self.settings.CIRCUIT_BREAKER_COOLDOWN,
        )
        self.delay = AdaptiveDelay(
            self.settings.REQUEST_DELAY, self.settings.MAX_DELAY_MULTIPLIER
        )
        self.request_timeout: int = self.settings.REQUEST_TIMEOUT

    def _load_selectors(self) -> dict[str, str]:
        with open(self.settings.SELECTORS_PATH, encoding="utf-8") as f:
            all_selectors: dict[str, Any] = json.load(f)
        return dict(all_selectors.get(self.name, {}))

    def _rejection_reason(self, text: str) -> str | None:
        """Why a 200 body is a block page, or None if it is usable."""
        if text.lstrip().startswith(("{", "[")):
            return None
        lower = text.lower()
        marker = next((m for m in _CF_CHALLENGE_MARKERS if m in lower), None)
        if marker:
            return f"cloudflare challenge ({marker})"
        if "<body" in lower and len(text) > _CONTENT_PAGE_MIN_LENGTH:
            return None
        keyword = next(
            (k for k in self.settings.CAPTCHA_KEYWORDS if k in lower), None
        )
        return f"captcha keyword '{keyword}'" if keyword else None

    def _throttled(self, reason: str) -> None:
        delay = self.delay.escalate()
        self.logger.warning(
            "[%s] %s, delay now %.1fs", self.name, reason, delay
        )
        self.delay.wait()

    # ── Fetching ─────────────────────────────────────────

    def _fetch_html(self, url: str, headers: dict[str, str]) -> str | None:
        """GET *url* through the impersonating session, or None."""
        if self.breaker.blocks():
            return None
        for attempt in range(1, self.settings.MAX_RETRIES + 1):
            try:
                resp = self.session.get(
                    url, headers=headers, timeout=self.request_timeout,
                )
            except Exception as exc:
                self.logger.warning(
                    "[%s] Request error on attempt %d: %s",
                    self.name, attempt, exc, exc_info=True,
                )
                self.delay.wait(attempt)
                continue

            if resp.status_code == 200:
                reason = self._rejection_reason(resp.text)
                if reason is None:
                    self.breaker.succeed()
                    self.delay.reset()
                    return str(resp.text)
                self._throttled(f"Block page: {reason}")
                continue

            self.logger.warning(
                "[%s] HTTP %d on attempt %d",
                self.name, resp.status_code, attempt,
            )
            if resp.status_code in THROTTLE_STATUSES:
                self._throttled(f"HTTP {resp.status_code}")

        if self.breaker.fail():
            self.logger.error(
                "[%s] Circuit breaker opened after %d consecutive failures",
                self.name, self.breaker.failures,
            )
        return None

    def _fetch_fallback(self, url: str, headers: dict[str, str]) -> str | None:
        """Second chance through cloudscraper's JS challenge solver."""
        self.logger.info("[%s] Falling back to cloudscraper", self.name)
        try:
            client: Any = cloudscraper.create_scraper()
            resp: Any = client.get(
                url, headers=headers, timeout=self.request_timeout,
            )
        except Exception as exc:
            self.logger.error(
                "[%s] cloudscraper fallback failed: %s",
                self.name, exc, exc_info=True,
            )
            return None
        return str(resp.text) if resp.status_code == 200 else None

    def _get_page(self, url: str, marketplace: str) -> BeautifulSoup | None:
        """Fetch and parse one marketplace page."""
        if self.breaker.blocks():
            return None
        headers = {
            **self.settings.DEFAULT_HEADERS,
            "Referer": self._get_homepage(marketplace),
        }
        self.delay.wait()
        html = self._fetch_html(url, headers)
        if html is None:
            html = self._fetch_fallback(url, headers)
        return BeautifulSoup(html, "lxml") if html is not None else None

    @staticmethod
    def extract_price(text: str | None) -> float | None:
        """Numeric price from text like '$1,299.00'; None if absent."""
        if not text:
            return None
        numbers = re.findall(r"\d+(?:\.\d+)?", text.replace(",", ""))
        return float(numbers[0]) if numbers else None

    @abstractmethod
    def _get_homepage(self, marketplace: str) -> str:
        """Marketplace homepage URL, sent as the Referer."""
        ...
