# src/config/settings.py

"""Central configuration for the pageone estimation engine."""

import os
from pathlib import Path

from curl_cffi.requests import BrowserTypeLiteral
from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Central configuration for the pageone estimation engine."""

    # --- Scraping ---
    REQUEST_DELAY: float = 2.0          # Seconds between requests
    REQUEST_TIMEOUT: int = 15           # Seconds before a request times out
    MAX_RETRIES: int = 3                # Retry count on transient failures

    # --- Resilience ---
    CIRCUIT_BREAKER_THRESHOLD: int = 3  # Consecutive failures to trip
    CIRCUIT_BREAKER_COOLDOWN: float = 120.0  # Seconds before half-open
    MAX_DELAY_MULTIPLIER: int = 8       # Cap for adaptive backoff
    CAPTCHA_KEYWORDS: list[str] = [
        "captcha",
        "verify you are human",
        "unusual traffic",
        "automated requests",
        "enter the characters you see below",
    ]

    # --- Browser Impersonation ---
    IMPERSONATE_BROWSER: BrowserTypeLiteral = "chrome131"
    DEFAULT_HEADERS: dict[str, str] = {
        "Accept": (
            "text/html,application/xhtml+xml,"
            "application/xml;q=0.9,image/avif,"
            "image/webp,image/apng,*/*;q=0.8"
        ),
        "Accept-Language": "en-US,en;q=0.9",
        "sec-ch-ua": (
            '"Google Chrome";v="131", '
            '"Chromium";v="131", '
            '"Not_A Brand";v="24"'
        ),
        "sec-ch-ua-mobile": "?0",
        "sec-ch-ua-platform": '"Windows"',
        "sec-fetch-dest": "document",
        "sec-fetch-mode": "navigate",
        "sec-fetch-site": "none",
        "sec-fetch-user": "?1",
        "Upgrade-Insecure-Requests": "1",
    }

    # --- Marketplaces ---
    DEFAULT_MARKETPLACE: str = "US"
    MARKETPLACE_DOMAINS: dict[str, str] = {
        "US": "www.amazon.com",
        "CA": "www.amazon.ca",
        "UK": "www.amazon.co.uk",
        "AE": "www.amazon.ae",
    }
    DEFAULT_IDENTIFIER_PATTERN: str = r"^[A-Z0-9]{10}$"
    IDENTIFIER_PATTERNS: dict[str, str] = {}  # Per-marketplace overrides

    # --- Canonicalization ---
    PAGE_ONE_CAP: int = 49              # Hard cap on canonical products
    ALGORITHM_BOOST_MIN_APPEARANCES: int = 2

    # --- Tier-1 estimation ---
    RANK_DECAY_EXPONENT: float = 0.7
    SPONSORED_WEIGHT_FACTOR: float = 0.5
    UNKNOWN_SPONSORED_WEIGHT_FACTOR: float = 0.75
    BASE_UNITS_PER_ORGANIC_LISTING: int = 400
    FALLBACK_MEDIAN_PRICE: float = 25.0
    TIER1_TIMEOUT: float = 10.0         # Seconds, fetch + enrichment

    # --- Tier-2 refinement ---
    HISTORY_WINDOW_DAYS: int = 30
    HISTORY_MIN_POINTS: int = 3
    HISTORY_CURRENT_WEIGHT: float = 0.7
    HISTORY_CLAMP_LOW: float = 0.5
    HISTORY_CLAMP_HIGH: float = 1.4
    CALIBRATION_MULTIPLIER_MIN: float = 0.1
    CALIBRATION_MULTIPLIER_MAX: float = 10.0
    BSR_DUPLICATE_MIN_COUNT: int = 8    # Rank shared this often is bogus
    STORED_FACTS_TTL: float = 172800.0  # 48 hours, reuse of past sales ranks

    # --- Enrichment ---
    MAX_ENRICHMENT_CALLS: int = 4       # Per request, shared by reference
    ENRICHMENT_BATCH_SIZE: int = 20     # Identifiers per enricher call
    ENRICHMENT_TIMEOUT: float = 5.0     # Seconds per enricher call

    # --- Confidence ---
    CONFIDENCE_HIGH_THRESHOLD: int = 70
    CONFIDENCE_MEDIUM_THRESHOLD: int = 40

    # --- Competition signals ---
    PRICE_COMPETITION_MIN_LISTINGS: int = 10
    SELLER_STAGE_MODIFIERS: dict[str, float] = {
        "new": 1.2,
        "existing": 0.9,
        "scaling": 0.8,
    }

    # --- Cache ---
    PROCESS_CACHE_TTL: float = 600.0    # 10 minutes
    GLOBAL_CACHE_TTL: float = 86400.0   # 24 hours
    CALLER_CACHE_TTL: float = 86400.0   # 24 hours
    SNAPSHOT_STALE_AFTER: float = 86400.0

    # --- Logging ---
    LOG_CONSOLE_LEVEL: str = os.getenv("PAGEONE_LOG_LEVEL", "WARNING").upper()
    QUIET_LOGGERS: tuple[str, ...] = ("urllib3", "cloudscraper", "asyncio")

    # --- Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    DATA_DIR: Path = Path(
        os.getenv("PAGEONE_DATA_DIR", str(BASE_DIR / "data"))
    )
    SELECTORS_PATH: Path = BASE_DIR / "src" / "config" / "selectors.json"
    RESULTS_DIR: Path = BASE_DIR / "results"
    LOGS_DIR: Path = BASE_DIR / "logs"
    SNAPSHOT_DB_PATH: Path = DATA_DIR / "pageone.db"
