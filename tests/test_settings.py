# tests/test_settings.py

"""Tests for the Settings configuration class."""

import json
import unittest
from pathlib import Path

from src.config.settings import Settings


class TestSettings(unittest.TestCase):
    """Verify Settings constants and the marketplace registry."""

    def test_request_delay_is_positive_float(self) -> None:
        """REQUEST_DELAY must be a positive number."""
        self.assertIsInstance(Settings.REQUEST_DELAY, float)
        self.assertGreater(Settings.REQUEST_DELAY, 0)

    def test_max_retries_is_positive(self) -> None:
        """MAX_RETRIES must be >= 1."""
        self.assertGreaterEqual(Settings.MAX_RETRIES, 1)

    def test_default_marketplace_is_registered(self) -> None:
        """The default marketplace has a configured domain."""
        self.assertIn(
            Settings.DEFAULT_MARKETPLACE, Settings.MARKETPLACE_DOMAINS
        )

    def test_page_one_cap(self) -> None:
        """Page-1 is capped at 49 canonical products."""
        self.assertEqual(Settings.PAGE_ONE_CAP, 49)

    def test_sponsored_factors_damp_weight(self) -> None:
        """Sponsored < unknown < organic (1.0) weight factors."""
        self.assertLess(
            Settings.SPONSORED_WEIGHT_FACTOR,
            Settings.UNKNOWN_SPONSORED_WEIGHT_FACTOR,
        )
        self.assertLess(Settings.UNKNOWN_SPONSORED_WEIGHT_FACTOR, 1.0)

    def test_history_clamp_brackets_current(self) -> None:
        """The blend clamp window contains the current value."""
        self.assertLess(Settings.HISTORY_CLAMP_LOW, 1.0)
        self.assertGreater(Settings.HISTORY_CLAMP_HIGH, 1.0)

    def test_confidence_thresholds_ordered(self) -> None:
        """High threshold sits above the medium threshold."""
        self.assertGreater(
            Settings.CONFIDENCE_HIGH_THRESHOLD,
            Settings.CONFIDENCE_MEDIUM_THRESHOLD,
        )

    def test_process_ttl_shorter_than_persisted(self) -> None:
        """In-memory entries expire before persisted ones."""
        self.assertLess(
            Settings.PROCESS_CACHE_TTL, Settings.GLOBAL_CACHE_TTL
        )

    def test_path_constants_are_paths(self) -> None:
        """Path-typed settings are Path instances."""
        self.assertIsInstance(Settings.BASE_DIR, Path)
        self.assertIsInstance(Settings.SELECTORS_PATH, Path)
        self.assertIsInstance(Settings.RESULTS_DIR, Path)
        self.assertIsInstance(Settings.LOGS_DIR, Path)
        self.assertIsInstance(Settings.SNAPSHOT_DB_PATH, Path)

    def test_selectors_file_has_search_provider(self) -> None:
        """selectors.json exists and defines the search card selector."""
        with open(Settings.SELECTORS_PATH, encoding="utf-8") as f:
            selectors = json.load(f)
        self.assertIn("product_card", selectors["amazon_search"])

    def test_default_headers_has_accept_language(self) -> None:
        """DEFAULT_HEADERS must include Accept-Language."""
        self.assertIn("Accept-Language", Settings.DEFAULT_HEADERS)


if __name__ == "__main__":
    unittest.main()
