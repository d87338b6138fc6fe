# src/storage/file_manager.py

"""Exports built snapshots to disk."""

import csv
import json
import logging
from datetime import datetime
from pathlib import Path

from src.config.settings import Settings
from src.models.canonical_product import CanonicalProduct
from src.models.market_snapshot import MarketSnapshot

logger = logging.getLogger("pageone.storage")

_CSV_COLUMNS: tuple[str, ...] = (
    "page_position",
    "organic_rank",
    "asin",
    "title",
    "brand",
    "price",
    "rating",
    "review_count",
    "sponsored",
    "fulfillment",
    "estimated_monthly_units",
    "estimated_monthly_revenue",
    "revenue_share_pct",
)


class FileManager:
    """Writes snapshot JSON and product CSV files under results/."""

    def __init__(self, results_dir: Path | None = None) -> None:
        self.results_dir: Path = results_dir or Settings.RESULTS_DIR
        self.results_dir.mkdir(parents=True, exist_ok=True)
        logger.debug("FileManager initialised, results_dir=%s", self.results_dir)

    def _stem(self, snapshot: MarketSnapshot) -> str:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        keyword = snapshot.keyword.replace(" ", "_")
        return f"{snapshot.marketplace}_{keyword}_{timestamp}"

    def save_snapshot(
        self,
        snapshot: MarketSnapshot,
        products: list[CanonicalProduct],
    ) -> Path:
        """Save the snapshot and its products to a timestamped JSON file."""
        filepath = self.results_dir / f"{self._stem(snapshot)}.json"
        data = {
            "snapshot": snapshot.to_dict(),
            "products": [p.to_dict() for p in products],
        }
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)

        logger.info(
            "Saved snapshot %s (%d products) to %s",
            snapshot.snapshot_id,
            len(products),
            filepath,
        )
        return filepath

    def export_csv(
        self,
        snapshot: MarketSnapshot,
        products: list[CanonicalProduct],
    ) -> Path:
        """Export products to a CSV file in page order."""
        filepath = self.results_dir / f"export_{self._stem(snapshot)}.csv"
        ordered = sorted(products, key=lambda p: p.page_position)

        with open(filepath, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(_CSV_COLUMNS)
            for p in ordered:
                writer.writerow([getattr(p, col) for col in _CSV_COLUMNS])

        logger.info(
            "Exported %d products for '%s' to %s",
            len(products),
            snapshot.keyword,
            filepath,
        )
        return filepath
