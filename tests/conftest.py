# tests/conftest.py

"""Suite-wide fixtures: no real sleeping, no writes into the repo."""

from collections.abc import Generator
from pathlib import Path
from unittest.mock import patch

import pytest

from src.config.settings import Settings


@pytest.fixture(autouse=True)
def mock_sleep() -> Generator[None, None, None]:
    """Patch time.sleep globally so retry and backoff loops run instantly."""
    with patch("time.sleep"):
        yield


@pytest.fixture(autouse=True)
def isolated_paths(tmp_path: Path) -> Generator[None, None, None]:
    """Point results, logs and the snapshot database at a temp dir."""
    with (
        patch.object(Settings, "RESULTS_DIR", tmp_path / "results"),
        patch.object(Settings, "LOGS_DIR", tmp_path / "logs"),
        patch.object(Settings, "SNAPSHOT_DB_PATH", tmp_path / "pageone.db"),
    ):
        yield
