# src/estimation/calibration.py

"""Historical blending and calibration multipliers for Tier-2 totals."""

import logging
from dataclasses import dataclass

from src.config.settings import Settings

logger = logging.getLogger("pageone.estimation")

CONFIDENCE_LEVELS: frozenset[str] = frozenset({"high", "medium", "low"})


@dataclass
class CalibrationProfile:
    """Stored correction factor for a keyword or a category."""

    profile_key: str
    kind: str  # "keyword" or "category"
    multiplier: float = 1.0
    confidence: str = "low"
    sample_size: int = 0


@dataclass
class BlendResult:
    """Outcome of blending a current total with keyword history."""

    units: int
    applied: bool
    history_points: int
    history_avg: float | None = None


def clamp_multiplier(value: float) -> float:
    """Clamp a calibration multiplier into the configured bounds."""
    return max(
        Settings.CALIBRATION_MULTIPLIER_MIN,
        min(Settings.CALIBRATION_MULTIPLIER_MAX, value),
    )


def blend_with_history(current: int, history: list[int]) -> BlendResult:
    """Blend *current* total units with trailing keyword observations.

    Needs at least ``HISTORY_MIN_POINTS`` observations; the blended value
    is clamped to ``[HISTORY_CLAMP_LOW, HISTORY_CLAMP_HIGH]`` times the
    current value.
    """
    points = [h for h in history if h is not None and h > 0]
    if current <= 0 or len(points) < Settings.HISTORY_MIN_POINTS:
        return BlendResult(current, False, len(points))

    avg = sum(points) / len(points)
    weight = Settings.HISTORY_CURRENT_WEIGHT
    blended = weight * current + (1 - weight) * avg
    low = current * Settings.HISTORY_CLAMP_LOW
    high = current * Settings.HISTORY_CLAMP_HIGH
    blended = max(low, min(high, blended))

    logger.debug(
        "Blended %d current units with %d-point history avg %.1f -> %.1f",
        current,
        len(points),
        avg,
        blended,
    )
    return BlendResult(int(round(blended)), True, len(points), avg)


def apply_calibration(
    units: int, profile: CalibrationProfile | None,
) -> tuple[int, dict[str, object] | None]:
    """Scale *units* by the profile multiplier.

    Returns the calibrated units and a log entry, or the input and None
    when no profile applies.
    """
    if profile is None:
        return units, None

    multiplier = clamp_multiplier(profile.multiplier)
    confidence = (
        profile.confidence if profile.confidence in CONFIDENCE_LEVELS
        else "low"
    )
    calibrated = max(int(round(units * multiplier)), 0)
    entry: dict[str, object] = {
        "profile_key": profile.profile_key,
        "kind": profile.kind,
        "multiplier": multiplier,
        "confidence": confidence,
        "sample_size": profile.sample_size,
        "units_before": units,
        "units_after": calibrated,
    }
    logger.info(
        "Applied %s calibration '%s': x%.3f (%s confidence), "
        "%d -> %d units",
        profile.kind,
        profile.profile_key,
        multiplier,
        confidence,
        units,
        calibrated,
    )
    return calibrated, entry
