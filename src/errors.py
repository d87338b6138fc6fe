# src/errors.py

"""Error taxonomy for the estimation engine.

Only :class:`InsufficientDataError` reaches the caller, and it does so as
a typed ``insufficient_data`` result. Enrichment and refinement failures
are recovered where they happen. :class:`IntegrityViolation` marks a
programming error and is always raised.
"""


class EngineError(Exception):
    """Base class for all engine errors."""


class InsufficientDataError(EngineError):
    """No usable listings survived canonicalization."""

    def __init__(self, keyword: str, marketplace: str) -> None:
        super().__init__(
            f"No usable Page-1 listings for '{keyword}' ({marketplace})"
        )
        self.keyword = keyword
        self.marketplace = marketplace


class EnrichmentFailure(EngineError):
    """A catalog or pricing lookup failed or timed out."""

    def __init__(self, enricher: str, identifiers: list[str], cause: str) -> None:
        super().__init__(
            f"{enricher} enrichment failed for {len(identifiers)} "
            f"identifiers: {cause}"
        )
        self.enricher = enricher
        self.identifiers = identifiers
        self.cause = cause


class RefinementFailure(EngineError):
    """A Tier-2 refinement job errored."""

    def __init__(self, snapshot_id: str, cause: str) -> None:
        super().__init__(f"Refinement of {snapshot_id} failed: {cause}")
        self.snapshot_id = snapshot_id
        self.cause = cause


class IntegrityViolation(EngineError):
    """Allocation sums or identifier uniqueness do not hold."""
