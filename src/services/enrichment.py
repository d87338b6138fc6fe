# src/services/enrichment.py

"""Catalog and pricing enrichment under a per-request call budget."""

import asyncio
import logging
from typing import Any

from src.config.settings import Settings
from src.errors import EnrichmentFailure
from src.services.contracts import CatalogEnricher, PricingEnricher
from src.storage.cache_manager import CacheManager, RefreshFn

logger = logging.getLogger("pageone.enrichment")

Enricher = CatalogEnricher | PricingEnricher


class CallBudget:
    """Maximum number of live enrichment calls for one request.

    Shared by reference between the Tier-1 path and its Tier-2 job.
    """

    def __init__(self, max_calls: int) -> None:
        self.max_calls = max(max_calls, 0)
        self.used = 0

    @property
    def remaining(self) -> int:
        return self.max_calls - self.used

    @property
    def exhausted(self) -> bool:
        return self.used >= self.max_calls

    def try_consume(self) -> bool:
        """Take one call from the budget; False when none are left."""
        if self.exhausted:
            return False
        self.used += 1
        return True


class EnrichmentService:
    """Cache-first enrichment that pays for live calls only within budget."""

    def __init__(
        self,
        catalog: CatalogEnricher | None = None,
        pricing: PricingEnricher | None = None,
        cache: CacheManager | None = None,
        batch_size: int = Settings.ENRICHMENT_BATCH_SIZE,
        timeout: float = Settings.ENRICHMENT_TIMEOUT,
    ) -> None:
        self.catalog = catalog
        self.pricing = pricing
        self.cache = cache
        self.batch_size = max(batch_size, 1)
        self.timeout = timeout

    async def enrich(
        self,
        asins: list[str],
        marketplace: str,
        budget: CallBudget,
        caller_id: str | None = None,
        deadline: float | None = None,
    ) -> dict[str, dict[str, dict[str, Any]]]:
        """Override maps keyed by source, then asin.

        Sources without an enricher are omitted. Failures degrade to
        whatever the cache could supply. *deadline* is an event-loop
        time after which no further live call is started.
        """
        overrides: dict[str, dict[str, dict[str, Any]]] = {}
        for source, enricher in (
            ("catalog", self.catalog), ("pricing", self.pricing),
        ):
            if enricher is None:
                continue
            overrides[source] = await self.lookup(
                enricher, asins, marketplace, budget, caller_id, deadline
            )
        return overrides

    async def lookup(
        self,
        enricher: Enricher,
        asins: list[str],
        marketplace: str,
        budget: CallBudget,
        caller_id: str | None = None,
        deadline: float | None = None,
    ) -> dict[str, dict[str, Any]]:
        """Facts from *enricher* for *asins*, cache first.

        Misses are fetched live in batches, one budget call per batch,
        until the budget or the *deadline* runs out. Each call is cut
        short at the deadline. Stale hits are served and refreshed in
        the background while budget remains.
        """
        found: dict[str, dict[str, Any]] = {}
        misses: list[str] = []

        for asin in asins:
            if self.cache is None:
                misses.append(asin)
                continue
            key = self.cache_key(enricher, marketplace, asin)
            refresh = None
            if key not in self.cache.in_flight and not budget.exhausted:
                refresh = self._refresh_fn(enricher, asin, budget)
            hit = await self.cache.get(
                key, caller_id, refresh=refresh, source=enricher.name
            )
            if hit is None:
                misses.append(asin)
            else:
                found[asin] = hit.payload

        for start in range(0, len(misses), self.batch_size):
            batch = misses[start:start + self.batch_size]
            timeout = self._time_left(deadline)
            if timeout <= 0:
                logger.warning(
                    "Tier-1 deadline reached; %d %s lookups skipped",
                    len(misses) - start,
                    enricher.name,
                )
                break
            if not budget.try_consume():
                logger.info(
                    "Call budget exhausted; %d %s lookups skipped",
                    len(misses) - start,
                    enricher.name,
                )
                break
            try:
                fetched = await self._call(enricher, batch, timeout)
            except EnrichmentFailure as exc:
                logger.warning("%s", exc)
                continue
            for asin, values in fetched.items():
                if asin not in batch or not isinstance(values, dict):
                    continue
                found[asin] = values
                if self.cache is not None:
                    await self.cache.put(
                        self.cache_key(enricher, marketplace, asin),
                        values,
                        source=enricher.name,
                        caller_id=caller_id,
                    )

        return found

    @staticmethod
    def cache_key(enricher: Enricher, marketplace: str, asin: str) -> str:
        return f"{enricher.name}:{marketplace}:{asin}"

    # ── Private helpers ──────────────────────────────────

    def _time_left(self, deadline: float | None) -> float:
        """Per-call timeout, shortened to what remains before *deadline*."""
        if deadline is None:
            return self.timeout
        remaining = deadline - asyncio.get_running_loop().time()
        return min(self.timeout, remaining)

    async def _call(
        self, enricher: Enricher, batch: list[str], timeout: float,
    ) -> dict[str, dict[str, Any]]:
        """One live enricher call, bounded by *timeout* seconds."""
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(enricher.enrich, batch),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise EnrichmentFailure(
                enricher.name, batch, f"timed out after {timeout:.1f}s"
            ) from exc
        except Exception as exc:
            raise EnrichmentFailure(enricher.name, batch, str(exc)) from exc
        if not isinstance(result, dict):
            raise EnrichmentFailure(
                enricher.name, batch, f"unexpected result {type(result)}"
            )
        return result

    def _refresh_fn(
        self, enricher: Enricher, asin: str, budget: CallBudget,
    ) -> RefreshFn:
        async def refresh() -> dict[str, Any] | None:
            if not budget.try_consume():
                return None
            try:
                fetched = await self._call(enricher, [asin], self.timeout)
            except EnrichmentFailure as exc:
                logger.warning("%s", exc)
                return None
            values = fetched.get(asin)
            return values if isinstance(values, dict) else None

        return refresh
