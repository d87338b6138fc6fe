# src/models/market_snapshot.py

"""Market-level snapshot model for one (keyword, marketplace) pair."""

from dataclasses import asdict, dataclass, field
from typing import Any

TIER1_PARTIAL = "tier1-partial"
TIER2_REFINED = "tier2-refined"


@dataclass
class PriceBand:
    """Price spread across the canonical set."""

    min_price: float | None = None
    max_price: float | None = None
    avg_price: float | None = None
    tightness: str = "unknown"  # "tight", "moderate", "wide", "unknown"


@dataclass
class ReviewStats:
    """Review-count distribution across the canonical set."""

    avg_reviews: float | None = None
    median_reviews: float | None = None
    p25_reviews: float | None = None
    p75_reviews: float | None = None
    review_barrier: float | None = None  # Median of top-10 organic


@dataclass
class BrandShare:
    """Revenue attributed to a single normalized brand bucket."""

    brand: str
    asin_count: int
    total_revenue: float
    revenue_share_pct: float


@dataclass
class BrandConcentration:
    """Brand concentration and moat classification for Page-1."""

    page1_brand_count: int = 0
    top_1_brand_share_pct: float = 0.0
    top_3_brand_share_pct: float = 0.0
    top_5_brand_share_pct: float = 0.0
    moat_strength: str = "none"  # "none", "weak", "moderate", "strong"
    breakdown: list[BrandShare] = field(
        default_factory=lambda: list[BrandShare]()
    )


@dataclass
class PPCIndicators:
    """Heuristic advertising pressure on Page-1."""

    sponsored_pct: int = 0
    sponsored_count: int = 0
    review_barrier: float | None = None
    price_competition: float | None = None  # (p90 - p10) / avg price
    dominance: float = 0.0  # Top-1 brand revenue share
    ad_intensity_label: str = "Low"  # "Low", "Medium", "High"
    signals: list[str] = field(default_factory=lambda: list[str]())


@dataclass
class CompetitivePressure:
    """How hard Page-1 is to break into, 0-100."""

    cpi: int = 0
    level: str = "Low"  # "Low", "Moderate", "High", "Extreme"
    review_barrier_score: int = 0
    sponsored_competition_score: int = 0
    brand_dominance_score: int = 0
    listing_density_score: int = 0
    seller_modifier: float = 1.0
    explanation: str = ""


@dataclass
class MarketSnapshot:
    """Aggregate view of one keyword's Page-1 market."""

    snapshot_id: str
    keyword: str
    marketplace: str
    tier: str = TIER1_PARTIAL
    total_monthly_units_est: int = 0
    total_monthly_revenue_est: float = 0.0
    product_count: int = 0
    price_band: PriceBand = field(default_factory=PriceBand)
    review_stats: ReviewStats = field(default_factory=ReviewStats)
    avg_rating: float | None = None
    sponsored_density_pct: float = 0.0
    fulfillment_mix: dict[str, float] = field(
        default_factory=lambda: dict[str, float]()
    )
    brand_stats: BrandConcentration = field(
        default_factory=BrandConcentration
    )
    ppc: PPCIndicators = field(default_factory=PPCIndicators)
    competitive_pressure: CompetitivePressure = field(
        default_factory=CompetitivePressure
    )
    competition_level: str = "unknown"  # Page-1 demand band
    confidence_score: int = 0
    confidence_level: str = "low"
    confidence_reason: str = ""
    calibration_log: list[dict[str, Any]] = field(
        default_factory=lambda: list[dict[str, Any]]()
    )
    created_at: float = 0.0
    stale_at: float = 0.0
    refined_at: float | None = None

    def is_stale(self, now: float) -> bool:
        """True once the snapshot has outlived its freshness window."""
        return now >= self.stale_at

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a plain dict (persisted / JSON form)."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MarketSnapshot":
        """Rebuild a snapshot, including nested records, from a dict."""
        known = set(cls.__dataclass_fields__)
        values = {k: v for k, v in data.items() if k in known}
        if isinstance(values.get("price_band"), dict):
            values["price_band"] = PriceBand(**values["price_band"])
        if isinstance(values.get("review_stats"), dict):
            values["review_stats"] = ReviewStats(**values["review_stats"])
        brand_stats = values.get("brand_stats")
        if isinstance(brand_stats, dict):
            breakdown = [
                BrandShare(**b) for b in brand_stats.get("breakdown", [])
            ]
            values["brand_stats"] = BrandConcentration(
                **{**brand_stats, "breakdown": breakdown}
            )
        if isinstance(values.get("ppc"), dict):
            values["ppc"] = PPCIndicators(**values["ppc"])
        pressure = values.get("competitive_pressure")
        if isinstance(pressure, dict):
            values["competitive_pressure"] = CompetitivePressure(**pressure)
        return cls(**values)
