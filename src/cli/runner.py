# src/cli/runner.py

"""Headless CLI runner around the snapshot assembler."""

import asyncio
import json
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from src.analysis.competitive_pressure import CompetitivePressureIndex
from src.config.settings import Settings
from src.scrapers.amazon_scraper import AmazonSearchScraper
from src.services.snapshot_assembler import BuildResult, SnapshotAssembler
from src.storage.file_manager import FileManager
from src.storage.snapshot_store import SnapshotStore

logger = logging.getLogger("pageone.cli")

# Stderr console for status messages so stdout stays clean for JSON
_err = Console(stderr=True)


def _money(value: float | None) -> str:
    return f"{value:,.2f}" if value is not None else "N/A"


def _print_table(result: BuildResult) -> None:
    """Render the market summary and product table to stdout."""
    snapshot = result.snapshot
    if snapshot is None:
        return
    console = Console()

    summary = Table(
        title=f"Page-1 market: {snapshot.keyword} ({snapshot.marketplace})",
        show_header=False,
        title_style="bold cyan",
    )
    summary.add_column("Metric", style="bold")
    summary.add_column("Value")
    band = snapshot.price_band
    reviews = snapshot.review_stats
    brands = snapshot.brand_stats
    summary.add_row("Tier", snapshot.tier)
    summary.add_row("Products", str(snapshot.product_count))
    summary.add_row(
        "Monthly units (est.)", f"{snapshot.total_monthly_units_est:,}"
    )
    summary.add_row(
        "Monthly revenue (est.)", _money(snapshot.total_monthly_revenue_est)
    )
    summary.add_row(
        "Price band",
        f"{_money(band.min_price)} - {_money(band.max_price)} "
        f"(avg {_money(band.avg_price)}, {band.tightness})",
    )
    summary.add_row(
        "Review barrier",
        f"{reviews.review_barrier:,.0f}"
        if reviews.review_barrier is not None else "N/A",
    )
    summary.add_row("Sponsored density", f"{snapshot.sponsored_density_pct}%")
    summary.add_row(
        "Fulfillment mix",
        ", ".join(f"{k} {v}%" for k, v in snapshot.fulfillment_mix.items()),
    )
    summary.add_row(
        "Brand moat",
        f"{brands.moat_strength} (top-1 {brands.top_1_brand_share_pct}%, "
        f"top-3 {brands.top_3_brand_share_pct}%, "
        f"{brands.page1_brand_count} brands)",
    )
    summary.add_row("Competition", snapshot.competition_level)
    ppc = snapshot.ppc
    summary.add_row(
        "Ad intensity",
        f"{ppc.ad_intensity_label}: {'; '.join(ppc.signals)}"
        if ppc.signals else ppc.ad_intensity_label,
    )
    summary.add_row(
        "Pressure index", snapshot.competitive_pressure.explanation
    )
    summary.add_row(
        "Confidence",
        f"{snapshot.confidence_score} ({snapshot.confidence_level}): "
        f"{snapshot.confidence_reason}",
    )
    console.print(summary)

    table = Table(title="Products", show_lines=False, title_style="bold cyan")
    table.add_column("#", style="dim", width=4)
    table.add_column("Org", justify="right", width=4)
    table.add_column("ASIN", style="magenta")
    table.add_column("Title", max_width=50)
    table.add_column("Brand")
    table.add_column("Price", justify="right", style="green")
    table.add_column("Reviews", justify="right")
    table.add_column("Units/mo", justify="right")
    table.add_column("Revenue/mo", justify="right", style="green")
    table.add_column("Share", justify="right")

    for p in result.products:
        table.add_row(
            str(p.page_position),
            str(p.organic_rank) if p.organic_rank else "-",
            p.asin + (" (S)" if p.is_sponsored else ""),
            p.title[:50],
            p.brand,
            _money(p.price),
            f"{p.review_count:,}" if p.review_count is not None else "-",
            f"{p.estimated_monthly_units:,}",
            _money(p.estimated_monthly_revenue),
            f"{p.revenue_share_pct}%",
        )
    console.print(table)


def _save_results(file_manager: FileManager, result: BuildResult) -> None:
    """Write snapshot JSON and product CSV next to each other."""
    if result.snapshot is None:
        return
    try:
        path = file_manager.save_snapshot(result.snapshot, result.products)
        _err.print(f"[dim]Saved snapshot → {path}[/dim]")
        csv_path = file_manager.export_csv(result.snapshot, result.products)
        _err.print(f"[dim]Exported products → {csv_path}[/dim]")
    except OSError as exc:
        logger.error("Save failed: %s", exc, exc_info=True)
        _err.print(f"[red]Save failed: {exc}[/red]")


async def cli_build(
    keyword: str,
    marketplace: str,
    output_format: str,
    output_dir: str | None,
    caller_id: str | None = None,
    use_cache: bool = True,
    wait_refinement: bool = False,
    seller_stage: str | None = None,
    seller_months: int | None = None,
) -> int:
    """Build (or read) a snapshot and return an exit code (0=ok, 1=fail).

    *use_cache* False drops every cached copy of the snapshot before a
    live build. *seller_stage* and *seller_months* rescore the
    competitive pressure index for that seller.
    """
    marketplace = marketplace.upper()
    if marketplace not in Settings.MARKETPLACE_DOMAINS:
        valid = ", ".join(sorted(Settings.MARKETPLACE_DOMAINS))
        _err.print(f"[red]Unknown marketplace: {marketplace}[/red]")
        _err.print(f"[dim]Available: {valid}[/dim]")
        return 1

    file_manager = FileManager(Path(output_dir) if output_dir else None)
    store = SnapshotStore()
    assembler = SnapshotAssembler(AmazonSearchScraper(), store)

    try:
        result = None
        if use_cache:
            result = await assembler.peek_snapshot(
                keyword, marketplace, caller_id
            )
            if result is not None and result.stale:
                _err.print("[yellow]Cached snapshot is stale; rebuilding[/yellow]")
                result = None
        else:
            await assembler.invalidate_snapshot(
                keyword, marketplace, caller_id
            )
        if result is None:
            _err.print(
                f"[bold]Building snapshot:[/bold] {keyword}  "
                f"[dim]marketplace={marketplace}[/dim]"
            )
            result = await assembler.build_snapshot(
                keyword, marketplace, caller_id
            )
            if wait_refinement and result.snapshot is not None:
                _err.print("[dim]Waiting for Tier-2 refinement...[/dim]")
                await assembler.drain()
                loaded = await asyncio.to_thread(
                    store.load_snapshot, result.snapshot.snapshot_id
                )
                if loaded is not None:
                    result.snapshot, result.products = loaded
        else:
            _err.print("[dim]Serving cached snapshot[/dim]")

        if not result.ready or result.snapshot is None:
            _err.print(
                f"[yellow]Insufficient data: {result.message}[/yellow]"
            )
            return 1

        if seller_stage or seller_months:
            result.snapshot.competitive_pressure = (
                CompetitivePressureIndex.calculate(
                    result.products, seller_stage, seller_months
                )
            )

        _err.print(
            f"[green]✓ {result.snapshot.product_count} products, "
            f"{result.snapshot.tier}, confidence "
            f"{result.snapshot.confidence_level}[/green]"
        )
        _save_results(file_manager, result)

        if output_format == "table":
            _print_table(result)
        else:
            json.dump(
                {
                    "status": result.status,
                    "snapshot": result.snapshot.to_dict(),
                    "products": [p.to_dict() for p in result.products],
                },
                sys.stdout,
                ensure_ascii=False,
                indent=2,
            )
            sys.stdout.write("\n")
        return 0
    finally:
        if not wait_refinement:
            await assembler.drain()
        store.close()
