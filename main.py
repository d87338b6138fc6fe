# main.py

"""Entry point for the pageone Page-1 market estimator CLI."""

import argparse
import asyncio
import logging
import sys

from src.config.logging_config import setup_logging
from src.config.settings import Settings

logger = logging.getLogger("pageone.main")


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    marketplaces = ", ".join(sorted(Settings.MARKETPLACE_DOMAINS))

    parser = argparse.ArgumentParser(
        prog="pageone",
        description="Page-1 market snapshot and revenue estimator.",
        epilog=f"Available marketplaces: {marketplaces}",
    )
    parser.add_argument("keyword", help="Search keyword to analyse.")
    parser.add_argument(
        "-m",
        "--marketplace",
        default=Settings.DEFAULT_MARKETPLACE,
        help=f"Marketplace code (default: {Settings.DEFAULT_MARKETPLACE}).",
    )
    parser.add_argument(
        "-f",
        "--format",
        choices=["json", "table"],
        default="json",
        dest="output_format",
        help="Output format (default: json).",
    )
    parser.add_argument(
        "-o",
        "--output",
        default=None,
        dest="output_dir",
        help="Custom output directory (default: results/).",
    )
    parser.add_argument(
        "--caller",
        default=None,
        dest="caller_id",
        help="Caller id for the per-caller cache scope.",
    )
    parser.add_argument(
        "--refresh",
        action="store_true",
        default=False,
        help="Drop cached snapshots for the keyword and build live.",
    )
    parser.add_argument(
        "--seller-stage",
        choices=sorted(Settings.SELLER_STAGE_MODIFIERS),
        default=None,
        dest="seller_stage",
        help="Score competitive pressure for this seller stage.",
    )
    parser.add_argument(
        "--seller-months",
        type=int,
        default=None,
        dest="seller_months",
        help="Months of selling experience for the pressure score.",
    )
    parser.add_argument(
        "--wait-refinement",
        action="store_true",
        default=False,
        dest="wait_refinement",
        help="Wait for Tier-2 refinement and print the refined snapshot.",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        dest="log_level",
        help="Console log level (default: PAGEONE_LOG_LEVEL or WARNING).",
    )
    return parser


def main() -> None:
    """Parse arguments and run a headless snapshot build."""
    args = _build_parser().parse_args()

    log_file = setup_logging(args.log_level)
    logger.info("pageone starting, log file: %s", log_file)

    from src.cli.runner import cli_build

    exit_code = asyncio.run(
        cli_build(
            keyword=args.keyword,
            marketplace=args.marketplace,
            output_format=args.output_format,
            output_dir=args.output_dir,
            caller_id=args.caller_id,
            use_cache=not args.refresh,
            wait_refinement=args.wait_refinement,
            seller_stage=args.seller_stage,
            seller_months=args.seller_months,
        )
    )
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
