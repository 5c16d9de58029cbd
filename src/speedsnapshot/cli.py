"""Command-line interface for with/without speed comparisons."""

import asyncio
import json
import sys
from typing import Dict, List, Optional

from speedsnapshot.config import Config, settings
from speedsnapshot.database import get_db_client
from speedsnapshot.fetcher import SmartFetcher
from speedsnapshot.identity import CaseIdAllocator, DuplicateIdentifierError
from speedsnapshot.logging_config import get_logger, setup_logging
from speedsnapshot.models import DeviceStrategy, JobOutcome
from speedsnapshot.orchestrator import ComparisonRunner
from speedsnapshot.utils.urls import detect_multiple_urls, normalize_url

logger = get_logger(__name__)


def _collect_urls(raw: List[str], limit: int) -> List[str]:
    """Expand pasted lists and normalize every entry; invalid ones are dropped."""
    expanded: List[str] = []
    for item in raw:
        expanded.extend(detect_multiple_urls(item) or [item])

    urls = []
    for item in expanded:
        url = normalize_url(item)
        if url is None:
            print(f"⚠️  Skipping invalid URL: {item}")
            continue
        urls.append(url)

    urls = list(dict.fromkeys(urls))
    if len(urls) > limit:
        print(f"⚠️  Bulk mode: using the first {limit} of {len(urls)} URLs")
        urls = urls[:limit]
    return urls


def print_outcome(outcome: JobOutcome):
    """Print one comparison outcome in a formatted way.

    Args:
        outcome: JobOutcome from a single or bulk run
    """
    print(f"\n{'=' * 60}")
    print(f"Speed Comparison for: {outcome.page_url}")
    if outcome.case_id:
        print(f"Case ID: {outcome.case_id}")
    print(f"{'=' * 60}")

    if outcome.safe_mode:
        print("\n🐢 Measured in safe mode")

    if outcome.error:
        print(f"\n❌ {outcome.error}")

    for strategy, pair in outcome.results.items():
        with_score = pair.optimized.performance_score if pair.optimized else None
        without_score = pair.baseline.performance_score if pair.baseline else None
        print(f"\n📱 {strategy.value.capitalize()}:")
        print(f"  • With optimization: {_fmt_score(with_score)}")
        print(f"  • Without optimization: {_fmt_score(without_score)}")
        if with_score is not None and without_score is not None:
            delta = with_score - without_score
            print(f"  • Difference: {delta:+.1f}")

    print(f"\n{'=' * 60}\n")


def _fmt_score(score: Optional[float]) -> str:
    return "n/a" if score is None else f"{score}/100"


def compare_command(args):
    """Compare one URL, or up to six, with and without the optimization."""
    config = Config.from_env()
    api_key = settings.PSI_API_KEY or config.psi_api_key
    if not api_key:
        logger.warning("PSI_API_KEY is not set; direct PSI calls will use the anonymous quota")

    urls = _collect_urls(args.urls, config.max_bulk_urls)
    if not urls:
        print("Error: no valid URL given")
        sys.exit(1)

    store = None if args.no_save else get_db_client()
    try:
        try:
            case_id = CaseIdAllocator(store).allocate(args.case_id) if store else args.case_id
        except DuplicateIdentifierError as e:
            print(f"Error: {e}")
            sys.exit(1)

        runner = ComparisonRunner(
            SmartFetcher.from_config(config),
            store=store,
            api_key=api_key,
            config=config,
        )
        strategies = DeviceStrategy.parse(args.device)
        verbose = args.output == "text"

        if len(urls) == 1:
            if verbose:
                print(f"Comparing {urls[0]} ({args.device})...")
            outcomes: Dict[str, JobOutcome] = {
                urls[0]: asyncio.run(runner.run_single(urls[0], strategies, case_id=case_id))
            }
        else:
            if verbose:
                print(f"Bulk mode: comparing {len(urls)} URLs ({args.device})...")
            outcomes = asyncio.run(runner.run_bulk(urls, strategies, case_id_base=case_id))
    finally:
        if store is not None:
            store.close()

    if args.output == "json":
        output = json.dumps([o.to_dict() for o in outcomes.values()], indent=2, default=str)
        if args.output_file:
            with open(args.output_file, "w") as f:
                f.write(output)
            print(f"Results written to {args.output_file}")
        else:
            print(output)
    else:
        for outcome in outcomes.values():
            print_outcome(outcome)

    failed = sum(1 for o in outcomes.values() if not o.succeeded)
    if failed:
        print(f"{failed} of {len(outcomes)} URL(s) could not be measured")
        sys.exit(1)


def reports_command(args):
    """Show stored comparison rows."""
    db = get_db_client()
    try:
        rows = db.query_reports(
            id=args.id,
            url=args.url,
            case_id=args.case_id,
            group_id=args.group_id,
            limit=args.limit,
        )
    finally:
        db.close()

    if not rows:
        print("No reports found")
        sys.exit(0)

    if args.output == "json":
        print(json.dumps(rows, indent=2, default=str))
        return

    print(f"\n{'=' * 60}")
    print(f"Stored Reports ({len(rows)})")
    print(f"{'=' * 60}\n")
    for row in rows:
        print(f"#{row['id']} {row['url']} [{row['device']}] group={row['group_id']}")
        print(f"  Case ID: {row.get('case_id') or 'N/A'}")
        print(f"  Performance: {row.get('perf_with')} with / {row.get('perf_without')} without")
        print(f"  Created: {row.get('created_at')}")
        print("-" * 20)


def main():
    """Main CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Speed Snapshot - PageSpeed Insights with/without comparisons"
    )

    # Global flags (before subcommands)
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=settings.LOG_LEVEL.upper(),
        help="Set logging verbosity (default: INFO)",
    )
    parser.add_argument(
        "--log-file",
        help="Write logs to file in addition to console",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Compare command parser
    compare_parser = subparsers.add_parser(
        "compare", help="Measure URLs with and without the optimization."
    )
    compare_parser.add_argument(
        "urls", nargs="+", help="URLs to compare (one, or up to six for bulk mode)"
    )
    compare_parser.add_argument(
        "--device",
        "-d",
        choices=["mobile", "desktop", "both"],
        default="both",
        help="Device profile (default: both)",
    )
    compare_parser.add_argument(
        "--case-id",
        help="Case ID to file the run under (generated if omitted)",
    )
    compare_parser.add_argument(
        "--no-save",
        action="store_true",
        help="Do not store summary rows",
    )
    compare_parser.add_argument(
        "--output",
        "-o",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )
    compare_parser.add_argument(
        "--output-file",
        "-f",
        help="Write output to file (only for json format)",
    )
    compare_parser.set_defaults(func=compare_command)

    # Reports command parser
    reports_parser = subparsers.add_parser(
        "reports", help="Look up stored comparison rows."
    )
    reports_parser.add_argument("--id", type=int, help="Report id")
    reports_parser.add_argument("--url", help="Reports for a URL")
    reports_parser.add_argument("--case-id", help="Reports for a case id")
    reports_parser.add_argument("--group-id", help="All device rows of one submission")
    reports_parser.add_argument(
        "--limit", type=int, default=10, help="Maximum rows (default: 10, max: 100)"
    )
    reports_parser.add_argument(
        "--output",
        "-o",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )
    reports_parser.set_defaults(func=reports_command)

    args = parser.parse_args()

    setup_logging(level=args.log_level, log_file=getattr(args, 'log_file', None))

    if hasattr(args, "func"):
        args.func(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
