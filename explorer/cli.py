"""CLI entry point for Archive Explorer.

Runs one federated search from the terminal, printing progress as batches
arrive, then the (optionally sorted and filtered) results. Can also fetch a
single item's full record or export results to CSV.
"""
from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Optional

from api.core.config import get_config
from api.dates import CENTURY_LABELS, format_display_year
from api.model import ArchiveError, UnifiedItem
from api.providers import PROVIDERS

from .cache_store import build_cache_store
from .export import export_csv
from .orchestrator import SearchOrchestrator
from .progress import ProgressEvent
from .views import SORT_OPTIONS, paginate

logger = logging.getLogger(__name__)


def create_cli_parser() -> argparse.ArgumentParser:
    """Create argument parser.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="archive-explorer",
        description="Archive Explorer - federated search across museum archives",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Search every configured source
  archive-explorer pottery

  # Europeana only, oldest first, 19th century
  archive-explorer "tea set" --sources europeana --sort date_asc --century 19th

  # Export results to CSV
  archive-explorer quilt --export quilts.csv

  # Show one record in full
  archive-explorer --item europeana:2021672/resource_document_mauritshuis_670
        """,
    )

    parser.add_argument("query", nargs="?", default=None, help="Search terms.")
    parser.add_argument(
        "--sources",
        nargs="+",
        choices=sorted(PROVIDERS),
        default=None,
        help="Sources to search (default: sources enabled in config).",
    )
    parser.add_argument("--sort", default="relevance", choices=SORT_OPTIONS, help="Result order.")
    parser.add_argument(
        "--century",
        default="all",
        choices=list(CENTURY_LABELS),
        help="Only show items from this century bucket.",
    )
    parser.add_argument("--date-from", type=int, default=None, help="Earliest year (negative for BCE).")
    parser.add_argument("--date-to", type=int, default=None, help="Latest year (negative for BCE).")
    parser.add_argument("--limit", type=int, default=20, help="Results per page (0 for all).")
    parser.add_argument("--page", type=int, default=1, help="Page of results to print (1-based).")
    parser.add_argument("--export", default=None, metavar="CSV", help="Write the filtered results to a CSV file.")
    parser.add_argument("--item", default=None, metavar="SOURCE:ID", help="Fetch and print one item's full record.")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )
    parser.add_argument("--config", default="config.json", help="Path to JSON config file.")
    parser.add_argument("--cache-file", default=None, help="Persist the result cache to this JSON file.")
    parser.add_argument("--timeout", type=float, default=None, help="Give up waiting after this many seconds.")

    return parser


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    # Reduce noisy retry logs from urllib3
    logging.getLogger("urllib3").setLevel(logging.ERROR)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.ERROR)


def _print_progress(event: ProgressEvent) -> None:
    batch = f" (batch {event.current_batch}/{event.total_batches})" if event.total_batches > 1 else ""
    print(f"[{event.items_found}/{event.total_available}] {event.message}{batch}", file=sys.stderr)


def format_item_line(item: UnifiedItem) -> str:
    date = item.dates.display or format_display_year(item.filter_date) or "undated"
    return f"{item.source}:{item.id}  {item.title}  ({date}; {item.museum})"


def format_item_details(item: UnifiedItem) -> str:
    lines = [item.title, "=" * min(len(item.title), 78)]
    lines.append(f"Source:   {item.source} ({item.museum})")
    if item.dates.display:
        lines.append(f"Date:     {item.dates.display}")
    if item.location and item.location.place:
        lines.append(f"Place:    {item.location.place}")
    for creator in item.creators:
        lines.append(f"{creator.role}: {creator.display_text}")
    for identifier in item.identifiers:
        lines.append(f"{identifier.label}: {identifier.content}")
    lines.append(f"Rights:   {item.rights}")
    lines.append(f"Image:    {item.media.full_image or item.media.primary_image}")
    if item.url:
        lines.append(f"Link:     {item.url}")
    for description in item.descriptions:
        lines.append("")
        lines.append(description.title)
        lines.extend(description.paragraphs or [description.content])
    return "\n".join(lines)


def run_item(orchestrator: SearchOrchestrator, spec: str) -> int:
    source, sep, record_id = spec.partition(":")
    if not sep or not record_id:
        logger.error("--item expects SOURCE:ID, got %r", spec)
        return 2
    result = orchestrator.fetch_item_details(source, record_id)
    if isinstance(result, ArchiveError):
        print(f"Record unavailable: {result}", file=sys.stderr)
        return 1
    print(format_item_details(result))
    return 0


def run_search(orchestrator: SearchOrchestrator, args: argparse.Namespace) -> int:
    session = orchestrator.search(args.query, sources=args.sources, on_progress=_print_progress)
    if not session.wait(args.timeout):
        print("Timed out waiting for results; showing what has arrived.", file=sys.stderr)

    result = session.result()
    for warning in result.warnings:
        print(f"Warning: {warning}", file=sys.stderr)

    items = session.view(args.sort, args.century, args.date_from, args.date_to)
    shown: List[UnifiedItem] = items if args.limit <= 0 else paginate(items, args.page, args.limit)
    origin = " (cached)" if result.from_cache else ""
    print(f"{len(items)} of {len(result.items)} items shown{origin}; {result.total_available} available at the sources")
    for item in shown:
        print(format_item_line(item))

    if args.export:
        export_csv(items, args.export)
        print(f"Exported {len(items)} item(s) to {args.export}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_cli_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)

    # Ensure get_config() reads the same config path
    os.environ["ARCHIVE_EXPLORER_CONFIG_PATH"] = args.config
    get_config(force_reload=True)

    if not args.query and not args.item:
        parser.error("a search query or --item SOURCE:ID is required")

    orchestrator = SearchOrchestrator(cache=build_cache_store(args.cache_file))
    try:
        if args.item:
            return run_item(orchestrator, args.item)
        return run_search(orchestrator, args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print("\nOperation cancelled by user.", file=sys.stderr)
        return 130
    finally:
        orchestrator.shutdown()


if __name__ == "__main__":
    sys.exit(main())
