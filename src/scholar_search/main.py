"""
Scholar Search - Command Line Entry Point

Run with: python -m scholar_search.main "graph neural networks" --max-results 10
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from dotenv import find_dotenv, load_dotenv

from scholar_search.exceptions import InvalidSearchOptions
from scholar_search.models.search import SearchOptions, SearchResult
from scholar_search.utils.cache import request_cache_scope
from scholar_search.utils.config import SearchSettings, load_config

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Search academic sources and a local paper library"
    )
    parser.add_argument("query", help="Free-text search topic")
    parser.add_argument("--config", type=str, default=None, help="Path to config file")
    parser.add_argument("--max-results", type=int, default=None, help="Papers to return")
    parser.add_argument(
        "--min-results", type=int, default=None, help="Below this, fallback searches run"
    )
    parser.add_argument("--from-year", type=int, default=None, help="Earliest publication year")
    parser.add_argument("--to-year", type=int, default=None, help="Latest publication year")
    parser.add_argument("--region", type=str, default=None, help="Boost papers from this region")
    parser.add_argument(
        "--fast", action="store_true", help="Shorter timeouts and lower concurrency"
    )
    parser.add_argument(
        "--disable", nargs="*", default=[], metavar="ID", help="Source ids to skip"
    )
    parser.add_argument(
        "--store", type=str, default=None,
        help="SQLite paper library to search (and ingest into with --ingest)",
    )
    parser.add_argument(
        "--ingest", action="store_true", help="Add found papers to the --store library"
    )
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument(
        "--log-level", default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    return parser


def options_from_args(args: argparse.Namespace, settings: SearchSettings) -> SearchOptions:
    from_year = args.from_year if args.from_year is not None else settings.from_year
    return SearchOptions(
        max_results=args.max_results or settings.max_results,
        min_results=args.min_results if args.min_results is not None else settings.min_results,
        from_year=from_year,
        to_year=args.to_year,
        local_region=args.region,
        fast_mode=args.fast,
        disabled_sources=tuple(args.disable or ()),
        force_ingest=args.ingest,
    )


def format_result(result: SearchResult) -> str:
    """Human-readable ranked list plus a one-line summary."""
    lines = []
    for i, paper in enumerate(result.papers, 1):
        authors = ", ".join(paper.author_names[:3])
        if len(paper.author_names) > 3:
            authors += " et al."
        lines.append(f"{i:2d}. {paper.title} ({paper.year or 'n.d.'})")
        lines.append(f"    {authors or 'Unknown authors'} | {paper.venue or paper.source}")
        lines.append(
            f"    score={paper.score:.3f} citations={paper.citation_count} "
            f"{paper.doi and 'doi:' + paper.doi or paper.url}"
        )

    meta = result.metadata
    lines.append("")
    lines.append(
        f"{meta.total_found} papers via {', '.join(meta.search_strategies) or 'no strategy'} "
        f"in {meta.search_time_ms}ms (cache hits: {meta.cache_hits})"
    )
    if meta.skipped_sources:
        lines.append(f"Skipped sources: {', '.join(meta.skipped_sources)}")
    for error in meta.errors:
        lines.append(f"! {error}")
    return "\n".join(lines)


async def run_search(args: argparse.Namespace) -> SearchResult:
    from scholar_search.search.orchestrator import SearchOrchestrator

    settings = SearchSettings.from_config(load_config(args.config) if args.config else None)
    store = None
    if args.store:
        from scholar_search.db.paper_store import SQLitePaperStore

        store = SQLitePaperStore(args.store)

    orchestrator = SearchOrchestrator(store=store, settings=settings)
    try:
        with request_cache_scope(ttl=settings.cache_ttl_seconds):
            return await orchestrator.search(args.query, options_from_args(args, settings))
    finally:
        await orchestrator.close()


def main(argv: Optional[List[str]] = None) -> int:
    # API keys and limits may live in a .env file next to where the CLI runs
    load_dotenv(find_dotenv(usecwd=True))

    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        result = asyncio.run(run_search(args))
    except InvalidSearchOptions as e:
        parser.error(str(e))

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        print(format_result(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
