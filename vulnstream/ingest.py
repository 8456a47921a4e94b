"""
CLI entrypoint: stream a dataset through the ingestion pipeline and report what was loaded.

  python -m vulnstream.ingest data/vulns.json
  python -m vulnstream.ingest https://github.com/<owner>/<repo>/blob/main/data.json --sort-key score --sort-dir desc
"""

import argparse
import asyncio
import json
import logging
import sys

from vulnstream.core.config import get_settings
from vulnstream.core.logging import configure_logging
from vulnstream.repositories.memory import MemoryRepository
from vulnstream.schemas.view import DataView
from vulnstream.schemas.vulns import SORT_KEYS, Filters, SortSpec
from vulnstream.services.coordinator import QueryCoordinator
from vulnstream.services.loader import IngestionPipeline

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m vulnstream.ingest",
        description="Stream a vulnerability dataset (URL, file path, or '-' for stdin) and print a summary.",
    )
    parser.add_argument("source", help="http(s) URL, local file path, or '-' to read stdin")
    parser.add_argument("--query", default="", help="case-insensitive substring filter")
    parser.add_argument("--severity", action="append", default=[], help="accepted severity (repeatable)")
    parser.add_argument("--sort-key", choices=sorted(SORT_KEYS), default=None)
    parser.add_argument("--sort-dir", choices=("asc", "desc"), default="asc")
    parser.add_argument("--page-size", type=int, default=None, help="records to print from the first page")
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> DataView:
    settings = get_settings()
    coordinator = QueryCoordinator(MemoryRepository(), page_size=args.page_size)
    pipeline = IngestionPipeline(coordinator, settings)
    try:
        source = sys.stdin.buffer if args.source == "-" else args.source
        await pipeline.load_source(source)
        view = await pipeline.wait()
        if view.error is None and (args.query or args.severity or args.sort_key):
            await coordinator.set_sort(SortSpec(key=args.sort_key, dir=args.sort_dir) if args.sort_key else None)
            view = await coordinator.set_filters(
                Filters(query=args.query, severity=frozenset(s.lower() for s in args.severity))
            )
        return view
    finally:
        await pipeline.aclose()
        await coordinator.aclose()


def main(argv: list[str] | None = None) -> int:
    """Ingest the source; exit 1 when the run ends with an error."""
    configure_logging()
    args = _parse_args(argv)
    try:
        view = asyncio.run(_run(args))
    except KeyboardInterrupt:
        logger.warning("Ingestion interrupted")
        return 130
    if view.error is not None:
        logger.error("Ingestion failed: %s", view.error)
        return 1
    logger.info(
        "Ingestion completed: records=%s bytes_read=%s matching=%s",
        view.ingested_count,
        view.progress_bytes,
        view.total,
    )
    if view.summary is not None:
        print(json.dumps(view.summary.model_dump(by_alias=True), indent=2))
    for record in view.results:
        print(f"{record.id}\t{record.severity}\t{record.title}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
