"""Command-line interface for the crawler."""

import asyncio
import csv
import json
import signal
import sys
from pathlib import Path

from pydantic import ValidationError

from scrapture.browser_config import CONTAINER_CONFIG, BrowserConfig
from scrapture.browser_renderer import BrowserRenderer
from scrapture.config import SessionConfig, settings
from scrapture.database import get_store
from scrapture.logging_config import setup_logging
from scrapture.models import SessionStatus
from scrapture.session import SessionOrchestrator, create_session
from scrapture.sitemap_parser import SitemapParser


def build_session_config(args) -> SessionConfig:
    """Translate crawl command flags into a SessionConfig.

    Raises:
        pydantic.ValidationError: If the flags produce invalid options
    """
    options = {
        "seed_url": args.url,
        "max_depth": args.max_depth,
        "max_pages": args.max_pages,
        "same_domain_only": not args.no_same_domain,
        "follow_sitemap": not args.no_sitemap,
        "respect_robots": not args.no_robots,
        "capture_screenshot": not args.no_screenshot,
        "capture_api_responses": not args.no_api,
        "auto_scroll": not args.no_scroll,
        "classify_pages": args.classify,
    }

    if args.single:
        options.update(max_depth=0, max_pages=1, follow_sitemap=False)

    return SessionConfig(**options)


async def _run_crawl(store, session_id: int, browser_config: BrowserConfig):
    """Run a session, turning SIGINT/SIGTERM into a graceful stop."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            pass

    try:
        orchestrator = SessionOrchestrator(
            store,
            session_id,
            renderer=BrowserRenderer(browser_config),
            stop_event=stop_event,
        )
        return await orchestrator.run()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except NotImplementedError:
                pass


def crawl_command(args):
    """Create and run a crawl session."""
    try:
        config = build_session_config(args)
    except ValidationError as e:
        print(f"Error: invalid crawl options\n{e}")
        sys.exit(2)

    store = get_store(args.db)
    try:
        session = create_session(store, config)
        print(f"Session {session.id}: crawling {config.seed_url}")

        browser_config = CONTAINER_CONFIG.model_copy() if args.container else BrowserConfig()
        browser_config.user_agent = config.get_user_agent()

        session = asyncio.run(_run_crawl(store, session.id, browser_config))

        print_session_status(store, session.id)
        if session.status is not SessionStatus.COMPLETED:
            sys.exit(1)
    finally:
        store.close()


def print_session_status(store, session_id: int):
    """Print a session's status and frontier counts."""
    session = store.get_session(session_id)
    if session is None:
        print(f"Error: session {session_id} not found")
        sys.exit(1)

    counts = store.count_entries_by_status(session_id)
    jobs = store.list_jobs(session_id)

    print(f"\n{'=' * 60}")
    print(f"Session {session.id}: {session.seed_url}")
    print(f"{'=' * 60}")
    print(f"  Status: {session.status.value}")
    if session.error:
        print(f"  Error: {session.error}")
    print(f"  Created: {session.created_at:%Y-%m-%d %H:%M:%S}")
    if session.started_at:
        print(f"  Started: {session.started_at:%Y-%m-%d %H:%M:%S}")
    if session.completed_at:
        print(f"  Finished: {session.completed_at:%Y-%m-%d %H:%M:%S}")
    print(f"  Limits: depth {session.max_depth}, pages {session.max_pages}")
    print(f"\n  Frontier:")
    for status, count in counts.items():
        print(f"    {status}: {count}")
    print(f"  Page visits: {len(jobs)}")
    print(f"{'=' * 60}\n")


def status_command(args):
    """Show status for a session."""
    store = get_store(args.db)
    try:
        print_session_status(store, args.session_id)
    finally:
        store.close()


def sessions_command(args):
    """List every stored session."""
    store = get_store(args.db)
    try:
        print_sessions(store)
    finally:
        store.close()


def print_sessions(store):
    """Print one line per session, oldest first."""
    sessions = store.list_sessions()
    if not sessions:
        print("No sessions")
        return

    for session in sessions:
        line = f"{session.id:>5}  {session.status.value:<10} {session.created_at:%Y-%m-%d %H:%M}  {session.seed_url}"
        if session.error:
            line += f"  ({session.error})"
        print(line)


EXPORT_CSV_FIELDS = [
    "url",
    "job_id",
    "status",
    "depth",
    "word_count",
    "content_hash",
    "has_structured_data",
    "has_api_responses",
    "screenshot_path",
    "crawled_at",
]


def export_rows(store, session_id: int) -> list[dict]:
    """Collect one record per stored result, in job order."""
    rows = []
    for job in store.list_jobs(session_id):
        result = store.get_result(job.id)
        if result is None:
            continue
        rows.append({
            "url": result.url,
            "job_id": job.id,
            "status": job.status.value,
            "depth": job.depth,
            "structured_data": result.structured_data,
            "metadata": result.metadata,
            "extracted_text": result.extracted_text,
            "word_count": len(result.extracted_text.split()),
            "content_hash": result.content_hash,
            "api_responses": result.api_responses,
            "screenshot_path": result.screenshot_path,
            "classification": result.classification,
            "crawled_at": result.created_at.isoformat(),
        })
    return rows


def write_export(rows: list[dict], fmt: str, out) -> None:
    """Serialize export records as json, ndjson or csv."""
    if fmt == "ndjson":
        for row in rows:
            out.write(json.dumps(row) + "\n")
    elif fmt == "csv":
        writer = csv.DictWriter(out, fieldnames=EXPORT_CSV_FIELDS, extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            writer.writerow({
                **row,
                "content_hash": row["content_hash"] or "",
                "screenshot_path": row["screenshot_path"] or "",
                "has_structured_data": "yes" if row["structured_data"] else "no",
                "has_api_responses": "yes" if row["api_responses"] else "no",
            })
    else:
        out.write(json.dumps(rows, indent=2) + "\n")


def export_command(args):
    """Export a session's extracted pages."""
    store = get_store(args.db)
    try:
        if store.get_session(args.session_id) is None:
            print(f"Error: session {args.session_id} not found")
            sys.exit(1)
        rows = export_rows(store, args.session_id)
    finally:
        store.close()

    if args.output:
        with open(args.output, "w", encoding="utf-8", newline="") as f:
            write_export(rows, args.format, f)
        print(f"Exported {len(rows)} pages to {args.output}")
    else:
        write_export(rows, args.format, sys.stdout)


def sitemap_command(args):
    """Print the flattened URL list of a sitemap URL or local file."""
    parser = SitemapParser(max_depth=args.max_depth, max_urls=args.limit)

    source = args.source
    if source.startswith(("http://", "https://")):
        urls = asyncio.run(parser.parse(source))
    else:
        path = Path(source)
        if not path.exists():
            print(f"Error: {source} not found")
            sys.exit(1)
        urls = parser.parse_content(path.read_text(encoding="utf-8"), source)

    if args.output == "json":
        print(json.dumps(urls, indent=2))
    else:
        for url in urls:
            print(url)


def main():
    """Main CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Scrapture - browser-rendered, polite, breadth-first web crawler"
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
    parser.add_argument(
        "--db",
        default=None,
        help=f"Database URL (default: {settings.DATABASE_URL})",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Crawl command parser
    crawl_parser = subparsers.add_parser("crawl", help="Crawl a site starting from a URL.")
    crawl_parser.add_argument("url", help="Seed URL")
    crawl_parser.add_argument(
        "--max-depth",
        type=int,
        default=SessionConfig.model_fields["max_depth"].default,
        help="Maximum link depth from the seed (default: 3)",
    )
    crawl_parser.add_argument(
        "--max-pages",
        type=int,
        default=SessionConfig.model_fields["max_pages"].default,
        help="Maximum pages to visit (default: 100)",
    )
    crawl_parser.add_argument("--no-same-domain", action="store_true", help="Follow links to other hosts")
    crawl_parser.add_argument("--no-sitemap", action="store_true", help="Skip sitemap discovery")
    crawl_parser.add_argument("--no-robots", action="store_true", help="Ignore robots.txt")
    crawl_parser.add_argument("--no-screenshot", action="store_true", help="Do not save screenshots")
    crawl_parser.add_argument("--no-api", action="store_true", help="Do not capture API responses")
    crawl_parser.add_argument("--no-scroll", action="store_true", help="Do not auto-scroll pages")
    crawl_parser.add_argument(
        "--single",
        action="store_true",
        help="Visit only the seed URL (depth 0, one page, no sitemap)",
    )
    crawl_parser.add_argument(
        "--classify",
        action="store_true",
        help="Classify each page with the text-generation service",
    )
    crawl_parser.add_argument(
        "--container",
        action="store_true",
        help="Launch the browser with container-friendly flags (--no-sandbox)",
    )
    crawl_parser.set_defaults(func=crawl_command)

    # Status command parser
    status_parser = subparsers.add_parser("status", help="Show the status of a crawl session.")
    status_parser.add_argument("session_id", type=int, help="Session id")
    status_parser.set_defaults(func=status_command)

    # Sessions command parser
    sessions_parser = subparsers.add_parser("sessions", help="List stored crawl sessions.")
    sessions_parser.set_defaults(func=sessions_command)

    # Export command parser
    export_parser = subparsers.add_parser("export", help="Export a session's extracted pages.")
    export_parser.add_argument("session_id", type=int, help="Session id")
    export_parser.add_argument(
        "--format",
        "-f",
        choices=["json", "csv", "ndjson"],
        default="json",
        help="Export format (default: json)",
    )
    export_parser.add_argument("--output", "-o", default=None, help="Write to file instead of stdout")
    export_parser.set_defaults(func=export_command)

    # Sitemap command parser
    sitemap_parser = subparsers.add_parser("sitemap", help="List URLs from a sitemap.")
    sitemap_parser.add_argument("source", help="Sitemap URL or local XML file")
    sitemap_parser.add_argument(
        "--max-depth",
        type=int,
        default=SessionConfig.model_fields["max_sitemap_depth"].default,
        help="Nesting limit for sitemap indexes (default: 10)",
    )
    sitemap_parser.add_argument("--limit", type=int, default=None, help="Maximum URLs to print")
    sitemap_parser.add_argument(
        "--output",
        "-o",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )
    sitemap_parser.set_defaults(func=sitemap_command)

    args = parser.parse_args()

    # Configure logging based on flags
    setup_logging(
        level=args.log_level,
        log_file=getattr(args, 'log_file', None),
    )

    if hasattr(args, "func"):
        args.func(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
