"""visitlog CLI -- record, query, clear and maintain browsing history."""

import argparse
import json
import logging
import sys
import time
from datetime import datetime, timezone

from visitlog import config
from visitlog.errors import HistoryError
from visitlog.frecency import DAY
from visitlog.manager import HistoryManager
from visitlog.models import DEFAULT_SEARCH_LIMIT, SearchQuery, TransitionType, Visit


def _open(args) -> HistoryManager:
    return HistoryManager(getattr(args, "db", None))


def _fmt_time(ts) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _print_visits(visits, use_json: bool, elapsed: float) -> None:
    if use_json:
        out = [v.to_dict() for v in visits]
        print(json.dumps({"results": out, "count": len(out), "elapsed_s": round(elapsed, 3)}, indent=2))
        return
    if not visits:
        print("No visits found.")
        return
    for v in visits:
        title = v.title or "(untitled)"
        print(f"  [{v.id}] {_fmt_time(v.visit_time)}  {title}")
        print(f"        {v.url}  ({v.transition_type.value})")
    print(f"\n{len(visits)} result(s) in {elapsed * 1000:.1f} ms")


def _print_pages(pages, use_json: bool, metric: str) -> None:
    if use_json:
        out = [p.to_dict() for p in pages]
        print(json.dumps({"results": out, "count": len(out)}, indent=2))
        return
    if not pages:
        print("No pages found.")
        return
    for rank, p in enumerate(pages, 1):
        value = p.frecency_score if metric == "frecency" else p.visit_count
        title = p.title or "(untitled)"
        print(f"  {rank:>3}. {value:>6}  {title}")
        print(f"             {p.url}  (last {_fmt_time(p.last_visit)})")


def cmd_record(args):
    """Record one visit."""
    visit = Visit(
        url=args.url,
        title=args.title,
        visit_time=args.time if args.time is not None else int(time.time()),
        transition_type=TransitionType.parse(args.transition),
        visit_duration=args.duration,
        from_url=args.from_url,
    )
    with _open(args) as history:
        visit_id = history.record_visit(visit)
    print(visit_id)


def cmd_search(args):
    """Substring search over url and title."""
    text = " ".join(args.text).strip() or None
    query = SearchQuery(text=text, start_time=args.start, end_time=args.end, limit=args.limit)
    start = time.monotonic()
    with _open(args) as history:
        visits = history.search(query)
    _print_visits(visits, args.json, time.monotonic() - start)


def cmd_recent(args):
    start = time.monotonic()
    with _open(args) as history:
        visits = history.get_recent(args.limit)
    _print_visits(visits, args.json, time.monotonic() - start)


def cmd_visits(args):
    """Every visit to one exact URL."""
    start = time.monotonic()
    with _open(args) as history:
        visits = history.get_visits_for_url(args.url)
    _print_visits(visits, args.json, time.monotonic() - start)


def cmd_top(args):
    with _open(args) as history:
        pages = history.get_most_visited(args.limit)
    _print_pages(pages, args.json, "count")


def cmd_frecent(args):
    with _open(args) as history:
        pages = history.get_frecent(args.limit)
    _print_pages(pages, args.json, "frecency")


def cmd_clear(args):
    """Bulk-delete history by age, by recency window, or entirely."""
    with _open(args) as history:
        if args.all:
            before = history.count_visits()
            history.clear_all()
            print(f"Cleared all history ({before} visits).")
            return
        if args.before is not None:
            deleted = history.clear_older_than(args.before)
        elif args.since is not None:
            deleted = history.clear_since(args.since)
        elif args.last_hours is not None:
            deleted = history.clear_since(max(0, int(time.time()) - args.last_hours * 3600))
        elif args.days is not None:
            deleted = history.expire(args.days)
        else:
            deleted = history.expire()
    print(f"Deleted {deleted} visit(s).")


def cmd_stats(args):
    with _open(args) as history:
        stats = history.stats()
    if args.json:
        print(json.dumps(stats.to_dict(), indent=2))
        return
    size = f"{stats.db_size_bytes / (1024 * 1024):.2f} MB" if stats.db_size_bytes is not None else "-"
    print("visitlog stats")
    print(f"  Visits       {stats.total_visits}")
    print(f"  Unique URLs  {stats.unique_urls}")
    print(f"  Oldest       {_fmt_time(stats.oldest_visit)}")
    print(f"  Newest       {_fmt_time(stats.newest_visit)}")
    print(f"  DB size      {size}")


def cmd_export(args):
    with _open(args) as history:
        result = history.export_history(args.path)
    print(f"Exported {result['visit_count']} visits to {result['filepath']} ({result['file_size_kb']:.1f} KB)")


def cmd_import(args):
    with _open(args) as history:
        result = history.import_history(args.path, clear_existing=args.replace)
    print(f"Imported {result['imported']} visits from {result['filepath']} ({result['skipped']} skipped)")


def cmd_validate(args):
    """Run SQLite and FTS5 integrity checks, optionally rebuilding indexes."""
    with _open(args) as history:
        problems = history.check_integrity()
        if not problems:
            print("  ok    integrity check passed")
        for problem in problems:
            print(f"  fail  {problem}")
        if problems and args.repair:
            print("  Attempting rebuild...")
            history.rebuild_indices()
            problems = history.check_integrity()
            if problems:
                for problem in problems:
                    print(f"  fail  {problem}")
            else:
                print("  ok    indexes rebuilt")
        print(f"  Visits: {history.count_visits()}")
    sys.exit(1 if problems else 0)


def cmd_backup(args):
    """Back up the database (default: $VISITLOG_HOME/backups, keeps last 5)."""
    with _open(args) as history:
        path = history.backup(args.dest)
    size_mb = path.stat().st_size / (1024 * 1024)
    print(f"Backup saved: {path} ({size_mb:.2f} MB)")


def cmd_serve(args):
    """Run the HTTP server."""
    import asyncio

    from visitlog.server.http_server import run_http

    asyncio.run(run_http(args.host, args.port, config.api_key(), getattr(args, "db", None)))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="visitlog",
        description="visitlog -- browsing history storage and frecency ranking",
    )
    parser.add_argument("--db", help="Database path (default: $VISITLOG_DB or $VISITLOG_HOME/history.db)")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    record_parser = subparsers.add_parser("record", help="Record a page visit")
    record_parser.add_argument("url", help="Absolute URL of the page")
    record_parser.add_argument("--title", default="", help="Page title")
    record_parser.add_argument("--time", type=int, help="Visit time in epoch seconds (default: now)")
    record_parser.add_argument(
        "--transition",
        default=TransitionType.LINK.value,
        choices=[t.value for t in TransitionType],
        help="How the navigation happened (default: link)",
    )
    record_parser.add_argument("--from-url", help="Referrer URL")
    record_parser.add_argument("--duration", type=int, help="Seconds spent on the page")

    search_parser = subparsers.add_parser("search", help="Case-insensitive substring search on url and title")
    search_parser.add_argument("text", nargs="*", help="Search text (omit to filter by time only)")
    search_parser.add_argument("--start", type=int, help="Earliest visit time, inclusive")
    search_parser.add_argument("--end", type=int, help="Latest visit time, inclusive")
    search_parser.add_argument(
        "--limit", type=int, default=DEFAULT_SEARCH_LIMIT, help=f"Max results (default: {DEFAULT_SEARCH_LIMIT})"
    )
    search_parser.add_argument("--json", action="store_true", help="Output as JSON")

    recent_parser = subparsers.add_parser("recent", help="Show the most recent visits")
    recent_parser.add_argument("--limit", type=int, default=20, help="Max results (default: 20)")
    recent_parser.add_argument("--json", action="store_true", help="Output as JSON")

    visits_parser = subparsers.add_parser("visits", help="Show every visit to one URL")
    visits_parser.add_argument("url", help="Exact URL")
    visits_parser.add_argument("--json", action="store_true", help="Output as JSON")

    top_parser = subparsers.add_parser("top", help="Most visited pages")
    top_parser.add_argument("--limit", type=int, default=10, help="Max results (default: 10)")
    top_parser.add_argument("--json", action="store_true", help="Output as JSON")

    frecent_parser = subparsers.add_parser("frecent", help="Pages ranked by frecency")
    frecent_parser.add_argument("--limit", type=int, default=10, help="Max results (default: 10)")
    frecent_parser.add_argument("--json", action="store_true", help="Output as JSON")

    clear_parser = subparsers.add_parser("clear", help="Delete history (default: apply VISITLOG_RETENTION_DAYS)")
    clear_group = clear_parser.add_mutually_exclusive_group()
    clear_group.add_argument("--before", type=int, help="Delete visits older than this epoch time")
    clear_group.add_argument("--since", type=int, help="Delete visits at or after this epoch time")
    clear_group.add_argument("--last-hours", type=int, help="Delete visits from the last N hours")
    clear_group.add_argument("--days", type=int, help=f"Delete visits older than N days ({DAY}s each)")
    clear_group.add_argument("--all", action="store_true", help="Delete every visit")

    stats_parser = subparsers.add_parser("stats", help="Show visit counts, date range and DB size")
    stats_parser.add_argument("--json", action="store_true", help="Output as JSON")

    export_parser = subparsers.add_parser("export", help="Export history to a JSON file")
    export_parser.add_argument("path", help="Destination file")

    import_parser = subparsers.add_parser("import", help="Import history from a JSON export")
    import_parser.add_argument("path", help="Export file to read")
    import_parser.add_argument("--replace", action="store_true", help="Replace existing history instead of merging")

    validate_parser = subparsers.add_parser("validate", help="Validate database integrity (SQLite + FTS5)")
    validate_parser.add_argument("--repair", action="store_true", help="Rebuild indexes if a check fails")

    backup_parser = subparsers.add_parser("backup", help="Back up the database (keeps last 5)")
    backup_parser.add_argument("--dest", help="Explicit destination file (disables rotation)")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=8765, help="HTTP port (default: 8765)")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=config.log_level(),
        stream=sys.stderr,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    commands = {
        "record": cmd_record,
        "search": cmd_search,
        "recent": cmd_recent,
        "visits": cmd_visits,
        "top": cmd_top,
        "frecent": cmd_frecent,
        "clear": cmd_clear,
        "stats": cmd_stats,
        "export": cmd_export,
        "import": cmd_import,
        "validate": cmd_validate,
        "backup": cmd_backup,
        "serve": cmd_serve,
    }

    if args.command not in commands:
        parser.print_help()
        return

    try:
        commands[args.command](args)
    except (HistoryError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
