"""CLI entry point: python -m coursecompare {extract,list,remove,tier} [options]"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.table import Table

from coursecompare import settings
from coursecompare.backends import JsonFileBackend
from coursecompare.errors import ExtractionFailure, StoreError
from coursecompare.extractors.engine import extract
from coursecompare.items import PageSnapshot, ProgramRecord, TierState
from coursecompare.profiles import load_profile
from coursecompare.query import FetchError, fetch_html
from coursecompare.store import RecordStore

logger = logging.getLogger(__name__)

_FIELDS: tuple[tuple[str, str], ...] = (
    ("tuition", "Tuition"),
    ("duration", "Duration"),
    ("deadline", "Application Deadline"),
    ("location", "Location"),
    ("test_requirement", "Test Requirement"),
)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="coursecompare",
        description="Extract academic program details from web pages and keep them for comparison.",
    )
    parser.add_argument("--store-dir", default=None, metavar="DIR",
                        help=f"Directory holding the saved programs (default: {settings.STORE_DIR})")
    parser.add_argument("--profile", default=None, metavar="YAML",
                        help="YAML profile with per-site selectors and store settings")
    parser.add_argument("--log-level", default=settings.LOG_LEVEL,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help=f"Logging level (default: {settings.LOG_LEVEL})")

    sub = parser.add_subparsers(dest="command", required=True)

    p_extract = sub.add_parser("extract", help="Extract a program record from a page")
    source = p_extract.add_mutually_exclusive_group(required=True)
    source.add_argument("--url", metavar="URL", help="Fetch and extract this page")
    source.add_argument("--file", metavar="PATH", help="Extract from a saved HTML file")
    p_extract.add_argument("--source-url", default="", metavar="URL",
                           help="Page address to record when using --file")
    p_extract.add_argument("--save", action="store_true", default=False,
                           help="Add the extracted record to the store")
    p_extract.add_argument("--json", action="store_true", default=False,
                           help="Print the record as JSON")

    sub.add_parser("list", help="Show saved programs side by side")

    p_remove = sub.add_parser("remove", help="Remove a saved program")
    p_remove.add_argument("id", help="Record id (see 'list')")

    p_tier = sub.add_parser("tier", help="Show or change the account tier")
    tier_mode = p_tier.add_mutually_exclusive_group()
    tier_mode.add_argument("--premium", action="store_true", default=False)
    tier_mode.add_argument("--free", action="store_true", default=False)
    p_tier.add_argument("--max", type=int, default=None, metavar="N",
                        help="Free-tier record ceiling")
    return parser


def _open_store(args: argparse.Namespace, profile: dict[str, Any]) -> RecordStore:
    store_dir = args.store_dir or profile.get("store_dir") or settings.STORE_DIR
    default_tier = TierState(
        max_free_records=int(profile.get("max_free_records", settings.DEFAULT_MAX_FREE_RECORDS)),
    )
    return RecordStore(
        JsonFileBackend(Path(store_dir)),
        timeout=float(profile.get("store_timeout", settings.STORE_TIMEOUT)),
        default_tier=default_tier,
    )


def _print_record(console: Console, record: ProgramRecord) -> None:
    table = Table(title=record.title, show_header=False, title_style="bold cyan")
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Institution", record.institution)
    for key, label in _FIELDS:
        table.add_row(label, getattr(record, key))
    for key, value in record.extra_fields.items():
        table.add_row(key.replace("_", " ").title(), value)
    if record.source_url:
        table.add_row("URL", record.source_url)
    if record.id:
        table.add_row("Id", record.id)
    console.print(table)


def _print_comparison(console: Console, records: list[ProgramRecord], tier: TierState) -> None:
    if not records:
        console.print("[yellow]No saved programs.[/yellow]")
    else:
        table = Table(title="Saved programs", title_style="bold cyan")
        table.add_column("Field", style="bold")
        for record in records:
            table.add_column(f"{record.institution} - {record.title}")
        for key, label in _FIELDS:
            table.add_row(label, *(getattr(r, key) for r in records))
        table.add_row("Id", *(r.id or "" for r in records))
        console.print(table)
    ceiling = "unlimited" if tier.is_premium else str(tier.max_free_records)
    console.print(f"{len(records)} saved, limit: {ceiling}")


def _cmd_extract(args: argparse.Namespace, profile_path: str | None, console: Console) -> int:
    url = args.url or args.source_url
    profile = load_profile(profile_path, url) if profile_path else {}
    try:
        if args.url:
            html = fetch_html(args.url)
        else:
            html = Path(args.file).read_text(encoding="utf-8", errors="replace")
    except (FetchError, OSError) as exc:
        console.print(f"[red]ERROR:[/red] {exc}")
        return 1

    try:
        record = extract(PageSnapshot(html=html, url=url), profile=profile)
    except ExtractionFailure as exc:
        console.print(f"[red]ERROR:[/red] {exc}")
        return 1

    if args.save:
        with _open_store(args, profile) as store:
            try:
                record = store.add(record)
            except StoreError as exc:
                console.print(f"[red]Not saved:[/red] {exc}")
                return 1
        console.print("[green]Program saved.[/green]")

    if args.json:
        console.print_json(record.model_dump_json())
    else:
        _print_record(console, record)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level, format=settings.LOG_FORMAT)
    console = Console()

    if args.command == "extract":
        return _cmd_extract(args, args.profile, console)

    profile = load_profile(args.profile) if args.profile else {}
    with _open_store(args, profile) as store:
        try:
            if args.command == "list":
                state = store.snapshot()
                _print_comparison(console, state.records, state.tier)
            elif args.command == "remove":
                store.remove(args.id)
                console.print(f"Removed {args.id}")
            elif args.command == "tier":
                tier = store.tier()
                if args.premium or args.free or args.max is not None:
                    tier = TierState(
                        is_premium=args.premium or (tier.is_premium and not args.free),
                        max_free_records=args.max if args.max is not None else tier.max_free_records,
                    )
                    store.set_tier(tier)
                label = "premium" if tier.is_premium else f"free (limit {tier.max_free_records})"
                console.print(f"Tier: {label}")
        except (StoreError, ValueError) as exc:
            console.print(f"[red]ERROR:[/red] {exc}")
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
