#!/usr/bin/env python3
"""CLI entry point for healthfold package.

Usage:
    python -m healthfold import <files...> [--db healthfold.db] [--config healthfold.toml]
    python -m healthfold summary [--db healthfold.db]
    python -m healthfold history [--db healthfold.db]
    python -m healthfold query <category> [--start YYYY-MM-DD] [--end YYYY-MM-DD] [--type TYPE] [--db ...]
    python -m healthfold init-config [--output healthfold.toml]
"""

import argparse
import sys

DEFAULT_CONFIG = "healthfold.toml"
MAX_CELL = 60


def main(argv=None):
    from healthfold.models import CATEGORIES

    parser = argparse.ArgumentParser(
        prog="healthfold",
        description="Import wearable exports, FHIR bundles and lab PDFs into one SQLite record store.",
    )
    sub = parser.add_subparsers(dest="command")

    # --- import ---
    import_parser = sub.add_parser("import", help="Import health data files")
    import_parser.add_argument("files", nargs="+", help="CSV, ZIP, JSON or PDF files")
    import_parser.add_argument("--db", default=None, help="SQLite database path (default: from config)")
    import_parser.add_argument("--config", default="", help="Path to healthfold.toml config file")

    # --- summary ---
    summary_parser = sub.add_parser("summary", help="Show record counts per category")
    summary_parser.add_argument("--db", default=None, help="SQLite database path")
    summary_parser.add_argument("--config", default="", help="Path to healthfold.toml config file")

    # --- history ---
    history_parser = sub.add_parser("history", help="Show the import ledger")
    history_parser.add_argument("--db", default=None, help="SQLite database path")
    history_parser.add_argument("--config", default="", help="Path to healthfold.toml config file")

    # --- query ---
    query_parser = sub.add_parser("query", help="List records of one category in a date range")
    query_parser.add_argument("category", choices=CATEGORIES, help="Record category")
    query_parser.add_argument("--start", default="0001-01-01", help="First date (YYYY-MM-DD)")
    query_parser.add_argument("--end", default="9999-12-31", help="Last date (YYYY-MM-DD)")
    query_parser.add_argument("--type", default=None, help="Only records of this type (e.g. weight)")
    query_parser.add_argument("--db", default=None, help="SQLite database path")
    query_parser.add_argument("--config", default="", help="Path to healthfold.toml config file")

    # --- init-config ---
    config_parser = sub.add_parser("init-config", help="Write a default healthfold.toml")
    config_parser.add_argument("--output", default=DEFAULT_CONFIG, help="Config file output path")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "init-config":
        _handle_init_config(args)
        return

    settings = _load_settings(args)
    if args.command == "import":
        _handle_import(args, settings)
    elif args.command == "summary":
        _handle_summary(args, settings)
    elif args.command == "history":
        _handle_history(args, settings)
    elif args.command == "query":
        _handle_query(args, settings)


def _load_settings(args) -> dict:
    """Read the config file, set up logging, and resolve the database path."""
    from healthfold.config import load_config
    from healthfold.log import configure_logging

    # An explicit --config must exist; the default file is optional.
    config = load_config(args.config or DEFAULT_CONFIG, warn_missing=bool(args.config))
    configure_logging(config["logging"]["level"], json_output=bool(config["logging"]["json"]))
    if args.db:
        config["database"]["path"] = args.db
    return config


def _handle_import(args, settings: dict):
    import asyncio

    from healthfold.db import HealthDB
    from healthfold.errors import HealthImportError
    from healthfold.importer import Importer, Upload

    uploads = []
    for path in args.files:
        try:
            uploads.append(Upload.from_path(path))
        except OSError as e:
            print(f"Error: cannot read '{path}': {e.strerror}", file=sys.stderr)
            sys.exit(1)

    with HealthDB(settings["database"]["path"]) as db:
        db.init_schema()
        importer = Importer(db, min_confidence=settings["import"]["min_confidence"])

        processed = asyncio.run(importer.process_files(uploads))
        print(f"\n--- Processing {len(processed)} file(s) ---")
        for f in processed:
            fmt = f.format or "unknown"
            print(f"  [{f.status:<9}] {f.file_name} ({fmt}): {f.message}")

        try:
            summary = asyncio.run(importer.import_all())
        except HealthImportError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)

        print(f"\nSuccessfully imported {summary.total_records} records from {summary.file_count} files")
        for category, count in summary.records_by_category.items():
            print(f"  {category:<25} {count:>6}")


def _handle_summary(args, settings: dict):
    from healthfold.db import HealthDB

    with HealthDB(settings["database"]["path"]) as db:
        db.init_schema()
        _print_db_summary(db)


def _print_db_summary(db):
    counts = db.summary()

    print(f"\n{'='*50}")
    print("Database Summary")
    print(f"{'='*50}")
    for table, count in counts.items():
        if count > 0:
            print(f"  {table:<25} {count:>6}")
    print(f"{'='*50}")


def _handle_history(args, settings: dict):
    import asyncio

    from healthfold.db import HealthDB

    with HealthDB(settings["database"]["path"]) as db:
        db.init_schema()
        rows = asyncio.run(db.import_history())

    if not rows:
        print("(no imports)")
        return
    print("Import History:")
    for r in rows:
        print(f"  {r['timestamp'][:19]}  {r['source_format']:<20} {r['records_imported']:>6}  {r['file_name']}")


def _handle_query(args, settings: dict):
    import asyncio

    from healthfold.db import HealthDB

    with HealthDB(settings["database"]["path"]) as db:
        db.init_schema()
        try:
            rows = asyncio.run(db.records_between(args.category, args.start, args.end, type=args.type))
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)

    _print_rows(rows)


def _print_rows(rows: list[dict]) -> None:
    """Print rows as an aligned table."""
    if not rows:
        print("(no results)")
        return

    headers = list(rows[0].keys())
    col_widths = [len(h) for h in headers]
    for row in rows:
        for i, h in enumerate(headers):
            val = str(row[h]) if row[h] is not None else ""
            col_widths[i] = max(col_widths[i], min(len(val), MAX_CELL))

    fmt = " | ".join(f"{{:<{w}}}" for w in col_widths)
    print(fmt.format(*headers))
    print("-+-".join("-" * w for w in col_widths))
    for row in rows:
        vals = [str(row[h])[:MAX_CELL] if row[h] is not None else "" for h in headers]
        print(fmt.format(*vals))

    print(f"\n({len(rows)} rows)")


def _handle_init_config(args):
    from healthfold.config import generate_config

    path = generate_config(config_path=args.output)
    print(f"Config generated at {path}")


if __name__ == "__main__":
    main()
