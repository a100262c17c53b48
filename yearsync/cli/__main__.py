"""
yearsync CLI - Reconcile a year's listening history with the server.

Usage:
    yearsync run [--year Y] [--json] [--db PATH] [--max-workers N]
    yearsync status [--year Y] [--json] [--db PATH]
"""

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from yearsync import YearSync
from yearsync.config import SyncSettings
from yearsync.storage import SQLiteHistoryStorage

# Set up logging
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)


def _current_year() -> int:
    return datetime.now(timezone.utc).year


def validate_year(value: str) -> int:
    """argparse type for a calendar year."""
    try:
        year = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"year must be an integer, got {value!r}")
    if not 2000 <= year <= 9999:
        raise argparse.ArgumentTypeError(f"year out of range: {year}")
    return year


def validate_positive_int(value: str) -> int:
    """argparse type for a count that must be at least 1."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def _settings_from_args(args) -> SyncSettings:
    settings = SyncSettings.load()
    if getattr(args, "db", None):
        settings.db_path = Path(args.db)
    if getattr(args, "max_workers", None) is not None:
        settings.max_workers = args.max_workers
    return settings


def cmd_run(args, settings: SyncSettings) -> int:
    """Run one sync for the requested year."""
    year = args.year or _current_year()
    ys = YearSync.from_settings(settings)
    try:
        outcome = ys.run_with_outcome(year)
    finally:
        ys.close()

    if args.json:
        print(json.dumps(outcome.to_dict(), indent=2, default=str))
    elif outcome.success:
        if outcome.changes:
            print(
                f"✓ {year}: pulled {outcome.changes} changes, "
                f"resolved {outcome.resolved}/{outcome.missing} missing episodes, "
                f"merged {outcome.merged_episodes} episodes"
            )
        else:
            print(f"✓ {year}: up to date ({outcome.local_count} episodes)")
        for error in outcome.errors:
            print(f"  ⚠ {error}")
    else:
        print(f"✗ {year}: sync failed ({outcome.state.value})")
        for error in outcome.errors:
            print(f"  {error}")
    return 0 if outcome.success else 1


def cmd_status(args, settings: SyncSettings) -> int:
    """Show local counts without contacting the server."""
    year = args.year or _current_year()
    storage = SQLiteHistoryStorage(settings.resolved_db_path())
    stats = storage.get_stats(year)
    status = {
        "year": year,
        "db_path": str(storage.db_path),
        "server_url": settings.server_url,
        "authenticated": bool(settings.auth_token),
        **stats,
    }
    if args.json:
        print(json.dumps(status, indent=2))
    else:
        print(f"Year {year}: {stats['interactions']} episodes played")
        print(f"  Podcasts: {stats['podcasts']}  Episodes: {stats['episodes']}")
        print(f"  Database: {status['db_path']}")
        print(f"  Server:   {status['server_url']} ({'token set' if status['authenticated'] else 'no token'})")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="yearsync",
        description="Reconcile a year's listening history with the server",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # run
    p_run = subparsers.add_parser("run", help="Sync a year's listening history")
    p_run.add_argument("--year", "-y", type=validate_year, help="Year (default: current)")
    p_run.add_argument("--json", "-j", action="store_true")
    p_run.add_argument("--db", help="Database path")
    p_run.add_argument("--max-workers", type=validate_positive_int, help="Cap concurrent lookups")

    # status
    p_status = subparsers.add_parser("status", help="Show local history counts")
    p_status.add_argument("--year", "-y", type=validate_year, help="Year (default: current)")
    p_status.add_argument("--json", "-j", action="store_true")
    p_status.add_argument("--db", help="Database path")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        settings = _settings_from_args(args)
        if args.command == "run":
            code = cmd_run(args, settings)
        else:
            code = cmd_status(args, settings)
    except (ValueError, TypeError) as e:
        logger.error(f"Input validation error: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Command failed: {e}")
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
