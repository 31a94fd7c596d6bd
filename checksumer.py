#!/usr/bin/env python3
"""
Checksumer: tamper-evident file catalog.

Builds a SQLite catalog of file fingerprints (SHA-1 by default, plus a hash
of each stored hash) for a directory tree, refreshes it incrementally, and verifies the tree
against it.

Commands:
  build   Create a new catalog; fails if the catalog file already exists.
  update  Hash new files and files whose size or timestamps changed.
  verify  Re-hash unchanged files and compare to stored hashes; read-only.

Exit status is 0 on full success and 1 on any failure.
Use --help for full options and examples.
"""

import argparse
import logging
import sqlite3
import sys
from pathlib import Path
from typing import List, Optional

from build_cmd import build_catalog
from common import (
    DEFAULT_ALGORITHM,
    DEFAULT_IGNORED_NAMES,
    DEFAULT_WORKERS,
    REPORT_INTERVAL_SECONDS,
    ChecksumerError,
    ScanConfig,
    parse_exclude_extensions,
    parse_ignored_names,
    setup_logging,
    write_report,
)
from fingerprint import DIGEST_SIZES
from update_cmd import update_catalog
from verify_cmd import verify_catalog


__all__ = [
    "build_catalog",
    "update_catalog",
    "verify_catalog",
    "main",
]


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        'root',
        type=Path,
        help='Root directory to scan recursively',
    )
    parser.add_argument(
        'catalog',
        type=Path,
        help='Path to the SQLite catalog file',
    )
    parser.add_argument(
        '--ignore',
        action='append',
        default=[],
        help='File names to skip (e.g. .DS_Store,.gitkeep). Comma-separated or repeatable. '
             f'Default: {", ".join(sorted(DEFAULT_IGNORED_NAMES))}',
    )
    parser.add_argument(
        '--exclude-ext',
        action='append',
        default=[],
        help='Extensions to exclude (e.g. .tmp,.part). Comma-separated or repeatable.',
    )
    parser.add_argument(
        '--report',
        type=Path,
        help='Write a JSON report to this path',
    )
    parser.add_argument(
        '--report-interval',
        type=float,
        default=REPORT_INTERVAL_SECONDS,
        help=f'Seconds between progress lines (default: {REPORT_INTERVAL_SECONDS:g})',
    )
    parser.add_argument(
        '--log',
        type=Path,
        help='Write log output to this file',
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose (debug) logging',
    )
    parser.add_argument(
        '--workers',
        type=int,
        default=DEFAULT_WORKERS,
        help=f'Number of parallel hashing threads (default: {DEFAULT_WORKERS})',
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Build, update or verify a tamper-evident catalog of file hashes.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  checksumer build /path/to/photos photos.db
  checksumer build /path/to/photos photos.db --algorithm sha256 --ignore .DS_Store,.gitkeep
  checksumer update /path/to/photos photos.db --report update.json
  checksumer verify /path/to/photos photos.db --workers 4
  checksumer verify /path/to/photos photos.db --report-missing
        """,
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    build_subparser = subparsers.add_parser('build', help='Create a new catalog for a directory tree')
    _add_common_arguments(build_subparser)
    build_subparser.add_argument(
        '--algorithm',
        choices=sorted(DIGEST_SIZES),
        default=DEFAULT_ALGORITHM,
        help=f'Digest algorithm (default: {DEFAULT_ALGORITHM})',
    )

    update_parser = subparsers.add_parser('update', help='Hash new and changed files into the catalog')
    _add_common_arguments(update_parser)

    verify_parser = subparsers.add_parser('verify', help='Compare files against the catalog')
    _add_common_arguments(verify_parser)
    verify_parser.add_argument(
        '--report-missing',
        action='store_true',
        help='Also report catalog entries whose file no longer exists under root',
    )
    return parser


def config_from_args(args: argparse.Namespace) -> ScanConfig:
    ignored = parse_ignored_names(args.ignore) if args.ignore else set(DEFAULT_IGNORED_NAMES)
    return ScanConfig(
        ignored_names=frozenset(ignored),
        exclude_exts=frozenset(parse_exclude_extensions(args.exclude_ext)),
        workers=max(1, args.workers),
        report_interval=args.report_interval,
        report_path=args.report,
    )


def run_command(args: argparse.Namespace) -> int:
    """Run one subcommand and return its exit status."""
    config = config_from_args(args)
    try:
        if args.command == 'build':
            report = build_catalog(args.root, args.catalog, config, algorithm=args.algorithm)
        elif args.command == 'update':
            report = update_catalog(args.root, args.catalog, config)
        else:
            report = verify_catalog(
                args.root, args.catalog, config, report_missing=args.report_missing
            )
    except ChecksumerError as exc:
        logging.error(str(exc))
        return 1
    except sqlite3.Error as exc:
        logging.error(f"Catalog error: {exc}")
        return 1

    if args.report:
        write_report(report, args.report)
    return 0 if report.get("success") else 1


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the script."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(getattr(args, 'log', None), getattr(args, 'verbose', False))
    sys.exit(run_command(args))


if __name__ == "__main__":
    main()
