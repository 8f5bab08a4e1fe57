from __future__ import annotations

import argparse
from pathlib import Path
from typing import Optional, Sequence

from .aggregator import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from .models import RetryPolicy


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="List every English chapter of a MangaDex series in reading order.",
    )
    parser.add_argument(
        "manga_id",
        help="MangaDex manga id (e.g. a77742b1-befd-49a4-bff5-1ad4e6b0ef7b).",
    )
    parser.add_argument(
        "-p",
        "--page-size",
        type=int,
        default=DEFAULT_PAGE_SIZE,
        help=f"Chapters requested per page, 1-{MAX_PAGE_SIZE} (default: {DEFAULT_PAGE_SIZE}).",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=2,
        help="Extra attempts per page after the first one fails (default: 2).",
    )
    parser.add_argument(
        "--backoff",
        type=float,
        default=1.0,
        help="Base backoff (seconds); doubles after every failed attempt (default: 1.0).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="HTTP timeout in seconds for each attempt (default: 30).",
    )
    parser.add_argument(
        "--snapshot-dir",
        default=None,
        help="Directory of <manga_id>.json snapshots used when a page cannot be fetched.",
    )
    parser.add_argument(
        "--details",
        action="store_true",
        help="Also print the series title, description and cover URL.",
    )
    parser.add_argument(
        "--json",
        dest="json_output",
        default=None,
        help="Write the ordered chapter list to this JSON file.",
    )
    return parser.parse_args(argv)


def validate_args(args: argparse.Namespace) -> None:
    if not 1 <= args.page_size <= MAX_PAGE_SIZE:
        raise SystemExit(f"Page size must be between 1 and {MAX_PAGE_SIZE}.")
    if args.retries < 0:
        raise SystemExit("Retries must be zero or greater.")
    if args.backoff < 0:
        raise SystemExit("Backoff must be zero or greater.")
    if args.timeout <= 0:
        raise SystemExit("Timeout must be a positive number.")
    if args.snapshot_dir is not None and not Path(args.snapshot_dir).is_dir():
        raise SystemExit(f"Snapshot directory does not exist: {args.snapshot_dir}")
    if args.json_output is not None:
        output_path = Path(args.json_output)
        if output_path.exists() and output_path.is_dir():
            raise SystemExit(f"JSON output path is a directory: {output_path}")


def retry_policy_from_args(args: argparse.Namespace) -> RetryPolicy:
    return RetryPolicy(timeout=args.timeout, max_retries=args.retries, base_delay=args.backoff)
