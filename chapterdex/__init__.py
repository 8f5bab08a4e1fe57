from .aggregator import (
    aggregate_all,
    fetch_chapter_pages,
    fetch_manga_details,
    fetch_manga_list,
)
from .cli import parse_args, validate_args
from .errors import FetchCancelled, FetchExhausted, InvalidInput, TransientFetchError
from .models import ChapterSummary, MangaCard, PageResult, RetryPolicy
from .parsing import chapter_neighbors
from .snapshot import SnapshotDirectory

__all__ = [
    "aggregate_all",
    "chapter_neighbors",
    "fetch_chapter_pages",
    "fetch_manga_details",
    "fetch_manga_list",
    "parse_args",
    "validate_args",
    "ChapterSummary",
    "FetchCancelled",
    "FetchExhausted",
    "InvalidInput",
    "MangaCard",
    "PageResult",
    "RetryPolicy",
    "SnapshotDirectory",
    "TransientFetchError",
]
