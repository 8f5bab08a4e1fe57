from __future__ import annotations

import json
import logging
import re
import threading
from pathlib import Path
from typing import Any, Callable, Optional, Sequence
from urllib.parse import quote

import requests

from .errors import FetchCancelled, FetchExhausted, InvalidInput
from .http_utils import create_scraper, fetch_page
from .models import ChapterSummary, MangaCard, PageResult, RetryPolicy
from .parsing import (
    build_manga_card,
    chapter_page_urls,
    cover_art_id,
    cover_file_name,
    normalize_chapter,
    parse_document,
    parse_entity,
    parse_page_result,
    record_id,
    sort_chapters,
)
from .ui import ConsoleUI

log = logging.getLogger(__name__)

API_BASE = "https://api.mangadex.org"
UPLOADS_BASE = "https://uploads.mangadex.org"
LANGUAGE = "en"
DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 100

_ID_PATTERN = re.compile(r"[A-Za-z0-9][A-Za-z0-9_-]*")

PageFallback = Callable[[str, int, int], Optional[PageResult]]


def validate_id(value: Any, label: str = "Collection id") -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"{label} must be a non-empty string.")
    if not _ID_PATTERN.fullmatch(value):
        raise InvalidInput(f"Malformed {label.lower()}: {value!r}")
    return value


def _validate_page_size(page_size: Any) -> int:
    if isinstance(page_size, bool) or not isinstance(page_size, int):
        raise InvalidInput("Page size must be an integer.")
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise InvalidInput(f"Page size must be between 1 and {MAX_PAGE_SIZE}.")
    return page_size


def chapter_list_params(collection_id: str, page_size: int, offset: int) -> dict[str, Any]:
    return {
        "manga": collection_id,
        "translatedLanguage[]": LANGUAGE,
        "limit": page_size,
        "offset": offset,
        "order[chapter]": "asc",
    }


def aggregate_all(
    collection_id: str,
    page_size: int = DEFAULT_PAGE_SIZE,
    *,
    scraper: Optional[requests.Session] = None,
    policy: Optional[RetryPolicy] = None,
    fallback: Optional[PageFallback] = None,
    cancel_event: Optional[threading.Event] = None,
    raise_on_cancel: bool = False,
    ui: Optional[ConsoleUI] = None,
) -> list[ChapterSummary]:
    """Collect every chapter of ``collection_id`` in reading order.

    Pages are requested one after another until the declared total is reached,
    a short page arrives, or a full page brings no new ids. Records already
    seen on an earlier page are skipped. Upstream failures end the loop early
    and the chapters gathered so far are returned; only a bad id or page size
    raises (InvalidInput), plus FetchCancelled when ``raise_on_cancel`` is set.
    """
    collection_id = validate_id(collection_id)
    page_size = _validate_page_size(page_size)
    scraper = scraper or create_scraper()
    url = f"{API_BASE}/chapter"

    accumulated: list[dict[str, Any]] = []
    seen_ids: set[str] = set()
    offset = 0
    page_number = 0

    while True:
        page_number += 1
        if ui:
            ui.update_status(
                f"Fetching chapter page {page_number} ({len(accumulated)} chapters so far)...",
                level="info",
            )
        try:
            page = fetch_page(
                scraper,
                url,
                parser=parse_page_result,
                params=chapter_list_params(collection_id, page_size, offset),
                policy=policy,
                purpose=f"Chapter page {page_number}",
                cancel_event=cancel_event,
                ui=ui,
            )
        except FetchCancelled:
            log.info(f"Aggregation of {collection_id} cancelled after {len(accumulated)} chapters")
            if raise_on_cancel:
                raise
            break
        except FetchExhausted as exc:
            page = fallback(collection_id, offset, page_size) if fallback else None
            if page is None:
                log.warning(f"{exc}; keeping {len(accumulated)} chapters gathered so far")
                if ui:
                    ui.log_event(
                        f"Stopped at page {page_number}; keeping {len(accumulated)} chapters.",
                        level="warning",
                    )
                break
            log.info(f"Using snapshot data for page {page_number} of {collection_id}")

        added = 0
        for record in page.items:
            chapter_id = record_id(record)
            if chapter_id is None or chapter_id in seen_ids:
                continue
            seen_ids.add(chapter_id)
            accumulated.append(record)
            added += 1
        log.debug(
            f"Page {page_number} at offset {offset}: {page.returned_count} returned, "
            f"{added} new, total={page.total}"
        )

        if page.total and len(accumulated) >= page.total:
            break
        if page.returned_count < page_size:
            break
        if added == 0:
            log.warning(f"Page {page_number} of {collection_id} repeated earlier chapters; stopping")
            break
        offset += page_size

    chapters = [chapter for chapter in map(normalize_chapter, accumulated) if chapter is not None]
    ordered = sort_chapters(chapters)
    if ui:
        ui.update_status(f"Collected {len(ordered)} chapters.", level="success")
    return ordered


def fetch_cover_url(
    manga_id: str,
    record: dict[str, Any],
    *,
    scraper: requests.Session,
    policy: Optional[RetryPolicy] = None,
    ui: Optional[ConsoleUI] = None,
) -> Optional[str]:
    cover_id = cover_art_id(record)
    if cover_id is None:
        return None
    try:
        cover = fetch_page(
            scraper,
            f"{API_BASE}/cover/{quote(cover_id, safe='')}",
            parser=parse_entity,
            policy=policy,
            purpose="Cover request",
            ui=ui,
        )
    except FetchExhausted as exc:
        log.warning(f"No cover for {manga_id}: {exc}")
        return None
    file_name = cover_file_name(cover)
    if file_name is None:
        return None
    return f"{UPLOADS_BASE}/covers/{manga_id}/{file_name}"


def fetch_manga_details(
    manga_id: str,
    *,
    scraper: Optional[requests.Session] = None,
    policy: Optional[RetryPolicy] = None,
    ui: Optional[ConsoleUI] = None,
) -> MangaCard:
    manga_id = validate_id(manga_id, "Manga id")
    scraper = scraper or create_scraper()
    record = fetch_page(
        scraper,
        f"{API_BASE}/manga/{quote(manga_id, safe='')}",
        parser=parse_entity,
        policy=policy,
        purpose="Manga request",
        ui=ui,
    )
    resolved_id = record_id(record) or manga_id
    cover_url = fetch_cover_url(resolved_id, record, scraper=scraper, policy=policy, ui=ui)
    return build_manga_card(resolved_id, record, LANGUAGE, cover_url=cover_url)


def fetch_manga_list(
    limit: int = 24,
    *,
    scraper: Optional[requests.Session] = None,
    policy: Optional[RetryPolicy] = None,
    ui: Optional[ConsoleUI] = None,
) -> list[MangaCard]:
    limit = _validate_page_size(limit)
    scraper = scraper or create_scraper()
    try:
        page = fetch_page(
            scraper,
            f"{API_BASE}/manga",
            parser=parse_page_result,
            params={"limit": limit, "availableTranslatedLanguage[]": LANGUAGE},
            policy=policy,
            purpose="Manga list request",
            ui=ui,
        )
    except FetchExhausted as exc:
        log.warning(f"Manga list unavailable: {exc}")
        return []

    cards: list[MangaCard] = []
    for record in page.items:
        manga_id = record_id(record)
        if manga_id is None:
            continue
        cover_url = fetch_cover_url(manga_id, record, scraper=scraper, policy=policy, ui=ui)
        cards.append(build_manga_card(manga_id, record, LANGUAGE, cover_url=cover_url))
    return cards


def fetch_chapter_pages(
    chapter_id: str,
    *,
    scraper: Optional[requests.Session] = None,
    policy: Optional[RetryPolicy] = None,
    ui: Optional[ConsoleUI] = None,
) -> Optional[list[str]]:
    chapter_id = validate_id(chapter_id, "Chapter id")
    scraper = scraper or create_scraper()
    try:
        at_home = fetch_page(
            scraper,
            f"{API_BASE}/at-home/server/{quote(chapter_id, safe='')}",
            parser=parse_document,
            policy=policy,
            purpose="Chapter pages request",
            ui=ui,
        )
    except FetchExhausted as exc:
        log.warning(f"Pages for chapter {chapter_id} unavailable: {exc}")
        return None
    return chapter_page_urls(at_home)


def format_chapter_line(chapter: ChapterSummary) -> str:
    label = f"Chapter {chapter.display_number or 'Oneshot'}"
    if chapter.title:
        label += f": {chapter.title}"
    created = chapter.created_at.date().isoformat() if chapter.created_at else "unknown date"
    return f"{label} ({created}) [{chapter.id}]"


def write_chapter_list(chapters: Sequence[ChapterSummary], path: Path) -> Path:
    rows = [
        {
            "id": chapter.id,
            "chapter": chapter.display_number,
            "number": chapter.numeric_order,
            "title": chapter.title,
            "createdAt": chapter.created_at.isoformat() if chapter.created_at else None,
        }
        for chapter in chapters
    ]
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(rows, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    return path
