from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Sequence

from .errors import MalformedResponse
from .http_utils import decode_json
from .models import ChapterSummary, MangaCard, PageResult

_LEADING_NUMBER = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def parse_page_result(body: bytes) -> PageResult:
    payload = decode_json(body)
    if not isinstance(payload, dict):
        raise MalformedResponse("Expected a JSON object at the top level")
    data = payload.get("data", [])
    if data is None:
        data = []
    if not isinstance(data, list):
        raise MalformedResponse("Expected 'data' to be a list")

    total: Optional[int] = None
    raw_total = payload.get("total")
    if isinstance(raw_total, int) and not isinstance(raw_total, bool) and raw_total >= 0:
        total = raw_total

    items = tuple(item for item in data if isinstance(item, dict))
    return PageResult(items=items, total=total, returned_count=len(data))


def parse_entity(body: bytes) -> dict[str, Any]:
    payload = decode_json(body)
    if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict):
        raise MalformedResponse("Expected a JSON object with a 'data' object")
    return payload["data"]


def parse_document(body: bytes) -> dict[str, Any]:
    payload = decode_json(body)
    if not isinstance(payload, dict):
        raise MalformedResponse("Expected a JSON object at the top level")
    return payload


def record_id(record: dict[str, Any]) -> Optional[str]:
    value = record.get("id")
    if isinstance(value, str) and value:
        return value
    return None


def parse_chapter_number(label: str) -> Optional[float]:
    """Read the leading number of a chapter label ("12a" -> 12.0, "Oneshot" -> None)."""
    match = _LEADING_NUMBER.match(label.strip())
    if match is None:
        return None
    value = float(match.group())
    if not math.isfinite(value):
        return None
    return value


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_chapter(record: dict[str, Any]) -> Optional[ChapterSummary]:
    chapter_id = record_id(record)
    if chapter_id is None:
        return None
    attributes = _as_dict(record.get("attributes"))
    display_number = _as_str(attributes.get("chapter"))
    return ChapterSummary(
        id=chapter_id,
        display_number=display_number,
        numeric_order=parse_chapter_number(display_number),
        title=_as_str(attributes.get("title")),
        created_at=parse_timestamp(attributes.get("createdAt")),
    )


def _chapter_sort_key(chapter: ChapterSummary) -> tuple:
    if chapter.numeric_order is not None:
        return (0, chapter.numeric_order)
    if chapter.created_at is not None:
        return (1, chapter.created_at.timestamp())
    return (2, 0.0)


def sort_chapters(chapters: Iterable[ChapterSummary]) -> list[ChapterSummary]:
    """Numbered chapters ascending, then unnumbered ones by creation time; stable."""
    return sorted(chapters, key=_chapter_sort_key)


def pick_localized(values: Any, language: str) -> str:
    mapping = _as_dict(values)
    preferred = mapping.get(language)
    if isinstance(preferred, str) and preferred:
        return preferred
    for value in mapping.values():
        if isinstance(value, str) and value:
            return value
    return ""


def manga_title(attributes: dict[str, Any], language: str) -> str:
    titles = _as_dict(attributes.get("title"))
    direct = titles.get(language)
    if isinstance(direct, str) and direct:
        return direct
    alt_titles = attributes.get("altTitles")
    if isinstance(alt_titles, list):
        for alt in alt_titles:
            candidate = _as_dict(alt).get(language)
            if isinstance(candidate, str) and candidate:
                return candidate
    return pick_localized(titles, language) or "Untitled"


def manga_tags(attributes: dict[str, Any], language: str, *, limit: int = 3) -> tuple[str, ...]:
    tags: list[str] = []
    raw_tags = attributes.get("tags")
    if not isinstance(raw_tags, list):
        return ()
    for tag in raw_tags:
        name = pick_localized(_as_dict(_as_dict(tag).get("attributes")).get("name"), language)
        if name:
            tags.append(name)
        if len(tags) == limit:
            break
    return tuple(tags)


def cover_art_id(record: dict[str, Any]) -> Optional[str]:
    relationships = record.get("relationships")
    if not isinstance(relationships, list):
        return None
    for relation in relationships:
        relation = _as_dict(relation)
        if relation.get("type") == "cover_art":
            return record_id(relation)
    return None


def cover_file_name(cover: dict[str, Any]) -> Optional[str]:
    file_name = _as_dict(cover.get("attributes")).get("fileName")
    return file_name if isinstance(file_name, str) and file_name else None


def build_manga_card(
    manga_id: str,
    record: dict[str, Any],
    language: str,
    *,
    cover_url: Optional[str] = None,
) -> MangaCard:
    attributes = _as_dict(record.get("attributes"))
    return MangaCard(
        id=manga_id,
        title=manga_title(attributes, language),
        description=pick_localized(attributes.get("description"), language),
        cover_url=cover_url,
        tags=manga_tags(attributes, language),
    )


def chapter_page_urls(at_home: dict[str, Any]) -> Optional[list[str]]:
    chapter = at_home.get("chapter")
    base_url = at_home.get("baseUrl")
    if not isinstance(chapter, dict) or not isinstance(base_url, str) or not base_url:
        return None
    chapter_hash = _as_str(chapter.get("hash"))
    files = chapter.get("data")
    if not chapter_hash or not isinstance(files, list):
        return None
    base_url = base_url.rstrip("/")
    return [
        f"{base_url}/data/{chapter_hash}/{file_name}"
        for file_name in files
        if isinstance(file_name, str) and file_name
    ]


def chapter_neighbors(
    chapters: Sequence[ChapterSummary],
    chapter_id: str,
) -> tuple[Optional[ChapterSummary], Optional[ChapterSummary]]:
    for index, chapter in enumerate(chapters):
        if chapter.id == chapter_id:
            previous = chapters[index - 1] if index > 0 else None
            following = chapters[index + 1] if index + 1 < len(chapters) else None
            return previous, following
    return None, None
