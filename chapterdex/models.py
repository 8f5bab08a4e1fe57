from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass(frozen=True)
class ChapterSummary:
    id: str
    display_number: str
    numeric_order: Optional[float]
    title: str
    created_at: Optional[datetime]


@dataclass(frozen=True)
class PageResult:
    items: tuple[dict[str, Any], ...]
    total: Optional[int]
    returned_count: int


@dataclass(frozen=True)
class RetryPolicy:
    timeout: float = 30.0
    max_retries: int = 2
    base_delay: float = 1.0

    @property
    def attempts(self) -> int:
        return self.max_retries + 1

    def delay_after(self, attempt: int) -> float:
        """Seconds to wait between ``attempt`` and the next one (attempts count from 1)."""
        return self.base_delay * (2 ** (attempt - 1))


@dataclass(frozen=True)
class MangaCard:
    id: str
    title: str
    description: str
    cover_url: Optional[str] = None
    tags: tuple[str, ...] = field(default_factory=tuple)
