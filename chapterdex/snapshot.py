from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional, Union

from .models import PageResult

log = logging.getLogger(__name__)


class SnapshotDirectory:
    """Serves chapter pages from bundled ``<collection_id>.json`` snapshots.

    Each file holds one upstream chapter-list response (``{"data": [...], "total": N}``)
    covering the whole collection; pages are sliced out of it by offset. Pass an
    instance as ``fallback=`` to ``aggregate_all`` to opt into substitution.
    """

    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory)

    def _load(self, collection_id: str) -> Optional[dict]:
        path = self.directory / f"{collection_id}.json"
        if not path.is_file():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            log.warning(f"Ignoring unreadable snapshot {path}: {exc}")
            return None
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
            log.warning(f"Ignoring snapshot {path}: no 'data' list")
            return None
        return payload

    def __call__(self, collection_id: str, offset: int, limit: int) -> Optional[PageResult]:
        payload = self._load(collection_id)
        if payload is None:
            return None
        records = payload["data"][offset:offset + limit]
        total = payload.get("total")
        if not isinstance(total, int) or isinstance(total, bool):
            total = len(payload["data"])
        items = tuple(record for record in records if isinstance(record, dict))
        return PageResult(items=items, total=total, returned_count=len(records))
