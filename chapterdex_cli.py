from __future__ import annotations

import logging
import os
from pathlib import Path

from chapterdex import (
    InvalidInput,
    SnapshotDirectory,
    aggregate_all,
    fetch_manga_details,
    parse_args,
    validate_args,
)
from chapterdex.aggregator import format_chapter_line, write_chapter_list
from chapterdex.cli import retry_policy_from_args
from chapterdex.errors import FetchExhausted
from chapterdex.http_utils import create_scraper
from chapterdex.ui import ConsoleUI


def configure_logging() -> None:
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="[%(asctime)s] %(levelname)s [%(module)s-%(funcName)s()::%(lineno)d] %(message)s",
        datefmt="%d/%b/%Y %H:%M:%S",
    )
    if level <= logging.INFO:
        logging.getLogger("urllib3").setLevel(logging.WARNING)


def main() -> None:
    configure_logging()
    args = parse_args()
    validate_args(args)

    policy = retry_policy_from_args(args)
    fallback = SnapshotDirectory(args.snapshot_dir) if args.snapshot_dir else None
    scraper = create_scraper()
    ui = ConsoleUI()

    try:
        if args.details:
            card = fetch_manga_details(args.manga_id, scraper=scraper, policy=policy, ui=ui)
            ui.log_event(card.title, level="success")
            if card.description:
                ui.log_event(card.description, level="muted")
            if card.cover_url:
                ui.log_event(f"Cover: {card.cover_url}", level="muted")

        chapters = aggregate_all(
            args.manga_id,
            args.page_size,
            scraper=scraper,
            policy=policy,
            fallback=fallback,
            ui=ui,
        )
        for chapter in chapters:
            ui.log_event(format_chapter_line(chapter), level="info")
        if not chapters:
            ui.log_event("No English chapters found.", level="warning")
        if args.json_output:
            output_path = write_chapter_list(chapters, Path(args.json_output))
            ui.log_event(f"Saved {len(chapters)} chapters to {output_path}", level="success")
    except KeyboardInterrupt:
        ui.log_event("Interrupted by user.", level="error")
        raise SystemExit("Interrupted by user.")
    except (InvalidInput, FetchExhausted, OSError) as exc:
        ui.log_event(str(exc), level="error")
        raise SystemExit(str(exc)) from None
    finally:
        ui.finalize()


if __name__ == "__main__":
    main()
