from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Callable, Optional, TypeVar, TYPE_CHECKING

import cloudscraper
import requests
from cloudscraper.exceptions import CloudflareException

from .errors import FetchCancelled, FetchExhausted, MalformedResponse, TransientFetchError
from .models import RetryPolicy

if TYPE_CHECKING:
    from .ui import ConsoleUI


log = logging.getLogger(__name__)

T = TypeVar("T")

CHUNK_SIZE = 16 * 1024
POLL_INTERVAL = 0.05

DEFAULT_USER_AGENT = "chapterdex/0.1 (+https://api.mangadex.org)"

DEFAULT_HEADERS = {
    "User-Agent": DEFAULT_USER_AGENT,
    "Accept": "application/json",
    "Accept-Language": "en-US,en;q=0.9",
}


def create_scraper() -> cloudscraper.CloudScraper:
    scraper = cloudscraper.create_scraper(
        browser={"browser": "chrome", "platform": "windows", "mobile": False},
    )
    scraper.headers.update(DEFAULT_HEADERS)
    return scraper


def decode_json(body: bytes) -> Any:
    try:
        return json.loads(body)
    except ValueError as exc:
        raise MalformedResponse(f"Response body is not JSON ({exc})") from exc


def _download(
    scraper: requests.Session,
    url: str,
    params: Optional[dict[str, Any]],
    timeout: float,
    deadline: float,
    abort: threading.Event,
) -> tuple[int, bytes]:
    try:
        response = scraper.request(method="GET", url=url, params=params, timeout=timeout, stream=True)
        with response:
            response.raise_for_status()
            chunks: list[bytes] = []
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if abort.is_set():
                    raise FetchCancelled("Attempt abandoned")
                if time.monotonic() > deadline:
                    raise TransientFetchError("timeout", f"body not received within {timeout:.1f}s")
                chunks.append(chunk)
            return response.status_code, b"".join(chunks)
    except requests.Timeout as exc:
        raise TransientFetchError("timeout", f"timed out after {timeout:.1f}s") from exc
    except requests.HTTPError as exc:
        status = exc.response.status_code if exc.response is not None else None
        raise TransientFetchError("http", f"HTTP {status}", status=status) from exc
    except requests.RequestException as exc:
        message = str(exc).strip() or exc.__class__.__name__
        raise TransientFetchError("network", message) from exc
    except CloudflareException as exc:
        message = str(exc).strip() or exc.__class__.__name__
        raise TransientFetchError("challenge", message) from exc


def _attempt(
    scraper: requests.Session,
    url: str,
    params: Optional[dict[str, Any]],
    timeout: float,
    parser: Callable[[bytes], T],
    cancel_event: Optional[threading.Event],
) -> T:
    """Run one GET in a worker thread, giving up on it at the deadline or on cancellation.

    An abandoned worker stops at its next body chunk, or when the transport
    timeout fires if it is still waiting for the server.
    """
    deadline = time.monotonic() + timeout
    abort = threading.Event()
    done = threading.Event()
    outcome: list = []

    def run() -> None:
        try:
            outcome.append(_download(scraper, url, params, timeout, deadline, abort))
        except Exception as exc:
            outcome.append(exc)
        finally:
            done.set()

    threading.Thread(target=run, name=f"chapterdex-get-{url}", daemon=True).start()
    while not done.wait(min(POLL_INTERVAL, max(deadline - time.monotonic(), 0.0))):
        if cancel_event is not None and cancel_event.is_set():
            abort.set()
            raise FetchCancelled("Request aborted")
        if time.monotonic() >= deadline:
            abort.set()
            raise TransientFetchError("timeout", f"timed out after {timeout:.1f}s")

    result = outcome[0]
    if isinstance(result, Exception):
        raise result
    status, body = result
    try:
        return parser(body)
    except MalformedResponse as exc:
        raise TransientFetchError("malformed", str(exc), status=status) from exc


def _wait(delay: float, cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is None:
        time.sleep(delay)
        return
    if cancel_event.wait(delay):
        raise FetchCancelled("Cancelled while waiting to retry")


def fetch_page(
    scraper: requests.Session,
    url: str,
    *,
    parser: Callable[[bytes], T],
    params: Optional[dict[str, Any]] = None,
    policy: Optional[RetryPolicy] = None,
    purpose: str = "Request",
    cancel_event: Optional[threading.Event] = None,
    ui: Optional["ConsoleUI"] = None,
) -> T:
    """GET ``url`` with bounded retries and exponential backoff, returning ``parser(body)``.

    Every failed attempt is reported and retried; once ``policy.max_retries + 1``
    attempts have failed, FetchExhausted is raised from the last failure. Each
    attempt is abandoned once ``policy.timeout`` elapses. Setting ``cancel_event``
    aborts the attempt in flight (or the backoff wait) and raises FetchCancelled;
    a body that arrives after cancellation is discarded.
    """
    policy = policy or RetryPolicy()
    last_error: Optional[TransientFetchError] = None
    for attempt in range(1, policy.attempts + 1):
        if cancel_event is not None and cancel_event.is_set():
            raise FetchCancelled(f"{purpose} cancelled")
        try:
            result = _attempt(scraper, url, params, policy.timeout, parser, cancel_event)
        except TransientFetchError as exc:
            last_error = exc
            _report_failure(purpose, attempt, policy, exc, ui)
            if attempt == policy.attempts:
                break
            _wait(policy.delay_after(attempt), cancel_event)
            continue
        if cancel_event is not None and cancel_event.is_set():
            raise FetchCancelled(f"{purpose} cancelled")
        if ui and attempt > 1:
            ui.update_detail(None)
        return result

    if ui:
        ui.log_event(f"{purpose} failed after {policy.attempts} attempts.", level="error")
    raise FetchExhausted(url, policy.attempts) from last_error


def _report_failure(
    purpose: str,
    attempt: int,
    policy: RetryPolicy,
    exc: TransientFetchError,
    ui: Optional["ConsoleUI"],
) -> None:
    message = f"{purpose} attempt {attempt}/{policy.attempts} failed [{exc.cause}] ({exc})."
    if attempt < policy.attempts:
        message += f" Retrying in {policy.delay_after(attempt):.1f}s..."
    if ui:
        ui.update_detail(message, level="warning")
    else:
        log.warning(message)
