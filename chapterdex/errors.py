from __future__ import annotations

from typing import Optional


class ChapterdexError(Exception):
    pass


class TransientFetchError(ChapterdexError):
    """A single failed attempt: timeout, network failure, bad status or unparseable body."""

    def __init__(self, cause: str, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.cause = cause
        self.status = status


class MalformedResponse(ChapterdexError, ValueError):
    pass


class FetchExhausted(ChapterdexError):
    def __init__(self, url: str, attempts: int) -> None:
        super().__init__(f"Giving up on {url} after {attempts} attempts")
        self.url = url
        self.attempts = attempts


class FetchCancelled(ChapterdexError):
    pass


class InvalidInput(ChapterdexError, ValueError):
    pass
