from __future__ import annotations

import os
import sys
from typing import Optional, TextIO


class ConsoleUI:
    """Two-line terminal reporter: a sticky status line plus a transient detail line.

    Events (``log_event``) scroll above the sticky lines. Without an ANSI capable
    terminal everything is printed as plain ``[LABEL] message`` lines instead.
    """

    _COLORS = {
        "info": "36",      # cyan
        "success": "32",   # green
        "warning": "33",   # yellow
        "error": "31",     # red
        "muted": "90",     # grey
    }
    _LABELS = {
        "info": "INFO",
        "success": "DONE",
        "warning": "WARN",
        "error": "ERR",
        "muted": "...",
    }

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream or sys.stdout
        self._supports_ansi = self._stream.isatty() and os.getenv("TERM") != "dumb"
        self._status: Optional[tuple[str, str]] = None
        self._detail: Optional[tuple[str, str]] = None
        self._rendered_lines = 0

        if os.name == "nt" and self._supports_ansi:
            import colorama

            colorama.just_fix_windows_console()

    def _label(self, message: str, level: str) -> str:
        if level == "muted":
            return message
        return f"[{self._LABELS.get(level, level.upper())}] {message}"

    def _colorize(self, text: str, level: str) -> str:
        code = self._COLORS.get(level)
        if not self._supports_ansi or not code:
            return text
        return f"\x1b[{code}m{text}\x1b[0m"

    def _clear(self) -> None:
        if not self._rendered_lines:
            return
        for index in range(self._rendered_lines):
            self._stream.write("\r\x1b[2K")
            if index < self._rendered_lines - 1:
                self._stream.write("\x1b[1A")
        self._stream.flush()
        self._rendered_lines = 0

    def _render(self) -> None:
        self._clear()
        lines = [
            self._colorize(self._label(message, level), level)
            for message, level in (self._status, self._detail)
            if message
        ]
        if not lines:
            return
        self._stream.write("\n".join(lines))
        self._stream.flush()
        self._rendered_lines = len(lines)

    def _print(self, message: str, level: str) -> None:
        print(self._label(message, level), file=self._stream, flush=True)

    def update_status(self, message: str, *, level: str = "info") -> None:
        if not self._supports_ansi:
            if self._status != (message, level):
                self._print(message, level)
            self._status = (message, level)
            return
        self._status = (message, level)
        self._render()

    def update_detail(self, message: Optional[str], *, level: str = "muted") -> None:
        if not self._supports_ansi:
            if message is not None:
                self._print(message, level)
            self._detail = None
            return
        self._detail = (message, level) if message is not None else None
        self._render()

    def log_event(self, message: str, *, level: str = "info") -> None:
        if not self._supports_ansi:
            self._print(message, level)
            return
        self._clear()
        print(self._colorize(message, level), file=self._stream, flush=True)
        self._render()

    def finalize(self) -> None:
        if self._supports_ansi:
            self._clear()
