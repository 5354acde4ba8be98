from __future__ import annotations

import sys
from dataclasses import dataclass, field
from typing import TextIO


@dataclass
class ProgressReporter:
    """TTY-aware progress output with sparse logging in non-interactive runs.

    ``total=None`` is used for open-ended work such as following API pages,
    where only a running count can be shown.
    """

    label: str
    total: int | None
    unit: str = "items"
    stream: TextIO = field(default_factory=lambda: sys.stderr)
    non_tty_every: int = 100
    line_width: int = 120

    _processed: int = 0
    _last_printed: int = 0
    _completed: bool = False

    def step(self, increment: int = 1, *, done: bool = False, **metrics: int) -> None:
        if self.total is not None and self.total <= 0:
            return

        self._processed = max(0, self._processed + increment)
        if self.total is not None:
            self._processed = min(self._processed, self.total)
            is_done = bool(done or self._processed >= self.total)
        else:
            is_done = bool(done)
        line = self._render_line(metrics)

        if self.stream.isatty():
            print(
                line.ljust(self.line_width),
                end="\n" if is_done else "\r",
                file=self.stream,
                flush=True,
            )
            self._last_printed = self._processed
            self._completed = is_done
            return

        should_log = is_done or self._processed == 1 or self._processed == self.total
        if not should_log and self.non_tty_every > 0:
            should_log = (self._processed % self.non_tty_every == 0) and self._processed != self._last_printed

        if should_log:
            print(line, file=self.stream)
            self._last_printed = self._processed
            self._completed = is_done

    def close(self) -> None:
        """Ensure the current TTY line is finalized before other output prints."""
        if self.total is not None and self.total <= 0:
            return
        if self.stream.isatty() and self._last_printed > 0 and not self._completed:
            print(file=self.stream, flush=True)

    def _render_line(self, metrics: dict[str, int]) -> str:
        if self.total is None:
            base = f"{self.label}: {self._processed} {self.unit}"
        else:
            percent = (self._processed / self.total) * 100.0
            base = f"{self.label}: {self._processed}/{self.total} {self.unit} ({percent:5.1f}%)"
        if not metrics:
            return base
        parts = [f"{key}={value}" for key, value in metrics.items()]
        return f"{base} {' '.join(parts)}"
