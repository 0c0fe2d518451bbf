"""Terminal progress bar for page fetches."""
from __future__ import annotations

import sys
from typing import TextIO


class ProgressBar:
    def __init__(self, stream: TextIO | None = None, width: int = 40, enabled: bool = True):
        self.stream = stream or sys.stderr
        self.width = width
        self.enabled = enabled
        self._last_output = ""

    def render(self, completed: int, total: int) -> str:
        total = max(1, total)
        ratio = min(1.0, completed / total)
        filled = round(ratio * self.width)
        bar = "█" * filled + "░" * (self.width - filled)
        return f"[{bar}] {round(ratio * 100)}% ({completed}/{total})"

    def __call__(self, scope: str, completed: int, total: int) -> None:
        if not self.enabled:
            return
        output = f"\r{self.render(completed, total)}"
        if self._last_output:
            self.stream.write("\r" + " " * len(self._last_output) + "\r")
        self.stream.write(output)
        self._last_output = output
        if completed >= total:
            self.stream.write("\n")
            self._last_output = ""
        self.stream.flush()
