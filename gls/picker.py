"""fzf-backed interactive picker."""
from __future__ import annotations

import asyncio
import logging
import shutil
from typing import Optional

from gls.errors import PickerError
from gls.models import PickResult
from gls.selection import Selection

logger = logging.getLogger("gls.picker")

# Pressing this key instead of Enter asks for a clone rather than opening the URL.
CLONE_KEY = "tab"


def build_fzf_command(initial_query: Optional[str] = None, fzf_path: str = "fzf") -> list[str]:
    args = [fzf_path, f"--expect={CLONE_KEY}", "--with-nth=1,2", "--delimiter=\t"]
    if initial_query:
        args.extend(["--query", initial_query])
    return args


def parse_picker_output(output: str, selection: Selection) -> Optional[PickResult]:
    """Map fzf --expect output back to a candidate. None means the user aborted."""
    lines = [line for line in output.strip().split("\n") if line]
    triggered_key: Optional[str] = None
    selection_line: Optional[str] = None
    if len(lines) == 1:
        selection_line = lines[0]
    elif len(lines) >= 2:
        triggered_key, selection_line = lines[0], lines[1]
    if not selection_line:
        return None

    full_path = selection_line.split("\t", 1)[0]
    candidate = selection.find(full_path)
    if candidate is None:
        return None
    return PickResult(project=candidate, action="clone" if triggered_key else "open")


async def pick(selection: Selection) -> Optional[PickResult]:
    if not selection.candidates:
        return None
    fzf_path = shutil.which("fzf")
    if fzf_path is None:
        raise PickerError("fzf is required. Please install it and retry.")

    proc = await asyncio.create_subprocess_exec(
        *build_fzf_command(selection.initial_query, fzf_path),
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
    )
    payload = "\n".join(selection.as_picker_lines()).encode("utf-8")
    stdout, _ = await proc.communicate(payload)
    logger.debug("fzf exited with code %s", proc.returncode)
    return parse_picker_output(stdout.decode("utf-8", errors="replace"), selection)
