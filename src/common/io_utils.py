from __future__ import annotations

from pathlib import Path
from typing import Iterator


def iter_lines(path: str | Path) -> Iterator[tuple[int, str]]:
    """Yield (line_no, text) for every non-blank, non-comment line.

    Line numbers are 1-based positions in the file, so skipped lines still count.
    """

    with Path(path).open("r", encoding="utf-8") as f:
        for line_no, raw in enumerate(f, start=1):
            text = raw.strip()
            if text and not text.startswith("#"):
                yield line_no, text
