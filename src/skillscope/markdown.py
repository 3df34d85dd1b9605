"""Line-level markdown helpers shared by the loader and the assembler."""
from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass

_HEADING = re.compile(r"^(#{1,6})[ \t]+(.*?)[ \t#]*$")
_FENCE = re.compile(r"^[ \t]{0,3}(`{3,}|~{3,})")


@dataclass(frozen=True, slots=True)
class Heading:
    offset: int  # character offset of the heading line
    level: int
    title: str
    line_no: int


def iter_headings(text: str) -> Iterator[Heading]:
    """Yield ATX headings in order, skipping fenced code blocks."""
    fence: str | None = None
    offset = 0
    for line_no, line in enumerate(text.splitlines(keepends=True)):
        fence_match = _FENCE.match(line)
        if fence_match is not None:
            marker = fence_match.group(1)
            if fence is None:
                fence = marker[0]
            elif marker[0] == fence:
                fence = None
        elif fence is None:
            match = _HEADING.match(line.rstrip("\r\n"))
            if match is not None:
                yield Heading(
                    offset=offset,
                    level=len(match.group(1)),
                    title=match.group(2).strip(),
                    line_no=line_no,
                )
        offset += len(line)


def heading_boundaries(text: str) -> list[int]:
    """Offsets where *text* may be cut: its start and every heading line."""
    boundaries = [0]
    boundaries.extend(h.offset for h in iter_headings(text) if h.offset > 0)
    return boundaries


def estimate_tokens(text: str) -> int:
    """Token estimate used for all budget accounting: 4 UTF-8 bytes per token."""
    return (len(text.encode("utf-8")) + 3) // 4


def estimate_tokens_for_size(byte_size: int) -> int:
    return (byte_size + 3) // 4
