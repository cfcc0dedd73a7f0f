"""Text heuristics and batching utilities."""

from __future__ import annotations

import re
from typing import List, Optional, Sequence

from .structures import (
    CHECKBOX,
    EMPTY_LINE,
    HEADING,
    PARAGRAPH,
    Batch,
    Chunk,
    ChunkStyle,
)

# Leading glyphs that mark a form checkbox, mapped to their checked state.
CHECKBOX_GLYPHS = {
    "[ ]": False,
    "[x]": True,
    "[X]": True,
    "(x)": True,
    "☐": False,
    "☑": True,
    "☒": True,
}
CHECKBOX_PATTERN = re.compile(
    "^(?:" + "|".join(re.escape(glyph) for glyph in CHECKBOX_GLYPHS) + ")"
)
LINE_BREAK_PATTERN = re.compile(r"\r?\n")

DEFAULT_BATCH_SIZE = 12
ABSTRACT_CHUNK_LIMIT = 10
ABSTRACT_CHAR_BUDGET = 1500
DETECTION_CHUNK_LIMIT = 3
DETECTION_CHAR_BUDGET = 300


def checkbox_state(text: str) -> Optional[bool]:
    """Return the checked state if the text starts with a checkbox glyph.

    ``None`` means the text is not a checkbox at all.
    """

    match = CHECKBOX_PATTERN.match(text.strip())
    if not match:
        return None
    return CHECKBOX_GLYPHS[match.group(0)]


def split_lines(text: str) -> List[str]:
    """Split on LF or CRLF; a terminating newline adds no extra line."""

    if not text:
        return []
    lines = LINE_BREAK_PATTERN.split(text)
    if len(lines) > 1 and lines[-1] == "":
        lines.pop()
    return lines


def chunks_from_lines(
    lines: Sequence[str],
    *,
    prefix: str,
    promote_heading: bool,
) -> List[Chunk]:
    """Apply the blank-line heuristic to a sequence of lines.

    Blank lines become empty-line chunks and checkbox lines become checkbox
    chunks. With ``promote_heading`` the first non-trivial line is treated as
    a level 1 heading; plain text has no real heading markup.
    """

    chunks: List[Chunk] = []
    heading_pending = promote_heading
    for index, line in enumerate(lines):
        chunk_id = f"{prefix}-{index}"
        if not line.strip():
            chunks.append(Chunk(chunk_id=chunk_id, kind=EMPTY_LINE, original_text=""))
            continue

        text = line.strip()
        checked = checkbox_state(text)
        if checked is not None:
            heading_pending = False
            chunks.append(
                Chunk(
                    chunk_id=chunk_id,
                    kind=CHECKBOX,
                    original_text=text,
                    style=ChunkStyle(alignment="left", checked=checked),
                )
            )
        elif heading_pending:
            heading_pending = False
            chunks.append(
                Chunk(
                    chunk_id=chunk_id,
                    kind=HEADING,
                    original_text=text,
                    style=ChunkStyle(level=1, bold=True, alignment="left"),
                )
            )
        else:
            chunks.append(
                Chunk(
                    chunk_id=chunk_id,
                    kind=PARAGRAPH,
                    original_text=text,
                    style=ChunkStyle(alignment="left"),
                )
            )
    return chunks


def _leading_text(chunks: Sequence[Chunk], limit: int, budget: int) -> str:
    texts = [chunk.original_text.strip() for chunk in chunks if not chunk.is_blank]
    return " ".join(texts[:limit])[:budget]


def build_context_abstract(chunks: Sequence[Chunk]) -> str:
    """Short document summary that primes the model with context."""

    return _leading_text(chunks, ABSTRACT_CHUNK_LIMIT, ABSTRACT_CHAR_BUDGET)


def build_detection_sample(chunks: Sequence[Chunk]) -> str:
    return _leading_text(chunks, DETECTION_CHUNK_LIMIT, DETECTION_CHAR_BUDGET)


class BatchBuilder:
    """Partitions chunks into fixed-size contiguous batches."""

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self.batch_size = max(1, batch_size)

    def build(self, chunks: Sequence[Chunk]) -> List[Batch]:
        batches: List[Batch] = []
        for batch_id, start in enumerate(range(0, len(chunks), self.batch_size), 1):
            batches.append(
                Batch(
                    batch_id=batch_id,
                    start=start,
                    chunks=list(chunks[start:start + self.batch_size]),
                )
            )
        return batches
