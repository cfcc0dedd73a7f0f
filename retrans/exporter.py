"""Rendering of chunk sequences back into Word documents."""

from __future__ import annotations

import pathlib
from dataclasses import dataclass
from typing import Dict, Iterable, List, Literal, Sequence, Tuple, Union

from .errors import RetransError
from .segmenter import checkbox_state
from .structures import CHECKBOX, EMPTY_LINE, HEADING, TABLE_CELL, Chunk

ExportMode = Literal["original", "translated"]


@dataclass
class TableBlock:
    """A maximal run of consecutive table cells."""

    cells: List[Chunk]

    def grid(self) -> List[Tuple[int, int, Chunk]]:
        """Place cells on (row, col), filling missing indices in order."""

        placed: List[Tuple[int, int, Chunk]] = []
        next_col: Dict[int, int] = {}
        for cell in self.cells:
            row = cell.style.row if cell.style.row is not None else 0
            col = cell.style.col if cell.style.col is not None else next_col.get(row, 0)
            next_col[row] = col + (cell.style.col_span or 1)
            placed.append((row, col, cell))
        placed.sort(key=lambda item: (item[0], item[1]))
        return placed

    def shape(self) -> Tuple[int, int]:
        rows = 0
        cols = 0
        for row, col, cell in self.grid():
            rows = max(rows, row + (cell.style.row_span or 1))
            cols = max(cols, col + (cell.style.col_span or 1))
        return rows, cols


Block = Union[Chunk, TableBlock]


def group_blocks(chunks: Iterable[Chunk]) -> List[Block]:
    """Group consecutive table cells into tables, leave other chunks alone."""

    blocks: List[Block] = []
    current: List[Chunk] = []
    for chunk in chunks:
        if chunk.kind == TABLE_CELL:
            current.append(chunk)
            continue
        if current:
            blocks.append(TableBlock(cells=current))
            current = []
        blocks.append(chunk)
    if current:
        blocks.append(TableBlock(cells=current))
    return blocks


def _import_docx():
    try:
        from docx import Document  # type: ignore
    except ImportError as exc:  # pragma: no cover - import guard
        raise RetransError(
            "python-docx is required to export .docx files. "
            "Install the optional dependency with `pip install python-docx`."
        ) from exc
    return Document


class DocxExporter:
    """Writes a chunk sequence as a structurally equivalent .docx file."""

    def __init__(self, mode: ExportMode = "translated") -> None:
        self.mode = mode

    def text_for(self, chunk: Chunk) -> str:
        if chunk.kind == EMPTY_LINE:
            return ""
        if self.mode == "translated" and chunk.translated_text is not None:
            return chunk.translated_text
        return chunk.original_text

    def build(self, chunks: Sequence[Chunk]):
        Document = _import_docx()
        document = Document()
        for block in group_blocks(chunks):
            if isinstance(block, TableBlock):
                self._add_table(document, block)
            else:
                self._add_chunk(document, block)
        return document

    def save(self, chunks: Sequence[Chunk], destination: pathlib.Path) -> None:
        self.build(chunks).save(str(destination))

    # --- Internal helpers -------------------------------------------------

    def _add_chunk(self, document, chunk: Chunk) -> None:
        if chunk.kind == EMPTY_LINE:
            document.add_paragraph()
            return

        text = self.text_for(chunk)
        if chunk.kind == HEADING:
            paragraph = document.add_heading("", level=min(max(chunk.style.level or 1, 1), 6))
        else:
            paragraph = document.add_paragraph()
            if chunk.kind == CHECKBOX and checkbox_state(text) is None:
                text = f"{'☑' if chunk.style.checked else '☐'} {text}"
        self._add_run(paragraph, chunk, text)

    def _add_table(self, document, block: TableBlock) -> None:
        rows, cols = block.shape()
        table = document.add_table(rows=rows, cols=cols)
        table.style = "Table Grid"
        for row, col, chunk in block.grid():
            cell = table.cell(row, col)
            row_span = chunk.style.row_span or 1
            col_span = chunk.style.col_span or 1
            if row_span > 1 or col_span > 1:
                cell = cell.merge(table.cell(row + row_span - 1, col + col_span - 1))
            paragraph = cell.paragraphs[0]
            self._add_run(paragraph, chunk, self.text_for(chunk))

    def _add_run(self, paragraph, chunk: Chunk, text: str) -> None:
        from docx.enum.text import WD_ALIGN_PARAGRAPH  # type: ignore

        alignments = {
            "left": WD_ALIGN_PARAGRAPH.LEFT,
            "center": WD_ALIGN_PARAGRAPH.CENTER,
            "right": WD_ALIGN_PARAGRAPH.RIGHT,
            "justify": WD_ALIGN_PARAGRAPH.JUSTIFY,
        }
        run = paragraph.add_run(text)
        run.bold = chunk.style.bold or None
        run.italic = chunk.style.italic or None
        run.underline = chunk.style.underline or None
        if chunk.style.alignment in alignments:
            paragraph.alignment = alignments[chunk.style.alignment]
