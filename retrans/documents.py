"""Document structure extraction."""

from __future__ import annotations

import base64
import pathlib
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from io import BytesIO
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from .errors import EngineNotReadyError, ExtractionError, UnsupportedFormatError
from .segmenter import checkbox_state, chunks_from_lines, split_lines
from .structures import (
    ALIGNMENTS,
    CHECKBOX,
    EMPTY_LINE,
    HEADING,
    PARAGRAPH,
    TABLE_CELL,
    Chunk,
    ChunkStyle,
    ExtractedDocument,
)

# Fragments whose baselines differ by at most this many points share a line.
LINE_Y_THRESHOLD = 5.0

DOCX_MIME_TYPE = (
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
)
# Mammoth drops underline unless it is mapped explicitly.
MAMMOTH_STYLE_MAP = "u => u"

HEADING_TAGS = {"h1", "h2", "h3", "h4", "h5", "h6"}
PARAGRAPH_TAGS = {"p", "li"}
CELL_TAGS = ["td", "th"]
LIST_TAGS = ["ul", "ol"]
BLOCK_TAGS = HEADING_TAGS | PARAGRAPH_TAGS | {
    "div", "table", "tr", "td", "th", *LIST_TAGS
}

ALIGN_PATTERN = re.compile(r"text-align\s*:\s*(left|center|right|justify)", re.I)
UNDERLINE_PATTERN = re.compile(r"text-decoration[^;]*underline", re.I)
BOLD_PATTERN = re.compile(r"font-weight\s*:\s*(bold|[6-9]00)", re.I)
ITALIC_PATTERN = re.compile(r"font-style\s*:\s*italic", re.I)
WHITESPACE_PATTERN = re.compile(r"[^\S\n]+")

HtmlConverter = Callable[[bytes], str]


class DocumentFormat(str, Enum):
    LINE_TEXT = "line-text"
    RICH_DOCUMENT = "rich-document"
    FIXED_LAYOUT = "fixed-layout"


EXTENSION_FORMATS: Dict[str, DocumentFormat] = {
    ".txt": DocumentFormat.LINE_TEXT,
    ".text": DocumentFormat.LINE_TEXT,
    ".docx": DocumentFormat.RICH_DOCUMENT,
    ".pdf": DocumentFormat.FIXED_LAYOUT,
}
MIME_FORMATS: Dict[str, DocumentFormat] = {
    "text/plain": DocumentFormat.LINE_TEXT,
    DOCX_MIME_TYPE: DocumentFormat.RICH_DOCUMENT,
    "application/pdf": DocumentFormat.FIXED_LAYOUT,
}
FORMAT_MIME_TYPES: Dict[DocumentFormat, str] = {
    fmt: mime for mime, fmt in MIME_FORMATS.items()
}


@dataclass(frozen=True)
class TextFragment:
    """A positioned run of text reported by the PDF renderer."""

    text: str
    y: float
    page: int = 0


def group_fragments_into_lines(
    fragments: Sequence[TextFragment],
    threshold: float = LINE_Y_THRESHOLD,
) -> List[str]:
    """Rebuild text lines from positioned fragments.

    A fragment joins the current line while its vertical coordinate stays
    within ``threshold`` of the previous fragment on the same page; a larger
    jump or a new page starts a new line. Blank lines come back as ``""``.
    """

    lines: List[str] = []
    current: Optional[List[str]] = None
    last_y = 0.0
    last_page = 0

    for fragment in fragments:
        if current is not None and (
            fragment.page != last_page or abs(fragment.y - last_y) > threshold
        ):
            lines.append(" ".join(current))
            current = None
        if current is None:
            current = []
        text = fragment.text.strip()
        if text:
            current.append(text)
        last_y = fragment.y
        last_page = fragment.page

    if current is not None:
        lines.append(" ".join(current))
    return lines


def _import_mammoth():
    try:
        import mammoth  # type: ignore
    except ImportError as exc:  # pragma: no cover - import guard
        raise EngineNotReadyError(
            "mammoth is required to process .docx files. "
            "Install it with `pip install mammoth`."
        ) from exc
    return mammoth


def _import_fitz():
    try:
        import fitz  # type: ignore
    except ImportError as exc:  # pragma: no cover - import guard
        raise EngineNotReadyError(
            "PyMuPDF is required to process .pdf files. "
            "Install it with `pip install PyMuPDF`."
        ) from exc
    return fitz


def mammoth_html_converter() -> HtmlConverter:
    """Initialise mammoth and return a bytes-to-HTML converter."""

    mammoth = _import_mammoth()

    def _convert(data: bytes) -> str:
        result = mammoth.convert_to_html(
            BytesIO(data),
            style_map=MAMMOTH_STYLE_MAP,
            ignore_empty_paragraphs=False,
        )
        return result.value

    return _convert


class BaseDocumentExtractor(ABC):
    """Turns raw file bytes into an ordered chunk sequence."""

    id_prefix = "chunk"

    @abstractmethod
    def extract(self, data: bytes) -> List[Chunk]:
        """Extract chunks in document order."""

    def next_id(self, chunks: Sequence[Chunk]) -> str:
        return f"{self.id_prefix}-{len(chunks)}"


class LineTextExtractor(BaseDocumentExtractor):
    """Plain text: one chunk per line, first non-trivial line is the heading."""

    id_prefix = "txt"

    def extract(self, data: bytes) -> List[Chunk]:
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ExtractionError(
                "Text file could not be decoded as UTF-8."
            ) from exc
        return chunks_from_lines(
            split_lines(text),
            prefix=self.id_prefix,
            promote_heading=True,
        )


class RichDocumentExtractor(BaseDocumentExtractor):
    """Word documents, walked as semantic HTML produced by a converter."""

    id_prefix = "docx"

    def __init__(self, converter: Optional[HtmlConverter] = None) -> None:
        self.converter = converter
        self._table_grids: Dict[int, Dict[int, Tuple[int, int]]] = {}

    @classmethod
    def with_default_engine(cls) -> "RichDocumentExtractor":
        return cls(converter=mammoth_html_converter())

    def extract(self, data: bytes) -> List[Chunk]:
        if self.converter is None:
            raise EngineNotReadyError(
                "The document conversion engine is not ready yet. Please retry."
            )
        try:
            html = self.converter(data)
        except Exception as exc:
            raise ExtractionError(
                "Document extraction failed. The file may be corrupted or "
                "password protected."
            ) from exc
        return self.extract_html(html)

    def extract_html(self, html: str) -> List[Chunk]:
        soup = BeautifulSoup(html, "html.parser")
        chunks: List[Chunk] = []
        self._table_grids = {}
        self._walk(soup, chunks)
        return chunks

    # --- Internal helpers -------------------------------------------------

    def _walk(self, node: Tag, chunks: List[Chunk]) -> None:
        for child in node.children:
            if not isinstance(child, Tag):
                continue
            name = child.name.lower()
            if name in HEADING_TAGS:
                self._emit_heading(child, chunks)
            elif name in PARAGRAPH_TAGS:
                self._emit_paragraph(child, chunks)
                if name == "li":
                    for nested in child.find_all(LIST_TAGS, recursive=False):
                        self._walk(nested, chunks)
            elif name in CELL_TAGS:
                self._emit_cell(child, chunks)
            elif name == "br":
                chunks.append(
                    Chunk(chunk_id=self.next_id(chunks), kind=EMPTY_LINE, original_text="")
                )
            else:
                self._walk(child, chunks)

    def _emit_heading(self, element: Tag, chunks: List[Chunk]) -> None:
        text = _flatten_text(element)
        if not text:
            chunks.append(
                Chunk(chunk_id=self.next_id(chunks), kind=EMPTY_LINE, original_text="")
            )
            return
        chunks.append(
            Chunk(
                chunk_id=self.next_id(chunks),
                kind=HEADING,
                original_text=text,
                style=ChunkStyle(
                    level=int(element.name[1]),
                    bold=True,
                    italic=_has_italic(element),
                    underline=_has_underline(element),
                    alignment=_alignment(element),
                ),
            )
        )

    def _emit_paragraph(self, element: Tag, chunks: List[Chunk]) -> None:
        text = _flatten_text(element, skip_lists=True)
        if not text:
            chunks.append(
                Chunk(chunk_id=self.next_id(chunks), kind=EMPTY_LINE, original_text="")
            )
            return
        checked = checkbox_state(text)
        chunks.append(
            Chunk(
                chunk_id=self.next_id(chunks),
                kind=PARAGRAPH if checked is None else CHECKBOX,
                original_text=text,
                style=ChunkStyle(
                    bold=_has_bold(element),
                    italic=_has_italic(element),
                    underline=_has_underline(element),
                    alignment=_alignment(element),
                    checked=checked,
                ),
            )
        )

    def _emit_cell(self, element: Tag, chunks: List[Chunk]) -> None:
        text = _flatten_text(element)
        row, col = self._cell_position(element)
        chunks.append(
            Chunk(
                chunk_id=self.next_id(chunks),
                kind=TABLE_CELL,
                original_text=text,
                style=ChunkStyle(
                    bold=element.name.lower() == "th" or _has_bold(element),
                    italic=_has_italic(element),
                    underline=_has_underline(element),
                    alignment=_alignment(element) or "left",
                    row=row,
                    col=col,
                    row_span=_span(element, "rowspan"),
                    col_span=_span(element, "colspan"),
                ),
            )
        )

    def _cell_position(self, element: Tag) -> Tuple[Optional[int], Optional[int]]:
        table = element.find_parent("table")
        if table is None:
            return None, None
        grid = self._table_grids.get(id(table))
        if grid is None:
            grid = _table_grid(table)
            self._table_grids[id(table)] = grid
        return grid.get(id(element), (None, None))


def _flatten_text(element: Tag, *, skip_lists: bool = False) -> str:
    """Visible text of an element.

    ``<br>`` becomes a newline and block children are separated by a space.
    With ``skip_lists`` nested lists are left out; they are walked on their own.
    """

    parts: List[str] = []
    _collect_text(element, parts, skip_lists)
    lines = [
        WHITESPACE_PATTERN.sub(" ", line).strip()
        for line in "".join(parts).split("\n")
    ]
    return "\n".join(lines).strip()


def _collect_text(node: Tag, parts: List[str], skip_lists: bool) -> None:
    for child in node.children:
        if isinstance(child, Comment):
            continue
        if isinstance(child, NavigableString):
            parts.append(str(child).replace("\n", " "))
            continue
        if not isinstance(child, Tag):
            continue
        name = child.name.lower()
        if name == "br":
            parts.append("\n")
        elif skip_lists and name in LIST_TAGS:
            continue
        elif name in BLOCK_TAGS:
            parts.append(" ")
            _collect_text(child, parts, skip_lists)
            parts.append(" ")
        else:
            _collect_text(child, parts, skip_lists)


def _table_grid(table: Tag) -> Dict[int, Tuple[int, int]]:
    """Place every cell of one table, skipping slots taken by earlier spans."""

    rows = [row for row in table.find_all("tr") if row.find_parent("table") is table]
    occupied = set()
    positions: Dict[int, Tuple[int, int]] = {}
    for row_index, row in enumerate(rows):
        col = 0
        for cell in row.find_all(CELL_TAGS, recursive=False):
            while (row_index, col) in occupied:
                col += 1
            positions[id(cell)] = (row_index, col)
            row_span = _span(cell, "rowspan") or 1
            col_span = _span(cell, "colspan") or 1
            for dr in range(row_span):
                for dc in range(col_span):
                    occupied.add((row_index + dr, col + dc))
            col += col_span
    return positions


def _style(element: Tag) -> str:
    return str(element.get("style") or "")


def _has_bold(element: Tag) -> bool:
    return (
        element.find(["strong", "b"]) is not None
        or bool(BOLD_PATTERN.search(_style(element)))
    )


def _has_italic(element: Tag) -> bool:
    return (
        element.find(["em", "i"]) is not None
        or bool(ITALIC_PATTERN.search(_style(element)))
    )


def _has_underline(element: Tag) -> bool:
    if element.find("u") is not None or UNDERLINE_PATTERN.search(_style(element)):
        return True
    return any(
        UNDERLINE_PATTERN.search(_style(child))
        for child in element.find_all(style=True)
    )


def _alignment(element: Tag):
    match = ALIGN_PATTERN.search(_style(element))
    if match:
        return match.group(1).lower()
    align = str(element.get("align") or "").lower()
    if align in ALIGNMENTS:
        return align
    return None


def _span(element: Tag, attribute: str) -> Optional[int]:
    value = element.get(attribute)
    try:
        span = int(str(value))
    except ValueError:
        return None
    return span if span > 1 else None


class FixedLayoutExtractor(BaseDocumentExtractor):
    """PDF pages rebuilt into lines from positioned text spans."""

    id_prefix = "pdf"

    def __init__(self, threshold: float = LINE_Y_THRESHOLD) -> None:
        self.threshold = threshold

    def extract(self, data: bytes) -> List[Chunk]:
        fragments = self.read_fragments(data)
        if not fragments:
            # Image-only scan; the orchestrator switches to the vision path.
            return []
        lines = group_fragments_into_lines(fragments, self.threshold)
        return chunks_from_lines(lines, prefix=self.id_prefix, promote_heading=False)

    def read_fragments(self, data: bytes) -> List[TextFragment]:
        fitz = _import_fitz()
        try:
            document = fitz.open(stream=data, filetype="pdf")
        except Exception as exc:
            raise ExtractionError(
                "PDF extraction failed. The file may be corrupted or password "
                "protected."
            ) from exc

        fragments: List[TextFragment] = []
        with document:
            for page_index, page in enumerate(document):
                layout = page.get_text("dict")
                for block in layout.get("blocks", []):
                    if "lines" not in block:  # Skip image blocks
                        continue
                    for line in block["lines"]:
                        for span in line["spans"]:
                            fragments.append(
                                TextFragment(
                                    text=span["text"],
                                    y=float(span["origin"][1]),
                                    page=page_index,
                                )
                            )
        return fragments


def detect_format(filename: str | None, mime_type: str | None = None) -> DocumentFormat:
    """Resolve the document format from the extension, then the MIME type."""

    if filename:
        suffix = pathlib.PurePath(filename).suffix.lower()
        if suffix in EXTENSION_FORMATS:
            return EXTENSION_FORMATS[suffix]
    if mime_type:
        normalized = mime_type.split(";", 1)[0].strip().lower()
        if normalized in MIME_FORMATS:
            return MIME_FORMATS[normalized]
    raise UnsupportedFormatError(
        "This file type isn't supported. Please use .txt, .docx or .pdf."
    )


def build_extractor(document_format: DocumentFormat) -> BaseDocumentExtractor:
    """Single dispatch point from format to extraction strategy."""

    factories: Dict[DocumentFormat, Callable[[], BaseDocumentExtractor]] = {
        DocumentFormat.LINE_TEXT: LineTextExtractor,
        DocumentFormat.RICH_DOCUMENT: RichDocumentExtractor.with_default_engine,
        DocumentFormat.FIXED_LAYOUT: FixedLayoutExtractor,
    }
    return factories[document_format]()


def extract_document(
    data: bytes,
    filename: str | None = None,
    mime_type: str | None = None,
    *,
    extractor: BaseDocumentExtractor | None = None,
) -> ExtractedDocument:
    """Extract a file into chunks plus the payload the vision path needs."""

    document_format = detect_format(filename, mime_type)
    if extractor is None:
        extractor = build_extractor(document_format)
    chunks = extractor.extract(data)
    return ExtractedDocument(
        chunks=chunks,
        file_bytes_base64=base64.b64encode(data).decode("ascii"),
        # Browsers often report octet-stream; the format decides the type.
        mime_type=FORMAT_MIME_TYPES[document_format],
        filename=filename,
        document_format=document_format.value,
    )


def chunks_from_text(text: str) -> List[Chunk]:
    """Segment pasted text into paragraph, checkbox and empty-line chunks."""

    return chunks_from_lines(split_lines(text), prefix="text", promote_heading=False)


def document_from_text(text: str) -> ExtractedDocument:
    """Wrap pasted text so it can follow the standard translation path."""

    return ExtractedDocument(
        chunks=chunks_from_text(text),
        file_bytes_base64="",
        mime_type="text/plain",
        filename=None,
        document_format=DocumentFormat.LINE_TEXT.value,
    )
