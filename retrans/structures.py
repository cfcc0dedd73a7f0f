"""Core data structures for the ReTrans translator."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Literal, Optional


ChunkKind = Literal["heading", "paragraph", "table-cell", "checkbox", "empty-line"]
Alignment = Literal["left", "center", "right", "justify"]

HEADING: ChunkKind = "heading"
PARAGRAPH: ChunkKind = "paragraph"
TABLE_CELL: ChunkKind = "table-cell"
CHECKBOX: ChunkKind = "checkbox"
EMPTY_LINE: ChunkKind = "empty-line"

CHUNK_KINDS = (HEADING, PARAGRAPH, TABLE_CELL, CHECKBOX, EMPTY_LINE)
ALIGNMENTS = ("left", "center", "right", "justify")


class Tone(str, Enum):
    """Register the model is asked to translate in."""

    PROFESSIONAL = "professional"
    LEGAL = "legal"
    TECHNICAL = "technical"
    MEDICAL = "medical"
    CREATIVE = "creative"

    @property
    def instruction(self) -> str:
        return TONE_INSTRUCTIONS[self]


TONE_INSTRUCTIONS: Dict[Tone, str] = {
    Tone.PROFESSIONAL: (
        "Use a polished, neutral business register suitable for general "
        "corporate communication."
    ),
    Tone.LEGAL: (
        "Use precise legal register. Keep defined terms, clause numbering and "
        "obligations (shall, must, may) exact; never paraphrase legal effect."
    ),
    Tone.TECHNICAL: (
        "Use technical documentation register. Keep identifiers, units, code, "
        "command names and product names untranslated."
    ),
    Tone.MEDICAL: (
        "Use clinical register with standard medical terminology in the target "
        "language. Keep dosages, units and drug names exact."
    ),
    Tone.CREATIVE: (
        "Use a natural, engaging marketing register. Adapt idioms so they read "
        "natively while keeping the original meaning."
    ),
}


@dataclass(frozen=True)
class ChunkStyle:
    """Presentation attributes attached to a chunk."""

    level: Optional[int] = None
    bold: bool = False
    italic: bool = False
    underline: bool = False
    alignment: Optional[Alignment] = None
    row: Optional[int] = None
    col: Optional[int] = None
    row_span: Optional[int] = None
    col_span: Optional[int] = None
    checked: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        """Return only the attributes that carry information."""

        data: Dict[str, Any] = {}
        for name, value in self.__dict__.items():
            if value is None or value is False:
                continue
            data[name] = value
        return data


@dataclass(frozen=True)
class Chunk:
    """Atomic structural unit of an extracted document."""

    chunk_id: str
    kind: ChunkKind
    original_text: str
    translated_text: Optional[str] = None
    style: ChunkStyle = field(default_factory=ChunkStyle)

    def __post_init__(self) -> None:
        if self.kind not in CHUNK_KINDS:
            raise ValueError(f"Unknown chunk kind '{self.kind}'.")
        # Empty table cells keep the grid intact.
        if self.kind not in (EMPTY_LINE, TABLE_CELL) and not self.original_text:
            raise ValueError(
                f"Chunk {self.chunk_id} of kind '{self.kind}' has no text."
            )

    @property
    def is_blank(self) -> bool:
        return not self.original_text.strip()

    def with_translation(self, translated: str) -> "Chunk":
        """Return a copy carrying the translated text."""

        if self.kind == EMPTY_LINE:
            translated = ""
        return replace(self, translated_text=translated)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.chunk_id,
            "kind": self.kind,
            "originalText": self.original_text,
        }
        if self.translated_text is not None:
            data["translatedText"] = self.translated_text
        style = self.style.to_dict()
        if style:
            data["style"] = style
        return data


@dataclass(frozen=True)
class GlossaryItem:
    """A forced term mapping passed to the model as an instruction."""

    original_term: str
    target_term: str

    @classmethod
    def parse(cls, value: str) -> "GlossaryItem":
        """Parse a ``term=target`` pair."""

        original, sep, target = value.partition("=")
        if not sep or not original.strip() or not target.strip():
            raise ValueError(
                f"Glossary entry '{value}' must look like 'term=translation'."
            )
        return cls(original_term=original.strip(), target_term=target.strip())


@dataclass
class Batch:
    """A fixed-size contiguous slice of chunks translated in one call."""

    batch_id: int
    start: int
    chunks: List[Chunk]


@dataclass
class ExtractedDocument:
    """Result of structural extraction handed to the orchestrator."""

    chunks: List[Chunk]
    file_bytes_base64: str
    mime_type: str
    filename: str | None = None
    document_format: str | None = None

    def has_extractable_text(self) -> bool:
        return any(not chunk.is_blank for chunk in self.chunks)

    @property
    def needs_vision(self) -> bool:
        """True when bytes exist but no text layer could be extracted."""

        return bool(self.file_bytes_base64) and not self.has_extractable_text()


JobStatus = Literal["pending", "running", "completed", "failed", "cancelled"]


@dataclass
class TranslationJob:
    """Session state for a single document translation."""

    document: ExtractedDocument
    target_language: str
    source_language: str = "auto"
    tone: Tone = Tone.PROFESSIONAL
    grounding: bool = False
    glossary: List[GlossaryItem] = field(default_factory=list)
    chunks: List[Chunk] = field(default_factory=list)
    status: JobStatus = "pending"
    error: Optional[BaseException] = None
    detected_language: Optional[str] = None
    cancel_event: threading.Event = field(default_factory=threading.Event)

    def __post_init__(self) -> None:
        if not self.chunks:
            self.chunks = list(self.document.chunks)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        """Abandon the job; in-flight results will not be committed."""

        self.cancel_event.set()
