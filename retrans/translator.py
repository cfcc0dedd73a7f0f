"""Batch and vision translators built on a model provider."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, List, Optional, Sequence

from .errors import (
    BatchTranslationError,
    CredentialError,
    JobCancelledError,
    TranslationProviderConfigurationError,
    TranslationProviderError,
    VisionTranslationError,
)
from .providers import TranslationProvider
from .segmenter import (
    DEFAULT_BATCH_SIZE,
    BatchBuilder,
    build_context_abstract,
    checkbox_state,
)
from .structures import (
    CHECKBOX,
    EMPTY_LINE,
    HEADING,
    PARAGRAPH,
    TABLE_CELL,
    Batch,
    Chunk,
    ChunkStyle,
    ExtractedDocument,
    GlossaryItem,
    Tone,
)

# Stand-in for blank positions so the model keeps segment alignment.
# Real text containing this exact token would be blanked as well.
EMPTY_LINE_SENTINEL = "⟦EMPTY_LINE⟧"

SEGMENTS_SCHEMA = {
    "type": "object",
    "properties": {
        "segments": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["segments"],
    "additionalProperties": False,
}

VISION_KINDS = (HEADING, PARAGRAPH, CHECKBOX, TABLE_CELL)
VISION_SCHEMA = {
    "type": "object",
    "properties": {
        "elements": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "kind": {"type": "string", "enum": list(VISION_KINDS)},
                    "originalText": {"type": "string"},
                    "translatedText": {"type": "string"},
                },
                "required": ["kind", "originalText", "translatedText"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["elements"],
    "additionalProperties": False,
}

VISION_MIME_PREFIXES = ("application/pdf", "image/")

ProgressCallback = Callable[[Batch, int], None]


def unwrap_list(payload: Any, key: str) -> List[Any]:
    """Accept either a bare JSON array or an object wrapping it under ``key``."""

    if isinstance(payload, dict):
        payload = payload.get(key)
    if not isinstance(payload, list):
        raise TranslationProviderError(
            f"Model response malformed: expected a JSON array of {key}."
        )
    return payload


def build_batch_prompt(
    *,
    segment_count: int,
    source_language: str,
    target_language: str,
    tone: Tone,
    glossary: Sequence[GlossaryItem],
) -> str:
    """System instruction for one translation batch."""

    source = (
        "the detected source language"
        if not source_language or source_language == "auto"
        else source_language
    )
    rules = [
        f"Translate exactly {segment_count} segments from {source} into "
        f"{target_language}. Return one translated string per input segment, "
        "in the same order.",
        f'If a segment is exactly "{EMPTY_LINE_SENTINEL}", return exactly '
        f'"{EMPTY_LINE_SENTINEL}".',
        "Preserve structural markers: checkbox glyphs such as [ ], [x], (x), "
        "☐, ☑ and ☒ and any other bracketed markers must stay exactly as "
        "they are.",
        "Mirror formatting: do not add or remove punctuation, numbering or "
        "line structure.",
        f"Tone: {tone.instruction}",
    ]
    if glossary:
        mappings = ", ".join(
            f'"{item.original_term}" -> "{item.target_term}"' for item in glossary
        )
        rules.append(f"Glossary, always use these forced terms: {mappings}.")
    rules.append(
        'Respond only with JSON shaped as {"segments": ["..."]}. '
        "Do not add commentary."
    )
    numbered = "\n".join(f"{index}. {rule}" for index, rule in enumerate(rules, 1))
    return f"You are a high-fidelity document translator.\nRULES:\n{numbered}"


class BatchTranslator:
    """Translates a chunk sequence in fixed-size batches."""

    def __init__(
        self,
        provider: TranslationProvider,
        *,
        model: str | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_retries: int = 3,
        retry_backoff: Sequence[float] = (1, 4, 9),
        sleep: Optional[Callable[[float], None]] = None,
        verbose: bool = False,
    ) -> None:
        self.provider = provider
        self.model = model
        self.batch_builder = BatchBuilder(batch_size)
        self.max_retries = max_retries
        self.retry_backoff = list(retry_backoff) or [0]
        self.sleep = sleep
        self.verbose = verbose

    def translate(
        self,
        chunks: Sequence[Chunk],
        *,
        source_language: str,
        target_language: str,
        tone: Tone = Tone.PROFESSIONAL,
        glossary: Sequence[GlossaryItem] = (),
        grounding: bool = False,
        cancel_event: Optional[threading.Event] = None,
        on_batch: Optional[ProgressCallback] = None,
    ) -> List[str]:
        """Return one translated string per chunk, in chunk order."""

        if grounding and not self.provider.supports_grounding:
            raise TranslationProviderConfigurationError(
                f"The '{self.provider.name}' provider does not support web grounding."
            )

        abstract = build_context_abstract(chunks)
        results: List[str] = []
        for batch in self.batch_builder.build(chunks):
            if cancel_event is not None and cancel_event.is_set():
                raise JobCancelledError("Translation cancelled.")
            results.extend(
                self.translate_batch(
                    batch,
                    abstract=abstract,
                    source_language=source_language,
                    target_language=target_language,
                    tone=tone,
                    glossary=glossary,
                    grounding=grounding,
                    cancel_event=cancel_event,
                )
            )
            if on_batch is not None:
                on_batch(batch, len(results))
        return results

    def translate_batch(
        self,
        batch: Batch,
        *,
        abstract: str,
        source_language: str,
        target_language: str,
        tone: Tone,
        glossary: Sequence[GlossaryItem],
        grounding: bool,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[str]:
        segments = [
            EMPTY_LINE_SENTINEL if _is_placeholder(chunk) else chunk.original_text
            for chunk in batch.chunks
        ]
        system_prompt = build_batch_prompt(
            segment_count=len(segments),
            source_language=source_language,
            target_language=target_language,
            tone=tone,
            glossary=glossary,
        )
        user_payload = {
            "source_language": source_language,
            "target_language": target_language,
            "context": abstract,
            "segment_count": len(segments),
            "segments": segments,
        }

        attempt = 0
        while True:
            try:
                payload = self.provider.generate_json(
                    system_prompt=system_prompt,
                    user_payload=user_payload,
                    schema=SEGMENTS_SCHEMA,
                    schema_name="translated_segments",
                    model=self.model,
                    grounding=grounding,
                )
                translated = self._reconcile(batch, payload)
            except CredentialError:
                raise
            except TranslationProviderError as exc:
                attempt += 1
                if attempt > self.max_retries:
                    raise BatchTranslationError(
                        batch.batch_id,
                        f"{exc} (gave up after {attempt} attempts)",
                    ) from exc
                wait_time = self.retry_backoff[
                    min(attempt - 1, len(self.retry_backoff) - 1)
                ]
                if self.verbose:
                    print(
                        f"Could not translate batch {batch.batch_id} "
                        f"(attempt {attempt} of {self.max_retries + 1}: {exc}). "
                        "Retrying automatically..."
                    )
                self._pause(wait_time, cancel_event)
                continue

            if self.verbose:
                total_chars = sum(len(chunk.original_text) for chunk in batch.chunks)
                print(
                    f"Processed batch {batch.batch_id} "
                    f"({len(batch.chunks)} segments, {total_chars} chars)."
                )
            return translated

    def _pause(self, seconds: float, cancel_event: Optional[threading.Event]) -> None:
        """Wait out a retry backoff, returning early when the job is cancelled."""

        if self.sleep is not None:
            self.sleep(seconds)
        elif cancel_event is not None:
            cancel_event.wait(seconds)
        else:
            time.sleep(seconds)
        if cancel_event is not None and cancel_event.is_set():
            raise JobCancelledError("Translation cancelled.")

    def _reconcile(self, batch: Batch, payload: Any) -> List[str]:
        """Zip a model response positionally onto the batch."""

        items = unwrap_list(payload, "segments")
        if len(items) != len(batch.chunks):
            raise TranslationProviderError(
                f"Model returned {len(items)} segments for a batch of "
                f"{len(batch.chunks)}."
            )
        translated: List[str] = []
        for chunk, item in zip(batch.chunks, items):
            if not isinstance(item, str):
                raise TranslationProviderError(
                    "Model response malformed: segments must be strings."
                )
            if _is_placeholder(chunk) or item.strip() == EMPTY_LINE_SENTINEL:
                translated.append("")
            else:
                translated.append(item)
        return translated


def _is_placeholder(chunk: Chunk) -> bool:
    return chunk.kind == EMPTY_LINE or chunk.is_blank


VISION_SYSTEM_PROMPT = """You are a multimodal document translation engine.
TASK: Read the attached document, recognise its layout and text, and translate it.

RULES:
1. Extract every element in reading order: headings, paragraphs, table cells and checkboxes.
2. Checkboxes: write empty checkboxes as "☐" and checked ones as "☑" at the start of the text, in both originalText and translatedText.
3. Do not skip small print, footers or form labels.
4. Table cells are listed row by row, left to right.
5. Tone: {tone}

Respond only with JSON shaped as {{"elements": [{{"kind": "heading | paragraph | checkbox | table-cell", "originalText": "...", "translatedText": "..."}}]}}."""


class VisionTranslator:
    """Reads and translates documents that have no text layer."""

    def __init__(
        self,
        provider: TranslationProvider,
        *,
        model: str | None = None,
    ) -> None:
        self.provider = provider
        self.model = model

    def translate(
        self,
        document: ExtractedDocument,
        *,
        target_language: str,
        tone: Tone = Tone.PROFESSIONAL,
    ) -> List[Chunk]:
        if not document.file_bytes_base64:
            raise VisionTranslationError("No document bytes are available to scan.")
        if not document.mime_type.startswith(VISION_MIME_PREFIXES):
            raise VisionTranslationError(
                f"The vision engine cannot read '{document.mime_type}' files."
            )

        try:
            payload = self.provider.generate_json_from_file(
                system_prompt=VISION_SYSTEM_PROMPT.format(tone=tone.instruction),
                user_text=(
                    f"Translate this document into {target_language}. "
                    "Preserve all checkboxes and form elements."
                ),
                file_bytes_base64=document.file_bytes_base64,
                mime_type=document.mime_type,
                filename=document.filename,
                schema=VISION_SCHEMA,
                schema_name="translated_document",
                model=self.model,
            )
            return parse_vision_elements(unwrap_list(payload, "elements"))
        except CredentialError:
            raise
        except (TranslationProviderError, ValueError) as exc:
            raise VisionTranslationError(f"Vision engine failed: {exc}") from exc


def parse_vision_elements(items: Sequence[Any]) -> List[Chunk]:
    """Convert recognised elements into translated chunks."""

    chunks: List[Chunk] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValueError("expected objects in the elements array")
        original = str(item.get("originalText") or "").strip()
        translated = str(item.get("translatedText") or "").strip()
        kind = item.get("kind") or item.get("type")
        chunk_id = f"ocr-{index}"

        if not original and not translated:
            chunks.append(
                Chunk(chunk_id=chunk_id, kind=EMPTY_LINE, original_text="", translated_text="")
            )
            continue
        if kind not in VISION_KINDS:
            kind = PARAGRAPH

        checked = checkbox_state(original)
        if kind == PARAGRAPH and checked is not None:
            kind = CHECKBOX
        elif kind == CHECKBOX and checked is None:
            checked = False
        elif kind != CHECKBOX:
            checked = None
        chunks.append(
            Chunk(
                chunk_id=chunk_id,
                kind=kind,
                original_text=original or translated,
                translated_text=translated,
                style=ChunkStyle(
                    level=1 if kind == HEADING else None,
                    bold=kind == HEADING,
                    alignment="left",
                    checked=checked,
                ),
            )
        )
    return chunks
