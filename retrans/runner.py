"""High-level orchestration for document translation."""

from __future__ import annotations

import pathlib
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from .detector import LanguageDetector
from .documents import extract_document
from .errors import JobCancelledError, OverwriteRefusedError, RetransError
from .providers import TranslationProvider
from .segmenter import DEFAULT_BATCH_SIZE, BatchBuilder
from .structures import Chunk, ExtractedDocument, TranslationJob
from .translator import BatchTranslator, VisionTranslator


@dataclass
class TranslationSummary:
    """Report returned after processing a document."""

    mode: str
    document_format: str | None
    total_chunks: int
    translated_chunks: int
    total_batches: int
    provider_name: str
    model: str | None
    source_language: str
    target_language: str
    elapsed_seconds: float


FinishedCallback = Callable[[TranslationJob, Optional[TranslationSummary]], None]


def load_document(path: pathlib.Path, mime_type: str | None = None) -> ExtractedDocument:
    """Read a file and extract its structure."""

    data = path.read_bytes()
    return extract_document(data, path.name, mime_type)


def merge_translations(chunks: List[Chunk], translations: List[str]) -> List[Chunk]:
    """Attach translated strings to chunks by index."""

    if len(chunks) != len(translations):
        raise RetransError(
            f"Expected {len(chunks)} translations but received {len(translations)}."
        )
    return [
        chunk.with_translation(translated)
        for chunk, translated in zip(chunks, translations)
    ]


class TranslationRunner:
    """Chooses the translation path and drives a job to completion."""

    def __init__(
        self,
        provider: TranslationProvider,
        *,
        model: str | None = None,
        vision_model: str | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        verbose: bool = False,
        batch_translator: BatchTranslator | None = None,
    ) -> None:
        self.provider = provider
        self.model = model
        self.vision_model = vision_model
        self.batch_size = batch_size
        self.verbose = verbose
        self.batch_translator = batch_translator or BatchTranslator(
            provider,
            model=model,
            batch_size=batch_size,
            verbose=verbose,
        )
        self.vision_translator = VisionTranslator(provider, model=vision_model)
        self.detector = LanguageDetector(provider, model=model, verbose=verbose)

    def run(self, job: TranslationJob) -> TranslationSummary:
        start_time = time.time()
        job.status = "running"
        job.error = None
        try:
            if job.cancelled:
                raise JobCancelledError("Translation cancelled.")
            if job.document.needs_vision:
                summary = self._run_vision(job)
            else:
                summary = self._run_standard(job)
        except JobCancelledError as exc:
            job.status = "cancelled"
            job.error = exc
            raise
        except Exception as exc:
            job.status = "failed"
            job.error = exc
            raise

        summary.elapsed_seconds = time.time() - start_time
        return summary

    def run_in_background(
        self,
        job: TranslationJob,
        on_finished: FinishedCallback | None = None,
    ) -> threading.Thread:
        """Run the job on a daemon thread so the host never blocks on it."""

        def _worker() -> None:
            summary: TranslationSummary | None = None
            try:
                summary = self.run(job)
            except Exception:
                pass  # Recorded on the job.
            if on_finished is not None and not job.cancelled:
                on_finished(job, summary)

        thread = threading.Thread(target=_worker, name="retrans-job", daemon=True)
        thread.start()
        return thread

    # --- Internal helpers -------------------------------------------------

    def _run_vision(self, job: TranslationJob) -> TranslationSummary:
        if self.verbose:
            print("No text layer found; using the vision engine.")
        chunks = self.vision_translator.translate(
            job.document,
            target_language=job.target_language,
            tone=job.tone,
        )
        self._commit(job, chunks)
        return self._summary(
            job,
            mode="vision",
            total_batches=1,
            model=self.vision_model or self.provider.default_vision_model,
            source_language=job.source_language,
        )

    def _run_standard(self, job: TranslationJob) -> TranslationSummary:
        source_language = job.source_language
        if not source_language or source_language == "auto":
            source_language = self.detector.detect(job.chunks)
            job.detected_language = source_language
            if self.verbose:
                print(f"Detected source language: {source_language}")

        original = list(job.chunks)
        if self.verbose:
            batches = BatchBuilder(self.batch_size).build(original)
            print(f"Prepared {len(original)} chunks in {len(batches)} batches.")

        translations = self.batch_translator.translate(
            original,
            source_language=source_language,
            target_language=job.target_language,
            tone=job.tone,
            glossary=job.glossary,
            grounding=job.grounding,
            cancel_event=job.cancel_event,
        )
        self._commit(job, merge_translations(original, translations))
        return self._summary(
            job,
            mode="standard",
            total_batches=len(self.batch_translator.batch_builder.build(original)),
            model=self.model or self.provider.default_model,
            source_language=source_language,
        )

    def _commit(self, job: TranslationJob, chunks: List[Chunk]) -> None:
        if job.cancelled:
            raise JobCancelledError("Translation cancelled; results discarded.")
        job.chunks = chunks
        job.status = "completed"

    def _summary(
        self,
        job: TranslationJob,
        *,
        mode: str,
        total_batches: int,
        model: str | None,
        source_language: str,
    ) -> TranslationSummary:
        return TranslationSummary(
            mode=mode,
            document_format=job.document.document_format,
            total_chunks=len(job.chunks),
            translated_chunks=sum(
                1 for chunk in job.chunks if chunk.translated_text and not chunk.is_blank
            ),
            total_batches=total_batches,
            provider_name=self.provider.name,
            model=model,
            source_language=source_language,
            target_language=job.target_language,
            elapsed_seconds=0.0,
        )


def validate_paths(
    input_path: pathlib.Path,
    output_path: pathlib.Path,
    force_overwrite: bool,
) -> None:
    """Validate input/output path combinations and overwrite policy."""

    if not input_path.exists():
        raise FileNotFoundError(
            "Input file not found. Please provide a readable .txt, .docx or .pdf file."
        )
    if not input_path.is_file():
        raise RetransError("Input path must be a file.")

    if input_path.resolve() == output_path.resolve():
        raise OverwriteRefusedError(
            "The output path matches the input document. Refusing to overwrite the source file."
        )

    if output_path.exists() and not force_overwrite:
        raise OverwriteRefusedError(
            "The output file already exists. Rename it or use the overwrite flag."
        )
