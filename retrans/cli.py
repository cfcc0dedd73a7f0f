"""Command line interface for the ReTrans translator."""

from __future__ import annotations

import argparse
import pathlib
import re
import sys
from typing import Iterable, List, Optional

from .configuration import RetransConfig, get_settings
from .documents import document_from_text
from .errors import (
    CredentialError,
    ExtractionError,
    JobCancelledError,
    OverwriteRefusedError,
    RetransError,
    TranslationProviderConfigurationError,
    UnsupportedFormatError,
    VisionTranslationError,
)
from .exporter import DocxExporter
from .providers import build_provider
from .runner import TranslationRunner, TranslationSummary, load_document, validate_paths
from .segmenter import DEFAULT_BATCH_SIZE
from .structures import GlossaryItem, Tone, TranslationJob

OFFLINE_PROVIDERS = {"echo", "noop", "mock"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="retrans",
        description=(
            "Translate plain text, Word (.docx) and PDF documents while preserving "
            "headings, tables, checkboxes and spacing."
        ),
    )
    parser.add_argument(
        "input_file",
        nargs="?",
        help="Path to the .txt, .docx or .pdf file to translate.",
    )
    parser.add_argument(
        "--text",
        help="Translate pasted text instead of a file.",
    )
    parser.add_argument(
        "-t",
        "--target-language",
        required=True,
        help="Destination language code (e.g. fr, de, ja).",
    )
    parser.add_argument(
        "-s",
        "--source-language",
        default="auto",
        help="Source language code, or 'auto' to detect it (default: auto).",
    )
    parser.add_argument(
        "--tone",
        choices=[tone.value for tone in Tone],
        default=Tone.PROFESSIONAL.value,
        help="Register used for the translation (default: professional).",
    )
    parser.add_argument(
        "-g",
        "--glossary",
        action="append",
        default=[],
        metavar="TERM=TRANSLATION",
        help="Forced term mapping; may be repeated.",
    )
    parser.add_argument(
        "--grounding",
        action="store_true",
        help="Let the model consult web search while translating.",
    )
    parser.add_argument(
        "-o",
        "--output",
        help="Output .docx path. Defaults to appending the target language code.",
    )
    parser.add_argument(
        "-p",
        "--provider",
        help="Model provider identifier (default: openai).",
    )
    parser.add_argument(
        "-m",
        "--model",
        help="Model used for batch translation and language detection.",
    )
    parser.add_argument(
        "--vision-model",
        help="Multimodal model used for scanned documents.",
    )
    parser.add_argument(
        "-b",
        "--batch-size",
        type=int,
        help=f"Chunks per model call (default: {DEFAULT_BATCH_SIZE}).",
    )
    parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Allow overwriting the output file if it already exists.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show detailed progress information.",
    )
    parser.add_argument(
        "--debug-provider",
        action="store_true",
        help="Log complete provider requests and responses for troubleshooting.",
    )
    return parser


def sanitise_language_for_filename(language: str) -> str:
    """Generate a filesystem-friendly suffix from a language descriptor."""

    collapsed = re.sub(r"\s+", "-", language.strip())
    ascii_only = collapsed.encode("ascii", "ignore").decode("ascii")
    cleaned = re.sub(r"[^A-Za-z0-9\-]+", "", ascii_only)
    return cleaned or "translated"


def derive_output_path(input_path: pathlib.Path, language: str) -> pathlib.Path:
    addition = sanitise_language_for_filename(language)
    return input_path.with_name(f"{input_path.stem}_{addition}.docx")


def parse_glossary(entries: Iterable[str]) -> List[GlossaryItem]:
    return [GlossaryItem.parse(entry) for entry in entries]


def execute_translation(
    *,
    input_file: str | None,
    text: str | None,
    output_file: str | None,
    target_language: str,
    source_language: str,
    tone: str,
    glossary: List[GlossaryItem],
    grounding: bool,
    provider: str | None,
    model: str | None,
    vision_model: str | None,
    batch_size: int,
    force_overwrite: bool,
    verbose: bool,
    provider_debug: bool,
    settings: RetransConfig | None = None,
) -> tuple[int, TranslationSummary | None, str | None]:
    """Execute a translation run and return the exit code, summary, and message."""

    if input_file:
        input_path = pathlib.Path(input_file).expanduser().resolve()
        output_path = (
            pathlib.Path(output_file).expanduser().resolve()
            if output_file
            else derive_output_path(input_path, target_language)
        )
        try:
            validate_paths(input_path, output_path, force_overwrite=force_overwrite)
        except (FileNotFoundError, RetransError) as exc:
            return 1, None, str(exc)
    else:
        output_path = pathlib.Path(
            output_file or f"pasted_{sanitise_language_for_filename(target_language)}.docx"
        ).expanduser().resolve()
        if output_path.exists() and not force_overwrite:
            return 1, None, str(
                OverwriteRefusedError(
                    "The output file already exists. Rename it or use the overwrite flag."
                )
            )

    output_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        document = load_document(input_path) if input_file else document_from_text(text or "")
        model_provider = build_provider(provider, settings=settings, debug=provider_debug)
        runner = TranslationRunner(
            model_provider,
            model=model,
            vision_model=vision_model,
            batch_size=batch_size,
            verbose=verbose,
        )
        job = TranslationJob(
            document=document,
            target_language=target_language,
            source_language=source_language,
            tone=Tone(tone),
            grounding=grounding,
            glossary=glossary,
        )
        summary = runner.run(job)
        DocxExporter(mode="translated").save(job.chunks, output_path)
    except UnsupportedFormatError as exc:
        return 1, None, str(exc)
    except ExtractionError as exc:
        return 1, None, str(exc)
    except CredentialError as exc:
        return 3, None, str(exc)
    except TranslationProviderConfigurationError as exc:
        return 1, None, str(exc)
    except VisionTranslationError as exc:
        return 1, None, str(exc)
    except JobCancelledError:
        return 2, None, "Translation cancelled."
    except RetransError as exc:
        return 1, None, f"{exc}\nThe translation can be retried."
    except KeyboardInterrupt:
        return 2, None, "Translation interrupted by user."

    if verbose:
        print(f"Saved translated document to {output_path}")
    return 0, summary, None


def print_summary(summary: TranslationSummary) -> None:
    """Output a friendly report once processing completes."""

    print("\nTranslation complete.")
    print(f"  Path:            {summary.mode}")
    if summary.document_format:
        print(f"  Document type:   {summary.document_format}")
    print(
        "  Chunks:          "
        f"{summary.translated_chunks} translated / {summary.total_chunks} total"
    )
    print(f"  Batches:         {summary.total_batches}")
    print(
        f"  Provider:        {summary.provider_name}"
        + (f" ({summary.model})" if summary.model else "")
    )
    print(f"  Source language: {summary.source_language}")
    print(f"  Target language: {summary.target_language}")
    print(f"  Elapsed time:    {summary.elapsed_seconds:.2f} seconds")


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.input_file is None and args.text is None:
        parser.error("provide an input_file or --text")

    try:
        glossary = parse_glossary(args.glossary)
    except ValueError as exc:
        parser.error(str(exc))

    settings: RetransConfig | None = None
    if (args.provider or "openai").strip().lower() not in OFFLINE_PROVIDERS:
        try:
            settings = get_settings()
        except TranslationProviderConfigurationError as exc:
            print(exc)
            return 1

    provider_debug = bool(args.debug_provider) or bool(
        settings is not None and settings.RETRANS_PROVIDER_DEBUG
    )
    batch_size = args.batch_size or (
        settings.RETRANS_BATCH_SIZE if settings is not None else DEFAULT_BATCH_SIZE
    )

    exit_code, summary, message = execute_translation(
        input_file=args.input_file,
        text=args.text,
        output_file=args.output,
        target_language=args.target_language,
        source_language=args.source_language,
        tone=args.tone,
        glossary=glossary,
        grounding=args.grounding,
        provider=args.provider,
        model=args.model or (settings.RETRANS_MODEL if settings else None),
        vision_model=args.vision_model
        or (settings.RETRANS_VISION_MODEL if settings else None),
        batch_size=batch_size,
        force_overwrite=args.force,
        verbose=args.verbose,
        provider_debug=provider_debug,
        settings=settings,
    )

    if message:
        print(message)
    if summary:
        print_summary(summary)
    return exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
