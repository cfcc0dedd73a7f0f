"""Best-effort source language detection."""

from __future__ import annotations

import re
from typing import Sequence

from .errors import RetransError
from .providers import TranslationProvider
from .segmenter import build_detection_sample
from .structures import Chunk

DEFAULT_LANGUAGE = "en"
LANGUAGE_CODE_PATTERN = re.compile(r"^[a-z]{2}$")
DETECTION_PROMPT = (
    "Identify the language of the user's text. "
    "Output the two-letter ISO 639-1 code only."
)


def normalise_language_code(raw: str | None, default: str = DEFAULT_LANGUAGE) -> str:
    """Reduce a model answer to a lowercase two-letter code."""

    if not raw:
        return default
    candidate = raw.strip().strip("\"'`.").lower()[:2]
    if LANGUAGE_CODE_PATTERN.match(candidate):
        return candidate
    return default


class LanguageDetector:
    """Asks the model for the source language; never blocks the pipeline."""

    def __init__(
        self,
        provider: TranslationProvider,
        *,
        model: str | None = None,
        default: str = DEFAULT_LANGUAGE,
        verbose: bool = False,
    ) -> None:
        self.provider = provider
        self.model = model
        self.default = default
        self.verbose = verbose

    def detect(self, chunks: Sequence[Chunk]) -> str:
        sample = build_detection_sample(chunks)
        if not sample:
            return self.default
        try:
            answer = self.provider.generate_text(
                system_prompt=DETECTION_PROMPT,
                user_text=sample,
                model=self.model,
            )
        except RetransError as exc:
            if self.verbose:
                print(
                    f"Language detection failed ({exc}); "
                    f"assuming '{self.default}'."
                )
            return self.default
        return normalise_language_code(answer, self.default)
