"""Error definitions for the ReTrans translator."""

from __future__ import annotations


class RetransError(Exception):
    """Base exception for all custom errors."""


class UnsupportedFormatError(RetransError):
    """Raised when a file is not plain text, .docx or .pdf."""


class ExtractionError(RetransError):
    """Raised when a format parser fails on a corrupted or protected file."""


class EngineNotReadyError(ExtractionError):
    """Raised when a conversion engine has not been initialised."""


class TranslationProviderConfigurationError(RetransError):
    """Raised when the translation provider is misconfigured."""


class TranslationProviderError(RetransError):
    """Raised when the translation provider fails."""


class CredentialError(TranslationProviderError):
    """Raised when the model service rejects the API credential."""


class BatchTranslationError(RetransError):
    """Raised when a batch cannot be translated after all attempts."""

    def __init__(self, batch_id: int, message: str) -> None:
        super().__init__(f"Batch {batch_id} failed: {message}")
        self.batch_id = batch_id


class VisionTranslationError(RetransError):
    """Raised when the multimodal fallback cannot read the document."""


class JobCancelledError(RetransError):
    """Raised when a job was abandoned by its host."""


class OverwriteRefusedError(RetransError):
    """Raised when attempting to overwrite an output without consent."""
