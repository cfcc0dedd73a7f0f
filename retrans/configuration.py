"""Settings loader for ReTrans.

Values are layered, highest precedence first: process environment, a ``.env``
file in the working directory, then YAML files (``config.yaml`` in the working
directory over ``~/.config/retrans/config.yaml``).
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Sequence

import yaml
from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import TranslationProviderConfigurationError

APP_NAME = "retrans"
CONFIG_FILENAME = "config.yaml"


class RetransConfig(BaseSettings):
    """Schema describing all supported configuration options."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    LLM_PROVIDER: Literal["azure_openai", "openai"] = Field(
        default="openai",
        description="Large language model provider selection.",
    )
    AZURE_OPENAI_API_KEY: str | None = None
    AZURE_OPENAI_ENDPOINT: str | None = None
    AZURE_OPENAI_API_VERSION: str | None = None
    AZURE_OPENAI_DEPLOYMENT_NAME: str | None = None
    OPENAI_API_KEY: str | None = None
    RETRANS_MODEL: str | None = Field(
        default=None,
        description="Model used for batch translation and language detection.",
    )
    RETRANS_VISION_MODEL: str | None = Field(
        default=None,
        description="Multimodal model used for documents without a text layer.",
    )
    RETRANS_BATCH_SIZE: int = Field(
        default=12,
        description="Number of chunks sent to the model per call.",
    )
    RETRANS_PROVIDER_DEBUG: bool = False

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML values arrive as init arguments and sit below both env layers.
        return (env_settings, dotenv_settings, init_settings)

    @model_validator(mode="before")
    @classmethod
    def _normalise_provider(cls, data: Any) -> Any:
        if isinstance(data, dict):
            raw_value = data.get("LLM_PROVIDER")
            if isinstance(raw_value, str):
                normalized = raw_value.strip().lower().replace("-", "_")
                synonyms = {
                    "azure_open_ai": "azure_openai",
                    "azureopenai": "azure_openai",
                }
                normalized = synonyms.get(normalized, normalized)
                if normalized not in {"openai", "azure_openai"}:
                    normalized = "openai"
                data["LLM_PROVIDER"] = normalized
        return data


def config_file_paths(app_dir: Path) -> List[Path]:
    """YAML files to read, lowest precedence first."""

    return [
        Path.home() / ".config" / APP_NAME / CONFIG_FILENAME,
        app_dir / CONFIG_FILENAME,
    ]


def load_yaml_layers(paths: Sequence[Path]) -> Dict[str, Any]:
    """Merge the mappings of every existing YAML file; later files win."""

    combined: Dict[str, Any] = {}
    for path in paths:
        if not path.is_file():
            continue
        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            raise TranslationProviderConfigurationError(
                f"Configuration file {path} could not be read: {exc}"
            ) from exc
        if parsed is None:
            continue
        if not isinstance(parsed, Mapping):
            raise TranslationProviderConfigurationError(
                f"Invalid configuration file {path}: expected a mapping at the root."
            )
        combined.update({str(key): value for key, value in parsed.items()})
    return combined


def load_settings(app_dir: Path | None = None) -> RetransConfig:
    """Read every configuration layer and validate the result."""

    base_dir = app_dir or Path.cwd()
    file_values = load_yaml_layers(config_file_paths(base_dir))
    try:
        settings = RetransConfig(_env_file=base_dir / ".env", **file_values)
    except ValidationError as exc:
        raise TranslationProviderConfigurationError(
            _format_validation_errors(exc.errors())
        ) from exc
    validate_provider_settings(settings)
    return settings


def validate_provider_settings(settings: RetransConfig) -> None:
    """Check that the selected provider has the credentials it needs."""

    provider = settings.LLM_PROVIDER
    errors: list[str] = []

    if provider == "openai":
        if not settings.OPENAI_API_KEY:
            errors.append(
                "OPENAI_API_KEY is required when LLM_PROVIDER is 'openai'."
            )
    elif provider == "azure_openai":
        missing = [
            name
            for name, value in {
                "AZURE_OPENAI_API_KEY": settings.AZURE_OPENAI_API_KEY,
                "AZURE_OPENAI_ENDPOINT": settings.AZURE_OPENAI_ENDPOINT,
                "AZURE_OPENAI_API_VERSION": settings.AZURE_OPENAI_API_VERSION,
                "AZURE_OPENAI_DEPLOYMENT_NAME": settings.AZURE_OPENAI_DEPLOYMENT_NAME,
            }.items()
            if not value
        ]
        if missing:
            errors.append(
                "The following Azure OpenAI settings must be provided when "
                f"LLM_PROVIDER is 'azure_openai': {', '.join(missing)}."
            )

    if settings.RETRANS_BATCH_SIZE < 1:
        errors.append("RETRANS_BATCH_SIZE must be at least 1.")

    if errors:
        bullet_list = "\n".join(f"- {message}" for message in errors)
        raise TranslationProviderConfigurationError(
            "Configuration validation errors detected:\n" + bullet_list
        )


def _format_validation_errors(entries: Sequence[Mapping[str, Any]]) -> str:
    details: list[str] = []
    for entry in entries:
        location = ".".join(str(part) for part in entry.get("loc") or () if part != "")
        message = str(entry.get("msg") or "Invalid value")
        prefix = f"{location}: " if location else ""
        details.append(f"- {prefix}{message}")
    return "Configuration validation errors detected:\n" + "\n".join(details)


@lru_cache(maxsize=1)
def get_settings(app_dir: Path | None = None) -> RetransConfig:
    """Return the validated settings, loaded once per process."""

    return load_settings(app_dir)
