"""Model provider abstractions."""

from __future__ import annotations

import json
import os
import sys
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping

from .errors import (
    CredentialError,
    TranslationProviderConfigurationError,
    TranslationProviderError,
)

CREDENTIAL_STATUS_CODES = {401, 403}
CREDENTIAL_ERROR_NAMES = {"AuthenticationError", "PermissionDeniedError"}


def is_credential_failure(exc: BaseException) -> bool:
    """True when the service rejected the call for auth reasons."""

    if getattr(exc, "status_code", None) in CREDENTIAL_STATUS_CODES:
        return True
    return type(exc).__name__ in CREDENTIAL_ERROR_NAMES


def data_url(file_bytes_base64: str, mime_type: str) -> str:
    return f"data:{mime_type};base64,{file_bytes_base64}"


class TranslationProvider(ABC):
    """Abstract adapter for hosted text and multimodal models."""

    name = "provider"
    supports_grounding = False
    default_model: str | None = None
    default_vision_model: str | None = None

    @abstractmethod
    def generate_json(
        self,
        *,
        system_prompt: str,
        user_payload: Mapping[str, Any],
        schema: Mapping[str, Any],
        schema_name: str,
        model: str | None = None,
        grounding: bool = False,
    ) -> Any:
        """Run a structured completion and return the decoded JSON value."""

    @abstractmethod
    def generate_json_from_file(
        self,
        *,
        system_prompt: str,
        user_text: str,
        file_bytes_base64: str,
        mime_type: str,
        filename: str | None,
        schema: Mapping[str, Any],
        schema_name: str,
        model: str | None = None,
    ) -> Any:
        """Run a multimodal structured completion over an inline file."""

    @abstractmethod
    def generate_text(
        self,
        *,
        system_prompt: str,
        user_text: str,
        model: str | None = None,
    ) -> str:
        """Run a plain text completion."""


class EchoTranslationProvider(TranslationProvider):
    """A provider that returns the original text (useful for testing)."""

    name = "echo"
    supports_grounding = True

    def generate_json(
        self,
        *,
        system_prompt: str,
        user_payload: Mapping[str, Any],
        schema: Mapping[str, Any],
        schema_name: str,
        model: str | None = None,
        grounding: bool = False,
    ) -> Any:
        return {"segments": list(user_payload.get("segments", []))}

    def generate_json_from_file(
        self,
        *,
        system_prompt: str,
        user_text: str,
        file_bytes_base64: str,
        mime_type: str,
        filename: str | None,
        schema: Mapping[str, Any],
        schema_name: str,
        model: str | None = None,
    ) -> Any:
        raise TranslationProviderError("The echo provider cannot read documents.")

    def generate_text(
        self,
        *,
        system_prompt: str,
        user_text: str,
        model: str | None = None,
    ) -> str:
        return user_text


class OpenAITranslationProvider(TranslationProvider):
    """Provider that uses the OpenAI Responses API."""

    name = "openai"
    supports_grounding = True
    DEFAULT_MODEL = "gpt-4o-mini"
    DEFAULT_VISION_MODEL = "gpt-4o"
    GROUNDING_TOOL = {"type": "web_search_preview"}

    def __init__(
        self,
        *,
        settings: Any = None,
        debug: bool = False,
        provider_kind: str | None = None,
    ) -> None:
        self.settings = settings
        self.debug = debug
        provider_value = provider_kind or self._setting("LLM_PROVIDER") or "openai"
        normalized = provider_value.strip().lower().replace("-", "_")
        if normalized in {"azure_open_ai", "azureopenai"}:
            normalized = "azure_openai"
        if normalized not in {"openai", "azure_openai"}:
            normalized = "openai"

        self.provider_kind = normalized
        self._client, self.default_model, self.default_vision_model = (
            self._build_client()
        )

    def _setting(self, key: str) -> str | None:
        if self.settings is not None:
            value = getattr(self.settings, key, None)
            return str(value) if value is not None else None
        return os.getenv(key)

    def _build_client(self) -> tuple[Any, str, str]:
        if self.provider_kind == "azure_openai":
            return self._build_azure_client()

        return self._build_openai_client()

    def _build_openai_client(self) -> tuple[Any, str, str]:
        api_key = self._setting("OPENAI_API_KEY")
        if not api_key:
            raise TranslationProviderConfigurationError(
                "OpenAI configuration missing. Set OPENAI_API_KEY or choose a "
                "different provider."
            )
        try:
            from openai import OpenAI  # type: ignore
        except ImportError as exc:  # pragma: no cover - import guard
            raise TranslationProviderConfigurationError(
                "OpenAI Python SDK not installed. Install with `pip install openai`."
            ) from exc

        return OpenAI(api_key=api_key), self.DEFAULT_MODEL, self.DEFAULT_VISION_MODEL

    def _build_azure_client(self) -> tuple[Any, str, str]:
        api_key = self._setting("AZURE_OPENAI_API_KEY")
        endpoint = self._setting("AZURE_OPENAI_ENDPOINT")
        api_version = self._setting("AZURE_OPENAI_API_VERSION")
        deployment_name = self._setting("AZURE_OPENAI_DEPLOYMENT_NAME")

        missing = [
            name
            for name, value in {
                "AZURE_OPENAI_API_KEY": api_key,
                "AZURE_OPENAI_ENDPOINT": endpoint,
                "AZURE_OPENAI_API_VERSION": api_version,
                "AZURE_OPENAI_DEPLOYMENT_NAME": deployment_name,
            }.items()
            if not value
        ]
        if missing:
            raise TranslationProviderConfigurationError(
                "Azure OpenAI configuration incomplete. Please set: "
                + ", ".join(missing)
                + "."
            )

        try:
            from openai import AzureOpenAI  # type: ignore
        except ImportError as exc:  # pragma: no cover - import guard
            raise TranslationProviderConfigurationError(
                "OpenAI Python SDK not installed. Install with `pip install openai`."
            ) from exc

        client = AzureOpenAI(
            api_key=api_key,
            api_version=api_version,
            azure_endpoint=endpoint,
        )
        return client, deployment_name, deployment_name  # type: ignore[return-value]

    def generate_json(
        self,
        *,
        system_prompt: str,
        user_payload: Mapping[str, Any],
        schema: Mapping[str, Any],
        schema_name: str,
        model: str | None = None,
        grounding: bool = False,
    ) -> Any:
        user_text = json.dumps(user_payload, ensure_ascii=False)
        self._log_debug("provider.request.system_prompt", system_prompt)
        self._log_debug("provider.request.payload", dict(user_payload))

        request: Dict[str, Any] = {
            "model": model or self.default_model,
            "temperature": 0,
            "input": [
                {
                    "role": "system",
                    "content": [{"type": "input_text", "text": system_prompt}],
                },
                {
                    "role": "user",
                    "content": [{"type": "input_text", "text": user_text}],
                },
            ],
            "text": self._json_format(schema, schema_name),
        }
        if grounding:
            request["tools"] = [self.GROUNDING_TOOL]
        response = self._create(request)
        return self._extract_json(response)

    def generate_json_from_file(
        self,
        *,
        system_prompt: str,
        user_text: str,
        file_bytes_base64: str,
        mime_type: str,
        filename: str | None,
        schema: Mapping[str, Any],
        schema_name: str,
        model: str | None = None,
    ) -> Any:
        if mime_type.startswith("image/"):
            file_part: Dict[str, Any] = {
                "type": "input_image",
                "image_url": data_url(file_bytes_base64, mime_type),
            }
        else:
            file_part = {
                "type": "input_file",
                "filename": filename or "document.pdf",
                "file_data": data_url(file_bytes_base64, mime_type),
            }
        self._log_debug("provider.request.system_prompt", system_prompt)
        self._log_debug(
            "provider.request.file",
            {"mime_type": mime_type, "filename": filename, "size": len(file_bytes_base64)},
        )

        request = {
            "model": model or self.default_vision_model,
            "temperature": 0,
            "input": [
                {
                    "role": "system",
                    "content": [{"type": "input_text", "text": system_prompt}],
                },
                {
                    "role": "user",
                    "content": [file_part, {"type": "input_text", "text": user_text}],
                },
            ],
            "text": self._json_format(schema, schema_name),
        }
        response = self._create(request)
        return self._extract_json(response)

    def generate_text(
        self,
        *,
        system_prompt: str,
        user_text: str,
        model: str | None = None,
    ) -> str:
        response = self._create(
            {
                "model": model or self.default_model,
                "temperature": 0,
                "input": [
                    {
                        "role": "system",
                        "content": [{"type": "input_text", "text": system_prompt}],
                    },
                    {
                        "role": "user",
                        "content": [{"type": "input_text", "text": user_text}],
                    },
                ],
            }
        )
        text = self._extract_text(response)
        if text is None:
            raise TranslationProviderError(
                "Translation provider response empty or unrecognised."
            )
        return text

    # --- Internal helpers -------------------------------------------------

    def _json_format(self, schema: Mapping[str, Any], schema_name: str) -> Dict[str, Any]:
        return {
            "format": {
                "type": "json_schema",
                "name": schema_name,
                "schema": dict(schema),
                "strict": True,
            }
        }

    def _create(self, request: Dict[str, Any]) -> Any:
        """Call the Responses API, translating SDK failures."""

        try:
            response = self._client.responses.create(**request)
        except Exception as exc:  # pragma: no cover - network call
            raise self._wrap_failure(exc) from exc
        self._log_debug("provider.response.raw", self._safe_dump_response(response))
        return response

    def _wrap_failure(self, exc: Exception) -> TranslationProviderError:
        if is_credential_failure(exc):
            return CredentialError(
                f"The model service rejected the API credential. Please re-authenticate. ({exc})"
            )
        return TranslationProviderError(
            f"Translation service temporarily unavailable: {exc}"
        )

    def _log_debug(self, label: str, payload: Any) -> None:
        """Emit structured debug information when enabled."""

        if not getattr(self, "debug", False):
            return
        try:
            if isinstance(payload, (dict, list)):
                message = json.dumps(payload, ensure_ascii=False, indent=2)
            else:
                message = str(payload)
        except (TypeError, ValueError):
            message = repr(payload)
        print(f"[retrans][provider-debug] {label}:\n{message}", file=sys.stderr)

    def _safe_dump_response(self, response: Any) -> Any:
        """Best-effort conversion of SDK response objects into JSON-friendly data."""

        for attr in ("model_dump_json", "model_dump"):
            candidate = getattr(response, attr, None)
            if candidate:
                try:
                    data = candidate()
                    if isinstance(data, str):
                        return json.loads(data)
                    return data
                except Exception:
                    continue
        return str(response)

    def _strip_code_fence(self, text: str) -> str:
        """Remove leading/trailing markdown code fences if present."""

        stripped = text.strip()
        if not stripped.startswith("```"):
            return stripped

        # Drop opening fence and optional language hint.
        first_newline = stripped.find("\n")
        if first_newline == -1:
            return stripped
        body = stripped[first_newline + 1 :]
        closing_index = body.rfind("```")
        if closing_index != -1:
            body = body[:closing_index]
        return body.strip()

    def _extract_text(self, response: Any) -> str | None:
        output_text = getattr(response, "output_text", None)
        if hasattr(output_text, "value"):
            output_text = output_text.value
        if output_text:
            return str(output_text)

        for item in getattr(response, "output", None) or []:
            for part in getattr(item, "content", None) or []:
                text_value = getattr(part, "text", None)
                if hasattr(text_value, "value"):
                    text_value = text_value.value
                if text_value:
                    return str(text_value)
        return None

    def _extract_json(self, response: Any) -> Any:
        text = self._extract_text(response)
        if text is None:
            raise TranslationProviderError(
                "Translation provider response empty or unrecognised."
            )
        return self._decode_json(text)

    def _decode_json(self, text: str) -> Any:
        try:
            return json.loads(self._strip_code_fence(text))
        except json.JSONDecodeError as exc:
            raise TranslationProviderError(
                f"Translation provider returned invalid JSON: {exc}"
            ) from exc


class LegacyOpenAITranslationProvider(OpenAITranslationProvider):
    """Provider that uses the Chat Completions API for compatibility."""

    name = "legacy-openai"
    supports_grounding = False

    def generate_json(
        self,
        *,
        system_prompt: str,
        user_payload: Mapping[str, Any],
        schema: Mapping[str, Any],
        schema_name: str,
        model: str | None = None,
        grounding: bool = False,
    ) -> Any:
        if grounding:
            raise TranslationProviderConfigurationError(
                "Web grounding is not available with the Chat Completions provider."
            )
        self._log_debug("provider.request.system_prompt", system_prompt)
        self._log_debug("provider.request.payload", dict(user_payload))
        response = self._complete(
            model=model or self.default_model,
            messages=[
                {"role": "system", "content": system_prompt},
                {
                    "role": "user",
                    "content": json.dumps(user_payload, ensure_ascii=False),
                },
            ],
            response_format=self._response_format(schema, schema_name),
        )
        return self._decode_json(self._message_content(response))

    def generate_json_from_file(
        self,
        *,
        system_prompt: str,
        user_text: str,
        file_bytes_base64: str,
        mime_type: str,
        filename: str | None,
        schema: Mapping[str, Any],
        schema_name: str,
        model: str | None = None,
    ) -> Any:
        url = data_url(file_bytes_base64, mime_type)
        if mime_type.startswith("image/"):
            file_part: Dict[str, Any] = {"type": "image_url", "image_url": {"url": url}}
        else:
            file_part = {
                "type": "file",
                "file": {"filename": filename or "document.pdf", "file_data": url},
            }
        response = self._complete(
            model=model or self.default_vision_model,
            messages=[
                {"role": "system", "content": system_prompt},
                {
                    "role": "user",
                    "content": [file_part, {"type": "text", "text": user_text}],
                },
            ],
            response_format=self._response_format(schema, schema_name),
        )
        return self._decode_json(self._message_content(response))

    def generate_text(
        self,
        *,
        system_prompt: str,
        user_text: str,
        model: str | None = None,
    ) -> str:
        response = self._complete(
            model=model or self.default_model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_text},
            ],
        )
        return self._message_content(response)

    def _response_format(self, schema: Mapping[str, Any], schema_name: str) -> Dict[str, Any]:
        return {
            "type": "json_schema",
            "json_schema": {"name": schema_name, "schema": dict(schema), "strict": True},
        }

    def _complete(self, **request: Any) -> Any:
        try:
            response = self._client.chat.completions.create(temperature=0, **request)
        except Exception as exc:  # pragma: no cover - network call
            raise self._wrap_failure(exc) from exc
        self._log_debug("provider.response.raw", self._safe_dump_response(response))
        return response

    def _message_content(self, response: Any) -> str:
        content: str | None = None
        choices = getattr(response, "choices", None) or []
        for choice in choices:
            message = getattr(choice, "message", None)
            if message is None:
                continue
            message_content = getattr(message, "content", None)
            if isinstance(message_content, list):
                parts: list[str] = []
                for part in message_content:
                    text_value = getattr(part, "text", None)
                    if text_value is None and isinstance(part, dict):
                        text_value = part.get("text")
                    if text_value:
                        parts.append(str(text_value))
                if parts:
                    content = "\n".join(parts)
                    break
            elif message_content:
                content = str(message_content)
                break

        if content is None:
            raise TranslationProviderError(
                "Translation provider response empty or unrecognised."
            )
        return content


def build_provider(
    name: str | None,
    *,
    settings: Any = None,
    debug: bool = False,
) -> TranslationProvider:
    """Factory to create providers by name."""

    normalized = (name or "openai").strip().lower()
    if normalized in {"openai", "gpt", "default"}:
        return OpenAITranslationProvider(settings=settings, debug=debug)
    if normalized in {"azure", "azure_openai", "azure-openai"}:
        return OpenAITranslationProvider(
            settings=settings, debug=debug, provider_kind="azure_openai"
        )
    if normalized in {"legacy-openai", "legacy_openai", "legacy", "openai-legacy"}:
        return LegacyOpenAITranslationProvider(settings=settings, debug=debug)
    if normalized in {"echo", "noop", "mock"}:
        return EchoTranslationProvider()
    raise TranslationProviderConfigurationError(
        f"Unknown translation provider '{name}'."
    )
