"""
Pytest fixtures for the ReTrans test suite.

Provides:
- ScriptedProvider: model provider that never touches the network
- scripted_provider: a provider that upper-cases every segment
- no_sleep: replacement for time.sleep in retry loops
"""

from typing import Any, Callable, Dict, List, Optional

import pytest

from retrans.providers import TranslationProvider
from retrans.structures import EMPTY_LINE, PARAGRAPH, Chunk


class ScriptedProvider(TranslationProvider):
    """Replays queued responses, or translates segments with a callable.

    Queued items that are exceptions are raised instead of returned.
    """

    name = "scripted"
    supports_grounding = True
    default_model = "fake-model"
    default_vision_model = "fake-vision-model"

    def __init__(
        self,
        *,
        responses: Optional[List[Any]] = None,
        translate: Optional[Callable[[str], str]] = None,
        vision: Any = None,
        text: Any = "en",
    ) -> None:
        self.responses = list(responses or [])
        self.translate = translate
        self.vision = vision
        self.text = text
        self.json_calls: List[Dict[str, Any]] = []
        self.file_calls: List[Dict[str, Any]] = []
        self.text_calls: List[Dict[str, Any]] = []

    def generate_json(self, **kwargs: Any) -> Any:
        self.json_calls.append(kwargs)
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, BaseException):
                raise response
            return response
        segments = kwargs["user_payload"]["segments"]
        translate = self.translate or (lambda value: value)
        return {"segments": [translate(segment) for segment in segments]}

    def generate_json_from_file(self, **kwargs: Any) -> Any:
        self.file_calls.append(kwargs)
        if isinstance(self.vision, BaseException):
            raise self.vision
        return self.vision

    def generate_text(self, **kwargs: Any) -> str:
        self.text_calls.append(kwargs)
        if isinstance(self.text, BaseException):
            raise self.text
        return self.text


def make_chunks(texts: List[str]) -> List[Chunk]:
    """Paragraph chunks, with empty strings turned into empty lines."""

    return [
        Chunk(
            chunk_id=f"c-{index}",
            kind=PARAGRAPH if text else EMPTY_LINE,
            original_text=text,
        )
        for index, text in enumerate(texts)
    ]


def upper_case(value: str) -> str:
    return value.upper()


@pytest.fixture
def scripted_provider() -> ScriptedProvider:
    return ScriptedProvider(translate=upper_case)


@pytest.fixture
def no_sleep() -> Callable[[float], None]:
    def _sleep(seconds: float) -> None:
        return None

    return _sleep
