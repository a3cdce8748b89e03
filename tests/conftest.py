from __future__ import annotations

from pathlib import Path
from typing import Callable, List, Sequence
import sys

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from ocr_cleaner.adapters.completion import Completion  # noqa: E402


_SUBJECTS = (
    "The river",
    "A tired clerk",
    "The old mill",
    "Every morning the baker",
    "Her younger brother",
    "The village council",
    "A quiet wind",
    "The schoolteacher",
    "An elderly farmer",
    "The harbor master",
)
_PREDICATES = (
    "carried silt past the broken fence near the eastern field",
    "counted the ledgers twice before the lamps were finally lit",
    "stood silent while rain gathered along the slate roof",
    "opened the shutters and watched carts roll toward town",
    "wrote long letters about weather and the price of grain",
    "argued for hours over the width of the new bridge",
    "moved through tall grass and bent the late flowers",
    "read aloud from a battered book of northern stories",
    "mended nets beside the water until the tide turned",
    "noted every ship that anchored beyond the stone wall",
)


class FakeClient:
    """Scripted ``CompletionClient`` that records every prompt it receives.

    ``replies`` are returned in order; once exhausted ``default`` is used, or
    a ``ConnectionError`` is raised when no default is set.
    """

    def __init__(self, replies: Sequence[str] = (), default: str | None = None) -> None:
        self.replies: List[str] = list(replies)
        self.default = default
        self.prompts: List[str] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def complete(self, prompt: str, *, max_tokens: int = 4096) -> Completion:
        self.prompts.append(prompt)
        if self.replies:
            return Completion(text=self.replies.pop(0), input_tokens=10, output_tokens=5)
        if self.default is not None:
            return Completion(text=self.default, input_tokens=10, output_tokens=5)
        raise ConnectionError("fake completion service is offline")


class UnavailableClient(FakeClient):
    """Client whose every call fails."""

    def __init__(self) -> None:
        super().__init__()


def prose_sentence(index: int) -> str:
    subject = _SUBJECTS[index % len(_SUBJECTS)]
    predicate = _PREDICATES[(index * 3 + index // len(_SUBJECTS)) % len(_PREDICATES)]
    return f"{subject} {predicate}."


def prose_paragraph(start: int, sentences: int = 5) -> str:
    """``sentences`` hard-wrapped lines, one sentence each."""
    return "\n".join(prose_sentence(start + i) for i in range(sentences))


def prose(paragraphs: int, sentences: int = 5) -> str:
    return "\n\n".join(prose_paragraph(p * sentences, sentences) for p in range(paragraphs))


@pytest.fixture
def fake_client() -> Callable[..., FakeClient]:
    return FakeClient


@pytest.fixture
def prose_text() -> str:
    return prose(10)
