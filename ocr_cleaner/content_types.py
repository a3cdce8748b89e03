"""Content types and the static cleaning policy attached to each of them.

Behaviour differences between content types are data: one frozen
``ContentTypePolicy`` per type, looked up by value.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import FrozenSet, Mapping

from ocr_cleaner.steps import CleaningStep

DEFAULT_MAX_PARAGRAPH_WORDS = 250


class ContentType(str, Enum):
    AUTO_DETECT = "autoDetect"
    PROSE_NON_FICTION = "proseNonFiction"
    PROSE_FICTION = "proseFiction"
    POETRY = "poetry"
    ACADEMIC = "academic"
    SCIENTIFIC_TECHNICAL = "scientificTechnical"
    LEGAL = "legal"
    RELIGIOUS_SACRED = "religiousSacred"
    CHILDRENS = "childrens"
    DRAMA_SCREENPLAY = "dramaScreenplay"
    MIXED = "mixed"

    @classmethod
    def parse(cls, value: str | None) -> "ContentType | None":
        """Lenient lookup by value or member name; ``None`` when unknown."""
        if not value:
            return None
        key = value.strip()
        by_value = {m.value.lower(): m for m in cls}
        by_name = {m.name.lower(): m for m in cls}
        norm = key.lower().replace("-", "_").replace(" ", "_")
        return by_value.get(key.lower()) or by_name.get(norm) or by_value.get(
            norm.replace("_", "")
        )

    @property
    def policy(self) -> "ContentTypePolicy":
        return POLICIES.get(self, _DEFAULT_POLICY)

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES: Mapping[ContentType, str] = MappingProxyType(
    {
        ContentType.AUTO_DETECT: "Auto-detect",
        ContentType.PROSE_NON_FICTION: "Prose (non-fiction)",
        ContentType.PROSE_FICTION: "Prose (fiction)",
        ContentType.POETRY: "Poetry",
        ContentType.ACADEMIC: "Academic",
        ContentType.SCIENTIFIC_TECHNICAL: "Scientific / technical",
        ContentType.LEGAL: "Legal",
        ContentType.RELIGIOUS_SACRED: "Religious / sacred",
        ContentType.CHILDRENS: "Children's",
        ContentType.DRAMA_SCREENPLAY: "Drama / screenplay",
        ContentType.MIXED: "Mixed",
    }
)


@dataclass(frozen=True)
class ContentTypePolicy:
    """Static cleaning policy for one content type."""

    disabled_steps: FrozenSet[CleaningStep] = frozenset()
    max_paragraph_words: int = DEFAULT_MAX_PARAGRAPH_WORDS
    line_breaks_are_content: bool = False
    requires_format_preservation: bool = False
    has_meaningful_citations: bool = False

    def disables(self, step: CleaningStep) -> bool:
        return step in self.disabled_steps


_DEFAULT_POLICY = ContentTypePolicy()

_LAYOUT_STEPS = frozenset(
    {CleaningStep.REFLOW_PARAGRAPHS, CleaningStep.OPTIMIZE_PARAGRAPH_LENGTH}
)

POLICIES: Mapping[ContentType, ContentTypePolicy] = MappingProxyType(
    {
        ContentType.POETRY: ContentTypePolicy(
            disabled_steps=_LAYOUT_STEPS,
            max_paragraph_words=50,
            line_breaks_are_content=True,
            requires_format_preservation=True,
        ),
        ContentType.DRAMA_SCREENPLAY: ContentTypePolicy(
            disabled_steps=_LAYOUT_STEPS,
            max_paragraph_words=50,
            line_breaks_are_content=True,
            requires_format_preservation=True,
        ),
        ContentType.LEGAL: ContentTypePolicy(
            disabled_steps=frozenset(
                {CleaningStep.REMOVE_CITATIONS, CleaningStep.REMOVE_FOOTNOTES_ENDNOTES}
            ),
            max_paragraph_words=300,
            requires_format_preservation=True,
            has_meaningful_citations=True,
        ),
        ContentType.ACADEMIC: ContentTypePolicy(
            disabled_steps=frozenset({CleaningStep.REMOVE_CITATIONS}),
            has_meaningful_citations=True,
        ),
        ContentType.SCIENTIFIC_TECHNICAL: ContentTypePolicy(
            disabled_steps=frozenset({CleaningStep.REMOVE_CITATIONS}),
            requires_format_preservation=True,
            has_meaningful_citations=True,
        ),
        ContentType.RELIGIOUS_SACRED: ContentTypePolicy(has_meaningful_citations=True),
        ContentType.CHILDRENS: ContentTypePolicy(max_paragraph_words=100),
    }
)

APPARATUS_HEAVY = frozenset(t for t, p in POLICIES.items() if p.has_meaningful_citations)


def resolve(
    user: ContentType | None, detected: ContentType | None
) -> ContentType:
    """User choice wins unless it is auto-detect; ``mixed`` when nothing is known."""
    if user is not None and user is not ContentType.AUTO_DETECT:
        return user
    if detected is not None and detected is not ContentType.AUTO_DETECT:
        return detected
    return ContentType.MIXED
