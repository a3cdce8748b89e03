"""Sanity limits applied before any section is cut out of a document.

A detected boundary is only acted on when the section sits where that kind
of section can sit, is not implausibly large or small, and was detected with
enough confidence. Positions and sizes are measured in words so that reflowed
and unreflowed text are judged alike.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Sequence

from ocr_cleaner.text_utils import word_count

logger = logging.getLogger(__name__)


class Section(str, Enum):
    FRONT_MATTER = "frontMatter"
    TABLE_OF_CONTENTS = "tableOfContents"
    AUXILIARY_LIST = "auxiliaryList"
    INDEX = "index"
    BACK_MATTER = "backMatter"
    NOTES = "notes"


class RejectionReason(str, Enum):
    OUT_OF_BOUNDS = "outOfBounds"
    POSITION_TOO_EARLY = "positionTooEarly"
    POSITION_TOO_LATE = "positionTooLate"
    EXCESSIVE_REMOVAL = "excessiveRemoval"
    SECTION_TOO_SMALL = "sectionTooSmall"
    LOW_CONFIDENCE = "lowConfidence"


@dataclass(frozen=True)
class SectionLimits:
    min_lines: int
    max_removal: float
    min_confidence: float
    max_end: Optional[float] = None
    min_start: Optional[float] = None
    early_max_removal: Optional[float] = None


LIMITS: Mapping[Section, SectionLimits] = MappingProxyType(
    {
        Section.FRONT_MATTER: SectionLimits(
            min_lines=3, max_removal=0.40, min_confidence=0.60, max_end=0.40
        ),
        Section.TABLE_OF_CONTENTS: SectionLimits(
            min_lines=5, max_removal=0.20, min_confidence=0.60, max_end=0.35
        ),
        Section.AUXILIARY_LIST: SectionLimits(
            min_lines=3, max_removal=0.15, min_confidence=0.65, max_end=0.40
        ),
        Section.INDEX: SectionLimits(
            min_lines=10, max_removal=0.25, min_confidence=0.65, min_start=0.60
        ),
        Section.BACK_MATTER: SectionLimits(
            min_lines=5, max_removal=0.45, min_confidence=0.70, min_start=0.50
        ),
        Section.NOTES: SectionLimits(
            min_lines=4, max_removal=0.12, min_confidence=0.70, early_max_removal=0.05
        ),
    }
)


@dataclass(frozen=True)
class SectionCheck:
    section: Section
    start: int
    end: int
    accepted: bool
    reason: Optional[RejectionReason] = None
    explanation: str = ""


def _fractions(lines: Sequence[str], start: int, end: int) -> tuple[float, float, float]:
    """(start, end, size) of lines ``start..end`` as fractions of all words."""
    total = sum(word_count(line) for line in lines) or 1
    before = sum(word_count(line) for line in lines[: start - 1])
    inside = sum(word_count(line) for line in lines[start - 1 : end])
    return before / total, (before + inside) / total, inside / total


def check_section(
    section: Section,
    lines: Sequence[str],
    start: int,
    end: int,
    confidence: float,
) -> SectionCheck:
    """Judge whether lines ``start..end`` (1-indexed, inclusive) may be removed."""
    limits = LIMITS[section]

    def reject(reason: RejectionReason, explanation: str) -> SectionCheck:
        logger.warning("%s removal rejected (%s): %s", section.value, reason.value, explanation)
        return SectionCheck(section, start, end, False, reason, explanation)

    if not 1 <= start <= end <= len(lines):
        return reject(
            RejectionReason.OUT_OF_BOUNDS,
            f"lines {start}-{end} outside document of {len(lines)} lines",
        )
    begin, finish, size = _fractions(lines, start, end)
    if limits.max_end is not None and finish > limits.max_end:
        return reject(
            RejectionReason.POSITION_TOO_LATE,
            f"section ends at {finish:.0%} of the document (maximum {limits.max_end:.0%})",
        )
    if limits.min_start is not None and begin < limits.min_start:
        return reject(
            RejectionReason.POSITION_TOO_EARLY,
            f"section starts at {begin:.0%} of the document (minimum {limits.min_start:.0%}); "
            f"removing it would delete {1 - begin:.0%} of the text",
        )
    ceiling = limits.max_removal
    if limits.early_max_removal is not None and begin < 0.5:
        ceiling = limits.early_max_removal
    if size > ceiling:
        return reject(
            RejectionReason.EXCESSIVE_REMOVAL,
            f"removing {size:.0%} of the words exceeds {ceiling:.0%}",
        )
    span = end - start + 1
    if span < limits.min_lines:
        return reject(
            RejectionReason.SECTION_TOO_SMALL,
            f"section of {span} lines is smaller than {limits.min_lines}",
        )
    if confidence < limits.min_confidence:
        return reject(
            RejectionReason.LOW_CONFIDENCE,
            f"confidence {confidence:.2f} below {limits.min_confidence:.2f}",
        )
    logger.debug("%s removal accepted: lines %d-%d", section.value, start, end)
    return SectionCheck(section, start, end, True)
