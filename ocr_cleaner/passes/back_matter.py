"""Remove material after the body: back matter and the index.

These passes run after reflow, so input line numbers are resolved through
the anchors captured before it.
"""

from __future__ import annotations

import logging
import re
from typing import Optional, Sequence, Tuple

from ocr_cleaner.boundary_detection import heading_text
from ocr_cleaner.context import RemovalType, ValidationMethod
from ocr_cleaner.framework import Artifact, register
from ocr_cleaner.models import RegionType
from ocr_cleaner.passes.run_meta import (
    boundaries_of,
    boundary_validation,
    configuration_of,
    context_of,
    emit,
    guarded_cut,
    hints_of,
    locate,
    section_end,
)
from ocr_cleaner.section_guard import Section
from ocr_cleaner.steps import CleaningStep
from ocr_cleaner.text_utils import split_lines

logger = logging.getLogger(__name__)

INDEX_CONFIDENCE = 0.8
UNCERTAIN_INDEX_CONFIDENCE = 0.5

_INDEX_HEADING_RE = re.compile(r"^(?:general |subject |name )?index$", re.I)
_INDEX_ENTRY_RE = re.compile(
    r"^\s*[\w\"'(][^,]{0,80},\s*(?:\d{1,4}(?:\s*[-–]\s*\d{1,4})?[a-z]?|see\b)", re.I
)


class _RemoveBackMatterPass:
    name = CleaningStep.REMOVE_BACK_MATTER.pass_name
    step = CleaningStep.REMOVE_BACK_MATTER

    def __call__(self, a: Artifact) -> Artifact:
        boundaries = boundaries_of(a)
        start_line = boundaries.back_matter_start_line if boundaries else None
        if boundaries is None or start_line is None:
            return emit(a, self.name, a.payload, removed_lines=0)
        start = locate(a, start_line)
        if start is None:
            logger.warning("back matter boundary %d could not be located", start_line)
            context = context_of(a)
            if context is not None:
                context.add_warning(
                    f"Back matter boundary at line {start_line} not found after earlier steps"
                )
            return emit(a, self.name, a.payload, removed_lines=0)
        evidence = "; ".join(boundaries.back_evidence) or "back matter boundary"
        logger.info(
            "back matter: boundary at input line %d, current line %d (confidence %.2f)",
            start_line,
            start,
            boundaries.confidence,
        )
        return guarded_cut(
            a,
            self.name,
            Section.BACK_MATTER,
            start,
            len(split_lines(a.payload)),
            RemovalType.BACK_MATTER,
            confidence=boundaries.confidence,
            justification=f"back matter starts at line {start_line}: {evidence}",
            validation_method=boundary_validation(boundaries),
            threshold=configuration_of(a).boundary_confidence_threshold,
            boundary=start_line,
        )


def index_confidence(lines: Sequence[str], start: int, end: int) -> float:
    """High when at least half the section reads like ``term, 12, 45-47``."""
    body = [line for line in lines[start:end] if line.strip() and len(line.strip()) > 1]
    if not body:
        return UNCERTAIN_INDEX_CONFIDENCE
    entries = sum(1 for line in body if _INDEX_ENTRY_RE.match(line))
    return INDEX_CONFIDENCE if entries * 2 >= len(body) else UNCERTAIN_INDEX_CONFIDENCE


def find_index(a: Artifact) -> Optional[Tuple[int, int, float, ValidationMethod]]:
    """``(start, end, confidence, method)`` of the index in the current text."""
    lines = split_lines(a.payload)
    hints = hints_of(a)
    for region in hints.regions_of(RegionType.INDEX) if hints else []:
        start = locate(a, region.line_range.start)
        if start is not None:
            return start, section_end(lines, start), region.confidence, ValidationMethod.PHASE_A
    headings = [
        number
        for number, line in enumerate(lines, start=1)
        if number > len(lines) // 2 and _INDEX_HEADING_RE.match(heading_text(line))
    ]
    if not headings:
        return None
    start = headings[-1]
    end = section_end(lines, start)
    return start, end, index_confidence(lines, start, end), ValidationMethod.PHASE_C


class _RemoveIndexPass:
    name = CleaningStep.REMOVE_INDEX.pass_name
    step = CleaningStep.REMOVE_INDEX

    def __call__(self, a: Artifact) -> Artifact:
        found = find_index(a)
        if found is None:
            return emit(a, self.name, a.payload, removed_lines=0)
        start, end, confidence, method = found
        logger.info("index: lines %d-%d (confidence %.2f)", start, end, confidence)
        return guarded_cut(
            a,
            self.name,
            Section.INDEX,
            start,
            end,
            RemovalType.INDEX,
            confidence=confidence,
            justification="index section",
            validation_method=method,
            threshold=configuration_of(a).boundary_confidence_threshold,
        )


remove_back_matter = register(_RemoveBackMatterPass())
remove_index = register(_RemoveIndexPass())
