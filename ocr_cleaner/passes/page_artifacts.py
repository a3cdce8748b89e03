"""Remove page furniture: page numbers and running headers/footers."""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Sequence

from ocr_cleaner.context import RemovalType, ValidationMethod
from ocr_cleaner.framework import Artifact, register
from ocr_cleaner.line_edits import drop_lines, initial_line_map, record_line_removals
from ocr_cleaner.models import DetectedPattern
from ocr_cleaner.passes.run_meta import (
    context_of,
    cut_lines,
    emit,
    hints_of,
    line_map_of,
    shielded_lines,
)
from ocr_cleaner.pattern_extractor import (
    MAX_CANDIDATE_CHARS,
    PAGE_NUMBER_FAMILIES,
    detect_page_number_pattern,
    detect_repeated_lines,
    validate_regex_pattern,
)
from ocr_cleaner.steps import CleaningStep
from ocr_cleaner.text_utils import split_lines

logger = logging.getLogger(__name__)

DEFAULT_PAGE_CONFIDENCE = 0.9
RUNNING_LINE_CONFIDENCE = 0.85


def page_number_regexes(detected: Optional[DetectedPattern]) -> List[re.Pattern[str]]:
    """Detected regex first, then the default families.

    Roman numerals only count when the document's own page numbers are roman.
    """
    roman = detected is not None and detected.style == "roman"
    defaults = [f.compiled for f in PAGE_NUMBER_FAMILIES if f.style != "roman" or roman]
    if detected is not None and validate_regex_pattern(detected.regex):
        return [re.compile(detected.regex), *defaults]
    return defaults


def page_number_lines(lines: Sequence[str], regexes: Sequence[re.Pattern[str]]) -> List[int]:
    shielded = shielded_lines(list(lines))
    return [
        number
        for number, line in enumerate(lines, start=1)
        if number not in shielded
        and line.strip()
        and len(line.strip()) <= MAX_CANDIDATE_CHARS
        and any(rx.fullmatch(line.strip()) for rx in regexes)
    ]


class _RemovePageNumbersPass:
    name = CleaningStep.REMOVE_PAGE_NUMBERS.pass_name
    step = CleaningStep.REMOVE_PAGE_NUMBERS

    def __call__(self, a: Artifact) -> Artifact:
        hints = hints_of(a)
        detected = hints.patterns.page_numbers if hints else detect_page_number_pattern(a.payload)
        doomed = page_number_lines(split_lines(a.payload), page_number_regexes(detected))
        confidence = detected.confidence if detected else DEFAULT_PAGE_CONFIDENCE
        logger.info("page numbers: %d line(s) removed", len(doomed))
        return cut_lines(
            a,
            self.name,
            doomed,
            RemovalType.PAGE_NUMBERS,
            justification="standalone page number line",
            confidence=max(confidence, DEFAULT_PAGE_CONFIDENCE),
            validation_method=ValidationMethod.PHASE_A,
            per_line=True,
            style=detected.style if detected else None,
        )


def running_lines(lines: Sequence[str], repeated: Sequence[str]) -> List[int]:
    targets = {line.strip() for line in repeated if line.strip()}
    shielded = shielded_lines(list(lines))
    return [
        number
        for number, line in enumerate(lines, start=1)
        if number not in shielded and line.strip() in targets
    ]


class _RemoveHeadersFootersPass:
    name = CleaningStep.REMOVE_HEADERS_FOOTERS.pass_name
    step = CleaningStep.REMOVE_HEADERS_FOOTERS

    def __call__(self, a: Artifact) -> Artifact:
        hints = hints_of(a)
        if hints is not None and (hints.patterns.header_lines or hints.patterns.footer_lines):
            headers, footers = hints.patterns.header_lines, hints.patterns.footer_lines
        else:
            headers, footers = detect_repeated_lines(a.payload)
        lines = split_lines(a.payload)
        header_lines = running_lines(lines, headers)
        footer_lines = [n for n in running_lines(lines, footers) if n not in set(header_lines)]
        if not header_lines and not footer_lines:
            return emit(a, self.name, a.payload, headers=0, footers=0)

        line_map = line_map_of(a)
        context = context_of(a)
        for kind, numbers, why in (
            (RemovalType.HEADERS, header_lines, "repeated running header"),
            (RemovalType.FOOTERS, footer_lines, "repeated running footer"),
        ):
            record_line_removals(
                context,
                kind,
                lines,
                numbers,
                justification=why,
                confidence=RUNNING_LINE_CONFIDENCE,
                validation_method=ValidationMethod.PHASE_A,
                line_map=line_map,
            )
        text, kept = drop_lines(
            a.payload, line_map or initial_line_map(a.payload), [*header_lines, *footer_lines]
        )
        logger.info(
            "running lines: %d header and %d footer line(s) removed",
            len(header_lines),
            len(footer_lines),
        )
        return emit(
            a,
            self.name,
            text,
            line_map=kept if line_map is not None else None,
            headers=len(header_lines),
            footers=len(footer_lines),
        )


remove_page_numbers = register(_RemovePageNumbersPass())
remove_headers_footers = register(_RemoveHeadersFootersPass())
