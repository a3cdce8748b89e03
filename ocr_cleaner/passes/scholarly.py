"""Scholarly apparatus: inline citations, footnote markers and notes sections.

Removal is pattern based. Code, math and tables are never touched, and a
detected pattern below its configured confidence threshold is left in place
and flagged instead.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ocr_cleaner.boundary_detection import heading_text
from ocr_cleaner.context import AccumulatedContext, RemovalType, ValidationMethod
from ocr_cleaner.errors import InvalidPatternError
from ocr_cleaner.framework import Artifact, register
from ocr_cleaner.line_edits import LineMap, to_original
from ocr_cleaner.models import DetectedPattern, LineRange, RegionType
from ocr_cleaner.passes.run_meta import (
    configuration_of,
    context_of,
    cut_lines,
    emit,
    flag_low_confidence,
    guarded_cut,
    hints_of,
    line_map_of,
    locate,
    outside_inline_code,
    section_end,
    shielded_lines,
)
from ocr_cleaner.pattern_extractor import detect_citation_pattern, detect_footnote_pattern
from ocr_cleaner.section_guard import Section
from ocr_cleaner.steps import CleaningStep
from ocr_cleaner.text_utils import split_lines

logger = logging.getLogger(__name__)

NOTES_CONFIDENCE = 0.75
UNCERTAIN_NOTES_CONFIDENCE = 0.5

_DEFINITION_RE = re.compile(r"^\s*\[\^[^\]]+\]:\s?")
_NOTES_HEADING_RE = re.compile(r"^(?:end\s?notes|notes|footnotes)$", re.I)
_NOTE_ENTRY_RE = re.compile(r"^\s*(?:\d{1,3}[.)]|\[\d{1,3}\]|\d{1,3}\s|[¹²³⁴⁵⁶⁷⁸⁹])")

Change = Tuple[int, str]


def compile_pattern(regex: str) -> re.Pattern[str]:
    """Compile a detected regex, swallowing the whitespace before each match."""
    try:
        return re.compile(rf"[ \t]*(?:{regex})")
    except re.error as exc:
        raise InvalidPatternError(regex, exc) from exc


def _strip_line(line: str, rx: re.Pattern[str]) -> Tuple[str, List[str]]:
    found: List[str] = []

    def cut(part: str) -> str:
        found.extend(m.group(0).strip() for m in rx.finditer(part))
        return rx.sub("", part)

    return outside_inline_code(line, cut), found


def strip_inline(
    lines: Sequence[str],
    rx: re.Pattern[str],
    keep: Optional[Callable[[str], bool]] = None,
) -> Tuple[List[str], List[Change]]:
    """Remove matches of ``rx`` outside shielded lines and inline code.

    Returns the new lines and ``(line number, removed text)`` per changed line.
    Lines for which ``keep`` is true are left alone.
    """
    shielded = shielded_lines(list(lines))
    out: List[str] = []
    changes: List[Change] = []
    for number, line in enumerate(lines, start=1):
        if number in shielded or (keep is not None and keep(line)):
            out.append(line)
            continue
        new, found = _strip_line(line, rx)
        out.append(new)
        if found:
            changes.append((number, " ".join(found)))
    return out, changes


def record_inline(
    context: Optional[AccumulatedContext],
    removal_type: RemovalType,
    changes: Sequence[Change],
    line_map: Optional[LineMap],
    *,
    justification: str,
    confidence: float,
) -> None:
    if context is None:
        return
    for number, removed in changes:
        original = to_original(line_map, number) if line_map is not None else number
        context.record_removal(
            removal_type,
            LineRange(start=original, end=original),
            removed_text=removed,
            justification=justification,
            confidence=confidence,
            validation_method=ValidationMethod.PHASE_A,
        )


def _usable(
    a: Artifact, name: str, pattern: Optional[DetectedPattern], threshold: float
) -> Optional[re.Pattern[str]]:
    """Compiled pattern if it may be applied; flags low confidence and bad regexes."""
    if pattern is None:
        return None
    context = context_of(a)
    if pattern.confidence < threshold:
        flag_low_confidence(context, name, pattern.confidence, threshold)
        return None
    try:
        return compile_pattern(pattern.regex)
    except InvalidPatternError as exc:
        logger.warning("%s: %s", name, exc)
        if context is not None:
            context.add_warning(f"{name} kept: {exc}")
        return None


class _RemoveCitationsPass:
    name = CleaningStep.REMOVE_CITATIONS.pass_name
    step = CleaningStep.REMOVE_CITATIONS

    def __call__(self, a: Artifact) -> Artifact:
        hints = hints_of(a)
        pattern = (hints.patterns.citations if hints else None) or detect_citation_pattern(
            a.payload
        )
        threshold = configuration_of(a).citation_confidence_threshold
        rx = _usable(a, "citations", pattern, threshold)
        if pattern is None or rx is None:
            return emit(a, self.name, a.payload, lines_changed=0)
        lines, changes = strip_inline(split_lines(a.payload), rx)
        record_inline(
            context_of(a),
            RemovalType.CITATIONS,
            changes,
            line_map_of(a),
            justification=f"{pattern.style} citation",
            confidence=pattern.confidence,
        )
        logger.info("citations: %s style, %d line(s) changed", pattern.style, len(changes))
        return emit(
            a, self.name, "\n".join(lines), lines_changed=len(changes), style=pattern.style
        )


def _is_asterisk_emphasis(line: str) -> bool:
    return line.count("*") % 2 == 0


def _notes_confidence(lines: Sequence[str], start: int, end: int) -> float:
    body = [line for line in lines[start:end] if line.strip()]
    if not body:
        return UNCERTAIN_NOTES_CONFIDENCE
    numbered = sum(1 for line in body if _NOTE_ENTRY_RE.match(line))
    return NOTES_CONFIDENCE if numbered * 2 >= len(body) else UNCERTAIN_NOTES_CONFIDENCE


def notes_sections(a: Artifact) -> List[Tuple[int, int, float, ValidationMethod]]:
    """``(start, end, confidence, method)`` of notes sections in the current text."""
    lines = split_lines(a.payload)
    found: Dict[int, Tuple[float, ValidationMethod]] = {}
    hints = hints_of(a)
    regions = hints.regions_of(RegionType.NOTES, RegionType.FOOTNOTE_SECTION) if hints else []
    for region in regions:
        start = locate(a, region.line_range.start)
        if start is not None:
            found[start] = (region.confidence, ValidationMethod.PHASE_A)
    for number, line in enumerate(lines, start=1):
        if number not in found and _NOTES_HEADING_RE.match(heading_text(line)):
            end = section_end(lines, number)
            found[number] = (_notes_confidence(lines, number, end), ValidationMethod.PHASE_C)
    return [
        (start, section_end(lines, start), confidence, method)
        for start, (confidence, method) in sorted(found.items())
    ]


class _RemoveFootnotesEndnotesPass:
    name = CleaningStep.REMOVE_FOOTNOTES_ENDNOTES.pass_name
    step = CleaningStep.REMOVE_FOOTNOTES_ENDNOTES

    def __call__(self, a: Artifact) -> Artifact:
        threshold = configuration_of(a).footnote_confidence_threshold
        a = self._remove_sections(a, threshold)
        a = self._remove_definitions(a)
        return self._remove_markers(a, threshold)

    def _remove_sections(self, a: Artifact, threshold: float) -> Artifact:
        sections = notes_sections(a)
        for start, end, confidence, method in reversed(sections):
            a = guarded_cut(
                a,
                self.name,
                Section.NOTES,
                start,
                end,
                RemovalType.ENDNOTES,
                confidence=confidence,
                justification="notes section",
                validation_method=method,
                threshold=threshold,
            )
        return emit(a, self.name, a.payload, sections=len(sections))

    def _remove_definitions(self, a: Artifact) -> Artifact:
        lines = split_lines(a.payload)
        shielded = shielded_lines(lines)
        doomed = [
            number
            for number, line in enumerate(lines, start=1)
            if number not in shielded and _DEFINITION_RE.match(line)
        ]
        return cut_lines(
            a,
            self.name,
            doomed,
            RemovalType.FOOTNOTES,
            justification="footnote definition",
            confidence=1.0,
            validation_method=ValidationMethod.PHASE_A,
            per_line=True,
            definitions=len(doomed),
        )

    def _remove_markers(self, a: Artifact, threshold: float) -> Artifact:
        hints = hints_of(a)
        pattern = (hints.patterns.footnote_markers if hints else None) or detect_footnote_pattern(
            a.payload
        )
        rx = _usable(a, "footnote markers", pattern, threshold)
        if pattern is None or rx is None:
            return emit(a, self.name, a.payload, markers=0)
        keep = _is_asterisk_emphasis if pattern.style == "asterisk" else None
        lines, changes = strip_inline(split_lines(a.payload), rx, keep)
        record_inline(
            context_of(a),
            RemovalType.FOOTNOTES,
            changes,
            line_map_of(a),
            justification=f"{pattern.style} footnote marker",
            confidence=pattern.confidence,
        )
        logger.info("footnotes: %d marker line(s) changed", len(changes))
        return emit(a, self.name, "\n".join(lines), markers=len(changes))


remove_citations = register(_RemoveCitationsPass())
remove_footnotes_endnotes = register(_RemoveFootnotesEndnotesPass())
