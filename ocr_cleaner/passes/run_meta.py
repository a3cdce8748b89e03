"""Accessors for the run state carried in ``Artifact.meta``.

Keys written by the orchestrator before the passes run:

- ``context``: the run's ``AccumulatedContext``
- ``configuration``: the ``CleaningConfiguration``
- ``content_type``: the resolved ``ContentType``
- ``hints`` / ``boundaries``: reconnaissance and boundary results
- ``services`` / ``control``: AI services and cancellation/progress channel
- ``line_map``: input line number of every current line; ``None`` once a
  pass has rewritten line structure
- ``anchors``: input line number -> text, captured before reflow
- ``metadata``: ``DocumentMetadata`` once extracted

Passes run standalone (tests, scripts) with any of these missing.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set

from ocr_cleaner.boundary_detection import RECONNAISSANCE_EVIDENCE, back_matter_type, heading_text
from ocr_cleaner.config import CleaningConfiguration
from ocr_cleaner.content_types import ContentType, resolve
from ocr_cleaner.context import AccumulatedContext, FlagReason, RemovalType, ValidationMethod
from ocr_cleaner.control import RunControl
from ocr_cleaner.framework import Artifact, with_metrics
from ocr_cleaner.line_edits import (
    LineMap,
    drop_lines,
    initial_line_map,
    record_line_removals,
    to_current,
)
from ocr_cleaner.models import BoundaryDetectionResult, LineRange, StructureHints
from ocr_cleaner.section_guard import Section, SectionCheck, check_section
from ocr_cleaner.text_utils import collapse_whitespace, is_fence, split_lines

_HEADING_RE = re.compile(r"^\s{0,3}#{1,6}\s")
_TABLE_LINE_RE = re.compile(r"^\s*\|.*\|\s*$")
_DISPLAY_MATH_RE = re.compile(r"^\s*\$\$")
_INLINE_SHIELD_RE = re.compile(r"(`[^`\n]*`|\$[^$\n]+\$)")


def context_of(a: Artifact) -> Optional[AccumulatedContext]:
    return a.option("context")


def configuration_of(a: Artifact) -> CleaningConfiguration:
    return a.option("configuration") or CleaningConfiguration()


def hints_of(a: Artifact) -> Optional[StructureHints]:
    return a.option("hints")


def boundaries_of(a: Artifact) -> Optional[BoundaryDetectionResult]:
    return a.option("boundaries")


def control_of(a: Artifact) -> Optional[RunControl]:
    return a.option("control")


def services_of(a: Artifact) -> Any:
    return a.option("services")


def content_type_of(a: Artifact) -> ContentType:
    explicit = a.option("content_type")
    if explicit is not None:
        return explicit
    hints = hints_of(a)
    detected = hints.detected_content_type if hints else None
    return resolve(configuration_of(a).content_type, detected)


def line_map_of(a: Artifact) -> Optional[LineMap]:
    """Map for the current text; identity when none was ever seeded."""
    if "line_map" not in a.meta:
        return initial_line_map(a.payload)
    line_map = a.meta["line_map"]
    if line_map is None or len(line_map) != len(split_lines(a.payload)):
        return None
    return tuple(line_map)


def emit(a: Artifact, name: str, text: str, line_map: Any = ..., **metrics: Any) -> Artifact:
    """New artifact with ``text``, metrics under ``name`` and, if given, a new line map."""
    meta = with_metrics(a.meta, name, **metrics)
    if line_map is not ...:
        meta = {**meta, "line_map": line_map}
    return Artifact(payload=text, meta=meta)


def region_lines(a: Artifact, region: LineRange) -> List[int]:
    """Current lines that came from input lines inside ``region``."""
    line_map = line_map_of(a)
    if line_map is None:
        return []
    return [
        number
        for number, original in enumerate(line_map, start=1)
        if region.start <= original <= region.end
    ]


def boundary_validation(boundaries: BoundaryDetectionResult) -> ValidationMethod:
    """PHASE_A for AI/reconnaissance boundaries, PHASE_C for keyword scans."""
    evidence = [*boundaries.front_evidence, *boundaries.back_evidence]
    if boundaries.used_ai or RECONNAISSANCE_EVIDENCE in evidence:
        return ValidationMethod.PHASE_A
    return ValidationMethod.PHASE_C


def capture_anchors(a: Artifact, originals: Iterable[int]) -> Dict[int, str]:
    """Text of the first non-blank current line at or after each input line."""
    line_map = line_map_of(a)
    if line_map is None:
        return dict(a.option("anchors") or {})
    lines = split_lines(a.payload)
    anchors: Dict[int, str] = {}
    for original in originals:
        index = to_current(line_map, original)
        while index is not None and index <= len(lines) and not lines[index - 1].strip():
            index += 1
        if index is not None and index <= len(lines):
            anchors[original] = lines[index - 1].strip()
    return {**(a.option("anchors") or {}), **anchors}


def locate(a: Artifact, original: int) -> Optional[int]:
    """Current line standing for input line ``original``.

    Uses the line map while it is valid; afterwards the last current line
    starting with the captured anchor text.
    """
    line_map = line_map_of(a)
    if line_map is not None:
        return to_current(line_map, original)
    anchor = (a.option("anchors") or {}).get(original)
    if not anchor:
        return None
    key = collapse_whitespace(anchor)
    hits = [
        i for i, line in enumerate(split_lines(a.payload), start=1)
        if collapse_whitespace(line).startswith(key)
    ]
    return hits[-1] if hits else None


def shielded_lines(lines: List[str]) -> Set[int]:
    """1-indexed lines inside code fences, display math or tables."""
    shielded: Set[int] = set()
    fence = False
    math = False
    for number, line in enumerate(lines, start=1):
        if is_fence(line):
            shielded.add(number)
            fence = not fence
            continue
        if not fence and _DISPLAY_MATH_RE.match(line):
            shielded.add(number)
            stripped = line.strip()
            if not (len(stripped) > 4 and stripped.endswith("$$")):
                math = not math
            continue
        if fence or math or _TABLE_LINE_RE.match(line):
            shielded.add(number)
    return shielded


def outside_inline_code(line: str, fn: Callable[[str], str]) -> str:
    """Apply ``fn`` to the parts of ``line`` outside inline code and math."""
    parts = _INLINE_SHIELD_RE.split(line)
    return "".join(part if i % 2 else fn(part) for i, part in enumerate(parts))


def flag_rejection(context: Optional[AccumulatedContext], check: SectionCheck) -> None:
    if context is None:
        return
    context.flag_content(
        FlagReason.POTENTIAL_DATA_LOSS,
        f"{check.section.value} kept: {check.explanation}",
        line_range=LineRange(start=max(check.start, 1), end=max(check.end, check.start, 1)),
    )
    context.add_warning(f"{check.section.value} not removed: {check.explanation}")


def flag_low_confidence(
    context: Optional[AccumulatedContext], what: str, confidence: float, threshold: float
) -> None:
    if context is None:
        return
    note = f"{what} kept: confidence {confidence:.2f} below threshold {threshold:.2f}"
    context.flag_content(
        FlagReason.PRESERVED_DESPITE_LOW_CONFIDENCE, note, confidence=confidence
    )
    context.add_warning(note)


def cut_lines(
    a: Artifact,
    name: str,
    doomed: Iterable[int],
    removal_type: RemovalType,
    *,
    justification: str,
    confidence: float = 1.0,
    validation_method: ValidationMethod = ValidationMethod.NO_VALIDATION,
    per_line: bool = False,
    **metrics: Any,
) -> Artifact:
    """Drop current lines ``doomed``, record the removals, carry the line map."""
    numbers = sorted(set(doomed))
    if not numbers:
        return emit(a, name, a.payload, removed_lines=0, records=0, **metrics)
    line_map = line_map_of(a)
    records = record_line_removals(
        context_of(a),
        removal_type,
        split_lines(a.payload),
        numbers,
        justification=justification,
        confidence=confidence,
        validation_method=validation_method,
        per_line=per_line,
        line_map=line_map,
    )
    text, kept = drop_lines(a.payload, line_map or initial_line_map(a.payload), numbers)
    return emit(
        a,
        name,
        text,
        line_map=kept if line_map is not None else None,
        removed_lines=len(numbers),
        records=records,
        **metrics,
    )


def guarded_cut(
    a: Artifact,
    name: str,
    section: Section,
    start: int,
    end: int,
    removal_type: RemovalType,
    *,
    confidence: float,
    justification: str,
    validation_method: ValidationMethod,
    threshold: Optional[float] = None,
    **metrics: Any,
) -> Artifact:
    """Cut current lines ``start..end`` if the section passes its checks.

    Sections below ``threshold`` or rejected by the section guard are kept and
    flagged for review.
    """
    context = context_of(a)
    if threshold is not None and confidence < threshold:
        flag_low_confidence(context, section.value, confidence, threshold)
        return emit(a, name, a.payload, removed_lines=0, preserved="lowConfidence", **metrics)
    check = check_section(section, split_lines(a.payload), start, end, confidence)
    if not check.accepted:
        flag_rejection(context, check)
        reason = check.reason.value if check.reason else "rejected"
        return emit(a, name, a.payload, removed_lines=0, preserved=reason, **metrics)
    return cut_lines(
        a,
        name,
        range(start, end + 1),
        removal_type,
        justification=justification,
        confidence=confidence,
        validation_method=validation_method,
        **metrics,
    )


def section_end(lines: Sequence[str], start: int) -> int:
    """Last line of the section opened at ``start``: up to the next heading.

    Single-letter headings (index letter groups) do not end a section.
    """
    for number in range(start + 1, len(lines) + 1):
        line = lines[number - 1]
        if back_matter_type(line) is not None:
            return number - 1
        if _HEADING_RE.match(line) and len(heading_text(line)) > 1:
            return number - 1
    return len(lines)
