"""Line removal that keeps track of where surviving lines came from.

Boundaries and reconnaissance regions address lines of the input document.
Removal passes run one after another, so each keeps a line map (original
line number of every current line) alongside the text.
"""

from __future__ import annotations

from bisect import bisect_left
from typing import Iterable, List, Optional, Sequence, Tuple

from ocr_cleaner.context import AccumulatedContext, RemovalType, ValidationMethod
from ocr_cleaner.models import LineRange
from ocr_cleaner.text_utils import contiguous_ranges, split_lines

LineMap = Tuple[int, ...]


def initial_line_map(text: str) -> LineMap:
    return tuple(range(1, len(split_lines(text)) + 1))


def to_current(line_map: Sequence[int], original: int) -> Optional[int]:
    """Current 1-indexed line holding ``original`` or the first line after it."""
    index = bisect_left(line_map, original)
    return index + 1 if index < len(line_map) else None


def to_original(line_map: Sequence[int], current: int) -> int:
    return line_map[current - 1] if 0 < current <= len(line_map) else current


def drop_lines(text: str, line_map: Sequence[int], doomed: Iterable[int]) -> Tuple[str, LineMap]:
    """Remove current lines ``doomed``; collapse the blank runs this leaves."""
    drop = set(doomed)
    kept: List[Tuple[str, int]] = []
    for number, (line, original) in enumerate(zip(split_lines(text), line_map), start=1):
        if number in drop:
            continue
        blank = not line.strip()
        if blank and (not kept or not kept[-1][0].strip()):
            continue
        kept.append((line, original))
    while kept and not kept[-1][0].strip():
        kept.pop()
    return "\n".join(line for line, _ in kept), tuple(original for _, original in kept)


def record_line_removals(
    context: AccumulatedContext | None,
    removal_type: RemovalType,
    lines: Sequence[str],
    numbers: Iterable[int],
    *,
    justification: str,
    confidence: float = 1.0,
    validation_method: ValidationMethod = ValidationMethod.NO_VALIDATION,
    per_line: bool = False,
    line_map: Sequence[int] | None = None,
) -> int:
    """Record removals of current ``numbers``; one record per contiguous run.

    With ``line_map`` the recorded ranges use input-document line numbers.
    Returns the number of records written.
    """
    if context is None:
        return 0
    runs = [(n, n) for n in sorted(set(numbers))] if per_line else contiguous_ranges(numbers)
    for start, end in runs:
        context.record_removal(
            removal_type,
            LineRange(start=to_original(line_map, start), end=to_original(line_map, end))
            if line_map is not None
            else LineRange(start=start, end=end),
            removed_text="\n".join(lines[start - 1 : end]),
            justification=justification,
            confidence=confidence,
            validation_method=validation_method,
        )
    return len(runs)
