"""Pure regex heuristics over document text.

Nothing here calls out or keeps state: identical input always yields an
identical result, so detectors are safe to re-run at any point of a run.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass
from functools import reduce
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ocr_cleaner.models import DetectedPattern, DetectedPatterns, PatternKind
from ocr_cleaner.text_utils import split_lines

logger = logging.getLogger(__name__)

MIN_MATCHES = 3
MAX_SAMPLES = 5
MAX_CANDIDATE_CHARS = 20
DEFAULT_MAX_EXCERPTS = 50

MIN_RUNNING_DOCUMENT_LINES = 50
MIN_RUNNING_SPREAD = 0.3
RUNNING_GAP_BOUNDS = (0.3, 2.5)
MIN_RUNNING_CHARS = 3
MAX_RUNNING_CHARS = 80
_NOT_RUNNING_OPENERS = ("#", "-", "*", "\"", "'", "“", "‘", "«", "–", "—")
_SECTION_LABEL_RE = re.compile(r"^(?:chapter|part)\s", re.I)

ROMAN_RE = r"(?=[ivxlcdm])m{0,3}(?:cm|cd|d?c{0,3})(?:xc|xl|l?x{0,3})(?:ix|iv|v?i{0,3})"
_ROMAN_MAP = {"i": 1, "v": 5, "x": 10, "l": 50, "c": 100, "d": 500, "m": 1000}

SUPERSCRIPT_DIGITS = "⁰¹²³⁴⁵⁶⁷⁸⁹"


@dataclass(frozen=True)
class _Family:
    style: str
    regex: str

    @property
    def compiled(self) -> re.Pattern[str]:
        return _compile(self.regex)


_COMPILED: dict[str, re.Pattern[str]] = {}


def _compile(regex: str) -> re.Pattern[str]:
    if regex not in _COMPILED:
        _COMPILED[regex] = re.compile(regex)
    return _COMPILED[regex]


PAGE_NUMBER_FAMILIES: Tuple[_Family, ...] = (
    _Family("plain", r"^\s*(\d{1,4})\s*$"),
    _Family("decoratedDash", r"^\s*[-–—]\s*(\d{1,4})\s*[-–—]\s*$"),
    _Family("bracketed", r"^\s*\[(\d{1,4})\]\s*$"),
    _Family("prefixedPage", r"^\s*[Pp]age\s+(\d{1,4})\s*$"),
    _Family("prefixedP", r"^\s*[Pp]\.\s*(\d{1,4})\s*$"),
    _Family("roman", rf"(?i)^\s*({ROMAN_RE})\s*$"),
)

CITATION_FAMILIES: Tuple[_Family, ...] = (
    _Family(
        "authorYear",
        r"\([A-Z][a-z]+(?:\s+(?:&|and)\s+[A-Z][a-z]+)?(?:\s+et\s+al\.)?,\s*\d{4}[a-z]?"
        r"(?:,\s*(?:p|pp)\.\s*\d+(?:[-–]\d+)?)?\)",
    ),
    _Family("numberedBracket", r"\[\d+(?:\s*[-–,]\s*\d+)*\]"),
)

FOOTNOTE_FAMILIES: Tuple[_Family, ...] = (
    _Family("markdownFootnote", r"\[\^\d+\]"),
    _Family("superscriptNumber", rf"(?<=[A-Za-z.,;:!?\"'”’)])[{SUPERSCRIPT_DIGITS}]+"),
    _Family("dagger", r"(?<=\S)[†‡]"),
    _Family("asterisk", r"(?<=[A-Za-z.,;:!?])\*(?=\s|$)"),
)

_EXCERPT_RE = re.compile(
    rf"[\[\]()]|[{SUPERSCRIPT_DIGITS}]|[†‡]"
)


def _roman_to_int(value: str) -> int:
    """Convert a Roman numeral to an integer."""

    def _step(acc: tuple[int, int], ch: str) -> tuple[int, int]:
        total, prev = acc
        val = _ROMAN_MAP.get(ch, 0)
        return (total - val, prev) if val < prev else (total + val, val)

    return reduce(_step, reversed(value.lower()), (0, 0))[0]


def _candidate_lines(text: str) -> List[str]:
    return [
        line for line in split_lines(text)
        if line.strip() and len(line.strip()) <= MAX_CANDIDATE_CHARS
    ]


def _line_matches(family: _Family, lines: Iterable[str]) -> List[str]:
    rx = family.compiled
    return [line.strip() for line in lines if rx.match(line)]


def _inline_matches(family: _Family, text: str) -> List[str]:
    return [m.group(0) for m in family.compiled.finditer(text)]


def _build(
    kind: PatternKind, family: _Family, matches: Sequence[str], ceiling: float, scale: int
) -> DetectedPattern:
    return DetectedPattern(
        kind=kind,
        style=family.style,
        regex=family.regex,
        confidence=round(min(len(matches) / scale, ceiling), 4),
        samples=list(matches[:MAX_SAMPLES]),
        match_count=len(matches),
    )


def detect_page_number_pattern(text: str) -> Optional[DetectedPattern]:
    """First page-number family with at least ``MIN_MATCHES`` standalone lines."""
    lines = _candidate_lines(text)
    for family in PAGE_NUMBER_FAMILIES:
        matches = _line_matches(family, lines)
        if len(matches) >= MIN_MATCHES:
            logger.debug("page numbers: %s family, %d matches", family.style, len(matches))
            return _build(PatternKind.PAGE_NUMBER, family, matches, 0.95, 20)
    return None


def detect_citation_pattern(text: str) -> Optional[DetectedPattern]:
    """Citation family with the most matches; ties keep the first family."""
    scored = [(family, _inline_matches(family, text)) for family in CITATION_FAMILIES]
    family, matches = max(scored, key=lambda fm: len(fm[1]))
    if len(matches) < MIN_MATCHES:
        return None
    logger.debug("citations: %s family, %d matches", family.style, len(matches))
    return _build(PatternKind.CITATION, family, matches, 0.9, 30)


def detect_footnote_pattern(text: str) -> Optional[DetectedPattern]:
    scored = [(family, _inline_matches(family, text)) for family in FOOTNOTE_FAMILIES]
    family, matches = max(scored, key=lambda fm: len(fm[1]))
    if len(matches) < MIN_MATCHES:
        return None
    return _build(PatternKind.FOOTNOTE, family, matches, 0.85, 20)


def _blocks(lines: Sequence[str]) -> List[List[Tuple[int, str]]]:
    """Blank-line separated blocks of ``(line index, stripped line)`` pairs."""

    def step(acc: List[List[Tuple[int, str]]], item: Tuple[int, str]):
        index, line = item
        if not line.strip():
            return acc if not acc or not acc[-1] else [*acc, []]
        head = acc[:-1] if acc else []
        tail = acc[-1] if acc else []
        return [*head, [*tail, (index, line.strip())]]

    return [b for b in reduce(step, enumerate(lines), [[]]) if b]


def _is_page_number_line(line: str) -> bool:
    return any(f.compiled.match(line) for f in PAGE_NUMBER_FAMILIES)


def _evenly_spread(positions: Sequence[int], total_lines: int) -> bool:
    """Whether ``positions`` run through the document at a steady pace."""
    if len(positions) < 2:
        return False
    if (positions[-1] - positions[0]) / total_lines < MIN_RUNNING_SPREAD:
        return False
    gaps = [b - a for a, b in zip(positions, positions[1:])]
    average = sum(gaps) / len(gaps)
    low, high = RUNNING_GAP_BOUNDS
    return all(low * average <= gap <= high * average for gap in gaps)


def detect_repeated_lines(
    text: str, min_repeats: int = MIN_MATCHES, max_words: int = 12
) -> Tuple[List[str], List[str]]:
    """Running headers and footers: short lines repeated across many blocks.

    Returns ``(headers, footers)``; a repeated line counts as a header when it
    opens blocks more often than it closes them. Only documents longer than
    ``MIN_RUNNING_DOCUMENT_LINES`` are scanned, and the repeats must recur at a
    steady interval across the document. Dialogue and list items never count.
    """
    lines = split_lines(text)
    if len(lines) <= MIN_RUNNING_DOCUMENT_LINES:
        return [], []
    blocks = _blocks(lines)
    firsts = Counter(b[0][1] for b in blocks if len(b) > 1)
    lasts = Counter(b[-1][1] for b in blocks if len(b) > 1)
    alone = Counter(b[0][1] for b in blocks if len(b) == 1)
    positions: Dict[str, List[int]] = {}
    for block in blocks:
        for index, line in block[:1] if len(block) == 1 else (block[0], block[-1]):
            positions.setdefault(line, []).append(index)

    def eligible(line: str) -> bool:
        return (
            MIN_RUNNING_CHARS <= len(line) <= MAX_RUNNING_CHARS
            and len(line.split()) <= max_words
            and any(c.isalpha() for c in line)
            and not _is_page_number_line(line)
            and not line.startswith(_NOT_RUNNING_OPENERS)
            and not _SECTION_LABEL_RE.match(line)
            and not line.endswith((".", "?", "!", ":", ";", ","))
        )

    totals = firsts + lasts + alone
    repeated = sorted(
        line
        for line, n in totals.items()
        if n >= min_repeats and eligible(line) and _evenly_spread(positions[line], len(lines))
    )
    headers = [line for line in repeated if firsts[line] + alone[line] >= lasts[line]]
    footers = [line for line in repeated if line not in headers]
    return headers, footers


def validate_regex_pattern(pattern: str) -> bool:
    """Return whether ``pattern`` compiles; never raises."""
    try:
        re.compile(pattern)
    except (re.error, TypeError) as exc:
        logger.warning("invalid regex %r: %s", pattern, exc)
        return False
    return True


def test_pattern(pattern: str, samples: Sequence[str]) -> float:
    """Fraction of ``samples`` matched by ``pattern``; 0.0 when unusable."""
    if not samples or not validate_regex_pattern(pattern):
        return 0.0
    rx = re.compile(pattern)
    return sum(1 for s in samples if rx.search(s)) / len(samples)


test_pattern.__test__ = False  # type: ignore[attr-defined]


def _is_excerpt_line(line: str) -> bool:
    stripped = line.strip()
    if not stripped:
        return False
    if len(stripped) <= 10 and any(c.isdigit() for c in stripped):
        return True
    if len(stripped) <= MAX_CANDIDATE_CHARS and _is_page_number_line(stripped):
        return True
    return bool(_EXCERPT_RE.search(stripped))


def extract_pattern_excerpts(text: str, max_excerpts: int = DEFAULT_MAX_EXCERPTS) -> str:
    """Noise-looking lines formatted ``Line N: ...`` in document order."""
    if max_excerpts <= 0:
        return ""
    picked = (
        f"Line {i}: {line.strip()}"
        for i, line in enumerate(split_lines(text), start=1)
        if _is_excerpt_line(line)
    )
    excerpts: List[str] = []
    for entry in picked:
        if len(excerpts) >= max_excerpts:
            break
        excerpts.append(entry)
    return "\n".join(excerpts)


def detect_all_patterns(text: str) -> DetectedPatterns:
    headers, footers = detect_repeated_lines(text)
    return DetectedPatterns(
        page_numbers=detect_page_number_pattern(text),
        citations=detect_citation_pattern(text),
        footnote_markers=detect_footnote_pattern(text),
        header_lines=headers,
        footer_lines=footers,
    )
