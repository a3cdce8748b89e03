"""Small pure helpers over document text.

Lines are addressed 1-indexed everywhere in the package; helpers that take or
return line numbers follow that convention.
"""

from __future__ import annotations

import re
from functools import reduce
from typing import Callable, Iterable, List, Sequence, Tuple

CHARS_PER_TOKEN = 4

_WS_RE = re.compile(r"\s+")
_BLANK_SPLIT_RE = re.compile(r"\n[ \t]*\n+")
_SENTENCE_BOUNDARY_RE = re.compile(
    r"(?:(?<=[.!?])|(?<=[.!?][\"')\]”’]))\s+(?=[\"'(\[“‘]?[A-Z0-9])"
)
_HEADING_RE = re.compile(r"^\s{0,3}#{1,6}\s")
_LIST_ITEM_RE = re.compile(r"^\s*(?:[-*+•]|\d{1,3}[.)])\s+")
_TABLE_RE = re.compile(r"^\s*\|")
_FENCE_RE = re.compile(r"^\s*(?:```|~~~)")
_QUOTE_RE = re.compile(r"^\s*>")


def pipe(value: str, *funcs: Callable[[str], str]) -> str:
    """Apply ``funcs`` to ``value`` left to right."""
    return reduce(lambda acc, fn: fn(acc), funcs, value)


def word_count(text: str) -> int:
    return len(text.split())


def split_lines(text: str) -> List[str]:
    return text.split("\n")


def line_count(text: str) -> int:
    return len(split_lines(text)) if text else 0


def split_paragraphs(text: str) -> List[str]:
    """Return blank-line separated paragraphs with surrounding whitespace removed."""
    return [p.strip("\n") for p in _BLANK_SPLIT_RE.split(text) if p.strip()]


def join_paragraphs(paragraphs: Iterable[str]) -> str:
    return "\n\n".join(paragraphs)


def split_sentences(paragraph: str) -> List[str]:
    return [s for s in _SENTENCE_BOUNDARY_RE.split(paragraph.strip()) if s]


def collapse_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def is_structural_line(line: str) -> bool:
    """Headings, list items, tables, fences and quotes keep their own line."""
    return any(
        rx.match(line)
        for rx in (_HEADING_RE, _LIST_ITEM_RE, _TABLE_RE, _FENCE_RE, _QUOTE_RE)
    )


def is_fence(line: str) -> bool:
    return bool(_FENCE_RE.match(line))


def numbered_lines(lines: Sequence[str], start: int = 1) -> List[str]:
    return [f"{i}: {line}" for i, line in enumerate(lines, start=start)]


def sample_lines(lines: Sequence[str], token_limit: int, start: int = 1) -> List[str]:
    """Take lines from ``start`` until roughly ``token_limit`` tokens are used.

    Lines are never cut; at least one line is returned when any exist.
    """
    budget = token_limit * CHARS_PER_TOKEN
    taken: List[str] = []
    used = 0
    for line in lines[start - 1 :]:
        cost = len(line) + 1
        if taken and used + cost > budget:
            break
        taken.append(line)
        used += cost
    return taken


def sample_document(text: str, token_limit: int) -> str:
    """Line-numbered excerpt from the start of ``text`` within ``token_limit``."""
    lines = split_lines(text)
    return "\n".join(numbered_lines(sample_lines(lines, token_limit)))


def sample_head_middle_tail(text: str, token_limit: int) -> Tuple[str, str, str]:
    """Three excerpts (beginning, middle, end), each within a third of the budget."""
    lines = split_lines(text)
    third = max(token_limit // 3, 1)
    head = sample_lines(lines, third)
    mid_start = max(len(lines) // 2 - len(head) // 2, 1)
    middle = sample_lines(lines, third, start=mid_start)
    tail = list(reversed(sample_lines(list(reversed(lines)), third)))
    return "\n".join(head), "\n".join(middle), "\n".join(tail)


def remove_line_numbers(lines: Sequence[str], doomed: Iterable[int]) -> List[str]:
    """Drop the 1-indexed ``doomed`` lines from ``lines``."""
    drop = set(doomed)
    return [line for i, line in enumerate(lines, start=1) if i not in drop]


def squeeze_blank_lines(text: str) -> str:
    """Collapse runs of 3+ newlines left behind by removals."""
    return re.sub(r"\n{3,}", "\n\n", text).strip("\n")


def preview(text: str, limit: int = 100) -> str:
    flat = text.replace("\n", "\\n")
    return flat if len(flat) <= limit else flat[: limit - 3] + "..."


def contiguous_ranges(numbers: Iterable[int]) -> List[Tuple[int, int]]:
    """Group sorted line numbers into inclusive ``(start, end)`` runs."""

    def step(acc: List[Tuple[int, int]], n: int) -> List[Tuple[int, int]]:
        if acc and acc[-1][1] + 1 == n:
            return [*acc[:-1], (acc[-1][0], n)]
        return [*acc, (n, n)]

    return reduce(step, sorted(set(numbers)), [])
