"""Shared plumbing for word-preserving text transforms (reflow, optimization)."""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import reduce
from typing import List, Sequence, Tuple

from ocr_cleaner.models import LineRange
from ocr_cleaner.text_utils import CHARS_PER_TOKEN, is_fence, split_lines


@dataclass(frozen=True)
class ProcessingResult:
    text: str
    input_word_count: int
    output_word_count: int
    word_count_preserved: bool
    used_ai: bool = False
    warnings: List[str] = field(default_factory=list)
    lines_joined: int = 0
    paragraphs_split: int = 0
    paragraphs_in: int = 0
    paragraphs_out: int = 0


@dataclass(frozen=True)
class Chunk:
    start: int
    end: int
    text: str

    @property
    def line_range(self) -> LineRange:
        return LineRange(start=self.start, end=self.end)


def paragraph_blocks(lines: Sequence[str]) -> List[Tuple[int, int]]:
    """Inclusive 1-indexed line spans of blank-line separated blocks.

    Blank lines inside a code fence do not end a block.
    """
    blocks: List[Tuple[int, int]] = []
    start: int | None = None
    in_fence = False
    for number, line in enumerate(lines, start=1):
        if is_fence(line):
            in_fence = not in_fence
        if not line.strip() and not in_fence:
            if start is not None:
                blocks.append((start, number - 1))
                start = None
            continue
        if start is None:
            start = number
    if start is not None:
        blocks.append((start, len(lines)))
    return blocks


def chunk_text(text: str, token_limit: int) -> List[Chunk]:
    """Pack whole blocks into chunks of roughly ``token_limit`` tokens.

    A block larger than the budget becomes a chunk of its own.
    """
    lines = split_lines(text)
    budget = token_limit * CHARS_PER_TOKEN

    def cost(block: Tuple[int, int]) -> int:
        return sum(len(line) + 1 for line in lines[block[0] - 1 : block[1]])

    def step(acc: List[Tuple[int, int, int]], block: Tuple[int, int]) -> List[Tuple[int, int, int]]:
        size = cost(block)
        if acc and acc[-1][2] + size <= budget:
            start, _, used = acc[-1]
            return [*acc[:-1], (start, block[1], used + size)]
        return [*acc, (block[0], block[1], size)]

    packed = reduce(step, paragraph_blocks(lines), [])
    return [Chunk(start, end, "\n".join(lines[start - 1 : end])) for start, end, _ in packed]


def join_chunks(texts: Sequence[str]) -> str:
    return "\n\n".join(t.strip("\n") for t in texts if t.strip())
