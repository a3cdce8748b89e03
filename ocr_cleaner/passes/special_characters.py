"""Character-level repair that leaves line structure untouched."""

from __future__ import annotations

import logging
import re
import unicodedata
from typing import List, Tuple

import ftfy

from ocr_cleaner.context import TransformationType
from ocr_cleaner.framework import Artifact, register
from ocr_cleaner.line_edits import to_original
from ocr_cleaner.models import LineRange
from ocr_cleaner.passes.run_meta import (
    context_of,
    emit,
    line_map_of,
    outside_inline_code,
    shielded_lines,
)
from ocr_cleaner.steps import CleaningStep
from ocr_cleaner.text_utils import contiguous_ranges, split_lines

logger = logging.getLogger(__name__)

_SPACE_TRANSLATION = str.maketrans(
    {
        "\u00a0": " ",  # non-breaking space
        "\u1680": " ",  # ogham space mark
        "\u2000": " ",  # en quad
        "\u2001": " ",  # em quad
        "\u2002": " ",  # en space
        "\u2003": " ",  # em space
        "\u2004": " ",  # three-per-em space
        "\u2005": " ",  # four-per-em space
        "\u2006": " ",  # six-per-em space
        "\u2007": " ",  # figure space
        "\u2008": " ",  # punctuation space
        "\u2009": " ",  # thin space
        "\u200a": " ",  # hair space
        "\u202f": " ",  # narrow no-break space
        "\u205f": " ",  # medium mathematical space
        "\u3000": " ",  # ideographic space
        "\ufeff": "",  # zero-width no-break space
        "\u200b": "",  # zero-width space
        "\u200c": "",  # zero-width non-joiner
        "\u200d": "",  # zero-width joiner
        "\u2060": "",  # word joiner
        "\u00ad": "",  # soft hyphen
        "\ufffd": "",  # replacement character
    }
)

_INNER_SPACES_RE = re.compile(r"(?<=\S)[ \t]{2,}(?=\S)")
_BOLD = "**"


def _drop_controls(line: str) -> str:
    if line.isprintable():
        return line
    return "".join(ch for ch in line if ch == "\t" or unicodedata.category(ch) != "Cc")


def _drop_stray_emphasis(line: str) -> str:
    """Remove the last ``**`` when a line has an unpaired one."""
    if line.count(_BOLD) % 2 == 0:
        return line
    head, _, tail = line.rpartition(_BOLD)
    return head + tail


def repair_line(line: str) -> str:
    """ftfy repair plus invisible-character and spacing cleanup of one line."""
    fixed = ftfy.fix_text(line, fix_line_breaks=False)
    fixed = _drop_controls(fixed.translate(_SPACE_TRANSLATION))
    fixed = outside_inline_code(fixed, lambda part: _INNER_SPACES_RE.sub(" ", part))
    fixed = outside_inline_code(fixed, _drop_stray_emphasis)
    return fixed.rstrip()


def clean_special_characters(text: str) -> Tuple[str, List[int]]:
    """Cleaned text and the 1-indexed lines that changed.

    Code fences, display math and tables are left as they are.
    """
    lines = split_lines(text)
    shielded = shielded_lines(lines)
    cleaned = [
        line if number in shielded else repair_line(line)
        for number, line in enumerate(lines, start=1)
    ]
    changed = [
        number
        for number, (before, after) in enumerate(zip(lines, cleaned), start=1)
        if before != after
    ]
    return "\n".join(cleaned), changed


class _CleanSpecialCharactersPass:
    name = CleaningStep.CLEAN_SPECIAL_CHARACTERS.pass_name
    step = CleaningStep.CLEAN_SPECIAL_CHARACTERS

    def __call__(self, a: Artifact) -> Artifact:
        text, changed = clean_special_characters(a.payload)
        removed = len(a.payload) - len(text)
        context = context_of(a)
        if changed and context is not None:
            line_map = line_map_of(a)
            context.record_transformation(
                TransformationType.SPECIAL_CHAR_REMOVAL,
                before=a.payload,
                after=text,
                description=(
                    f"repaired {len(changed)} line(s), {max(removed, 0)} character(s) removed"
                ),
                affected_ranges=[
                    LineRange(
                        start=to_original(line_map, start) if line_map else start,
                        end=to_original(line_map, end) if line_map else end,
                    )
                    for start, end in contiguous_ranges(changed)
                ],
            )
        logger.debug("special characters: %d line(s) repaired", len(changed))
        return emit(a, self.name, text, lines_changed=len(changed), characters_removed=removed)


clean_special_characters_pass = register(_CleanSpecialCharactersPass())
