"""Remove material ahead of the body: front matter, contents, auxiliary lists.

Boundaries and reconnaissance regions are expressed in input line numbers
and translated through the line map; without hints the table of contents and
auxiliary lists are found by their headings and entry shapes.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from ocr_cleaner.boundary_detection import heading_text
from ocr_cleaner.context import RemovalType, ValidationMethod
from ocr_cleaner.framework import Artifact, register
from ocr_cleaner.models import LineRange, RegionType
from ocr_cleaner.passes.run_meta import (
    boundaries_of,
    boundary_validation,
    configuration_of,
    emit,
    guarded_cut,
    hints_of,
    region_lines,
)
from ocr_cleaner.section_guard import Section
from ocr_cleaner.steps import CleaningStep
from ocr_cleaner.text_utils import split_lines

logger = logging.getLogger(__name__)

SCAN_FRACTION = 0.4
MAX_GAP = 2
MIN_ENTRIES = 3

_TOC_HEADING_RE = re.compile(r"^(?:table of )?contents$", re.I)
_TOC_ENTRY_RE = re.compile(
    r"^.{2,}?(?:\s*(?:\.\s?){2,}\s*(?:\d{1,4}|[ivxlcIVXLC]{1,7})|\s+\d{1,4})$"
)
_BARE_HEADING_RE = re.compile(r"^(?:chapter|part|book|section)\s+\S+$", re.I)

_AUX_HEADING_RE = re.compile(
    r"^(?:list of (?:figures|illustrations|plates|maps|charts|diagrams|tables|exhibits"
    r"|abbreviations|acronyms|symbols|contributors|authors)|abbreviations|illustrations"
    r"|contributors)$",
    re.I,
)
_AUX_ENTRY_RES = (
    re.compile(
        r"^(?:figure|fig\.|table|plate|map|chart|diagram|exhibit|illustration)\s+"
        r"[\divxlc]+(?:[.\-]\d+)*\b",
        re.I,
    ),
    re.compile(r"^[A-Z][A-Za-z0-9&./]{0,11}\s+[-–—:=]\s+\S"),
    re.compile(r"^[A-Z]{2,10}\s{2,}\S"),
    re.compile(r"^[A-Z][\w.'-]+(?:\s+[A-Z][\w.'-]+){1,4},\s+\S"),
)

_AUX_REGIONS = (
    RegionType.LIST_OF_FIGURES,
    RegionType.LIST_OF_TABLES,
    RegionType.LIST_OF_ABBREVIATIONS,
)


@dataclass(frozen=True)
class ListBlock:
    """A heading followed by entry lines; current 1-indexed line numbers."""

    start: int
    end: int
    entries: int
    others: int

    @property
    def confidence(self) -> float:
        return round(0.6 + 0.3 * self.entries / max(self.entries + self.others, 1), 2)


def is_toc_entry(line: str) -> bool:
    text = line.strip().lstrip("#").strip()
    return bool(_TOC_ENTRY_RE.match(text)) and not _BARE_HEADING_RE.match(text)


def is_aux_entry(line: str) -> bool:
    text = line.strip().lstrip("-*").strip()
    return is_toc_entry(text) or any(rx.match(text) for rx in _AUX_ENTRY_RES)


def scan_list_block(
    lines: Sequence[str], heading: int, is_entry: Callable[[str], bool]
) -> Optional[ListBlock]:
    """Entries following the heading at ``heading``, tolerating short gaps."""
    last = heading
    entries = others = gap = 0
    pending = 0
    for number in range(heading + 1, len(lines) + 1):
        line = lines[number - 1]
        if not line.strip():
            continue
        if is_entry(line):
            entries += 1
            others += pending
            pending = gap = 0
            last = number
            continue
        gap += 1
        pending += 1
        if gap > MAX_GAP:
            break
    if entries < MIN_ENTRIES:
        return None
    return ListBlock(start=heading, end=last, entries=entries, others=others)


def find_blocks(
    lines: Sequence[str], heading_re: re.Pattern[str], is_entry: Callable[[str], bool]
) -> List[ListBlock]:
    limit = max(int(len(lines) * SCAN_FRACTION), 1)
    blocks = [
        scan_list_block(lines, number, is_entry)
        for number, line in enumerate(lines[:limit], start=1)
        if heading_re.match(heading_text(line))
    ]
    found = [b for b in blocks if b is not None]
    # Nested headings produce overlapping blocks; keep the first of each.
    return [b for i, b in enumerate(found) if not any(o.end >= b.start for o in found[:i])]


class _RemoveFrontMatterPass:
    name = CleaningStep.REMOVE_FRONT_MATTER.pass_name
    step = CleaningStep.REMOVE_FRONT_MATTER

    def __call__(self, a: Artifact) -> Artifact:
        boundaries = boundaries_of(a)
        end_line = boundaries.front_matter_end_line if boundaries else None
        if boundaries is None or end_line is None:
            return emit(a, self.name, a.payload, removed_lines=0)
        doomed = region_lines(a, LineRange(start=1, end=end_line))
        if not doomed:
            return emit(a, self.name, a.payload, removed_lines=0)
        evidence = "; ".join(boundaries.front_evidence) or "front matter boundary"
        logger.info(
            "front matter: boundary at input line %d (confidence %.2f)",
            end_line,
            boundaries.confidence,
        )
        return guarded_cut(
            a,
            self.name,
            Section.FRONT_MATTER,
            1,
            max(doomed),
            RemovalType.FRONT_MATTER,
            confidence=boundaries.confidence,
            justification=f"front matter ends at line {end_line}: {evidence}",
            validation_method=boundary_validation(boundaries),
            threshold=configuration_of(a).boundary_confidence_threshold,
            boundary=end_line,
        )


def _cut_regions(
    a: Artifact,
    name: str,
    section: Section,
    removal_type: RemovalType,
    region_types: Sequence[RegionType],
    justification: str,
) -> Optional[Artifact]:
    """Cut reconnaissance regions of ``region_types``; None when there are none."""
    hints = hints_of(a)
    regions = hints.regions_of(*region_types) if hints else []
    if not regions:
        return None
    threshold = configuration_of(a).boundary_confidence_threshold
    for region in sorted(regions, key=lambda r: r.line_range.start, reverse=True):
        current = region_lines(a, region.line_range)
        if not current:
            continue
        a = guarded_cut(
            a,
            name,
            section,
            min(current),
            max(current),
            removal_type,
            confidence=region.confidence,
            justification=f"{justification} at input lines {region.line_range}",
            validation_method=ValidationMethod.PHASE_A,
            threshold=threshold,
        )
    return a


def _cut_blocks(
    a: Artifact,
    name: str,
    section: Section,
    removal_type: RemovalType,
    blocks: Sequence[ListBlock],
    justification: str,
) -> Artifact:
    threshold = configuration_of(a).boundary_confidence_threshold
    for block in sorted(blocks, key=lambda b: b.start, reverse=True):
        a = guarded_cut(
            a,
            name,
            section,
            block.start,
            block.end,
            removal_type,
            confidence=block.confidence,
            justification=f"{justification} ({block.entries} entries)",
            validation_method=ValidationMethod.PHASE_C,
            threshold=threshold,
        )
    return a


class _RemoveTableOfContentsPass:
    name = CleaningStep.REMOVE_TABLE_OF_CONTENTS.pass_name
    step = CleaningStep.REMOVE_TABLE_OF_CONTENTS

    def __call__(self, a: Artifact) -> Artifact:
        hinted = _cut_regions(
            a,
            self.name,
            Section.TABLE_OF_CONTENTS,
            RemovalType.TABLE_OF_CONTENTS,
            (RegionType.TABLE_OF_CONTENTS,),
            "table of contents",
        )
        if hinted is not None:
            return hinted
        blocks = find_blocks(split_lines(a.payload), _TOC_HEADING_RE, is_toc_entry)[:1]
        logger.debug("table of contents: %d candidate block(s)", len(blocks))
        return _cut_blocks(
            a,
            self.name,
            Section.TABLE_OF_CONTENTS,
            RemovalType.TABLE_OF_CONTENTS,
            blocks,
            "contents heading followed by page-numbered entries",
        )


class _RemoveAuxiliaryListsPass:
    name = CleaningStep.REMOVE_AUXILIARY_LISTS.pass_name
    step = CleaningStep.REMOVE_AUXILIARY_LISTS

    def __call__(self, a: Artifact) -> Artifact:
        hinted = _cut_regions(
            a,
            self.name,
            Section.AUXILIARY_LIST,
            RemovalType.AUXILIARY_LIST,
            _AUX_REGIONS,
            "auxiliary list",
        )
        if hinted is not None:
            return hinted
        blocks = find_blocks(split_lines(a.payload), _AUX_HEADING_RE, is_aux_entry)
        logger.debug("auxiliary lists: %d candidate block(s)", len(blocks))
        return _cut_blocks(
            a,
            self.name,
            Section.AUXILIARY_LIST,
            RemovalType.AUXILIARY_LIST,
            blocks,
            "list heading followed by figure, table or abbreviation entries",
        )


remove_front_matter = register(_RemoveFrontMatterPass())
remove_table_of_contents = register(_RemoveTableOfContentsPass())
remove_auxiliary_lists = register(_RemoveAuxiliaryListsPass())
