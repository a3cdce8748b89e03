"""Assemble the final document: title header, metadata block, chapter markers
and end marker around the cleaned body.

Chapter headings are detected on the current text, never taken from line
numbers recorded before earlier passes changed it. Re-running the pass on
its own output replaces the previous header and end marker.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from importlib import import_module
from typing import Any, Dict, List, Optional, Tuple, cast

from ocr_cleaner.config import ChapterMarkerStyle, EndMarkerStyle, MetadataFormat
from ocr_cleaner.context import TransformationType
from ocr_cleaner.framework import Artifact, register
from ocr_cleaner.models import DocumentMetadata
from ocr_cleaner.passes.run_meta import configuration_of, context_of, emit, shielded_lines
from ocr_cleaner.steps import CleaningStep
from ocr_cleaner.text_utils import split_lines

yaml = cast(Any, import_module("yaml"))

logger = logging.getLogger(__name__)

SEPARATOR = "---"

_NUMBER_WORDS = (
    "one|two|three|four|five|six|seven|eight|nine|ten|eleven|twelve|thirteen|fourteen"
    "|fifteen|sixteen|seventeen|eighteen|nineteen|twenty"
)
_CHAPTER_RES: Tuple[re.Pattern[str], ...] = (
    re.compile(r"^#{1,2}\s*chapter\s+(?:\d+|[ivxlc]+|\w+)[.:\s]?(.*)$", re.I),
    re.compile(r"^#{1,2}\s+(\d{1,3})[.:\s]+(.+)$"),
    re.compile(r"^#{1,2}\s+([IVXLC]+)[.:\s]+(.+)$"),
    re.compile(r"^#{1,2}\s+(\d{1,3})\s*$"),
)
_PART_RE = re.compile(
    rf"^#{{1,2}}\s*(?:part|book|volume)\s+(?:\d+|[ivxlc]+|{_NUMBER_WORDS})[.:\s]?(.*)$", re.I
)
_NOT_CHAPTERS = (
    "# notes",
    "# index",
    "# appendix",
    "# bibliography",
    "# glossary",
    "# references",
    "# acknowledgment",
    "# about the author",
    "# contents",
    "# table of contents",
)
_HASHES_RE = re.compile(r"^#+\s*")
_END_MARKER_RE = re.compile(
    r"^(?:\*\*\*(?: <!-- END OF .* -->)?|\[END\]|<!-- END OF DOCUMENT: .* -->"
    r"|<END_DOCUMENT(?: author=\".*\")?>|---)$"
)
_HEADER_RE = re.compile(r"^# [^a-z]+$")
_METADATA_START_RE = re.compile(r"^(?:---|\{|\*\*\w[\w ]*:\*\*)")
_INSERTED_MARKER_RE = re.compile(
    r"^(?:<!-- (?:PART|CHAPTER): .* -->|<PART>.*</PART>|<CHAPTER>.*</CHAPTER>)$"
)
_MARKDOWN_LABELS = (
    ("title", "Title"),
    ("subtitle", "Subtitle"),
    ("author", "Author"),
    ("translator", "Translator"),
    ("editor", "Editor"),
    ("publisher", "Publisher"),
    ("publish_date", "Published"),
    ("isbn", "ISBN"),
    ("language", "Language"),
)


# ---------------------------------------------------------------------------
# Header and metadata
# ---------------------------------------------------------------------------


def title_header(metadata: DocumentMetadata) -> str:
    """``# TITLE[: SUBTITLE] (AUTHOR)``, upper-cased."""
    title = metadata.title.upper()
    if metadata.subtitle:
        title += f": {metadata.subtitle.upper()}"
    header = f"# {title}"
    if metadata.author:
        header += f" ({metadata.author.upper()})"
    return header


def format_metadata(metadata: DocumentMetadata, fmt: MetadataFormat) -> str:
    fields = metadata.present_fields()
    if fmt is MetadataFormat.JSON:
        return json.dumps(fields, indent=2, sort_keys=True, ensure_ascii=False)
    if fmt is MetadataFormat.MARKDOWN:
        return "\n".join(
            f"**{label}:** {fields[key]}" for key, label in _MARKDOWN_LABELS if key in fields
        )
    body = yaml.safe_dump(fields, sort_keys=False, allow_unicode=True, default_flow_style=False)
    return f"{SEPARATOR}\n{body}{SEPARATOR}"


def end_marker(style: EndMarkerStyle, metadata: DocumentMetadata) -> str:
    if style is EndMarkerStyle.TOKEN_WITH_AUTHOR and not metadata.author:
        style = EndMarkerStyle.TOKEN
    markers: Dict[EndMarkerStyle, str] = {
        EndMarkerStyle.NONE: "",
        EndMarkerStyle.MINIMAL: "***",
        EndMarkerStyle.SIMPLE: "[END]",
        EndMarkerStyle.STANDARD: f"*** <!-- END OF {metadata.title.upper()} -->",
        EndMarkerStyle.HTML_COMMENT: f"<!-- END OF DOCUMENT: {metadata.title} -->",
        EndMarkerStyle.MARKDOWN_HR: "---",
        EndMarkerStyle.TOKEN: "<END_DOCUMENT>",
        EndMarkerStyle.TOKEN_WITH_AUTHOR: f'<END_DOCUMENT author="{metadata.author}">',
    }
    return markers[style]


# ---------------------------------------------------------------------------
# Chapter markers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Heading:
    index: int
    title: str


def _chapter_title(line: str, rx_index: int) -> str:
    text = _HASHES_RE.sub("", line).strip()
    if rx_index == 0:
        _, sep, after = text.partition(":")
        return after.strip() if sep and after.strip() else text
    if rx_index == 3:
        return f"Chapter {text}"
    number, rest = re.match(r"^(\S+?)[.:\s]+(.*)$", text).groups()  # type: ignore[union-attr]
    return rest.strip() or f"Chapter {number}"


def chapter_headings(lines: List[str]) -> List[Heading]:
    """Markdown chapter headings (0-indexed) outside code, math and tables."""
    shielded = shielded_lines(lines)
    found: List[Heading] = []
    for index, line in enumerate(lines):
        stripped = line.strip()
        if not stripped.startswith("#") or index + 1 in shielded:
            continue
        lowered = stripped.lower()
        if any(word in lowered for word in _NOT_CHAPTERS):
            continue
        hit = next((i for i, rx in enumerate(_CHAPTER_RES) if rx.match(stripped)), None)
        if hit is not None:
            found.append(Heading(index, _chapter_title(stripped, hit)))
    return found


def part_headings(lines: List[str]) -> List[Heading]:
    shielded = shielded_lines(lines)
    return [
        Heading(index, _HASHES_RE.sub("", line.strip()).strip())
        for index, line in enumerate(lines)
        if index + 1 not in shielded and _PART_RE.match(line.strip())
    ]


def chapter_marker(style: ChapterMarkerStyle, title: str, part: Optional[str] = None) -> str:
    if part is None:
        return {
            ChapterMarkerStyle.NONE: "",
            ChapterMarkerStyle.HTML_COMMENTS: f"<!-- CHAPTER: {title} -->",
            ChapterMarkerStyle.MARKDOWN_H1: f"# {title}",
            ChapterMarkerStyle.MARKDOWN_H2: f"## {title}",
            ChapterMarkerStyle.TOKEN_STYLE: f"<CHAPTER>{title}</CHAPTER>",
        }[style]
    return {
        ChapterMarkerStyle.NONE: "",
        ChapterMarkerStyle.HTML_COMMENTS: f"<!-- PART: {part} | CHAPTER: {title} -->",
        ChapterMarkerStyle.MARKDOWN_H1: f"# {part}\n\n## {title}",
        ChapterMarkerStyle.MARKDOWN_H2: f"## {part}\n\n### {title}",
        ChapterMarkerStyle.TOKEN_STYLE: f"<PART>{part}</PART>\n<CHAPTER>{title}</CHAPTER>",
    }[style]


def part_marker(style: ChapterMarkerStyle, title: str) -> str:
    return {
        ChapterMarkerStyle.NONE: "",
        ChapterMarkerStyle.HTML_COMMENTS: f"<!-- PART: {title} -->",
        ChapterMarkerStyle.MARKDOWN_H1: f"# {title}",
        ChapterMarkerStyle.MARKDOWN_H2: f"## {title}",
        ChapterMarkerStyle.TOKEN_STYLE: f"<PART>{title}</PART>",
    }[style]


def insert_chapter_markers(text: str, style: ChapterMarkerStyle) -> Tuple[str, int, int]:
    """Text with a marker line before every chapter and part heading.

    Returns ``(text, chapter markers, part markers)``.
    """
    if style is ChapterMarkerStyle.NONE:
        return text, 0, 0
    lines = split_lines(text)
    chapters = chapter_headings(lines)
    if not chapters:
        logger.debug("no chapter headings; markers skipped")
        return text, 0, 0
    parts = part_headings(lines)
    part_lines = {p.index for p in parts}

    def containing_part(index: int) -> Optional[str]:
        before = [p.title for p in parts if p.index <= index]
        return before[-1] if before else None

    insertions = [(p.index, part_marker(style, p.title)) for p in parts] + [
        (c.index, chapter_marker(style, c.title, containing_part(c.index)))
        for c in chapters
        if c.index not in part_lines
    ]
    for index, marker in sorted(insertions, reverse=True):
        block = [marker, ""]
        if index > 0 and lines[index - 1].strip():
            block.insert(0, "")
        lines[index:index] = block
    chapter_count = len(insertions) - len(parts)
    logger.info("inserted %d chapter and %d part marker(s)", chapter_count, len(parts))
    return "\n".join(lines), chapter_count, len(parts)


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


def _drop_inserted_markers(lines: List[str]) -> List[str]:
    """Lines without comment or token chapter markers and the blank after each."""
    kept: List[str] = []
    after_marker = False
    for line in lines:
        if _INSERTED_MARKER_RE.match(line.strip()):
            after_marker = True
            continue
        if not (after_marker and not line.strip()):
            kept.append(line)
        after_marker = False
    return kept


def strip_existing_structure(text: str) -> str:
    """Drop the header block, comment or token chapter markers and end marker
    added by an earlier run.
    """
    lines = split_lines(text.strip())
    if (
        len(lines) > 2
        and _HEADER_RE.match(lines[0])
        and not lines[1].strip()
        and _METADATA_START_RE.match(lines[2])
    ):
        separator = next(
            (
                i
                for i in range(1, len(lines))
                if lines[i].strip() == SEPARATOR
                and not lines[i - 1].strip()
                and (i + 1 == len(lines) or not lines[i + 1].strip())
            ),
            None,
        )
        if separator is not None:
            lines = lines[separator + 1 :]
    tail = [i for i, line in enumerate(lines) if line.strip()]
    if len(tail) >= 2 and _END_MARKER_RE.match(lines[tail[-1]].strip()):
        if lines[tail[-2]].strip() == SEPARATOR:
            lines = lines[: tail[-2]]
    return "\n".join(_drop_inserted_markers(lines)).strip()


def apply_structure(
    text: str,
    metadata: DocumentMetadata,
    fmt: MetadataFormat,
    chapter_style: ChapterMarkerStyle,
    end_style: EndMarkerStyle,
) -> Tuple[str, int, int]:
    body, chapters, parts = insert_chapter_markers(strip_existing_structure(text), chapter_style)
    result = (
        f"{title_header(metadata)}\n\n{format_metadata(metadata, fmt)}\n\n"
        f"{SEPARATOR}\n\n{body}\n\n"
    )
    marker = end_marker(end_style, metadata)
    if marker:
        result += f"{SEPARATOR}\n\n{marker}\n"
    return result, chapters, parts


class _AddStructurePass:
    name = CleaningStep.ADD_STRUCTURE.pass_name
    step = CleaningStep.ADD_STRUCTURE

    def __call__(self, a: Artifact) -> Artifact:
        config = configuration_of(a)
        metadata = a.option("metadata") or DocumentMetadata()
        text, chapters, parts = apply_structure(
            a.payload,
            metadata,
            config.metadata_format,
            config.chapter_marker_style,
            config.end_marker_style,
        )
        context = context_of(a)
        if context is not None:
            context.record_transformation(
                TransformationType.STRUCTURE_ADDITION,
                before=a.payload,
                after=text,
                description=(
                    f"{config.metadata_format.value} metadata header, {chapters} chapter "
                    f"marker(s), {parts} part marker(s), {config.end_marker_style.value} end marker"
                ),
            )
        return emit(
            a, self.name, text, line_map=None, chapter_markers=chapters, part_markers=parts
        )


add_structure = register(_AddStructurePass())
