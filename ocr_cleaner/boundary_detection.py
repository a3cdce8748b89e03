"""Front/back matter boundary detection.

Three sources, in order of precedence: reconnaissance regions, the
completion service, and a keyword scan over headings.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ocr_cleaner.adapters.completion import CompletionClient, UsageMeter, complete_with_timeout
from ocr_cleaner.content_types import ContentType
from ocr_cleaner.context import AccumulatedContext, BoundaryType
from ocr_cleaner.control import RunControl
from ocr_cleaner.errors import FALLBACK_TRIGGERS, DocumentTooShortError
from ocr_cleaner.models import (
    BackMatterSection,
    BackMatterType,
    BoundaryDetectionResult,
    DetectedRegion,
    RegionType,
    StructureHints,
)
from ocr_cleaner.prompts import PromptManager, PromptType
from ocr_cleaner.response_parser import (
    BackBoundaryResponse,
    FrontBoundaryResponse,
    parse_back_boundary,
    parse_front_boundary,
)
from ocr_cleaner.steps import PipelinePhase
from ocr_cleaner.text_utils import numbered_lines, sample_lines, split_lines

logger = logging.getLogger(__name__)

HEURISTIC_CONFIDENCE = 0.5
HEURISTIC_WARNING = "Used heuristic fallback"
RECONNAISSANCE_EVIDENCE = "reconnaissance"
FRONT_SCAN_LINES = 200


@dataclass(frozen=True)
class BoundaryDetectionConfig:
    minimum_lines: int = 10
    excerpt_token_limit: int = 3000
    minimum_confidence: float = 0.6
    use_fallback_on_failure: bool = True
    timeout_seconds: float = 30.0


_HEADING_PREFIX_RE = re.compile(r"^\s{0,3}#{1,6}\s*")
_TOC_ENTRY_RE = re.compile(r"(?:\.{3,}|\s)\s*\d{1,4}\s*$")
_FRONT_KEYWORD_RE = re.compile(
    r"copyright|all rights reserved|\bisbn\b|contents|dedicat|preface|foreword"
    r"|acknowledg|published by|first edition|printed in",
    re.I,
)
_CONTENT_START_RE = re.compile(
    r"^(?:chapter\s+(?:1|one|i)\b|part\s+(?:1|one|i)\b|prologue\b|introduction\b)",
    re.I,
)
_BACK_HEADINGS: Sequence[Tuple[re.Pattern[str], BackMatterType]] = tuple(
    (re.compile(pattern, re.I), kind)
    for pattern, kind in (
        (r"^(?:bibliography|references|works cited|sources)$", BackMatterType.BIBLIOGRAPHY),
        (r"^index$", BackMatterType.INDEX),
        (r"^glossary$", BackMatterType.GLOSSARY),
        (r"^appendix\b.{0,40}$", BackMatterType.APPENDIX),
        (r"^(?:end\s?notes|notes)$", BackMatterType.ENDNOTES),
        (r"^about the authors?$", BackMatterType.ABOUT_AUTHOR),
        (r"^colophon$", BackMatterType.COLOPHON),
    )
)

_REGION_SECTIONS = {
    RegionType.BIBLIOGRAPHY: BackMatterType.BIBLIOGRAPHY,
    RegionType.INDEX: BackMatterType.INDEX,
    RegionType.GLOSSARY: BackMatterType.GLOSSARY,
    RegionType.APPENDIX: BackMatterType.APPENDIX,
    RegionType.NOTES: BackMatterType.ENDNOTES,
    RegionType.FOOTNOTE_SECTION: BackMatterType.ENDNOTES,
    RegionType.ABOUT_AUTHOR: BackMatterType.ABOUT_AUTHOR,
    RegionType.COLOPHON: BackMatterType.COLOPHON,
}


def _is_toc_entry(line: str) -> bool:
    """Line ending in a page number that is not itself a Markdown heading."""
    return not _HEADING_PREFIX_RE.match(line) and bool(_TOC_ENTRY_RE.search(line))


def heading_text(line: str) -> str:
    return _HEADING_PREFIX_RE.sub("", line).strip().rstrip(":.").strip()


def back_matter_type(line: str) -> Optional[BackMatterType]:
    """Type of back-matter section ``line`` introduces, if it is such a heading."""
    text = heading_text(line)
    if not text or len(text.split()) > 6:
        return None
    return next((kind for rx, kind in _BACK_HEADINGS if rx.match(text)), None)


# ---------------------------------------------------------------------------
# Heuristic scan
# ---------------------------------------------------------------------------


def scan_front_matter_end(lines: Sequence[str]) -> Optional[int]:
    """Line number where front matter ends, or None when no marker is found.

    The content-start heading must follow a front-matter keyword inside the
    first ``FRONT_SCAN_LINES`` lines. A heading repeated in a table of
    contents resolves to its last occurrence.
    """
    window = list(lines[:FRONT_SCAN_LINES])
    keyword_at = next(
        (i for i, line in enumerate(window) if _FRONT_KEYWORD_RE.search(line)), None
    )
    if keyword_at is None:
        return None
    candidates = [
        (i, heading_text(line).lower())
        for i, line in enumerate(window)
        if i > keyword_at
        and _CONTENT_START_RE.match(heading_text(line))
        and not _is_toc_entry(line)
        and len(line.split()) <= 8
    ]
    if not candidates:
        return None
    first_text = candidates[0][1]
    index = max(i for i, text in candidates if text == first_text)
    # index is 0-based, so the heading sits on line index + 1.
    return index if index >= 1 else None


def scan_back_matter_sections(lines: Sequence[str]) -> List[BackMatterSection]:
    """Back-matter headings after the document midpoint, as closed sections."""
    midpoint = len(lines) // 2
    starts = [
        (i + 1, kind)
        for i, line in enumerate(lines)
        if i >= midpoint
        for kind in [back_matter_type(line)]
        if kind is not None
    ]
    ends = [start - 1 for start, _ in starts[1:]] + [len(lines)]
    return [
        BackMatterSection(type=kind, start_line=start, end_line=end)
        for (start, kind), end in zip(starts, ends)
    ]


def heuristic_boundaries(text: str) -> BoundaryDetectionResult:
    lines = split_lines(text)
    front = scan_front_matter_end(lines)
    sections = scan_back_matter_sections(lines)
    back = sections[0].start_line if sections else None
    return BoundaryDetectionResult(
        front_matter_end_line=front,
        back_matter_start_line=back,
        confidence=HEURISTIC_CONFIDENCE,
        used_ai=False,
        front_evidence=[f"content starts at line {front + 1}"] if front else [],
        back_evidence=[f"{sections[0].type.value} heading at line {back}"] if back else [],
        back_matter_sections=sections,
        warnings=[HEURISTIC_WARNING],
    )


# ---------------------------------------------------------------------------
# Reconnaissance hints
# ---------------------------------------------------------------------------


def _hint_sections(regions: Sequence[DetectedRegion]) -> List[BackMatterSection]:
    return [
        BackMatterSection(
            type=_REGION_SECTIONS.get(r.type, BackMatterType.OTHER),
            start_line=r.line_range.start,
            end_line=r.line_range.end,
        )
        for r in sorted(regions, key=lambda r: r.line_range.start)
    ]


def boundaries_from_hints(hints: StructureHints | None) -> Optional[BoundaryDetectionResult]:
    """Boundaries implied by reconnaissance regions; None when there are none."""
    if hints is None:
        return None
    front = hints.front_matter_regions
    back = hints.back_matter_regions
    if not front and not back:
        return None
    used = [*front, *back]
    return BoundaryDetectionResult(
        front_matter_end_line=max(r.line_range.end for r in front) if front else None,
        back_matter_start_line=min(r.line_range.start for r in back) if back else None,
        confidence=min(r.confidence for r in used),
        used_ai=hints.used_ai_analysis,
        front_evidence=[RECONNAISSANCE_EVIDENCE] if front else [],
        back_evidence=[RECONNAISSANCE_EVIDENCE] if back else [],
        back_matter_sections=_hint_sections(back),
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class BoundaryDetectionService:
    def __init__(
        self,
        client: CompletionClient | None = None,
        config: BoundaryDetectionConfig | None = None,
        prompts: PromptManager | None = None,
        usage: UsageMeter | None = None,
    ) -> None:
        self.client = client
        self.config = config or BoundaryDetectionConfig()
        self.prompts = prompts or PromptManager()
        self.usage = usage

    async def detect_boundaries(
        self,
        text: str,
        hints: StructureHints | None = None,
        content_type: ContentType | None = None,
        context: AccumulatedContext | None = None,
        control: RunControl | None = None,
    ) -> BoundaryDetectionResult:
        lines = split_lines(text)
        if len(lines) < self.config.minimum_lines:
            raise DocumentTooShortError(len(lines), self.config.minimum_lines, unit="lines")

        result = boundaries_from_hints(hints)
        if result is not None:
            logger.info(
                "boundaries from reconnaissance: front=%s back=%s",
                result.front_matter_end_line,
                result.back_matter_start_line,
            )
        elif self.client is None:
            result = self._fallback(text, context, "completion service not configured")
        else:
            kind = content_type or (hints.effective_content_type if hints else ContentType.MIXED)
            result = await self._detect_with_ai(text, lines, kind, hints, context, control)
        result = _validated(result, len(lines))
        if context is not None:
            _record(result, context)
        return result

    async def _detect_with_ai(
        self,
        text: str,
        lines: List[str],
        content_type: ContentType,
        hints: StructureHints | None,
        context: AccumulatedContext | None,
        control: RunControl | None,
    ) -> BoundaryDetectionResult:
        try:
            if control is not None:
                control.check("front matter boundary request")
            front = await self._ask_front(lines, content_type, hints)
            if control is not None:
                control.check("back matter boundary request")
            back = await self._ask_back(lines, content_type, hints)
        except FALLBACK_TRIGGERS as exc:
            if not self.config.use_fallback_on_failure:
                raise
            logger.warning("boundary detection failed, using heuristics: %s", exc)
            return self._fallback(text, context, str(exc))

        threshold = self.config.minimum_confidence
        low = min(front.confidence, back.confidence) < threshold
        if low and self.config.use_fallback_on_failure:
            logger.warning(
                "boundary confidence %.2f/%.2f below %.2f, using heuristics",
                front.confidence,
                back.confidence,
                threshold,
            )
            return self._merge_low_confidence(text, front, back, context)
        return _from_responses(front, back)

    def _merge_low_confidence(
        self,
        text: str,
        front: FrontBoundaryResponse,
        back: BackBoundaryResponse,
        context: AccumulatedContext | None,
    ) -> BoundaryDetectionResult:
        """Keep the side the service was sure about; scan for the other."""
        ai = _from_responses(front, back)
        scan = self._fallback(text, context, "boundary confidence below threshold")
        front_ok = front.confidence >= self.config.minimum_confidence
        back_ok = back.confidence >= self.config.minimum_confidence
        return BoundaryDetectionResult(
            front_matter_end_line=_pick(
                front_ok, ai.front_matter_end_line, scan.front_matter_end_line
            ),
            back_matter_start_line=_pick(
                back_ok, ai.back_matter_start_line, scan.back_matter_start_line
            ),
            confidence=HEURISTIC_CONFIDENCE,
            used_ai=front_ok or back_ok,
            front_evidence=_pick(front_ok, ai.front_evidence, scan.front_evidence),
            back_evidence=_pick(back_ok, ai.back_evidence, scan.back_evidence),
            back_matter_sections=_pick(back_ok, ai.back_matter_sections, scan.back_matter_sections),
            warnings=[*ai.warnings, *scan.warnings],
        )

    def _hint_summary(self, hints: StructureHints | None) -> str:
        if hints is None or not hints.regions:
            return "No structural hints available."
        return "Reconnaissance regions:\n" + "\n".join(
            f"- {r.type.value}: lines {r.line_range} (confidence {r.confidence:.2f})"
            for r in hints.regions
        )

    async def _ask_front(
        self, lines: List[str], content_type: ContentType, hints: StructureHints | None
    ) -> FrontBoundaryResponse:
        excerpt = sample_lines(lines, self.config.excerpt_token_limit)
        prompt = self.prompts.build(
            PromptType.FRONT_MATTER_BOUNDARY,
            content_type=content_type.display_name,
            total_lines=len(lines),
            hints=self._hint_summary(hints),
            excerpt="\n".join(numbered_lines(excerpt)),
        )
        response = await complete_with_timeout(
            self.client, prompt, timeout=self.config.timeout_seconds, usage=self.usage
        )
        return parse_front_boundary(response).unwrap()

    async def _ask_back(
        self, lines: List[str], content_type: ContentType, hints: StructureHints | None
    ) -> BackBoundaryResponse:
        tail = list(reversed(sample_lines(list(reversed(lines)), self.config.excerpt_token_limit)))
        start = len(lines) - len(tail) + 1
        prompt = self.prompts.build(
            PromptType.BACK_MATTER_BOUNDARY,
            content_type=content_type.display_name,
            total_lines=len(lines),
            excerpt_start_line=start,
            hints=self._hint_summary(hints),
            excerpt="\n".join(numbered_lines(tail, start=start)),
        )
        response = await complete_with_timeout(
            self.client, prompt, timeout=self.config.timeout_seconds, usage=self.usage
        )
        return parse_back_boundary(response).unwrap()

    def _fallback(
        self, text: str, context: AccumulatedContext | None, reason: str
    ) -> BoundaryDetectionResult:
        if context is not None:
            context.record_fallback(
                PipelinePhase.STRUCTURAL_REMOVAL, f"boundary detection: {reason}"
            )
        logger.info("boundary detection (heuristic): %s", reason)
        return heuristic_boundaries(text)


def _pick(ok: bool, primary, fallback):
    return primary if ok else fallback


def _from_responses(
    front: FrontBoundaryResponse, back: BackBoundaryResponse
) -> BoundaryDetectionResult:
    return BoundaryDetectionResult(
        front_matter_end_line=front.front_matter_end_line,
        back_matter_start_line=back.back_matter_start_line,
        confidence=min(front.confidence, back.confidence),
        used_ai=True,
        front_evidence=[front.evidence] if front.evidence else [],
        back_evidence=[back.evidence] if back.evidence else [],
        back_matter_sections=list(back.sections),
        warnings=[*front.warnings, *back.warnings],
    )


def _validated(result: BoundaryDetectionResult, total_lines: int) -> BoundaryDetectionResult:
    """Drop boundaries outside the document or crossing each other."""
    front = result.front_matter_end_line
    back = result.back_matter_start_line
    warnings = list(result.warnings)
    if front is not None and not 1 <= front < total_lines:
        warnings.append(f"Ignored front matter boundary {front} outside document")
        front = None
    if back is not None and not 1 < back <= total_lines:
        warnings.append(f"Ignored back matter boundary {back} outside document")
        back = None
    if front is not None and back is not None and back <= front:
        warnings.append(f"Back matter start {back} precedes front matter end {front}; ignored")
        back = None
    sections = [s for s in result.back_matter_sections if back is not None and s.start_line >= back]
    return result.model_copy(
        update={
            "front_matter_end_line": front,
            "back_matter_start_line": back,
            "back_matter_sections": sections,
            "warnings": warnings,
        }
    )


def _record(result: BoundaryDetectionResult, context: AccumulatedContext) -> None:
    evidence = [*result.front_evidence, *result.back_evidence]
    if RECONNAISSANCE_EVIDENCE in evidence:
        approved = [RECONNAISSANCE_EVIDENCE]
    else:
        approved = ["ai" if result.used_ai else "heuristic"]
    if result.front_matter_end_line is not None:
        context.record_boundary(
            BoundaryType.FRONT_MATTER_END,
            result.front_matter_end_line,
            confidence=result.confidence,
            approved_by=approved,
        )
    if result.back_matter_start_line is not None:
        context.record_boundary(
            BoundaryType.BACK_MATTER_START,
            result.back_matter_start_line,
            confidence=result.confidence,
            approved_by=approved,
        )
