"""Structure reconnaissance: content type and structural regions.

The AI path asks the completion service for a structure analysis; the
heuristic path measures the text directly and treats the whole document as
core content. Either way the result says which path produced it.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from ocr_cleaner.adapters.completion import CompletionClient, UsageMeter, complete_with_timeout
from ocr_cleaner.content_types import ContentType
from ocr_cleaner.context import AccumulatedContext
from ocr_cleaner.control import RunControl
from ocr_cleaner.errors import FALLBACK_TRIGGERS, DocumentTooShortError
from ocr_cleaner.models import (
    ContentCharacteristics,
    DetectedPattern,
    DetectedPatterns,
    DetectedRegion,
    DetectionMethod,
    LineRange,
    RegionType,
    StructureHints,
)
from ocr_cleaner.pattern_extractor import (
    detect_all_patterns,
    detect_citation_pattern,
    extract_pattern_excerpts,
    validate_regex_pattern,
)
from ocr_cleaner.prompts import PromptManager, PromptType
from ocr_cleaner.response_parser import (
    ContentTypeDetection,
    ParsedRegion,
    StructureAnalysis,
    parse_content_type_detection,
    parse_structure_analysis,
)
from ocr_cleaner.steps import PipelinePhase
from ocr_cleaner.text_utils import sample_document, split_lines, word_count

logger = logging.getLogger(__name__)

FALLBACK_WARNING = "AI analysis unavailable. Using heuristic fallback with reduced accuracy."
FALLBACK_CONFIDENCE = 0.3
USER_TYPE_CONFIDENCE = 1.0
HEURISTIC_TYPE_CONFIDENCE = 0.4


@dataclass(frozen=True)
class ReconnaissanceConfig:
    minimum_word_count: int = 50
    structure_token_limit: int = 5000
    content_type_token_limit: int = 2000
    minimum_confidence: float = 0.5
    use_fallback_on_failure: bool = True
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class ReconnaissanceResult:
    hints: StructureHints
    used_ai_analysis: bool
    warnings: List[str] = field(default_factory=list)
    analysis_time: float = 0.0
    fallback_reason: Optional[str] = None


# ---------------------------------------------------------------------------
# Direct measurement
# ---------------------------------------------------------------------------

_DIALOGUE_RE = re.compile(r"^\s*[\"“‘'—–-]\s*\S")
_LIST_RE = re.compile(r"^\s*(?:[-*+•]|\d{1,3}[.)])\s+\S")
_TABLE_RE = re.compile(r"^\s*\|.*\|\s*$")
_CODE_RE = re.compile(r"^\s*(?:```|~~~)")
_MATH_RE = re.compile(r"\$[^$\n]+\$|\\(?:frac|sum|int|sqrt|alpha|beta)\b|[∑∫√≈≠≤≥]")
_SPEAKER_RE = re.compile(r"^\s*(?:[A-Z][A-Z .'-]{1,30}[.:]|(?:INT|EXT)\.\s)")
_LEGAL_RE = re.compile(
    r"\b(?:pursuant|hereby|herein|thereof|whereas|plaintiff|defendant|statute)\b|\u00a7", re.I
)
_SACRED_RE = re.compile(r"\b(?:verse|psalm|lord|god|prophet|scripture|gospel)\b", re.I)
_ACADEMIC_RE = re.compile(
    r"^\s*#*\s*(?:abstract|references|bibliography|methodology)\s*$", re.I | re.M
)


def measure_characteristics(text: str) -> ContentCharacteristics:
    lines = [line for line in split_lines(text) if line.strip()]
    total = max(len(lines), 1)
    excerpt_lines = len(extract_pattern_excerpts(text, max_excerpts=total).splitlines())
    return ContentCharacteristics(
        dialogue_ratio=round(sum(1 for line in lines if _DIALOGUE_RE.match(line)) / total, 4),
        has_lists=any(_LIST_RE.match(line) for line in lines),
        has_tables=sum(1 for line in lines if _TABLE_RE.match(line)) >= 2,
        has_code=any(_CODE_RE.match(line) for line in lines),
        has_math=bool(_MATH_RE.search(text)),
        ocr_artifact_likelihood=round(min(excerpt_lines / total, 1.0), 4),
        average_words_per_line=round(word_count(text) / total, 2),
    )


def classify_heuristically(text: str) -> ContentType:
    """Shape/keyword based content type guess used when no AI is available."""
    lines = [line for line in split_lines(text) if line.strip()]
    if not lines:
        return ContentType.MIXED
    total = len(lines)
    words = word_count(text)
    speakers = sum(1 for line in lines if _SPEAKER_RE.match(line))
    if speakers / total >= 0.1:
        return ContentType.DRAMA_SCREENPLAY
    short = sum(1 for line in lines if len(line.split()) <= 8)
    closers = (".", "?", "!", '"', "\u201d")
    unpunctuated = sum(1 for line in lines if not line.rstrip().endswith(closers))
    if total >= 8 and short / total >= 0.7 and unpunctuated / total >= 0.5:
        return ContentType.POETRY
    if len(_LEGAL_RE.findall(text)) >= max(3, words // 200):
        return ContentType.LEGAL
    if detect_citation_pattern(text) is not None or _ACADEMIC_RE.search(text):
        return ContentType.ACADEMIC
    if len(_SACRED_RE.findall(text)) >= max(5, words // 100):
        return ContentType.RELIGIOUS_SACRED
    dialogue = sum(1 for line in lines if _DIALOGUE_RE.match(line) or "“" in line or '"' in line)
    if dialogue / total >= 0.15:
        return ContentType.PROSE_FICTION
    return ContentType.PROSE_NON_FICTION


# ---------------------------------------------------------------------------
# Region handling
# ---------------------------------------------------------------------------


def _clamp_region(region: ParsedRegion, total_lines: int) -> Optional[LineRange]:
    start = max(region.start, 1)
    end = min(region.end, total_lines)
    if start > total_lines or end < start:
        return None
    return LineRange(start=start, end=end)


def build_regions(
    parsed: Sequence[ParsedRegion], total_lines: int, method: DetectionMethod
) -> List[DetectedRegion]:
    """Validate parsed regions against the document and mark overlaps."""
    ranged = [
        (region, line_range)
        for region in parsed
        for line_range in [_clamp_region(region, total_lines)]
        if line_range is not None
    ]
    drafts = [
        DetectedRegion(
            type=region.type,
            line_range=line_range,
            confidence=region.confidence,
            detection_method=method,
            evidence=list(region.evidence),
        )
        for region, line_range in ranged
    ]
    return [
        d.model_copy(
            update={
                "has_overlap": bool(overlaps),
                "overlapping_region_ids": overlaps,
            }
        )
        for d in drafts
        for overlaps in [
            [
                other.id
                for other in drafts
                if other.id != d.id
                and _counts_as_overlap(d, other)
            ]
        ]
    ]


def _counts_as_overlap(a: DetectedRegion, b: DetectedRegion) -> bool:
    # Chapters and sections nest inside core content by construction.
    nested = {
        RegionType.CORE_CONTENT,
        RegionType.CHAPTER,
        RegionType.SECTION,
        RegionType.PART_DIVISION,
    }
    if a.type in nested and b.type in nested:
        return False
    return a.line_range.overlaps(b.line_range)


def core_content_range(regions: Sequence[DetectedRegion], total_lines: int) -> Optional[LineRange]:
    if total_lines < 1:
        return None
    front = [r.line_range.end for r in regions if r.type.is_front_matter]
    back = [r.line_range.start for r in regions if r.type.is_back_matter]
    start = max(front) + 1 if front else 1
    end = min(back) - 1 if back else total_lines
    return LineRange(start=start, end=end) if 1 <= start <= end else None


def _pick_pattern(
    ai: Optional[DetectedPattern], local: Optional[DetectedPattern]
) -> Optional[DetectedPattern]:
    if ai is not None and validate_regex_pattern(ai.regex):
        return ai
    return local


def _merge_patterns(ai: DetectedPatterns, local: DetectedPatterns) -> DetectedPatterns:
    return DetectedPatterns(
        page_numbers=_pick_pattern(ai.page_numbers, local.page_numbers),
        citations=_pick_pattern(ai.citations, local.citations),
        footnote_markers=_pick_pattern(ai.footnote_markers, local.footnote_markers),
        header_lines=ai.header_lines or local.header_lines,
        footer_lines=ai.footer_lines or local.footer_lines,
    )


def content_type_context(user_content_type: ContentType | None) -> str:
    if user_content_type is None or user_content_type is ContentType.AUTO_DETECT:
        return "The content type was not specified; determine it from the text."
    return (
        f"The user identified this document as {user_content_type.display_name} "
        f"({user_content_type.value}). Verify this against the text and report "
        "what you actually observe."
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class ReconnaissanceService:
    def __init__(
        self,
        client: CompletionClient | None = None,
        config: ReconnaissanceConfig | None = None,
        prompts: PromptManager | None = None,
        usage: UsageMeter | None = None,
    ) -> None:
        self.client = client
        self.config = config or ReconnaissanceConfig()
        self.prompts = prompts or PromptManager()
        self.usage = usage

    async def analyze(
        self,
        text: str,
        document_id: str,
        user_content_type: ContentType | None = None,
        context: AccumulatedContext | None = None,
        control: RunControl | None = None,
    ) -> ReconnaissanceResult:
        started = time.perf_counter()
        words = word_count(text)
        if words < self.config.minimum_word_count:
            raise DocumentTooShortError(words, self.config.minimum_word_count)

        if self.client is None:
            return self._fallback(
                text, document_id, user_content_type, context, started,
                reason="completion service not configured",
            )
        try:
            analysis = await self._request_analysis(text, user_content_type, control)
        except FALLBACK_TRIGGERS as exc:
            if not self.config.use_fallback_on_failure:
                raise
            logger.warning("structure analysis failed, using heuristics: %s", exc)
            return self._fallback(
                text, document_id, user_content_type, context, started, reason=str(exc)
            )
        hints = self._hints_from_analysis(text, document_id, user_content_type, analysis)
        elapsed = time.perf_counter() - started
        logger.info(
            "reconnaissance (AI): %s, %d regions, confidence %.2f",
            hints.detected_content_type.value,
            len(hints.regions),
            hints.overall_confidence,
        )
        return ReconnaissanceResult(
            hints=hints, used_ai_analysis=True, warnings=list(hints.warnings), analysis_time=elapsed
        )

    async def _request_analysis(
        self,
        text: str,
        user_content_type: ContentType | None,
        control: RunControl | None,
    ) -> StructureAnalysis:
        prompt = self.prompts.build(
            PromptType.STRUCTURE_ANALYSIS,
            document_text=sample_document(text, self.config.structure_token_limit),
            total_lines=len(split_lines(text)),
            content_type_context=content_type_context(user_content_type),
            pattern_excerpts=extract_pattern_excerpts(text) or "(none)",
        )
        if control is not None:
            control.check("reconnaissance request")
        response = await complete_with_timeout(
            self.client, prompt, timeout=self.config.timeout_seconds, usage=self.usage
        )
        return parse_structure_analysis(response).unwrap()

    def _measured(self, text: str, document_id: str, user: ContentType | None) -> Dict[str, object]:
        return {
            "document_id": document_id,
            "user_content_type": user,
            "total_lines": len(split_lines(text)),
            "total_words": word_count(text),
            "total_characters": len(text),
            "characteristics": measure_characteristics(text),
        }

    def _hints_from_analysis(
        self,
        text: str,
        document_id: str,
        user: ContentType | None,
        analysis: StructureAnalysis,
    ) -> StructureHints:
        total_lines = len(split_lines(text))
        regions = build_regions(analysis.regions, total_lines, DetectionMethod.AI_ANALYSIS)
        warnings = list(analysis.warnings)
        dropped = analysis.dropped_regions + (len(analysis.regions) - len(regions))
        if dropped:
            warnings.append(f"Dropped {dropped} region(s) with unknown type or invalid line range")
        if any(r.has_overlap for r in regions):
            warnings.append("Some detected regions overlap; boundaries may be imprecise")
        core = core_content_range(regions, total_lines)
        if core is None:
            warnings.append("Could not determine a core content range from detected regions")
        if analysis.overall_confidence < self.config.minimum_confidence:
            warnings.append(
                f"Low confidence structure analysis ({analysis.overall_confidence:.2f} "
                f"< {self.config.minimum_confidence:.2f})"
            )
        detected = analysis.detected_content_type
        aligned = user is None or user is ContentType.AUTO_DETECT or user is detected
        if not aligned:
            warnings.append(
                f"Detected content type {detected.value} differs from user choice "
                f"{user.value}"  # type: ignore[union-attr]
            )
        return StructureHints(
            **self._measured(text, document_id, user),  # type: ignore[arg-type]
            detected_content_type=detected,
            content_type_confidence=analysis.content_type_confidence,
            content_type_aligned=aligned,
            regions=regions,
            core_content_range=core,
            patterns=_merge_patterns(analysis.patterns, detect_all_patterns(text)),
            overall_confidence=analysis.overall_confidence,
            warnings=warnings,
            used_ai_analysis=True,
        )

    def _fallback(
        self,
        text: str,
        document_id: str,
        user: ContentType | None,
        context: AccumulatedContext | None,
        started: float,
        *,
        reason: str,
    ) -> ReconnaissanceResult:
        user_given = user is not None and user is not ContentType.AUTO_DETECT
        detected = user if user_given else ContentType.MIXED
        total_lines = len(split_lines(text))
        core = LineRange(start=1, end=max(total_lines, 1))
        region = DetectedRegion(
            type=RegionType.CORE_CONTENT,
            line_range=core,
            confidence=FALLBACK_CONFIDENCE,
            detection_method=DetectionMethod.HEURISTIC,
            evidence=["whole document assumed to be core content"],
        )
        hints = StructureHints(
            **self._measured(text, document_id, user),  # type: ignore[arg-type]
            detected_content_type=detected,  # type: ignore[arg-type]
            content_type_confidence=USER_TYPE_CONFIDENCE if user_given else FALLBACK_CONFIDENCE,
            content_type_aligned=True,
            regions=[region],
            core_content_range=core,
            patterns=detect_all_patterns(text),
            overall_confidence=FALLBACK_CONFIDENCE,
            warnings=[FALLBACK_WARNING],
            used_ai_analysis=False,
        )
        if context is not None:
            context.record_fallback(PipelinePhase.RECONNAISSANCE, reason)
        logger.info("reconnaissance (heuristic): %s", reason)
        return ReconnaissanceResult(
            hints=hints,
            used_ai_analysis=False,
            warnings=list(hints.warnings),
            analysis_time=time.perf_counter() - started,
            fallback_reason=reason,
        )

    async def detect_content_type(
        self, text: str, user_content_type: ContentType | None = None
    ) -> ContentTypeDetection:
        """Classify ``text``; user choice short-circuits, heuristics back up the AI."""
        if user_content_type is not None and user_content_type is not ContentType.AUTO_DETECT:
            return ContentTypeDetection(
                content_type=user_content_type,
                confidence=USER_TYPE_CONFIDENCE,
                reasoning="specified by user",
                used_ai=False,
            )
        if self.client is not None:
            try:
                prompt = self.prompts.build(
                    PromptType.CONTENT_TYPE,
                    document_sample=sample_document(text, self.config.content_type_token_limit),
                )
                response = await complete_with_timeout(
                    self.client, prompt, timeout=self.config.timeout_seconds, usage=self.usage
                )
                return parse_content_type_detection(response).unwrap()
            except FALLBACK_TRIGGERS as exc:
                if not self.config.use_fallback_on_failure:
                    raise
                logger.warning("content type detection failed, using heuristics: %s", exc)
        return ContentTypeDetection(
            content_type=classify_heuristically(text),
            confidence=HEURISTIC_TYPE_CONFIDENCE,
            reasoning="heuristic classification",
            used_ai=False,
        )
