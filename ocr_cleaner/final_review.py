"""Final quality review of cleaned output against the original text."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Tuple

from ocr_cleaner.adapters.completion import CompletionClient, UsageMeter, complete_with_timeout
from ocr_cleaner.content_types import APPARATUS_HEAVY, ContentType
from ocr_cleaner.context import AccumulatedContext, CheckpointType
from ocr_cleaner.control import RunControl
from ocr_cleaner.errors import FALLBACK_TRIGGERS, EmptyInputError
from ocr_cleaner.models import (
    FinalReviewResult,
    IssueCategory,
    IssueSeverity,
    QualityIssue,
    QualityRating,
)
from ocr_cleaner.prompts import PromptManager, PromptType
from ocr_cleaner.response_parser import FinalReviewResponse, parse_final_review
from ocr_cleaner.steps import PipelinePhase
from ocr_cleaner.text_utils import (
    is_fence,
    is_structural_line,
    sample_head_middle_tail,
    split_lines,
    word_count,
)

logger = logging.getLogger(__name__)

BASE_SCORE = 0.7
RETENTION_BONUS = 0.2
CRITICAL_PENALTY = 0.3
WARNING_PENALTY = 0.1
HEURISTIC_CONFIDENCE = 0.5
MINIMUM_WORDS = 10
MINIMUM_RETENTION = 0.1


@dataclass(frozen=True)
class FinalReviewConfig:
    sample_token_limit: int = 3000
    divergence_threshold: float = 0.3
    minimum_quality: float = 0.6
    use_fallback_on_failure: bool = True
    timeout_seconds: float = 60.0
    max_tokens: int = 2000


_TRUNCATION_RE = re.compile(r"\[(?:truncated|continued)\]", re.I)
_PAGE_LINE_RE = re.compile(r"^\s*(?:[-–—]\s*)?\d{1,4}(?:\s*[-–—])?\s*$")
_MARKER_RE = re.compile(
    r"^\s*(?:[-*_]{3,}|<!--.*-->|<[A-Z_]+\b[^>]*>.*|\[END\])(?:\s*<!--.*-->)?\s*$"
)
_TERMINAL = (".", "!", "?", '"', "'", "”", "’", ")", "]", ":", "*", "_")


def retention_thresholds(content_type: ContentType) -> Tuple[float, float]:
    """(critical, warning) retention ratios for ``content_type``."""
    return (0.35, 0.6) if content_type in APPARATUS_HEAVY else (0.4, 0.8)


def _issue(
    severity: IssueSeverity,
    category: IssueCategory,
    description: str,
    location: str | None = None,
) -> QualityIssue:
    return QualityIssue(
        severity=severity, category=category, description=description, location=location
    )


def _last_prose_line(lines: List[str]) -> str:
    content = [
        line for line in lines
        if line.strip() and not _MARKER_RE.match(line) and not is_structural_line(line)
    ]
    return content[-1].rstrip() if content else ""


def integrity_issues(cleaned: str) -> List[QualityIssue]:
    """Structural checks that do not depend on the original text."""
    lines = split_lines(cleaned)
    issues: List[QualityIssue] = []
    last = _last_prose_line(lines)
    if _TRUNCATION_RE.search(cleaned) or last.endswith("..."):
        issues.append(
            _issue(
                IssueSeverity.WARNING,
                IssueCategory.CONTENT_LOSS,
                "Text contains truncation markers",
                "end",
            )
        )
    elif last and not last.endswith(_TERMINAL):
        issues.append(
            _issue(
                IssueSeverity.INFO,
                IssueCategory.FORMATTING_ISSUE,
                "Document ends mid-sentence",
                "end",
            )
        )
    if sum(1 for line in lines if is_fence(line)) % 2:
        issues.append(
            _issue(IssueSeverity.WARNING, IssueCategory.FORMATTING_ISSUE, "Unbalanced code fence")
        )
    leftover = sum(1 for line in lines if _PAGE_LINE_RE.match(line))
    if leftover >= 3:
        issues.append(
            _issue(
                IssueSeverity.WARNING,
                IssueCategory.STRUCTURE_ISSUE,
                f"{leftover} lines look like leftover page numbers",
            )
        )
    return issues


def heuristic_review(original: str, cleaned: str, content_type: ContentType) -> FinalReviewResult:
    original_words = word_count(original)
    cleaned_words = word_count(cleaned)
    retention = cleaned_words / original_words if original_words else 1.0
    critical, warning = retention_thresholds(content_type)

    issues: List[QualityIssue] = []
    removed = max(0, round((1 - retention) * 100))
    if retention < critical:
        issues.append(
            _issue(
                IssueSeverity.CRITICAL,
                IssueCategory.CONTENT_LOSS,
                f"Significant content reduction: {removed}% of words removed",
            )
        )
    elif retention < warning:
        issues.append(
            _issue(
                IssueSeverity.WARNING,
                IssueCategory.CONTENT_LOSS,
                f"Content reduction: {removed}% of words removed",
            )
        )
    nearly_empty = cleaned_words < MINIMUM_WORDS or retention < MINIMUM_RETENTION
    if nearly_empty:
        issues.append(
            _issue(
                IssueSeverity.CRITICAL,
                IssueCategory.CONTENT_LOSS,
                "Cleaned document has very little content",
            )
        )
    issues += integrity_issues(cleaned)

    score = BASE_SCORE + (RETENTION_BONUS if retention >= warning else 0.0)
    score -= CRITICAL_PENALTY * sum(1 for i in issues if i.severity is IssueSeverity.CRITICAL)
    score -= WARNING_PENALTY * sum(1 for i in issues if i.severity is IssueSeverity.WARNING)
    score = round(max(0.0, min(1.0, score)), 4)
    rating = QualityRating.POOR if nearly_empty else QualityRating.from_score(score)
    recommendations = ["Manual review recommended - AI assessment unavailable"]
    if any(i.category is IssueCategory.CONTENT_LOSS for i in issues):
        recommendations.append("Check removed sections for over-aggressive cleaning")
    return FinalReviewResult(
        quality_score=score,
        quality_rating=rating,
        issues=issues,
        retention_ratio=round(retention, 4),
        used_ai=False,
        confidence=HEURISTIC_CONFIDENCE,
        recommendations=recommendations,
        summary=f"Heuristic review: {retention:.0%} of words retained, {len(issues)} issue(s)",
    )


def combine(
    ai: FinalReviewResponse, heuristic: FinalReviewResult, threshold: float
) -> FinalReviewResult:
    """AI verdict cross-checked against the heuristic one."""
    warnings: List[str] = []
    divergence = abs(ai.quality_score - heuristic.quality_score)
    if divergence > threshold:
        warnings.append(
            f"AI and heuristic quality scores diverge ({ai.quality_score:.2f} vs "
            f"{heuristic.quality_score:.2f})"
        )
    score = ai.quality_score
    rating = QualityRating.from_score(score)
    if heuristic.critical_issues:
        score = min(score, heuristic.quality_score)
        rating = QualityRating.POOR
    return FinalReviewResult(
        quality_score=round(score, 4),
        quality_rating=rating,
        issues=[*ai.issues, *heuristic.issues],
        retention_ratio=heuristic.retention_ratio,
        used_ai=True,
        confidence=ai.confidence,
        recommendations=list(ai.recommendations),
        summary=ai.summary or heuristic.summary,
        warnings=warnings,
    )


class FinalReviewService:
    def __init__(
        self,
        client: CompletionClient | None = None,
        config: FinalReviewConfig | None = None,
        prompts: PromptManager | None = None,
        usage: UsageMeter | None = None,
    ) -> None:
        self.client = client
        self.config = config or FinalReviewConfig()
        self.prompts = prompts or PromptManager()
        self.usage = usage

    async def review(
        self,
        original: str,
        cleaned: str,
        content_type: ContentType = ContentType.MIXED,
        context: AccumulatedContext | None = None,
        control: RunControl | None = None,
    ) -> FinalReviewResult:
        if not cleaned.strip():
            raise EmptyInputError("final review")
        heuristic = heuristic_review(original, cleaned, content_type)
        result = heuristic
        if self.client is not None:
            try:
                if control is not None:
                    control.check("final review request")
                ai = await self._ask(original, cleaned, content_type)
                result = combine(ai, heuristic, self.config.divergence_threshold)
            except FALLBACK_TRIGGERS as exc:
                if not self.config.use_fallback_on_failure:
                    raise
                logger.warning("AI review failed, using heuristic review: %s", exc)
                unavailable = [f"AI review unavailable: {exc}"]
                result = heuristic.model_copy(update={"warnings": unavailable})
                if context is not None:
                    context.record_fallback(PipelinePhase.FINAL_REVIEW, str(exc))
        logger.info(
            "final review: %s (%.2f), %d issue(s), ai=%s",
            result.quality_rating.value,
            result.quality_score,
            len(result.issues),
            result.used_ai,
        )
        if context is not None:
            passed = (
                result.quality_score >= self.config.minimum_quality and not result.critical_issues
            )
            context.record_checkpoint(
                CheckpointType.FINAL_QUALITY,
                passed,
                f"{result.quality_rating.value} ({result.quality_score:.2f})",
            )
        return result

    async def _ask(
        self, original: str, cleaned: str, content_type: ContentType
    ) -> FinalReviewResponse:
        original_words = word_count(original)
        cleaned_words = word_count(cleaned)
        retention = round(100 * cleaned_words / original_words) if original_words else 100
        beginning, middle, end = sample_head_middle_tail(cleaned, self.config.sample_token_limit)
        prompt = self.prompts.build(
            PromptType.FINAL_REVIEW,
            content_type=content_type.display_name,
            original_word_count=original_words,
            cleaned_word_count=cleaned_words,
            retention_percent=retention,
            beginning=beginning,
            middle=middle,
            end=end,
        )
        response = await complete_with_timeout(
            self.client,
            prompt,
            timeout=self.config.timeout_seconds,
            max_tokens=self.config.max_tokens,
            usage=self.usage,
        )
        return parse_final_review(response).unwrap()
