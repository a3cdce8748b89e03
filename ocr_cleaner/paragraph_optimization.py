"""Split over-long paragraphs at sentence boundaries without losing words."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import reduce
from typing import List, Optional, Sequence, Tuple

from ocr_cleaner.adapters.completion import CompletionClient, UsageMeter, complete_with_timeout
from ocr_cleaner.content_types import DEFAULT_MAX_PARAGRAPH_WORDS, ContentType
from ocr_cleaner.context import AccumulatedContext, TransformationType
from ocr_cleaner.control import RunControl
from ocr_cleaner.errors import FALLBACK_TRIGGERS, EmptyInputError, ParagraphOptimizationError
from ocr_cleaner.models import LineRange
from ocr_cleaner.processing import ProcessingResult, paragraph_blocks
from ocr_cleaner.prompts import PromptManager, PromptType
from ocr_cleaner.response_parser import OptimizationResponse, parse_optimization
from ocr_cleaner.steps import PipelinePhase
from ocr_cleaner.text_utils import (
    is_structural_line,
    join_paragraphs,
    split_lines,
    split_paragraphs,
    split_sentences,
    word_count,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OptimizationConfig:
    min_words_to_split: int = 250
    max_words_per_paragraph: int = 200
    use_fallback_on_failure: bool = True
    timeout_seconds: float = 60.0
    max_tokens: int = 4096


def _pack(limit: int):
    def step(acc: List[List[str]], sentence: str) -> List[List[str]]:
        if acc and word_count(" ".join(acc[-1])) + word_count(sentence) <= limit:
            return [*acc[:-1], [*acc[-1], sentence]]
        return [*acc, [sentence]]

    return step


def split_paragraph(paragraph: str, limit: int) -> List[str]:
    """Greedy sentence packing into pieces of at most ``limit`` words.

    A single sentence longer than ``limit`` stays whole.
    """
    sentences = split_sentences(paragraph)
    groups: List[List[str]] = reduce(_pack(limit), sentences, [])
    return [" ".join(s.strip() for s in group) for group in groups] or [paragraph]


def is_structural_block(block: str) -> bool:
    return any(is_structural_line(line) for line in split_lines(block))


class ParagraphOptimizationService:
    def __init__(
        self,
        client: CompletionClient | None = None,
        config: OptimizationConfig | None = None,
        prompts: PromptManager | None = None,
        usage: UsageMeter | None = None,
    ) -> None:
        self.client = client
        self.config = config or OptimizationConfig()
        self.prompts = prompts or PromptManager()
        self.usage = usage

    def limits(self, content_type: ContentType, max_words: Optional[int] = None) -> Tuple[int, int]:
        """(split threshold, piece limit) for ``content_type``.

        Limits at or above the configured piece size split only past
        ``min_words_to_split``; tighter limits split as soon as they are exceeded.
        """
        type_limit = content_type.policy.max_paragraph_words
        if max_words is not None:
            limit = max_words
        elif type_limit != DEFAULT_MAX_PARAGRAPH_WORDS:
            limit = type_limit
        else:
            limit = self.config.max_words_per_paragraph
        if limit >= self.config.max_words_per_paragraph:
            return max(limit, self.config.min_words_to_split), limit
        return limit, limit

    async def optimize(
        self,
        text: str,
        content_type: ContentType = ContentType.MIXED,
        context: AccumulatedContext | None = None,
        control: RunControl | None = None,
        max_words: Optional[int] = None,
    ) -> ProcessingResult:
        if not text.strip():
            raise EmptyInputError("paragraph optimization")
        words = word_count(text)
        paragraphs_in = len(split_paragraphs(text))
        if content_type.policy.line_breaks_are_content:
            return ProcessingResult(
                text=text,
                input_word_count=words,
                output_word_count=words,
                word_count_preserved=True,
                warnings=[
                    f"Optimization skipped: paragraphs are layout in {content_type.display_name}"
                ],
                paragraphs_in=paragraphs_in,
                paragraphs_out=paragraphs_in,
            )

        threshold, limit = self.limits(content_type, max_words)
        lines = split_lines(text)
        blocks = [
            (LineRange(start=start, end=end), "\n".join(lines[start - 1 : end]))
            for start, end in paragraph_blocks(lines)
        ]
        oversize = [
            i for i, (_, block) in enumerate(blocks)
            if word_count(block) > threshold and not is_structural_block(block)
        ]
        warnings: List[str] = []
        rebuilt = [block for _, block in blocks]
        used_ai = False
        splits = 0
        for n, i in enumerate(oversize, start=1):
            if control is not None:
                control.chunk(n, len(oversize), "optimization")
            line_range, block = blocks[i]
            pieces, ai = await self._split_block(
                block, line_range, content_type, limit, warnings, context
            )
            used_ai = used_ai or ai
            if len(pieces) < 2:
                warnings.append(
                    f"Lines {line_range}: paragraph of {word_count(block)} words could not be split"
                )
                continue
            splits += len(pieces) - 1
            rebuilt[i] = join_paragraphs(pieces)
            if context is not None:
                context.record_transformation(
                    TransformationType.PARAGRAPH_SPLIT,
                    before=block,
                    after=rebuilt[i],
                    description=f"split into {len(pieces)} paragraphs",
                    affected_ranges=[line_range],
                    confidence=0.9 if ai else 0.85,
                )

        result = join_paragraphs(rebuilt)
        actual = word_count(result)
        if actual != words:
            if not self.config.use_fallback_on_failure:
                raise ParagraphOptimizationError(words, actual)
            logger.warning("optimization changed word count %d -> %d; keeping input", words, actual)
            return ProcessingResult(
                text=text,
                input_word_count=words,
                output_word_count=words,
                word_count_preserved=True,
                used_ai=used_ai,
                warnings=[
                    *warnings,
                    f"Optimization reverted: word count changed from {words} to {actual}",
                ],
                paragraphs_in=paragraphs_in,
                paragraphs_out=paragraphs_in,
            )
        logger.info("optimization split %d of %d long paragraph(s)", splits, len(oversize))
        return ProcessingResult(
            text=result if oversize else text,
            input_word_count=words,
            output_word_count=actual,
            word_count_preserved=True,
            used_ai=used_ai,
            warnings=warnings,
            paragraphs_split=splits,
            paragraphs_in=paragraphs_in,
            paragraphs_out=len(split_paragraphs(result)) if oversize else paragraphs_in,
        )

    async def _split_block(
        self,
        block: str,
        line_range: LineRange,
        content_type: ContentType,
        limit: int,
        warnings: List[str],
        context: AccumulatedContext | None,
    ) -> Tuple[Sequence[str], bool]:
        if self.client is not None:
            try:
                response = await self._ask(block, content_type, limit)
            except FALLBACK_TRIGGERS as exc:
                if not self.config.use_fallback_on_failure:
                    raise
                logger.warning("optimization request failed for lines %s: %s", line_range, exc)
                warnings.append(f"Lines {line_range}: AI optimization failed, used heuristic")
                if context is not None:
                    context.record_fallback(PipelinePhase.OPTIMIZATION, f"optimization: {exc}")
            else:
                expected = word_count(block)
                actual = sum(word_count(p) for p in response.paragraphs)
                if expected == actual:
                    warnings.extend(response.warnings)
                    return ([block] if response.could_not_split else response.paragraphs), True
                warnings.append(
                    f"Lines {line_range}: AI optimization changed word count "
                    f"({expected} -> {actual}), used heuristic"
                )
        return split_paragraph(block, limit), False

    async def _ask(self, block: str, content_type: ContentType, limit: int) -> OptimizationResponse:
        prompt = self.prompts.build(
            PromptType.PARAGRAPH_OPTIMIZATION,
            content_type=content_type.display_name,
            max_words=limit,
            word_count=word_count(block),
            paragraph=block,
        )
        response = await complete_with_timeout(
            self.client,
            prompt,
            timeout=self.config.timeout_seconds,
            max_tokens=self.config.max_tokens,
            usage=self.usage,
        )
        return parse_optimization(response).unwrap()
