"""Paragraph reflow: rejoin lines broken by page layout.

Only whitespace changes, so the word count of every chunk and of the whole
text is verified after the transform.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from ocr_cleaner.adapters.completion import CompletionClient, UsageMeter, complete_with_timeout
from ocr_cleaner.content_types import ContentType
from ocr_cleaner.context import AccumulatedContext, TransformationType
from ocr_cleaner.control import RunControl
from ocr_cleaner.errors import FALLBACK_TRIGGERS, EmptyInputError, ReflowError
from ocr_cleaner.models import RegionType, StructureHints
from ocr_cleaner.processing import Chunk, ProcessingResult, chunk_text, join_chunks
from ocr_cleaner.prompts import PromptManager, PromptType
from ocr_cleaner.response_parser import parse_reflow
from ocr_cleaner.steps import PipelinePhase
from ocr_cleaner.text_utils import (
    is_fence,
    is_structural_line,
    split_lines,
    split_paragraphs,
    word_count,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReflowConfig:
    chunk_token_limit: int = 2000
    use_fallback_on_failure: bool = True
    timeout_seconds: float = 60.0
    max_tokens: int = 4096


_GUIDANCE = {
    ContentType.PROSE_FICTION: "Dialogue lines and scene breaks keep their own lines.",
    ContentType.ACADEMIC: "Keep citations attached to the sentence they support.",
    ContentType.SCIENTIFIC_TECHNICAL: "Equations, code and tables must stay untouched.",
    ContentType.LEGAL: "Numbered clauses and subsections keep their own lines.",
    ContentType.RELIGIOUS_SACRED: "Verse numbers start a new line.",
    ContentType.CHILDRENS: "Keep short paragraphs short.",
}


def content_guidance(content_type: ContentType) -> str:
    return _GUIDANCE.get(content_type, "Join lines that continue the same sentence.")


def chapter_boundaries(hints: StructureHints | None) -> str:
    chapters = hints.regions_of(RegionType.CHAPTER, RegionType.PART_DIVISION) if hints else []
    if not chapters:
        return "Chapter boundaries: none identified."
    starts = ", ".join(str(r.line_range.start) for r in chapters)
    return f"Chapter boundaries start at lines: {starts}."


_PAGE_REFERENCE_RE = re.compile(r"[,\s]\d{1,4}(?:\s*[-–]\s*\d{1,4})?\s*$")


def is_reference_block(run: Sequence[str]) -> bool:
    """Index-like runs where most lines end in page references."""
    refs = sum(1 for line in run if _PAGE_REFERENCE_RE.search(line))
    return len(run) >= 3 and refs * 2 >= len(run)


def reflow_lines(lines: Sequence[str]) -> Tuple[List[str], int]:
    """Join runs of prose lines; return new lines and the number of joins.

    Structural lines, blank lines, index-like runs and everything inside code
    fences are kept.
    """
    out: List[str] = []
    run: List[str] = []
    joined = 0
    in_fence = False

    def flush() -> None:
        nonlocal joined
        if run and is_reference_block(run):
            out.extend(run)
        elif run:
            out.append(" ".join(part.strip() for part in run))
            joined += len(run) - 1
        run.clear()

    for line in lines:
        if is_fence(line):
            flush()
            in_fence = not in_fence
            out.append(line)
        elif in_fence or not line.strip() or is_structural_line(line):
            flush()
            out.append(line)
        else:
            run.append(line)
    flush()
    return out, joined


def reflow_heuristically(text: str) -> Tuple[str, int]:
    lines, joined = reflow_lines(split_lines(text))
    return "\n".join(lines), joined


class ReflowService:
    def __init__(
        self,
        client: CompletionClient | None = None,
        config: ReflowConfig | None = None,
        prompts: PromptManager | None = None,
        usage: UsageMeter | None = None,
    ) -> None:
        self.client = client
        self.config = config or ReflowConfig()
        self.prompts = prompts or PromptManager()
        self.usage = usage

    async def reflow(
        self,
        text: str,
        content_type: ContentType = ContentType.MIXED,
        context: AccumulatedContext | None = None,
        control: RunControl | None = None,
        hints: StructureHints | None = None,
    ) -> ProcessingResult:
        if not text.strip():
            raise EmptyInputError("paragraph reflow")
        words = word_count(text)
        paragraphs_in = len(split_paragraphs(text))
        if content_type.policy.line_breaks_are_content:
            return ProcessingResult(
                text=text,
                input_word_count=words,
                output_word_count=words,
                word_count_preserved=True,
                warnings=[
                    f"Reflow skipped: line breaks are content in {content_type.display_name}"
                ],
                paragraphs_in=paragraphs_in,
                paragraphs_out=paragraphs_in,
            )

        chunks = chunk_text(text, self.config.chunk_token_limit)
        warnings: List[str] = []
        outputs: List[str] = []
        used_ai = False
        joined = 0
        for index, chunk in enumerate(chunks, start=1):
            if control is not None:
                control.chunk(index, len(chunks), "reflow")
            out, lines_joined, ai = await self._reflow_chunk(
                chunk, content_type, hints, warnings, context
            )
            used_ai = used_ai or ai
            joined += lines_joined
            outputs.append(out)
            if context is not None and out != chunk.text:
                context.record_transformation(
                    TransformationType.PARAGRAPH_REFLOW,
                    before=chunk.text,
                    after=out,
                    description=f"joined {lines_joined} broken line(s)",
                    affected_ranges=[chunk.line_range],
                    confidence=0.9 if ai else 0.85,
                )

        result = join_chunks(outputs)
        actual = word_count(result)
        if actual != words:
            if not self.config.use_fallback_on_failure:
                raise ReflowError(words, actual)
            logger.warning("reflow changed word count %d -> %d; keeping input", words, actual)
            return ProcessingResult(
                text=text,
                input_word_count=words,
                output_word_count=words,
                word_count_preserved=True,
                used_ai=used_ai,
                warnings=[
                    *warnings,
                    f"Reflow reverted: word count changed from {words} to {actual}",
                ],
                paragraphs_in=paragraphs_in,
                paragraphs_out=paragraphs_in,
            )
        logger.info("reflow joined %d line(s) across %d chunk(s)", joined, len(chunks))
        return ProcessingResult(
            text=result,
            input_word_count=words,
            output_word_count=actual,
            word_count_preserved=True,
            used_ai=used_ai,
            warnings=warnings,
            lines_joined=joined,
            paragraphs_in=paragraphs_in,
            paragraphs_out=len(split_paragraphs(result)),
        )

    async def _reflow_chunk(
        self,
        chunk: Chunk,
        content_type: ContentType,
        hints: StructureHints | None,
        warnings: List[str],
        context: AccumulatedContext | None,
    ) -> Tuple[str, int, bool]:
        """Reflow one chunk; returns text, lines joined and whether AI produced it."""
        if self.client is not None:
            try:
                response = await self._ask(chunk.text, content_type, hints)
            except FALLBACK_TRIGGERS as exc:
                if not self.config.use_fallback_on_failure:
                    raise
                logger.warning("reflow request failed for lines %s: %s", chunk.line_range, exc)
                warnings.append(f"Lines {chunk.line_range}: AI reflow failed, used heuristic")
                if context is not None:
                    context.record_fallback(PipelinePhase.CONTENT_CLEANING, f"reflow: {exc}")
            else:
                expected, actual = word_count(chunk.text), word_count(response.text)
                if expected == actual:
                    warnings.extend(response.warnings)
                    return response.text, response.line_breaks_removed, True
                warnings.append(
                    f"Lines {chunk.line_range}: AI reflow changed word count "
                    f"({expected} -> {actual}), used heuristic"
                )
        text, joined = reflow_heuristically(chunk.text)
        return text, joined, False

    async def _ask(self, text: str, content_type: ContentType, hints: StructureHints | None):
        prompt = self.prompts.build(
            PromptType.PARAGRAPH_REFLOW,
            content_type=content_type.display_name,
            content_guidance=content_guidance(content_type),
            chapter_boundaries=chapter_boundaries(hints),
            text=text,
        )
        response = await complete_with_timeout(
            self.client,
            prompt,
            timeout=self.config.timeout_seconds,
            max_tokens=self.config.max_tokens,
            usage=self.usage,
        )
        return parse_reflow(response).unwrap()
