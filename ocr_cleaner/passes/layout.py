"""Paragraph layout: reflow broken lines, then split overlong paragraphs."""

from __future__ import annotations

import logging
from typing import Any, Iterable, List

from ocr_cleaner.content_types import DEFAULT_MAX_PARAGRAPH_WORDS
from ocr_cleaner.framework import Artifact, register
from ocr_cleaner.paragraph_optimization import ParagraphOptimizationService
from ocr_cleaner.passes.run_meta import (
    boundaries_of,
    capture_anchors,
    configuration_of,
    content_type_of,
    context_of,
    control_of,
    emit,
    hints_of,
    services_of,
)
from ocr_cleaner.processing import ProcessingResult
from ocr_cleaner.reflow import ReflowService
from ocr_cleaner.steps import CleaningStep

logger = logging.getLogger(__name__)


def _anchor_lines(a: Artifact) -> List[int]:
    """Input lines later passes look up after reflow has renumbered the text."""
    lines: List[int] = []
    boundaries = boundaries_of(a)
    if boundaries is not None:
        if boundaries.back_matter_start_line is not None:
            lines.append(boundaries.back_matter_start_line)
        lines.extend(s.start_line for s in boundaries.back_matter_sections)
    hints = hints_of(a)
    if hints is not None:
        lines.extend(r.line_range.start for r in hints.back_matter_regions)
    return sorted(set(lines))


def _warn(a: Artifact, warnings: Iterable[str]) -> None:
    context = context_of(a)
    if context is None:
        return
    for warning in warnings:
        context.add_warning(warning)


def _emit_result(a: Artifact, name: str, result: ProcessingResult, **extra: Any) -> Artifact:
    _warn(a, result.warnings)
    changed = result.text != a.payload
    metrics = dict(
        used_ai=result.used_ai,
        words=result.output_word_count,
        paragraphs_in=result.paragraphs_in,
        paragraphs_out=result.paragraphs_out,
        **extra,
    )
    if changed:
        return emit(a, name, result.text, line_map=None, **metrics)
    return emit(a, name, a.payload, **metrics)


class _ReflowParagraphsPass:
    name = CleaningStep.REFLOW_PARAGRAPHS.pass_name
    step = CleaningStep.REFLOW_PARAGRAPHS

    async def __call__(self, a: Artifact) -> Artifact:
        if not a.payload.strip():
            return emit(a, self.name, a.payload, lines_joined=0)
        a = a.with_text(a.payload, anchors=capture_anchors(a, _anchor_lines(a)))
        services = services_of(a)
        service = services.reflow if services is not None else ReflowService()
        result = await service.reflow(
            a.payload,
            content_type_of(a),
            context_of(a),
            control_of(a),
            hints_of(a),
        )
        return _emit_result(a, self.name, result, lines_joined=result.lines_joined)


class _OptimizeParagraphLengthPass:
    name = CleaningStep.OPTIMIZE_PARAGRAPH_LENGTH.pass_name
    step = CleaningStep.OPTIMIZE_PARAGRAPH_LENGTH

    async def __call__(self, a: Artifact) -> Artifact:
        if not a.payload.strip():
            return emit(a, self.name, a.payload, paragraphs_split=0)
        content_type = content_type_of(a)
        limit = configuration_of(a).effective_max_paragraph_words(content_type)
        services = services_of(a)
        service = (
            services.optimization if services is not None else ParagraphOptimizationService()
        )
        result = await service.optimize(
            a.payload,
            content_type,
            context_of(a),
            control_of(a),
            max_words=limit if limit != DEFAULT_MAX_PARAGRAPH_WORDS else None,
        )
        logger.debug("optimization: limit %d words", limit)
        return _emit_result(a, self.name, result, paragraphs_split=result.paragraphs_split)


reflow_paragraphs = register(_ReflowParagraphsPass())
optimize_paragraph_length = register(_OptimizeParagraphLengthPass())
