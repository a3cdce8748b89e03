"""Wiring of the AI-assisted services for one cleaning run."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from ocr_cleaner.adapters.completion import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TIMEOUT,
    CompletionClient,
    UsageMeter,
)
from ocr_cleaner.boundary_detection import BoundaryDetectionConfig, BoundaryDetectionService
from ocr_cleaner.config import CleaningConfiguration, build_options
from ocr_cleaner.final_review import FinalReviewConfig, FinalReviewService
from ocr_cleaner.paragraph_optimization import OptimizationConfig, ParagraphOptimizationService
from ocr_cleaner.prompts import PromptManager
from ocr_cleaner.reconnaissance import ReconnaissanceConfig, ReconnaissanceService
from ocr_cleaner.reflow import ReflowConfig, ReflowService


@dataclass(frozen=True)
class CompletionOptions:
    timeout_seconds: float = DEFAULT_TIMEOUT
    max_tokens: int = DEFAULT_MAX_TOKENS
    template_dir: Optional[str] = None
    model: Optional[str] = None


@dataclass
class CleaningServices:
    client: Optional[CompletionClient]
    completion: CompletionOptions
    prompts: PromptManager
    reconnaissance: ReconnaissanceService
    boundaries: BoundaryDetectionService
    reflow: ReflowService
    optimization: ParagraphOptimizationService
    final_review: FinalReviewService
    usage: UsageMeter = field(default_factory=UsageMeter)


def build_services(
    client: CompletionClient | None, configuration: CleaningConfiguration
) -> CleaningServices:
    """Instantiate every service with its ``options`` section and a shared meter."""
    fallback = {"use_fallback_on_failure": configuration.use_fallback_on_failure}

    def options(cls, section: str):
        return build_options(cls, {**fallback, **configuration.service_options(section)})

    completion = build_options(CompletionOptions, configuration.service_options("completion"))
    prompts = PromptManager(completion.template_dir)
    usage = UsageMeter()
    shared = {"client": client, "prompts": prompts, "usage": usage}
    return CleaningServices(
        client=client,
        completion=completion,
        prompts=prompts,
        reconnaissance=ReconnaissanceService(
            config=options(ReconnaissanceConfig, "reconnaissance"), **shared
        ),
        boundaries=BoundaryDetectionService(
            config=options(BoundaryDetectionConfig, "boundary_detection"), **shared
        ),
        reflow=ReflowService(config=options(ReflowConfig, "reflow"), **shared),
        optimization=ParagraphOptimizationService(
            config=options(OptimizationConfig, "optimization"), **shared
        ),
        final_review=FinalReviewService(
            config=options(FinalReviewConfig, "final_review"), **shared
        ),
        usage=usage,
    )
