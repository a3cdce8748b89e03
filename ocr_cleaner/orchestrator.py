"""Drive one cleaning run through its states.

``idle -> reconnaissance -> boundaryDetection -> structuralRemoval ->
contentCleaning -> scholarlyContent -> backMatterRemoval -> optimization ->
assembly -> finalReview -> complete``; ``cancelled`` and ``failed`` can be
reached from every in-progress state.

The orchestrator owns the run's ``AccumulatedContext``. Every phase takes a
pre and post snapshot of the document text; a phase whose step fails with a
recoverable error is rolled back to its pre snapshot when fallback is
allowed.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field

from ocr_cleaner import passes  # noqa: F401
from ocr_cleaner.adapters.completion import CompletionClient
from ocr_cleaner.config import CleaningConfiguration, PresetType
from ocr_cleaner.confidence import ConfidenceTracker, PipelineConfidence
from ocr_cleaner.content_types import ContentType, resolve
from ocr_cleaner.context import AccumulatedContext, CheckpointType, SnapshotPosition
from ocr_cleaner.control import CancellationToken, ProgressCallback, RunControl
from ocr_cleaner.errors import (
    FALLBACK_TRIGGERS,
    CleaningError,
    DocumentBusyError,
    DocumentTooShortError,
    EmptyInputError,
    PipelineCancelledError,
    PipelineFailedError,
    WordCountMismatchError,
)
from ocr_cleaner.framework import Artifact, pass_for, run_step
from ocr_cleaner.line_edits import initial_line_map
from ocr_cleaner.models import (
    BoundaryDetectionResult,
    DocumentMetadata,
    FinalReviewResult,
    StructureHints,
    utcnow,
)
from ocr_cleaner.services import CleaningServices, build_services
from ocr_cleaner.steps import CleaningStep, PipelinePhase, PipelineState, steps_in_phase
from ocr_cleaner.telemetry import PipelineTelemetry
from ocr_cleaner.text_utils import split_lines, word_count

logger = logging.getLogger(__name__)

RECOVERABLE = (*FALLBACK_TRIGGERS, WordCountMismatchError)

_BOUNDARY_STEPS = (CleaningStep.REMOVE_FRONT_MATTER, CleaningStep.REMOVE_BACK_MATTER)

_active_documents: Set[str] = set()
_active_lock = threading.Lock()


def _claim(document_id: str) -> None:
    with _active_lock:
        if document_id in _active_documents:
            raise DocumentBusyError(document_id)
        _active_documents.add(document_id)


def _release(document_id: str) -> None:
    with _active_lock:
        _active_documents.discard(document_id)


class CleanedContent(BaseModel):
    document_id: str
    cleaned_markdown: str
    metadata: DocumentMetadata
    executed_steps: List[CleaningStep] = Field(default_factory=list)
    original_word_count: int
    final_word_count: int
    api_call_count: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    started_at: datetime
    completed_at: datetime
    content_type: ContentType
    preset: PresetType

    @property
    def tokens_used(self) -> int:
        return self.input_tokens + self.output_tokens


class CleaningReport(BaseModel):
    """Cleaned document plus every audit artifact of the run."""

    state: PipelineState = PipelineState.COMPLETE
    content: CleanedContent
    structure_hints: Optional[StructureHints] = None
    used_ai_analysis: bool = False
    boundaries: Optional[BoundaryDetectionResult] = None
    final_review: Optional[FinalReviewResult] = None
    confidence: PipelineConfidence
    context: AccumulatedContext

    def to_json(self, indent: int = 2) -> str:
        return self.model_dump_json(indent=indent)


@dataclass
class _Run:
    """Mutable state of one run, owned by the orchestrator task."""

    document_id: str
    original: str
    context: AccumulatedContext
    control: RunControl
    services: CleaningServices
    tracker: ConfidenceTracker
    artifact: Artifact
    user_content_type: Optional[ContentType] = None
    content_type: ContentType = ContentType.MIXED
    hints: Optional[StructureHints] = None
    used_ai_analysis: bool = False
    boundaries: Optional[BoundaryDetectionResult] = None
    review: Optional[FinalReviewResult] = None
    boundary_fallback: Optional[str] = None
    executed: List[CleaningStep] = field(default_factory=list)
    started: float = field(default_factory=time.perf_counter)
    started_at: datetime = field(default_factory=utcnow)

    def seed(self, **meta: Any) -> None:
        self.artifact = self.artifact.with_text(self.artifact.payload, **meta)


class CleaningPipeline:
    """Clean OCR Markdown documents with one configuration.

    ``client`` is the completion service; without one every AI-capable
    phase runs its heuristic path. ``on_progress`` receives a
    ``ProgressEvent`` after each state transition and each processed chunk.
    """

    def __init__(
        self,
        client: CompletionClient | None = None,
        configuration: CleaningConfiguration | None = None,
        on_progress: ProgressCallback | None = None,
        telemetry: PipelineTelemetry | None = None,
    ) -> None:
        self.client = client
        self.configuration = configuration or CleaningConfiguration()
        self.on_progress = on_progress
        self.telemetry = telemetry or PipelineTelemetry()
        self.state = PipelineState.IDLE

    async def clean(
        self,
        document_id: str,
        text: str,
        user_content_type: ContentType | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> CleaningReport:
        if not text.strip():
            raise EmptyInputError("cleaning")
        _claim(document_id)
        try:
            return await self._clean(document_id, text, user_content_type, cancel_token)
        finally:
            _release(document_id)

    async def _clean(
        self,
        document_id: str,
        text: str,
        user_content_type: ContentType | None,
        cancel_token: CancellationToken | None,
    ) -> CleaningReport:
        context = AccumulatedContext.create(document_id)
        control = RunControl(
            token=cancel_token or CancellationToken(), on_progress=self.on_progress
        )
        services = build_services(self.client, self.configuration)
        run = _Run(
            document_id=document_id,
            original=text,
            context=context,
            control=control,
            services=services,
            tracker=ConfidenceTracker(),
            artifact=Artifact(text),
            user_content_type=user_content_type,
        )
        run.seed(
            context=context,
            configuration=self.configuration,
            services=services,
            control=control,
            line_map=initial_line_map(text),
            total_lines=len(split_lines(text)),
        )
        self.telemetry.started(document_id, detail=self.configuration.preset.value)
        logger.info(
            "cleaning %s: %d words, preset %s",
            document_id,
            word_count(text),
            self.configuration.preset.value,
        )

        stages = PipelineState.stages()
        for index, state in enumerate(stages):
            self._enter(run, state, index / len(stages))
            stage_started = time.perf_counter()
            try:
                control.check(state.value)
                await self._run_stage(run, state)
            except PipelineCancelledError as exc:
                self._finish_cancelled(run, state)
                raise PipelineCancelledError(exc.phase, context) from exc
            except CleaningError as exc:
                self._finish_failed(run, state, exc)
                raise PipelineFailedError(state.value, exc, context) from exc
            self._record_stage(run, state)
            self.telemetry.phase_completed(
                document_id, state.value, time.perf_counter() - stage_started
            )
            control.report(f"{state.value} complete", fraction=(index + 1) / len(stages))
        return self._finish(run)

    # -- transitions --------------------------------------------------------

    def _enter(self, run: _Run, state: PipelineState, fraction: float) -> None:
        self.state = state
        run.control.state = state.value
        run.control.report(f"{state.value} started", fraction=fraction)
        logger.debug("state -> %s", state.value)

    def _finish_cancelled(self, run: _Run, state: PipelineState) -> None:
        self.state = PipelineState.CANCELLED
        run.control.state = self.state.value
        run.context.queue_notification(f"Cleaning cancelled during {state.value}")
        self.telemetry.cancelled(run.document_id, state.value, time.perf_counter() - run.started)
        logger.info("cleaning %s cancelled during %s", run.document_id, state.value)

    def _finish_failed(self, run: _Run, state: PipelineState, exc: BaseException) -> None:
        self.state = PipelineState.FAILED
        run.control.state = self.state.value
        run.context.record_error(f"{state.value}: {exc}", recovered=False)
        self.telemetry.failed(
            run.document_id, state.value, str(exc), time.perf_counter() - run.started
        )
        logger.error("cleaning %s failed during %s: %s", run.document_id, state.value, exc)

    def _finish(self, run: _Run) -> CleaningReport:
        self.state = PipelineState.COMPLETE
        run.control.state = self.state.value
        run.control.report("cleaning complete", fraction=1.0)
        cleaned = run.artifact.payload
        metadata = run.artifact.option("metadata") or DocumentMetadata.from_filename(
            run.document_id
        )
        usage = run.services.usage
        content = CleanedContent(
            document_id=run.document_id,
            cleaned_markdown=cleaned,
            metadata=metadata,
            executed_steps=list(run.executed),
            original_word_count=word_count(run.original),
            final_word_count=word_count(cleaned),
            api_call_count=usage.api_calls,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            started_at=run.started_at,
            completed_at=utcnow(),
            content_type=run.content_type,
            preset=self.configuration.preset,
        )
        duration = time.perf_counter() - run.started
        self.telemetry.completed(run.document_id, duration)
        logger.info(
            "cleaned %s in %.2fs: %d -> %d words, %d API call(s)",
            run.document_id,
            duration,
            content.original_word_count,
            content.final_word_count,
            content.api_call_count,
        )
        return CleaningReport(
            state=self.state,
            content=content,
            structure_hints=run.hints,
            used_ai_analysis=run.used_ai_analysis,
            boundaries=run.boundaries,
            final_review=run.review,
            confidence=run.tracker.pipeline_confidence(),
            context=run.context,
        )

    # -- stages -------------------------------------------------------------

    async def _run_stage(self, run: _Run, state: PipelineState) -> None:
        if state is PipelineState.BOUNDARY_DETECTION:
            await self._detect_boundaries(run)
            return
        for phase in state.phases:
            run.control.check(phase.value)
            if phase is PipelinePhase.RECONNAISSANCE:
                await self._reconnaissance(run)
            elif phase is PipelinePhase.FINAL_REVIEW:
                await self._final_review(run)
            else:
                await self._run_phase(run, phase)

    def _enabled(self, run: _Run, phase: PipelinePhase) -> List[CleaningStep]:
        return [
            step
            for step in steps_in_phase(phase)
            if self.configuration.is_step_enabled(step, run.content_type)
        ]

    def _skip(self, run: _Run, phase: PipelinePhase) -> None:
        reasons = sorted(
            {self.configuration.disabled_reason(s, run.content_type) for s in steps_in_phase(phase)}
        )
        reason = "; ".join(reasons) or "no steps"
        run.context.skip_phase(phase, reason)
        logger.info("phase %s skipped: %s", phase.value, reason)

    async def _reconnaissance(self, run: _Run) -> None:
        context = run.context
        context.begin_phase(PipelinePhase.RECONNAISSANCE)
        context.take_snapshot(PipelinePhase.RECONNAISSANCE, SnapshotPosition.PRE, run.original)
        result = await run.services.reconnaissance.analyze(
            run.original, run.document_id, run.user_content_type, context, run.control
        )
        hints = result.hints
        context.structure_hints_id = hints.id
        run.hints = hints
        run.used_ai_analysis = result.used_ai_analysis
        user = run.user_content_type
        if user is None or user is ContentType.AUTO_DETECT:
            user = self.configuration.content_type
        run.content_type = resolve(user, hints.detected_content_type)
        run.seed(hints=hints, content_type=run.content_type)
        passed = hints.overall_confidence >= run.services.reconnaissance.config.minimum_confidence
        context.record_checkpoint(
            CheckpointType.RECONNAISSANCE_QUALITY,
            passed,
            f"confidence {hints.overall_confidence:.2f}, {len(hints.regions)} region(s)",
        )
        for warning in result.warnings:
            context.add_warning(warning)
        if result.fallback_reason:
            self.telemetry.fallback_used(
                run.document_id, PipelinePhase.RECONNAISSANCE.value, result.fallback_reason
            )
        context.take_snapshot(PipelinePhase.RECONNAISSANCE, SnapshotPosition.POST, run.original)
        context.complete_phase(PipelinePhase.RECONNAISSANCE)
        run.executed.append(CleaningStep.ANALYZE_STRUCTURE)
        logger.info(
            "content type %s (ai=%s, confidence %.2f)",
            run.content_type.value,
            result.used_ai_analysis,
            hints.overall_confidence,
        )

    async def _detect_boundaries(self, run: _Run) -> None:
        """Locate front and back matter ahead of the structural removal steps.

        A document too short to place a boundary degrades to a warning; the
        removal steps then run without boundaries and find nothing to cut.
        """
        enabled = self.configuration.is_step_enabled
        if not any(enabled(s, run.content_type) for s in _BOUNDARY_STEPS):
            logger.info("boundary detection skipped: no boundary removal enabled")
            return
        run.context.begin_phase(PipelinePhase.STRUCTURAL_REMOVAL)
        try:
            boundaries = await run.services.boundaries.detect_boundaries(
                run.artifact.payload, run.hints, run.content_type, run.context, run.control
            )
        except DocumentTooShortError as exc:
            logger.warning("boundary detection skipped: %s", exc)
            run.context.add_warning(f"Boundary detection skipped: {exc}")
            return
        run.boundaries = boundaries
        run.boundary_fallback = run.context.fallbacks_used.get(PipelinePhase.STRUCTURAL_REMOVAL)
        run.seed(boundaries=boundaries)
        for warning in boundaries.warnings:
            run.context.add_warning(warning)

    async def _run_phase(self, run: _Run, phase: PipelinePhase) -> None:
        steps = self._enabled(run, phase)
        if not steps:
            self._skip(run, phase)
            return
        context = run.context
        context.begin_phase(phase)
        before = run.artifact
        context.take_snapshot(phase, SnapshotPosition.PRE, before.payload)
        executed: List[CleaningStep] = []
        for step in steps:
            run.control.check(step.value)
            handler = pass_for(step)
            if handler is None:
                logger.warning("no pass registered for %s", step.value)
                continue
            try:
                run.artifact = await run_step(handler.name, run.artifact)
            except RECOVERABLE as exc:
                if not self.configuration.use_fallback_on_failure:
                    raise
                self._restore(run, phase, before, step, exc)
                executed = []
                break
            executed.append(step)
        run.executed.extend(executed)
        context.take_snapshot(phase, SnapshotPosition.POST, run.artifact.payload)
        context.complete_phase(phase)

    def _restore(
        self,
        run: _Run,
        phase: PipelinePhase,
        before: Artifact,
        step: CleaningStep,
        exc: BaseException,
    ) -> None:
        """Substitute the phase's pre snapshot for whatever the failed step left."""
        snapshot = run.context.last_snapshot_text(phase)
        run.artifact = before.with_text(snapshot if snapshot is not None else before.payload)
        reason = f"{step.value}: {exc}"
        run.context.record_fallback(phase, reason)
        run.context.add_warning(f"{phase.value} rolled back to its pre-phase snapshot ({reason})")
        self.telemetry.fallback_used(run.document_id, phase.value, reason)
        logger.warning("phase %s rolled back: %s", phase.value, reason)

    async def _final_review(self, run: _Run) -> None:
        context = run.context
        context.begin_phase(PipelinePhase.FINAL_REVIEW)
        cleaned = run.artifact.payload
        context.take_snapshot(PipelinePhase.FINAL_REVIEW, SnapshotPosition.PRE, cleaned)
        run.review = await run.services.final_review.review(
            run.original, cleaned, run.content_type, context, run.control
        )
        for warning in run.review.warnings:
            context.add_warning(warning)
        context.take_snapshot(PipelinePhase.FINAL_REVIEW, SnapshotPosition.POST, cleaned)
        context.complete_phase(PipelinePhase.FINAL_REVIEW)
        run.executed.append(CleaningStep.FINAL_QUALITY_REVIEW)

    # -- confidence ---------------------------------------------------------

    def _record_stage(self, run: _Run, state: PipelineState) -> None:
        context = run.context
        owned = self._boundary_fallback(run)
        fallbacks = [
            p for p in state.phases
            if p in context.fallbacks_used and not (owned and p is PipelinePhase.STRUCTURAL_REMOVAL)
        ]
        if state is PipelineState.RECONNAISSANCE and run.hints is not None:
            run.tracker.record(
                state,
                run.hints.overall_confidence,
                used_ai=run.used_ai_analysis,
                used_fallback=bool(fallbacks),
                warnings=list(run.hints.warnings),
            )
        elif state is PipelineState.BOUNDARY_DETECTION:
            if run.boundaries is not None:
                run.tracker.record(
                    state,
                    run.boundaries.confidence,
                    used_ai=run.boundaries.used_ai,
                    used_fallback=owned,
                    warnings=list(run.boundaries.warnings),
                )
        elif state is PipelineState.FINAL_REVIEW and run.review is not None:
            run.tracker.record(
                state,
                run.review.quality_score,
                used_ai=run.review.used_ai,
                used_fallback=bool(fallbacks),
                warnings=list(run.review.warnings),
            )
        elif any(context.is_complete(p) for p in state.phases):
            run.tracker.record(
                state,
                used_ai=self._used_ai(run, state),
                used_fallback=bool(fallbacks),
                warnings=[context.fallbacks_used[p] for p in fallbacks],
            )

    @staticmethod
    def _boundary_fallback(run: _Run) -> bool:
        """Whether the structural removal fallback entry is the boundary detector's own."""
        recorded = run.context.fallbacks_used.get(PipelinePhase.STRUCTURAL_REMOVAL)
        return recorded is not None and recorded == run.boundary_fallback

    @staticmethod
    def _used_ai(run: _Run, state: PipelineState) -> bool:
        metrics: Dict[str, Dict[str, Any]] = run.artifact.option("metrics") or {}
        names = {s.pass_name for p in state.phases for s in steps_in_phase(p)}
        return any(bool(m.get("used_ai")) for name, m in metrics.items() if name in names)
