import asyncio
from types import MappingProxyType

import pytest

from ocr_cleaner import framework
from ocr_cleaner.config import CleaningConfiguration
from ocr_cleaner.context import RemovalType
from ocr_cleaner.control import CancellationToken
from ocr_cleaner.errors import (
    CompletionServiceError,
    DocumentBusyError,
    EmptyInputError,
    PipelineCancelledError,
    PipelineFailedError,
)
from ocr_cleaner.final_review import retention_thresholds
from ocr_cleaner.models import QualityRating
from ocr_cleaner.orchestrator import CleaningPipeline
from ocr_cleaner.steps import CleaningStep, PipelinePhase, PipelineState
from ocr_cleaner.telemetry import PipelineTelemetry
from tests.conftest import FakeClient, prose_paragraph


def _book() -> str:
    parts = []
    for i in range(10):
        parts.append(prose_paragraph(i * 5))
        if i < 5:
            parts.append(str(42 + i))
    return "\n\n".join(parts)


class GatedClient(FakeClient):
    """Offline client whose calls block until ``gate`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()

    async def complete(self, prompt, *, max_tokens=4096):
        self.prompts.append(prompt)
        await self.gate.wait()
        raise ConnectionError("fake completion service is offline")


class _FailingPass:
    name = CleaningStep.REMOVE_HEADERS_FOOTERS.pass_name
    step = CleaningStep.REMOVE_HEADERS_FOOTERS

    def __call__(self, a):
        raise CompletionServiceError("header detection service down")


async def test_clean_without_ai():
    pipeline = CleaningPipeline()
    report = await pipeline.clean("the_river.md", _book())
    assert report.state is PipelineState.COMPLETE
    assert pipeline.state is PipelineState.COMPLETE
    context = report.context
    assert len(context.removals_of(RemovalType.PAGE_NUMBERS)) == 5
    cleaned = report.content.cleaned_markdown
    assert "\n42\n" not in cleaned
    assert prose_paragraph(0).replace("\n", " ") in cleaned
    assert cleaned.rstrip().endswith("-->")
    assert report.content.api_call_count == 0
    assert report.used_ai_analysis is False
    assert report.final_review.quality_rating.at_least(QualityRating.ACCEPTABLE)
    assert all(not phase.used_ai for phase in report.confidence.per_phase.values())
    content = report.content
    _, warning_ratio = retention_thresholds(content.content_type)
    assert content.final_word_count >= warning_ratio * content.original_word_count


async def test_each_fallback_counted_once():
    report = await CleaningPipeline().clean("the_river.md", _book())
    recorded = report.context.fallbacks_used
    assert set(recorded) == {PipelinePhase.RECONNAISSANCE, PipelinePhase.STRUCTURAL_REMOVAL}
    confidence = report.confidence
    assert confidence.fallbacks_used == len(recorded)
    stages = [w.phase for w in confidence.warnings if w.message.endswith("heuristic fallback")]
    assert sorted(s.value for s in stages) == ["boundaryDetection", "reconnaissance"]


async def test_executed_and_skipped_steps():
    report = await CleaningPipeline().clean("the_river.md", _book())
    executed = report.content.executed_steps
    assert executed[0] is CleaningStep.ANALYZE_STRUCTURE
    assert executed[-1] is CleaningStep.FINAL_QUALITY_REVIEW
    assert CleaningStep.REMOVE_PAGE_NUMBERS in executed
    assert CleaningStep.REFLOW_PARAGRAPHS in executed
    assert CleaningStep.REMOVE_CITATIONS not in executed
    skipped = report.context.skipped_phases
    assert skipped[PipelinePhase.SCHOLARLY_CONTENT] == "disabled by configuration"
    assert PipelinePhase.BACK_MATTER_REMOVAL in skipped
    assert PipelinePhase.STRUCTURAL_REMOVAL in report.context.completed_phases


async def test_progress_events_are_ordered():
    events = []
    pipeline = CleaningPipeline(on_progress=events.append)
    await pipeline.clean("the_river.md", _book())
    messages = [e.message for e in events]
    assert messages[0] == "reconnaissance started"
    assert "finalReview complete" in messages
    assert messages[-1] == "cleaning complete"
    assert [e.sequence for e in events] == list(range(len(events)))
    fractions = [e.fraction for e in events]
    assert fractions == sorted(fractions)
    assert fractions[-1] == 1.0


async def test_cancellation_between_states():
    token = CancellationToken()

    def on_progress(event):
        if event.message == "reconnaissance complete":
            token.cancel()

    pipeline = CleaningPipeline(on_progress=on_progress)
    with pytest.raises(PipelineCancelledError) as info:
        await pipeline.clean("the_river.md", _book(), cancel_token=token)
    assert pipeline.state is PipelineState.CANCELLED
    context = info.value.context
    assert context.completed_phases == [
        PipelinePhase.RECONNAISSANCE,
        PipelinePhase.METADATA_EXTRACTION,
    ]
    assert context.user_notifications
    # The document is released once the run ends.
    report = await CleaningPipeline().clean("the_river.md", _book())
    assert report.state is PipelineState.COMPLETE


async def test_cancellation_stops_completion_calls():
    client = FakeClient()
    token = CancellationToken()
    seen = []

    def on_progress(event):
        if event.message == "structuralRemoval started":
            seen.append(client.calls)
            token.cancel()

    pipeline = CleaningPipeline(client=client, on_progress=on_progress)
    with pytest.raises(PipelineCancelledError):
        await pipeline.clean("the_river.md", _book(), cancel_token=token)
    assert seen and seen[0] > 0
    assert client.calls == seen[0]


async def test_empty_input_rejected():
    with pytest.raises(EmptyInputError):
        await CleaningPipeline().clean("blank.md", "  \n\n ")


async def test_concurrent_run_on_same_document_is_refused():
    client = GatedClient()
    first = asyncio.create_task(CleaningPipeline(client=client).clean("the_river.md", _book()))
    while not client.prompts:
        await asyncio.sleep(0)
    with pytest.raises(DocumentBusyError):
        await CleaningPipeline().clean("the_river.md", _book())
    other = await CleaningPipeline().clean("other.md", _book())
    assert other.state is PipelineState.COMPLETE
    client.gate.set()
    report = await first
    assert report.state is PipelineState.COMPLETE
    assert PipelinePhase.RECONNAISSANCE in report.context.fallbacks_used


async def test_failure_without_fallback_raises():
    telemetry = PipelineTelemetry()
    pipeline = CleaningPipeline(
        client=FakeClient(),
        configuration=CleaningConfiguration(use_fallback_on_failure=False),
        telemetry=telemetry,
    )
    with pytest.raises(PipelineFailedError) as info:
        await pipeline.clean("the_river.md", _book())
    assert info.value.phase == "reconnaissance"
    assert isinstance(info.value.original, CompletionServiceError)
    assert pipeline.state is PipelineState.FAILED
    assert info.value.context.error_messages


async def test_recoverable_step_failure_rolls_phase_back(monkeypatch):
    registry = {**framework.registry(), _FailingPass.name: _FailingPass()}
    monkeypatch.setattr(framework, "_REGISTRY", MappingProxyType(registry))
    report = await CleaningPipeline().clean("the_river.md", _book())
    context = report.context
    assert PipelinePhase.STRUCTURAL_REMOVAL in context.fallbacks_used
    assert any("rolled back" in w for w in context.validation_warnings)
    assert CleaningStep.REMOVE_PAGE_NUMBERS not in report.content.executed_steps
    assert "\n\n42\n\n" in report.content.cleaned_markdown
    assert report.state is PipelineState.COMPLETE
