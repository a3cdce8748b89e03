import json

import pytest

from ocr_cleaner.content_types import ContentType
from ocr_cleaner.context import AccumulatedContext, CheckpointType
from ocr_cleaner.errors import EmptyInputError
from ocr_cleaner.final_review import FinalReviewService, heuristic_review, integrity_issues
from ocr_cleaner.models import IssueCategory, IssueSeverity, QualityRating
from ocr_cleaner.steps import PipelinePhase
from tests.conftest import FakeClient, prose

ORIGINAL = prose(10)


def _review(score, **extra):
    return json.dumps({"qualityScore": score, "confidence": 0.8, **extra})


def test_full_retention_is_excellent():
    result = heuristic_review(ORIGINAL, ORIGINAL, ContentType.MIXED)
    assert result.quality_score == pytest.approx(0.9)
    assert result.quality_rating is QualityRating.EXCELLENT
    assert result.issues == []
    assert result.retention_ratio == 1.0
    assert not result.used_ai


def test_moderate_loss_is_a_warning():
    result = heuristic_review(ORIGINAL, prose(7), ContentType.MIXED)
    assert [i.severity for i in result.issues] == [IssueSeverity.WARNING]
    assert result.quality_score == pytest.approx(0.6)
    assert result.quality_rating is QualityRating.ACCEPTABLE


def test_heavy_loss_is_critical():
    result = heuristic_review(ORIGINAL, prose(3), ContentType.MIXED)
    assert result.issues[0].severity is IssueSeverity.CRITICAL
    assert result.issues[0].category is IssueCategory.CONTENT_LOSS
    assert result.quality_rating is QualityRating.POOR


def test_apparatus_heavy_types_tolerate_more_removal():
    result = heuristic_review(ORIGINAL, prose(7), ContentType.ACADEMIC)
    assert result.issues == []
    assert result.quality_score == pytest.approx(0.9)


def test_nearly_empty_output_is_poor():
    result = heuristic_review(ORIGINAL, "Almost nothing left.", ContentType.MIXED)
    assert result.quality_rating is QualityRating.POOR
    assert any("very little content" in i.description for i in result.issues)


def test_integrity_checks():
    descriptions = [i.description for i in integrity_issues("Some text [truncated]")]
    assert descriptions == ["Text contains truncation markers"]
    assert [i.severity for i in integrity_issues("It stopped in the middle of")] == [
        IssueSeverity.INFO
    ]
    fenced = integrity_issues("```\ncode here.")
    assert [i.description for i in fenced] == ["Unbalanced code fence"]
    pages = integrity_issues("Text.\n\n12\n\n13\n\n14\n\nMore text.")
    assert [i.description for i in pages] == ["3 lines look like leftover page numbers"]


def test_end_markers_are_not_prose():
    cleaned = f"{prose(1)}\n\n---\n\n*** <!-- END OF THE QUIET VALLEY -->\n"
    assert integrity_issues(cleaned) == []


async def test_review_without_client_records_checkpoint():
    context = AccumulatedContext.create("doc")
    result = await FinalReviewService().review(ORIGINAL, ORIGINAL, context=context)
    assert result.quality_rating is QualityRating.EXCELLENT
    assert CheckpointType.FINAL_QUALITY in context.passed_checkpoints


async def test_ai_review():
    client = FakeClient([_review(0.95, summary="Clean.")])
    result = await FinalReviewService(client=client).review(ORIGINAL, ORIGINAL)
    assert client.calls == 1
    assert result.used_ai
    assert result.quality_score == pytest.approx(0.95)
    assert result.summary == "Clean."
    assert result.warnings == []


async def test_divergent_scores_are_warned():
    result = await FinalReviewService(client=FakeClient([_review(0.4)])).review(
        ORIGINAL, ORIGINAL
    )
    assert result.quality_rating is QualityRating.POOR
    assert "diverge" in result.warnings[0]


async def test_heuristic_critical_issue_forces_poor():
    result = await FinalReviewService(client=FakeClient([_review(0.95)])).review(
        ORIGINAL, prose(3)
    )
    assert result.quality_rating is QualityRating.POOR
    assert result.quality_score <= 0.4 + 1e-9


async def test_ai_failure_falls_back():
    context = AccumulatedContext.create("doc")
    result = await FinalReviewService(client=FakeClient()).review(
        ORIGINAL, ORIGINAL, context=context
    )
    assert not result.used_ai
    assert result.warnings[0].startswith("AI review unavailable")
    assert PipelinePhase.FINAL_REVIEW in context.fallbacks_used


async def test_empty_output_is_rejected():
    with pytest.raises(EmptyInputError):
        await FinalReviewService().review(ORIGINAL, "   ")
