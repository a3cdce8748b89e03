import pytest

from ocr_cleaner.confidence import (
    ConfidenceRating,
    ConfidenceTracker,
    PipelineConfidence,
    WarningSeverity,
)
from ocr_cleaner.steps import PipelineState


def test_weighted_overall_with_nominal_stages():
    tracker = ConfidenceTracker()
    tracker.record(PipelineState.RECONNAISSANCE, 0.8, used_ai=True)
    tracker.record(PipelineState.CONTENT_CLEANING)
    tracker.record(PipelineState.FINAL_REVIEW, 0.9)
    result = tracker.pipeline_confidence()
    expected = (1.0 * 0.8 + 0.5 * 0.85 + 1.5 * 0.9) / 3.0
    assert result.overall_confidence == pytest.approx(expected, abs=1e-4)
    assert result.rating is ConfidenceRating.HIGH
    assert result.meets_threshold()


def test_stages_that_never_ran_are_left_out():
    tracker = ConfidenceTracker()
    tracker.record(PipelineState.RECONNAISSANCE, 0.5)
    result = tracker.pipeline_confidence()
    assert result.overall_confidence == pytest.approx(0.5)
    assert list(result.per_phase) == [PipelineState.RECONNAISSANCE]


def test_unknown_confidence_is_reported_not_guessed():
    tracker = ConfidenceTracker()
    tracker.record(PipelineState.BOUNDARY_DETECTION)
    result = tracker.pipeline_confidence()
    assert result.overall_confidence is None
    assert result.rating is ConfidenceRating.VERY_LOW
    assert result.summary() == "veryLow (unknown)"
    assert not result.meets_threshold()
    assert [w.severity for w in result.warnings] == [WarningSeverity.INFO]


def test_warnings_sorted_by_severity():
    tracker = ConfidenceTracker()
    tracker.record(PipelineState.RECONNAISSANCE, 0.2, used_fallback=True)
    tracker.record(PipelineState.BOUNDARY_DETECTION, 0.5)
    result = tracker.pipeline_confidence()
    assert [w.severity for w in result.warnings] == [
        WarningSeverity.CRITICAL,
        WarningSeverity.WARNING,
        WarningSeverity.WARNING,
    ]
    assert result.fallbacks_used == 1


@pytest.mark.parametrize(
    "value,rating",
    [
        (0.95, ConfidenceRating.VERY_HIGH),
        (0.8, ConfidenceRating.HIGH),
        (0.65, ConfidenceRating.MODERATE),
        (0.45, ConfidenceRating.LOW),
        (0.1, ConfidenceRating.VERY_LOW),
    ],
)
def test_rating_bands(value, rating):
    assert ConfidenceRating.from_confidence(value) is rating


def test_summary_format():
    assert PipelineConfidence(
        overall_confidence=0.82, rating=ConfidenceRating.HIGH
    ).summary() == "high (82%)"
