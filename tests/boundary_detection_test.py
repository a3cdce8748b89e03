import json

import pytest

from ocr_cleaner.boundary_detection import (
    HEURISTIC_WARNING,
    BoundaryDetectionService,
    back_matter_type,
    heuristic_boundaries,
)
from ocr_cleaner.context import AccumulatedContext, BoundaryType
from ocr_cleaner.errors import DocumentTooShortError
from ocr_cleaner.models import (
    BackMatterType,
    DetectedRegion,
    DetectionMethod,
    LineRange,
    RegionType,
    StructureHints,
)
from ocr_cleaner.steps import PipelinePhase
from tests.conftest import FakeClient, prose

BOOK = "\n".join(
    [
        "The Quiet Valley",
        "Copyright 1998 by A. Writer",
        "All rights reserved.",
        "",
        "Contents",
        "Chapter 1 ..... 3",
        "Chapter 2 ..... 9",
        "",
        "# Chapter 1",
        "",
        prose(4),
        "",
        "# Index",
        "mill, 4, 9",
        "river, 2",
    ]
)


def _front(line, confidence=0.9):
    return json.dumps({"frontMatterEndLine": line, "confidence": confidence})


def _back(line, confidence=0.85):
    return json.dumps(
        {
            "backMatterStartLine": line,
            "confidence": confidence,
            "backMatterSections": [{"type": "index", "startLine": line}],
        }
    )


def _region(kind, start, end, confidence):
    return DetectedRegion(
        type=kind,
        line_range=LineRange(start=start, end=end),
        confidence=confidence,
        detection_method=DetectionMethod.AI_ANALYSIS,
    )


def test_heuristic_scan():
    result = heuristic_boundaries(BOOK)
    assert result.front_matter_end_line == 8
    assert result.back_matter_start_line == 35
    assert [s.type for s in result.back_matter_sections] == [BackMatterType.INDEX]
    assert result.back_matter_sections[0].end_line == 37
    assert result.warnings == [HEURISTIC_WARNING]
    assert not result.used_ai


@pytest.mark.parametrize(
    "line,kind",
    [
        ("# References", BackMatterType.BIBLIOGRAPHY),
        ("## Appendix A: Tables", BackMatterType.APPENDIX),
        ("Notes", BackMatterType.ENDNOTES),
        ("About the Author", BackMatterType.ABOUT_AUTHOR),
        ("The river carried silt past the mill.", None),
    ],
)
def test_back_matter_headings(line, kind):
    assert back_matter_type(line) is kind


async def test_reconnaissance_regions_take_precedence():
    lines = [f"Line {i} of the river story continues here." for i in range(1, 101)]
    lines[2] = "Copyright 1998"
    lines[39] = "# Chapter 1"
    lines[59] = "# Index"
    hints = StructureHints(
        document_id="doc",
        regions=[
            _region(RegionType.TABLE_OF_CONTENTS, 1, 20, 0.9),
            _region(RegionType.BIBLIOGRAPHY, 80, 100, 0.8),
        ],
        used_ai_analysis=True,
    )
    client = FakeClient()
    context = AccumulatedContext.create("doc")
    result = await BoundaryDetectionService(client=client).detect_boundaries(
        "\n".join(lines), hints, context=context
    )
    assert result.front_matter_end_line == 20
    assert result.back_matter_start_line == 80
    assert result.front_evidence == ["reconnaissance"]
    assert result.back_evidence == ["reconnaissance"]
    assert result.confidence == pytest.approx(0.8)
    assert client.calls == 0
    assert [(b.boundary_type, b.line) for b in context.confirmed_boundaries] == [
        (BoundaryType.FRONT_MATTER_END, 20),
        (BoundaryType.BACK_MATTER_START, 80),
    ]
    assert context.confirmed_boundaries[0].approved_by == ["reconnaissance"]


async def test_short_documents_are_rejected():
    with pytest.raises(DocumentTooShortError) as info:
        await BoundaryDetectionService().detect_boundaries("a\nb\nc")
    assert info.value.unit == "lines"


async def test_without_client_uses_heuristics():
    context = AccumulatedContext.create("doc")
    result = await BoundaryDetectionService().detect_boundaries(BOOK, context=context)
    assert result.front_matter_end_line == 8
    assert PipelinePhase.STRUCTURAL_REMOVAL in context.fallbacks_used
    assert context.confirmed_boundaries[0].approved_by == ["heuristic"]


async def test_ai_boundaries():
    client = FakeClient([_front(8), _back(35)])
    result = await BoundaryDetectionService(client=client).detect_boundaries(BOOK)
    assert client.calls == 2
    assert result.used_ai
    assert (result.front_matter_end_line, result.back_matter_start_line) == (8, 35)
    assert result.confidence == pytest.approx(0.85)
    assert [s.type for s in result.back_matter_sections] == [BackMatterType.INDEX]


async def test_low_confidence_side_is_rescanned():
    client = FakeClient([_front(7), _back(30, confidence=0.3)])
    result = await BoundaryDetectionService(client=client).detect_boundaries(BOOK)
    assert result.front_matter_end_line == 7
    assert result.back_matter_start_line == 35
    assert result.used_ai
    assert result.confidence == pytest.approx(0.5)


async def test_service_failure_falls_back():
    client = FakeClient(["not json"])
    result = await BoundaryDetectionService(client=client).detect_boundaries(BOOK)
    assert not result.used_ai
    assert result.front_matter_end_line == 8


async def test_out_of_range_boundaries_are_dropped():
    client = FakeClient([_front(8), _back(500)])
    result = await BoundaryDetectionService(client=client).detect_boundaries(BOOK)
    assert result.back_matter_start_line is None
    assert result.back_matter_sections == []
    assert any("outside document" in w for w in result.warnings)
