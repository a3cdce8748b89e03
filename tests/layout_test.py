from ocr_cleaner.content_types import ContentType
from ocr_cleaner.context import AccumulatedContext
from ocr_cleaner.framework import Artifact, run_step
from ocr_cleaner.line_edits import initial_line_map
from ocr_cleaner.models import BoundaryDetectionResult
from tests.conftest import prose, prose_paragraph, prose_sentence

TEXT = prose(2)


def _artifact(**meta) -> Artifact:
    return Artifact(TEXT, {"context": AccumulatedContext.create("book.md"), **meta})


async def test_reflow_pass_joins_wrapped_lines():
    out = await run_step("reflow_paragraphs", _artifact(line_map=initial_line_map(TEXT)))
    assert out.payload.split("\n\n")[0] == prose_paragraph(0).replace("\n", " ")
    assert out.meta["line_map"] is None
    metrics = out.meta["metrics"]["reflow_paragraphs"]
    assert metrics["lines_joined"] == 8
    assert metrics["used_ai"] is False


async def test_reflow_pass_captures_anchors_before_renumbering():
    boundaries = BoundaryDetectionResult(back_matter_start_line=11, confidence=0.9)
    a = _artifact(line_map=initial_line_map(TEXT), boundaries=boundaries)
    out = await run_step("reflow_paragraphs", a)
    assert out.meta["anchors"] == {11: prose_sentence(9)}


async def test_reflow_pass_leaves_poetry_alone():
    a = _artifact(content_type=ContentType.POETRY)
    out = await run_step("reflow_paragraphs", a)
    assert out.payload == TEXT
    assert "line_map" not in out.meta
    assert any("Reflow skipped" in w for w in a.meta["context"].validation_warnings)


async def test_optimization_pass_keeps_short_paragraphs():
    out = await run_step("optimize_paragraph_length", _artifact())
    assert out.payload == TEXT
    assert out.meta["metrics"]["optimize_paragraph_length"]["paragraphs_split"] == 0


async def test_passes_accept_empty_text():
    out = await run_step("reflow_paragraphs", Artifact("  "))
    assert out.payload == "  "
