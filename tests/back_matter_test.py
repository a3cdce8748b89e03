from ocr_cleaner.context import AccumulatedContext, FlagReason, RemovalType, ValidationMethod
from ocr_cleaner.framework import Artifact, run_step
from ocr_cleaner.line_edits import initial_line_map
from ocr_cleaner.models import BoundaryDetectionResult
from ocr_cleaner.passes.back_matter import INDEX_CONFIDENCE, index_confidence
from tests.conftest import prose

BODY = prose(10)

NOTES = "\n".join(
    [
        "# Notes",
        "",
        "1. Parish records of the flood.",
        "2. The council minutes.",
        "3. Letters held by the harbor master.",
        "4. A ledger from the mill.",
        "5. Interview with the ferryman.",
    ]
)

INDEX = "\n".join(
    [
        "# Index",
        "",
        "anchor, 12",
        "barley, 4-7",
        "bridge, 33",
        "clerk, 8, 19",
        "ferry, see boats",
        "grain, 41",
        "harbor, 52",
        "ledger, 17",
        "mill, 3",
        "river, 1-60",
    ]
)


def _artifact(text: str, **meta) -> Artifact:
    return Artifact(
        text,
        {
            "context": AccumulatedContext.create("book.md"),
            "line_map": initial_line_map(text),
            **meta,
        },
    )


async def test_back_matter_cut_from_boundary_to_end():
    boundaries = BoundaryDetectionResult(
        back_matter_start_line=61, confidence=0.9, back_evidence=["notes heading"]
    )
    a = _artifact(BODY + "\n\n" + NOTES, boundaries=boundaries)
    out = await run_step("remove_back_matter", a)
    assert out.payload == BODY
    (record,) = a.meta["context"].removals_of(RemovalType.BACK_MATTER)
    assert (record.line_range.start, record.line_range.end) == (61, 67)
    assert record.validation_method is ValidationMethod.PHASE_C


async def test_back_matter_located_by_anchor_after_reflow():
    reflowed = "\n\n".join(" ".join(p.split("\n")) for p in BODY.split("\n\n"))
    boundaries = BoundaryDetectionResult(back_matter_start_line=61, confidence=0.9)
    a = Artifact(
        reflowed + "\n\n" + NOTES,
        {
            "context": AccumulatedContext.create("book.md"),
            "line_map": None,
            "anchors": {61: "# Notes"},
            "boundaries": boundaries,
        },
    )
    out = await run_step("remove_back_matter", a)
    assert out.payload == reflowed
    (record,) = a.meta["context"].removals_of(RemovalType.BACK_MATTER)
    assert record.line_range.start == 21


async def test_lost_anchor_leaves_text_and_warns():
    boundaries = BoundaryDetectionResult(back_matter_start_line=61, confidence=0.9)
    text = BODY + "\n\n" + NOTES
    context = AccumulatedContext.create("book.md")
    a = Artifact(
        text, {"context": context, "line_map": None, "anchors": {}, "boundaries": boundaries}
    )
    out = await run_step("remove_back_matter", a)
    assert out.payload == text
    assert any("not found" in w for w in context.validation_warnings)


async def test_back_matter_too_early_is_rejected():
    boundaries = BoundaryDetectionResult(back_matter_start_line=7, confidence=0.9)
    text = BODY + "\n\n" + NOTES
    a = _artifact(text, boundaries=boundaries)
    out = await run_step("remove_back_matter", a)
    assert out.payload == text
    assert out.meta["metrics"]["remove_back_matter"]["preserved"] == "positionTooEarly"
    assert a.meta["context"].flagged_content[0].reason is FlagReason.POTENTIAL_DATA_LOSS


async def test_no_back_boundary_is_noop():
    boundaries = BoundaryDetectionResult(front_matter_end_line=3, confidence=0.9)
    out = await run_step("remove_back_matter", _artifact(BODY, boundaries=boundaries))
    assert out.payload == BODY


def test_index_confidence():
    lines = INDEX.split("\n")
    assert index_confidence(lines, 1, len(lines)) == INDEX_CONFIDENCE
    assert index_confidence(["# Index", "", "Remarks on the mill"], 1, 3) < INDEX_CONFIDENCE


async def test_index_found_by_heading():
    a = _artifact(BODY + "\n\n" + INDEX)
    out = await run_step("remove_index", a)
    assert out.payload == BODY
    (record,) = a.meta["context"].removals_of(RemovalType.INDEX)
    assert (record.line_range.start, record.line_range.end) == (61, 72)


async def test_index_of_prose_lines_is_kept():
    remarks = [f"Remarks on the mill and the river {i}" for i in range(10)]
    loose = "\n".join(["# Index", ""] + remarks)
    text = BODY + "\n\n" + loose
    a = _artifact(text)
    out = await run_step("remove_index", a)
    assert out.payload == text
    assert a.meta["context"].flagged_content[0].reason is (
        FlagReason.PRESERVED_DESPITE_LOW_CONFIDENCE
    )


async def test_index_heading_early_in_document_is_ignored():
    text = INDEX + "\n\n" + BODY
    out = await run_step("remove_index", _artifact(text))
    assert out.payload == text
