import pytest

from ocr_cleaner.config import CleaningConfiguration
from ocr_cleaner.context import AccumulatedContext, FlagReason, RemovalType
from ocr_cleaner.errors import InvalidPatternError
from ocr_cleaner.framework import Artifact, run_step
from ocr_cleaner.models import DetectedPattern, DetectedPatterns, PatternKind, StructureHints
from ocr_cleaner.passes.scholarly import compile_pattern, strip_inline
from tests.conftest import prose

CITED = "\n".join(
    [
        "The mill flooded twice (Smith, 2001) before the bridge was built.",
        "Records were poor (Jones and Brown, 1998, p. 12) for that decade.",
        "Later surveys agree (Hall et al., 2005).",
        "Cite sources as `(Smith, 2001)` in the appendix.",
    ]
)

FOOTNOTED = "\n".join(
    [
        "The river rose[^1] in spring.",
        "The mill closed[^2] that year.",
        "The bridge fell[^3] soon after.",
        "",
        "[^1]: Parish records.",
        "[^2]: Town ledger.",
        "[^3]: Council minutes.",
    ]
)


def _artifact(text: str, **meta) -> Artifact:
    return Artifact(text, {"context": AccumulatedContext.create("paper.md"), **meta})


async def test_citations_removed_outside_inline_code():
    config = CleaningConfiguration(citation_confidence_threshold=0.05)
    a = _artifact(CITED, configuration=config)
    out = await run_step("remove_citations", a)
    assert out.payload.split("\n") == [
        "The mill flooded twice before the bridge was built.",
        "Records were poor for that decade.",
        "Later surveys agree.",
        "Cite sources as `(Smith, 2001)` in the appendix.",
    ]
    removals = a.meta["context"].removals_of(RemovalType.CITATIONS)
    assert [r.line_range.start for r in removals] == [1, 2, 3]
    assert out.meta["metrics"]["remove_citations"]["style"] == "authorYear"


async def test_low_confidence_citations_are_flagged_not_removed():
    a = _artifact(CITED)
    out = await run_step("remove_citations", a)
    assert out.payload == CITED
    (flag,) = a.meta["context"].flagged_content
    assert flag.reason is FlagReason.PRESERVED_DESPITE_LOW_CONFIDENCE


async def test_citation_pattern_from_hints():
    pattern = DetectedPattern(
        kind=PatternKind.CITATION,
        style="numberedBracket",
        regex=r"\[\d+(?:\s*[-–,]\s*\d+)*\]",
        confidence=0.9,
    )
    hints = StructureHints(document_id="paper.md", patterns=DetectedPatterns(citations=pattern))
    text = "As shown before [1], the tide [2, 3] matters."
    out = await run_step("remove_citations", _artifact(text, hints=hints))
    assert out.payload == "As shown before, the tide matters."


async def test_citations_left_in_code_fences():
    config = CleaningConfiguration(citation_confidence_threshold=0.05)
    text = CITED + "\n```\nref = (Smith, 2001)\n```"
    out = await run_step("remove_citations", _artifact(text, configuration=config))
    assert "ref = (Smith, 2001)" in out.payload


def test_invalid_pattern_raises_typed_error():
    with pytest.raises(InvalidPatternError):
        compile_pattern("(unclosed")


def test_strip_inline_keep_predicate():
    rx = compile_pattern(r"\*")
    lines, changes = strip_inline(["a note*", "some *emphasis* here"], rx, lambda s: "*e" in s)
    assert lines == ["a note", "some *emphasis* here"]
    assert changes == [(1, "*")]


async def test_footnote_definitions_and_markers_removed():
    config = CleaningConfiguration(footnote_confidence_threshold=0.1)
    a = _artifact(FOOTNOTED, configuration=config)
    out = await run_step("remove_footnotes_endnotes", a)
    assert out.payload == (
        "The river rose in spring.\nThe mill closed that year.\nThe bridge fell soon after."
    )
    removals = a.meta["context"].removals_of(RemovalType.FOOTNOTES)
    assert len(removals) == 6
    metrics = out.meta["metrics"]["remove_footnotes_endnotes"]
    assert (metrics["definitions"], metrics["markers"]) == (3, 3)


async def test_low_confidence_markers_kept_but_definitions_go():
    a = _artifact(FOOTNOTED)
    out = await run_step("remove_footnotes_endnotes", a)
    assert "[^1]" in out.payload
    assert "Parish records" not in out.payload


async def test_notes_section_removed():
    body = prose(10)
    notes = "\n".join(
        [
            "# Notes",
            "",
            "1. Parish records of the flood.",
            "2. The council minutes.",
            "3. Letters held by the harbor master.",
            "4. A ledger from the mill.",
        ]
    )
    a = _artifact(body + "\n\n" + notes)
    out = await run_step("remove_footnotes_endnotes", a)
    assert out.payload == body
    assert len(a.meta["context"].removals_of(RemovalType.ENDNOTES)) == 1


async def test_notes_heading_in_opening_half_is_kept():
    notes = "# Notes\n\n1. One.\n2. Two.\n3. Three.\n4. Four."
    text = notes + "\n\n" + prose(10)
    a = _artifact(text)
    out = await run_step("remove_footnotes_endnotes", a)
    assert "# Notes" in out.payload
