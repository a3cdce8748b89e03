import pytest

from ocr_cleaner.context import AccumulatedContext, TransformationType
from ocr_cleaner.framework import Artifact, run_step
from ocr_cleaner.passes.special_characters import clean_special_characters, repair_line


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("The caf\u00c3\u00a9 opened early.", "The caf\u00e9 opened early."),
        ("split\u200bword and\u00adsoft", "splitword andsoft"),
        ("wide\u00a0\u00a0gap", "wide gap"),
        ("too     many spaces", "too many spaces"),
        ("an **unclosed emphasis", "an unclosed emphasis"),
        ("kept **bold** text", "kept **bold** text"),
        ("bell\x07 rings", "bell rings"),
        ("trailing   ", "trailing"),
    ],
)
def test_repair_line(raw, expected):
    assert repair_line(raw) == expected


def test_inline_code_spacing_preserved():
    assert repair_line("use `a    b` here") == "use `a    b` here"


def test_fenced_code_left_untouched():
    text = "Intro\u00a0\u00a0line\n```\nx\u00a0\u00a0y    z\n```"
    cleaned, changed = clean_special_characters(text)
    assert cleaned.split("\n")[0] == "Intro line"
    assert cleaned.split("\n")[2] == "x\u00a0\u00a0y    z"
    assert changed == [1]


def test_line_structure_is_preserved():
    text = "one\u200b\n\ntwo  \nthree"
    cleaned, _ = clean_special_characters(text)
    assert cleaned == "one\n\ntwo\nthree"


async def test_pass_records_transformation():
    context = AccumulatedContext.create("chars.md")
    text = "Clean line.\nBroken\u200b line.\nAnother clean line.\nsoft\u00adhyphen"
    out = await run_step("clean_special_characters_pass", Artifact(text, {"context": context}))
    assert out.payload == "Clean line.\nBroken line.\nAnother clean line.\nsofthyphen"
    (record,) = context.transformations_of(TransformationType.SPECIAL_CHAR_REMOVAL)
    assert [(r.start, r.end) for r in record.affected_ranges] == [(2, 2), (4, 4)]
    assert out.meta["metrics"]["clean_special_characters_pass"]["lines_changed"] == 2


async def test_clean_text_records_nothing():
    context = AccumulatedContext.create("chars.md")
    text = "Nothing to repair here."
    out = await run_step("clean_special_characters_pass", Artifact(text, {"context": context}))
    assert out.payload == text
    assert context.transformations == []
