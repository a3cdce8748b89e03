from ocr_cleaner.context import AccumulatedContext, RemovalType
from ocr_cleaner.line_edits import (
    drop_lines,
    initial_line_map,
    record_line_removals,
    to_current,
    to_original,
)

LINE_MAP = (1, 2, 5, 6)


def test_initial_line_map():
    assert initial_line_map("a\nb\n\nc") == (1, 2, 3, 4)


def test_to_current_finds_line_or_next_survivor():
    assert to_current(LINE_MAP, 5) == 3
    assert to_current(LINE_MAP, 3) == 3
    assert to_current(LINE_MAP, 7) is None


def test_to_original():
    assert to_original(LINE_MAP, 3) == 5
    assert to_original(LINE_MAP, 9) == 9


def test_drop_lines_collapses_blank_runs():
    text, line_map = drop_lines("a\n\nb\n\nc", initial_line_map("a\n\nb\n\nc"), [3])
    assert text == "a\n\nc"
    assert line_map == (1, 2, 5)


def test_drop_lines_trims_trailing_blanks():
    assert drop_lines("a\n\nb", (1, 2, 3), [3]) == ("a", (1,))


def test_record_line_removals_groups_runs():
    context = AccumulatedContext.create("book.md")
    lines = ["keep", "12", "13", "keep", "14"]
    count = record_line_removals(
        context, RemovalType.PAGE_NUMBERS, lines, [5, 2, 3], justification="page number"
    )
    assert count == 2
    records = context.removals_of(RemovalType.PAGE_NUMBERS)
    assert [(r.line_range.start, r.line_range.end) for r in records] == [(2, 3), (5, 5)]
    assert records[0].word_count == 2


def test_record_line_removals_maps_to_input_lines():
    context = AccumulatedContext.create("book.md")
    lines = ["a", "b", "c", "d"]
    record_line_removals(
        context,
        RemovalType.PAGE_NUMBERS,
        lines,
        [3, 4],
        justification="page number",
        per_line=True,
        line_map=LINE_MAP,
    )
    records = context.removals_of(RemovalType.PAGE_NUMBERS)
    assert [(r.line_range.start, r.line_range.end) for r in records] == [(5, 5), (6, 6)]


def test_record_line_removals_without_context():
    assert record_line_removals(None, RemovalType.PAGE_NUMBERS, ["1"], [1], justification="x") == 0
