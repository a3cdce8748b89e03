from hypothesis import given, settings, strategies as st
from ocr_cleaner.reflow import reflow_lines
from ocr_cleaner.text_utils import word_count

words = st.text(alphabet="abcdefgh ", max_size=40)
documents = st.lists(words, min_size=1, max_size=40)


@given(documents)
@settings(deadline=None)
def test_reflow_preserves_words(lines: list[str]) -> None:
    out, joined = reflow_lines(lines)
    assert word_count("\n".join(out)) == word_count("\n".join(lines))
    assert len(out) == len(lines) - joined


@given(documents)
@settings(deadline=None)
def test_reflow_is_idempotent(lines: list[str]) -> None:
    once, _ = reflow_lines(lines)
    twice, joined = reflow_lines(once)
    assert twice == once
    assert joined == 0
