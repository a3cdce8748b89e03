import pytest

from ocr_cleaner import pattern_extractor as pe
from ocr_cleaner.models import PatternKind
from tests.conftest import prose, prose_paragraph, prose_sentence


def _with_pages(*pages: str) -> str:
    body = [prose(1), *[f"{p}\n\n{prose(1)}" for p in pages]]
    return "\n\n".join(body)


@pytest.mark.parametrize(
    "pages,style",
    [
        (("12", "13", "14"), "plain"),
        (("- 12 -", "- 13 -", "- 14 -"), "decoratedDash"),
        (("[12]", "[13]", "[14]"), "bracketed"),
        (("Page 12", "Page 13", "Page 14"), "prefixedPage"),
        (("p. 12", "p. 13", "p. 14"), "prefixedP"),
        (("xii", "xiii", "xiv"), "roman"),
    ],
)
def test_page_number_families(pages, style):
    found = pe.detect_page_number_pattern(_with_pages(*pages))
    assert found is not None
    assert found.kind is PatternKind.PAGE_NUMBER
    assert found.style == style
    assert found.match_count == 3
    assert found.confidence == pytest.approx(3 / 20)


def test_page_numbers_need_three_matches():
    assert pe.detect_page_number_pattern(_with_pages("12", "13")) is None


def test_page_number_confidence_is_capped():
    text = "\n\n".join(str(n) for n in range(1, 41))
    found = pe.detect_page_number_pattern(text)
    assert found is not None
    assert found.confidence == pytest.approx(0.95)
    assert len(found.samples) == pe.MAX_SAMPLES


def test_citation_family_with_most_matches_wins():
    text = (
        "Growth slowed (Smith, 2001). Prices rose (Jones & Brown, 1998, p. 4). "
        "Wages fell (Lee et al., 2010) while demand [1] and supply [2] shifted. "
        "Trade recovered (Adams, 2003)."
    )
    found = pe.detect_citation_pattern(text)
    assert found is not None
    assert found.style == "authorYear"
    assert found.match_count == 4
    assert found.confidence == pytest.approx(4 / 30)


def test_footnote_markers():
    text = "First claim.[^1] Second claim.[^2] Third claim.[^3]"
    found = pe.detect_footnote_pattern(text)
    assert found is not None
    assert found.style == "markdownFootnote"
    assert found.match_count == 3


def test_no_patterns_in_plain_prose():
    patterns = pe.detect_all_patterns(prose(4))
    assert patterns.page_numbers is None
    assert patterns.citations is None
    assert patterns.footnote_markers is None
    assert patterns.header_lines == []
    assert patterns.footer_lines == []


def test_repeated_running_header():
    blocks = [f"THE QUIET VALLEY\n{prose(1)}" for _ in range(8)]
    headers, footers = pe.detect_repeated_lines("\n\n".join(blocks))
    assert headers == ["THE QUIET VALLEY"]
    assert footers == []


def test_repeated_running_footer():
    blocks = [f"{prose(1)}\nNotes From The Valley" for _ in range(8)]
    headers, footers = pe.detect_repeated_lines("\n\n".join(blocks))
    assert headers == []
    assert footers == ["Notes From The Valley"]


def test_short_document_has_no_running_lines():
    blocks = [f"THE QUIET VALLEY\n{prose(1)}" for _ in range(3)]
    assert pe.detect_repeated_lines("\n\n".join(blocks)) == ([], [])


def test_reply_repeated_within_one_scene_is_not_a_header():
    scene = ["Yes sir", prose_sentence(90), "Yes sir", prose_sentence(91), "Yes sir"]
    text = "\n\n".join([prose(5), *scene, prose(5)])
    assert len(text.split("\n")) > pe.MIN_RUNNING_DOCUMENT_LINES
    assert pe.detect_repeated_lines(text) == ([], [])


def test_evenly_spaced_dialogue_is_not_a_header():
    parts = []
    for i in range(8):
        parts.append(prose_paragraph(i * 5))
        if i % 2:
            parts.append("“Yes, sir”")
    text = "\n\n".join(parts)
    assert len(text.split("\n")) > pe.MIN_RUNNING_DOCUMENT_LINES
    assert pe.detect_repeated_lines(text) == ([], [])


def test_section_labels_are_not_running_lines():
    blocks = [f"{prose(1)}\nChapter Notes Draft" for _ in range(8)]
    assert pe.detect_repeated_lines("\n\n".join(blocks)) == ([], [])


def test_detection_is_deterministic():
    text = _with_pages("7", "8", "9")
    assert pe.detect_all_patterns(text) == pe.detect_all_patterns(text)


def test_validate_regex_pattern():
    assert pe.validate_regex_pattern(r"^\d+$")
    assert not pe.validate_regex_pattern(r"([unclosed")


def test_pattern_match_ratio():
    assert pe.test_pattern(r"^\d+$", ["1", "22", "x"]) == pytest.approx(2 / 3)
    assert pe.test_pattern(r"(", ["1"]) == 0.0
    assert pe.test_pattern(r"\d", []) == 0.0


def test_extract_pattern_excerpts():
    text = "Plain opening sentence without noise\n42\nA claim [3] here\nanother line"
    assert pe.extract_pattern_excerpts(text) == "Line 2: 42\nLine 3: A claim [3] here"
    assert pe.extract_pattern_excerpts(text, max_excerpts=1) == "Line 2: 42"
    assert pe.extract_pattern_excerpts(text, max_excerpts=0) == ""
