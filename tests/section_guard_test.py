import pytest

from ocr_cleaner.section_guard import RejectionReason, Section, check_section

LINES = ["one two three four five six seven eight nine ten"] * 40


@pytest.mark.parametrize(
    "section, start, end, confidence, reason",
    [
        (Section.FRONT_MATTER, 1, 10, 0.9, None),
        (Section.FRONT_MATTER, 1, 20, 0.9, RejectionReason.POSITION_TOO_LATE),
        (Section.TABLE_OF_CONTENTS, 2, 4, 0.9, RejectionReason.SECTION_TOO_SMALL),
        (Section.AUXILIARY_LIST, 5, 8, 0.5, RejectionReason.LOW_CONFIDENCE),
        (Section.INDEX, 5, 20, 0.9, RejectionReason.POSITION_TOO_EARLY),
        (Section.INDEX, 29, 38, 0.9, None),
        (Section.BACK_MATTER, 25, 40, 0.9, None),
        (Section.BACK_MATTER, 25, 40, 0.6, RejectionReason.LOW_CONFIDENCE),
        (Section.NOTES, 37, 40, 0.8, None),
        (Section.NOTES, 30, 40, 0.8, RejectionReason.EXCESSIVE_REMOVAL),
        (Section.NOTES, 5, 8, 0.8, RejectionReason.EXCESSIVE_REMOVAL),
        (Section.BACK_MATTER, 30, 41, 0.9, RejectionReason.OUT_OF_BOUNDS),
        (Section.FRONT_MATTER, 0, 3, 0.9, RejectionReason.OUT_OF_BOUNDS),
    ],
)
def test_check_section(section, start, end, confidence, reason):
    check = check_section(section, LINES, start, end, confidence)
    assert check.accepted is (reason is None)
    assert check.reason is reason


def test_rejection_explains_itself():
    check = check_section(Section.INDEX, LINES, 5, 20, 0.9)
    assert "starts at 10%" in check.explanation
    assert "delete 90%" in check.explanation


def test_sizes_are_measured_in_words():
    lines = ["Contents", "a", "b", "c", "d"] + ["word " * 60] * 10
    check = check_section(Section.TABLE_OF_CONTENTS, lines, 1, 5, 0.9)
    assert check.accepted
