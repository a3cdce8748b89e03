import pytest

from ocr_cleaner.content_types import ContentType
from ocr_cleaner.errors import ResponseParseError
from ocr_cleaner.models import BackMatterType, IssueCategory, IssueSeverity, RegionType
from ocr_cleaner.response_parser import (
    ParseFailureReason,
    extract_json,
    parse_back_boundary,
    parse_content_type_detection,
    parse_final_review,
    parse_front_boundary,
    parse_metadata,
    parse_number,
    parse_optimization,
    parse_reflow,
    parse_structure_analysis,
    strip_fences,
)


def test_strip_fences():
    assert strip_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_fences('  {"a": 1} ') == '{"a": 1}'


def test_extract_json_from_chatter():
    result = extract_json('Sure! Here it is: {"a": {"b": 2}} Hope that helps.')
    assert result.value == '{"a": {"b": 2}}'


@pytest.mark.parametrize(
    "response,reason",
    [
        ("no braces at all", ParseFailureReason.NO_JSON_FOUND),
        ("{not json}", ParseFailureReason.INVALID_JSON_STRUCTURE),
        ('{"confidence": 0.5}', ParseFailureReason.MISSING_REQUIRED_FIELD),
        ('{"frontMatterEndLine": "x", "confidence": 0.5}', ParseFailureReason.INVALID_FIELD_TYPE),
    ],
)
def test_front_boundary_failures_are_tagged(response, reason):
    result = parse_front_boundary(response)
    assert not result.ok
    assert result.failure.reason is reason


def test_unwrap_raises_parse_error():
    with pytest.raises(ResponseParseError) as info:
        parse_front_boundary('{"confidence": 0.5}').unwrap()
    assert info.value.field == "frontMatterEndLine"


def test_parse_number_accepts_strings():
    assert parse_number("0.75") == 0.75
    assert parse_number(3) == 3.0
    assert parse_number(True) is None
    assert parse_number("high") is None


def test_structure_analysis():
    response = """```json
    {
      "detectedContentType": "academic",
      "contentTypeConfidence": "0.8",
      "regions": [
        {"type": "tableOfContents", "startLine": 3, "endLine": 20, "confidence": 0.9,
         "evidence": ["Contents heading"]},
        {"type": "bibliography", "lineRange": {"start": 400, "end": 450}},
        {"type": "mystery", "startLine": 1, "endLine": 2}
      ],
      "patterns": {"pageNumbers": {"detected": true, "pattern": "^\\\\d+$", "samples": ["1", "2"]}},
      "overallConfidence": 1.4
    }
    ```"""
    analysis = parse_structure_analysis(response).unwrap()
    assert analysis.detected_content_type is ContentType.ACADEMIC
    assert analysis.content_type_confidence == 0.8
    assert [r.type for r in analysis.regions] == [
        RegionType.TABLE_OF_CONTENTS,
        RegionType.BIBLIOGRAPHY,
    ]
    assert analysis.regions[1].confidence == 0.5
    assert analysis.dropped_regions == 1
    assert analysis.overall_confidence == 1.0
    assert analysis.patterns.page_numbers.regex == "^\\d+$"
    assert analysis.patterns.citations is None


def test_unknown_content_type_becomes_mixed():
    detection = parse_content_type_detection(
        '{"contentType": "cookbook", "confidence": 0.4, '
        '"alternativeTypes": [{"type": "poetry", "confidence": 0.2}, "legal"]}'
    ).unwrap()
    assert detection.content_type is ContentType.MIXED
    assert detection.alternative_types == [(ContentType.POETRY, 0.2), (ContentType.LEGAL, 0.0)]


def test_front_boundary_zero_means_none():
    parsed = parse_front_boundary(
        '{"frontMatterEndLine": 0, "confidence": 0.9, "boundaryEvidence": ["no preface"]}'
    ).unwrap()
    assert parsed.front_matter_end_line is None
    assert parsed.evidence == "no preface"


def test_back_boundary_sections():
    parsed = parse_back_boundary(
        '{"backMatterStartLine": 410, "confidence": 0.85, "backMatterSections": ['
        '{"type": "index", "startLine": 440}, {"type": "errata", "startLine": 470, "endLine": 480}'
        "]}"
    ).unwrap()
    assert parsed.back_matter_start_line == 410
    assert [s.type for s in parsed.sections] == [BackMatterType.INDEX, BackMatterType.OTHER]
    assert parsed.sections[1].end_line == 480


def test_reflow_and_optimization():
    assert parse_reflow('{"reflowedText": "one two"}').unwrap().text == "one two"
    opt = parse_optimization(
        '{"optimizedParagraphs": ["a b.", "", "c d."], "splitCount": 1}'
    ).unwrap()
    assert opt.paragraphs == ["a b.", "c d."]
    bad = parse_optimization('{"optimizedParagraphs": "a b."}')
    assert bad.failure.reason is ParseFailureReason.INVALID_FIELD_TYPE


def test_final_review_issues():
    review = parse_final_review(
        '{"qualityScore": 0.72, "issues": ['
        '{"severity": "CRITICAL", "category": "content_loss", "description": "chapter missing"},'
        '{"severity": "odd", "description": "spacing"}, {"severity": "info"}'
        '], "recommendations": [{"description": "check chapter 3"}]}'
    ).unwrap()
    assert review.quality_score == 0.72
    assert [(i.severity, i.category) for i in review.issues] == [
        (IssueSeverity.CRITICAL, IssueCategory.CONTENT_LOSS),
        (IssueSeverity.INFO, IssueCategory.OTHER),
    ]
    assert review.recommendations == ["check chapter 3"]


def test_metadata():
    md = parse_metadata(
        '{"title": " The Quiet Valley ", "author": "A. Writer", "publishDate": 1998, "isbn": ""}'
    ).unwrap()
    assert md.title == "The Quiet Valley"
    assert md.author == "A. Writer"
    assert md.publish_date == "1998"
    assert md.isbn is None
    assert parse_metadata('{"title": "  "}').failure.reason is (
        ParseFailureReason.MISSING_REQUIRED_FIELD
    )
