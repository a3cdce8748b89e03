"""Parsing of JSON responses from the completion service.

Every ``parse_*`` function returns a :class:`ParseResult` and never raises on
malformed input: fence stripping, JSON extraction and field checks are
separate steps, each producing a tagged failure the caller can act on.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Mapping, Optional, TypeVar

from pydantic import BaseModel, Field, ValidationError

from ocr_cleaner.content_types import ContentType
from ocr_cleaner.errors import ResponseParseError
from ocr_cleaner.models import (
    BackMatterSection,
    BackMatterType,
    DetectedPattern,
    DetectedPatterns,
    DocumentMetadata,
    IssueCategory,
    IssueSeverity,
    PatternKind,
    QualityIssue,
    RegionType,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
U = TypeVar("U")

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)


class ParseFailureReason(str, Enum):
    NO_JSON_FOUND = "noJSONFound"
    INVALID_JSON_STRUCTURE = "invalidJSONStructure"
    MISSING_REQUIRED_FIELD = "missingRequiredField"
    INVALID_FIELD_TYPE = "invalidFieldType"
    MALFORMED_RESPONSE = "malformedResponse"


@dataclass(frozen=True)
class ParseFailure:
    reason: ParseFailureReason
    detail: str = ""
    field: Optional[str] = None

    def to_error(self) -> ResponseParseError:
        return ResponseParseError(self.reason.value, self.detail, self.field)


@dataclass(frozen=True)
class ParseResult(Generic[T]):
    value: Optional[T] = None
    failure: Optional[ParseFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    def unwrap(self) -> T:
        if self.failure is not None:
            raise self.failure.to_error()
        return self.value  # type: ignore[return-value]

    def map(self, fn: Callable[[T], U]) -> "ParseResult[U]":
        if self.failure is not None:
            return ParseResult(failure=self.failure)
        return ParseResult(value=fn(self.value))  # type: ignore[arg-type]


def _fail(
    reason: ParseFailureReason, detail: str = "", field: str | None = None
) -> ParseResult[Any]:
    return ParseResult(failure=ParseFailure(reason, detail, field))


class _FieldError(Exception):
    def __init__(self, reason: ParseFailureReason, field: str, detail: str) -> None:
        super().__init__(detail)
        self.reason = reason
        self.field = field
        self.detail = detail


# ---------------------------------------------------------------------------
# JSON extraction
# ---------------------------------------------------------------------------


def strip_fences(response: str) -> str:
    match = _FENCE_RE.search(response)
    return match.group(1).strip() if match else response.strip()


def extract_json(response: str) -> ParseResult[str]:
    """Return the outermost ``{...}`` object text from ``response``."""
    body = strip_fences(response or "")
    start, end = body.find("{"), body.rfind("}")
    if start < 0 or end <= start:
        return _fail(ParseFailureReason.NO_JSON_FOUND, "response contains no JSON object")
    return ParseResult(value=body[start : end + 1])


def decode_object(response: str) -> ParseResult[Dict[str, Any]]:
    extracted = extract_json(response)
    if not extracted.ok:
        return ParseResult(failure=extracted.failure)
    try:
        data = json.loads(extracted.value or "")
    except json.JSONDecodeError as exc:
        return _fail(ParseFailureReason.INVALID_JSON_STRUCTURE, str(exc))
    if not isinstance(data, dict):
        return _fail(ParseFailureReason.INVALID_JSON_STRUCTURE, "top-level value is not an object")
    return ParseResult(value=data)


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def parse_number(value: Any) -> Optional[float]:
    """Accept float, int or numeric string; ``None`` otherwise."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _require(data: Mapping[str, Any], key: str) -> Any:
    if key not in data or data[key] is None:
        raise _FieldError(ParseFailureReason.MISSING_REQUIRED_FIELD, key, f"missing field {key!r}")
    return data[key]


def _number(
    data: Mapping[str, Any],
    key: str,
    *,
    required: bool = False,
    default: float | None = None,
) -> Optional[float]:
    raw = _require(data, key) if required else data.get(key)
    if raw is None:
        return default
    num = parse_number(raw)
    if num is None:
        raise _FieldError(ParseFailureReason.INVALID_FIELD_TYPE, key, f"{key!r} is not a number")
    return num


def _int(data: Mapping[str, Any], key: str, *, required: bool = False) -> Optional[int]:
    num = _number(data, key, required=required)
    return None if num is None else int(num)


def _string(data: Mapping[str, Any], key: str, *, required: bool = False, default: str = "") -> str:
    raw = _require(data, key) if required else data.get(key, default)
    if raw is None:
        return default
    if not isinstance(raw, str):
        raise _FieldError(ParseFailureReason.INVALID_FIELD_TYPE, key, f"{key!r} is not a string")
    return raw


def _strings(value: Any) -> List[str]:
    """List of strings from strings or ``{description}`` objects."""
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, list):
        return []
    out = [
        item if isinstance(item, str) else str(item.get("description", ""))
        for item in value
        if isinstance(item, (str, dict))
    ]
    return [s for s in out if s.strip()]


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _guard(fn: Callable[[Dict[str, Any]], T]) -> Callable[[str], ParseResult[T]]:
    """Lift a dict-level parser into a response-level parser returning ParseResult."""

    def parse(response: str) -> ParseResult[T]:
        decoded = decode_object(response)
        if not decoded.ok:
            logger.debug("response parse failed: %s", decoded.failure)
            return ParseResult(failure=decoded.failure)
        try:
            return ParseResult(value=fn(decoded.value or {}))
        except _FieldError as exc:
            return _fail(exc.reason, exc.detail, exc.field)
        except (ValidationError, TypeError, ValueError, AttributeError) as exc:
            return _fail(ParseFailureReason.MALFORMED_RESPONSE, str(exc))

    parse.__doc__ = fn.__doc__
    return parse


# ---------------------------------------------------------------------------
# Structure analysis
# ---------------------------------------------------------------------------


class ParsedRegion(BaseModel):
    type: RegionType
    start: int
    end: int
    confidence: float = 0.5
    evidence: List[str] = Field(default_factory=list)


class StructureAnalysis(BaseModel):
    detected_content_type: ContentType = ContentType.MIXED
    content_type_confidence: float = 0.0
    regions: List[ParsedRegion] = Field(default_factory=list)
    patterns: DetectedPatterns = Field(default_factory=DetectedPatterns)
    overall_confidence: float = 0.0
    warnings: List[str] = Field(default_factory=list)
    dropped_regions: int = 0


def _region_bounds(raw: Mapping[str, Any]) -> tuple[Optional[float], Optional[float]]:
    nested = raw.get("lineRange")
    if isinstance(nested, Mapping):
        return parse_number(nested.get("start")), parse_number(nested.get("end"))
    for start_key, end_key in (("startLine", "endLine"), ("start", "end")):
        if start_key in raw:
            return parse_number(raw.get(start_key)), parse_number(raw.get(end_key))
    return None, None


def _parse_region(raw: Any) -> Optional[ParsedRegion]:
    if not isinstance(raw, Mapping):
        return None
    try:
        kind = RegionType(str(raw.get("type", "")))
    except ValueError:
        logger.debug("dropping region with unknown type %r", raw.get("type"))
        return None
    start, end = _region_bounds(raw)
    if start is None:
        return None
    confidence = parse_number(raw.get("confidence"))
    return ParsedRegion(
        type=kind,
        start=int(start),
        end=int(end if end is not None else start),
        confidence=_clamp(0.5 if confidence is None else confidence),
        evidence=_strings(raw.get("evidence")),
    )


_PATTERN_KEYS = (
    ("pageNumbers", "page_numbers", PatternKind.PAGE_NUMBER),
    ("citations", "citations", PatternKind.CITATION),
    ("footnoteMarkers", "footnote_markers", PatternKind.FOOTNOTE),
)


def _parse_pattern(raw: Any, kind: PatternKind) -> Optional[DetectedPattern]:
    if not isinstance(raw, Mapping) or not raw.get("detected"):
        return None
    regex = raw.get("pattern")
    if not isinstance(regex, str) or not regex:
        return None
    samples = [str(s) for s in raw.get("samples") or [] if isinstance(s, (str, int))]
    return DetectedPattern(
        kind=kind,
        style=str(raw.get("style") or "ai"),
        regex=regex,
        confidence=_clamp(parse_number(raw.get("confidence")) or 0.0),
        samples=samples,
        match_count=len(samples),
    )


def _parse_patterns(raw: Any) -> DetectedPatterns:
    data = raw if isinstance(raw, Mapping) else {}
    return DetectedPatterns(
        **{
            attr: _parse_pattern(data.get(key), kind)
            for key, attr, kind in _PATTERN_KEYS
        }
    )


def _content_type(value: Any, field: str) -> ContentType:
    parsed = ContentType.parse(value if isinstance(value, str) else None)
    if parsed is None:
        logger.debug("unknown content type %r in %s; using mixed", value, field)
        return ContentType.MIXED
    return parsed


def _structure_analysis(data: Dict[str, Any]) -> StructureAnalysis:
    """Parse a ``structure_analysis_v1`` response."""
    raw_regions = data.get("regions") or []
    if not isinstance(raw_regions, list):
        raise _FieldError(
            ParseFailureReason.INVALID_FIELD_TYPE, "regions", "'regions' is not a list"
        )
    regions = [r for r in map(_parse_region, raw_regions) if r is not None]
    return StructureAnalysis(
        detected_content_type=_content_type(data.get("detectedContentType"), "detectedContentType"),
        content_type_confidence=_clamp(_number(data, "contentTypeConfidence", default=0.0) or 0.0),
        regions=regions,
        patterns=_parse_patterns(data.get("patterns")),
        overall_confidence=_clamp(_number(data, "overallConfidence", required=True) or 0.0),
        warnings=_strings(data.get("warnings")),
        dropped_regions=len(raw_regions) - len(regions),
    )


parse_structure_analysis = _guard(_structure_analysis)


# ---------------------------------------------------------------------------
# Content type detection
# ---------------------------------------------------------------------------


class ContentTypeDetection(BaseModel):
    content_type: ContentType
    confidence: float
    reasoning: str = ""
    alternative_types: List[tuple[ContentType, float]] = Field(default_factory=list)
    used_ai: bool = True


def _alternatives(raw: Any) -> List[tuple[ContentType, float]]:
    items = raw if isinstance(raw, list) else []
    out: List[tuple[ContentType, float]] = []
    for item in items:
        if isinstance(item, Mapping):
            kind = ContentType.parse(str(item.get("type", "")))
            conf = parse_number(item.get("confidence")) or 0.0
        else:
            kind, conf = ContentType.parse(str(item)), 0.0
        if kind is not None:
            out.append((kind, _clamp(conf)))
    return out


def _content_type_detection(data: Dict[str, Any]) -> ContentTypeDetection:
    """Parse a ``content_type_v1`` response."""
    return ContentTypeDetection(
        content_type=_content_type(_string(data, "contentType", required=True), "contentType"),
        confidence=_clamp(_number(data, "confidence", required=True) or 0.0),
        reasoning=_string(data, "reasoning"),
        alternative_types=_alternatives(data.get("alternativeTypes")),
    )


parse_content_type_detection = _guard(_content_type_detection)


# ---------------------------------------------------------------------------
# Boundaries
# ---------------------------------------------------------------------------


class FrontBoundaryResponse(BaseModel):
    front_matter_end_line: Optional[int] = None
    core_content_start_line: Optional[int] = None
    confidence: float
    evidence: str = ""
    boundary_type: str = "ambiguous"
    warnings: List[str] = Field(default_factory=list)


class BackBoundaryResponse(BaseModel):
    core_content_end_line: Optional[int] = None
    back_matter_start_line: Optional[int] = None
    confidence: float
    evidence: str = ""
    boundary_type: str = "ambiguous"
    sections: List[BackMatterSection] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


def _front_boundary(data: Dict[str, Any]) -> FrontBoundaryResponse:
    """Parse a ``front_matter_boundary_v1`` response."""
    end = _int(data, "frontMatterEndLine", required=True)
    return FrontBoundaryResponse(
        front_matter_end_line=end if end and end > 0 else None,
        core_content_start_line=_int(data, "coreContentStartLine"),
        confidence=_clamp(_number(data, "confidence", required=True) or 0.0),
        evidence=" ".join(_strings(data.get("boundaryEvidence"))),
        boundary_type=_string(data, "boundaryType", default="ambiguous"),
        warnings=_strings(data.get("warnings")),
    )


def _section(raw: Any) -> Optional[BackMatterSection]:
    if not isinstance(raw, Mapping):
        return None
    start = parse_number(raw.get("startLine"))
    if start is None:
        return None
    try:
        kind = BackMatterType(str(raw.get("type")))
    except ValueError:
        kind = BackMatterType.OTHER
    end = parse_number(raw.get("endLine"))
    return BackMatterSection(
        type=kind, start_line=int(start), end_line=None if end is None else int(end)
    )


def _back_boundary(data: Dict[str, Any]) -> BackBoundaryResponse:
    """Parse a ``back_matter_boundary_v1`` response."""
    sections = data.get("backMatterSections") or []
    return BackBoundaryResponse(
        core_content_end_line=_int(data, "coreContentEndLine"),
        back_matter_start_line=_int(data, "backMatterStartLine", required=True),
        confidence=_clamp(_number(data, "confidence", required=True) or 0.0),
        evidence=" ".join(_strings(data.get("boundaryEvidence"))),
        boundary_type=_string(data, "boundaryType", default="ambiguous"),
        sections=[s for s in map(_section, sections if isinstance(sections, list) else []) if s],
        warnings=_strings(data.get("warnings")),
    )


parse_front_boundary = _guard(_front_boundary)
parse_back_boundary = _guard(_back_boundary)


# ---------------------------------------------------------------------------
# Reflow / optimization
# ---------------------------------------------------------------------------


class ReflowResponse(BaseModel):
    text: str
    line_breaks_removed: int = 0
    warnings: List[str] = Field(default_factory=list)


class OptimizationResponse(BaseModel):
    paragraphs: List[str]
    split_count: int = 0
    rationale: str = ""
    could_not_split: bool = False
    warnings: List[str] = Field(default_factory=list)


def _reflow(data: Dict[str, Any]) -> ReflowResponse:
    """Parse a ``paragraph_reflow_v1`` response."""
    return ReflowResponse(
        text=_string(data, "reflowedText", required=True),
        line_breaks_removed=_int(data, "lineBreaksRemoved") or 0,
        warnings=_strings(data.get("warnings")),
    )


def _optimization(data: Dict[str, Any]) -> OptimizationResponse:
    """Parse a ``paragraph_optimization_v1`` response."""
    raw = _require(data, "optimizedParagraphs")
    if not isinstance(raw, list) or not all(isinstance(p, str) for p in raw):
        raise _FieldError(
            ParseFailureReason.INVALID_FIELD_TYPE,
            "optimizedParagraphs",
            "'optimizedParagraphs' is not a list of strings",
        )
    return OptimizationResponse(
        paragraphs=[p for p in raw if p.strip()],
        split_count=_int(data, "splitCount") or 0,
        rationale=_string(data, "splitRationale"),
        could_not_split=bool(data.get("couldNotSplit", False)),
        warnings=_strings(data.get("warnings")),
    )


parse_reflow = _guard(_reflow)
parse_optimization = _guard(_optimization)


# ---------------------------------------------------------------------------
# Final review
# ---------------------------------------------------------------------------


class FinalReviewResponse(BaseModel):
    quality_score: float
    confidence: float = 0.5
    issues: List[QualityIssue] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    summary: str = ""


def _issue(raw: Any) -> Optional[QualityIssue]:
    if not isinstance(raw, Mapping) or not raw.get("description"):
        return None
    try:
        severity = IssueSeverity(str(raw.get("severity", "info")).lower())
    except ValueError:
        severity = IssueSeverity.INFO
    location = raw.get("location")
    return QualityIssue(
        severity=severity,
        category=IssueCategory.parse(raw.get("category")),
        description=str(raw["description"]),
        location=None if location is None else str(location),
    )


def _final_review(data: Dict[str, Any]) -> FinalReviewResponse:
    """Parse a ``final_review_v1`` response."""
    issues = data.get("issues") or []
    return FinalReviewResponse(
        quality_score=_clamp(_number(data, "qualityScore", required=True) or 0.0),
        confidence=_clamp(_number(data, "confidence", default=0.5) or 0.0),
        issues=[i for i in map(_issue, issues if isinstance(issues, list) else []) if i],
        recommendations=_strings(data.get("recommendations")),
        summary=_string(data, "summary"),
    )


parse_final_review = _guard(_final_review)


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------

_METADATA_KEYS = {
    "title": "title",
    "subtitle": "subtitle",
    "author": "author",
    "translator": "translator",
    "editor": "editor",
    "publisher": "publisher",
    "publishDate": "publish_date",
    "isbn": "isbn",
    "language": "language",
}


def _metadata(data: Dict[str, Any]) -> DocumentMetadata:
    """Parse a ``metadata_extraction_v1`` response."""
    title = _string(data, "title", required=True).strip()
    if not title:
        raise _FieldError(ParseFailureReason.MISSING_REQUIRED_FIELD, "title", "empty title")
    fields = {
        attr: str(data[key]).strip()
        for key, attr in _METADATA_KEYS.items()
        if key != "title" and data.get(key) not in (None, "")
    }
    return DocumentMetadata(title=title, **fields)


parse_metadata = _guard(_metadata)
