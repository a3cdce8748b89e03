"""Serializable records produced by the analysis services.

Every record here round-trips through ``model_dump_json`` /
``model_validate_json`` with all fields equal; the orchestrator embeds them
in the exported cleaning report.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ocr_cleaner.content_types import ContentType


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LineRange(BaseModel):
    """Inclusive, 1-indexed range of lines."""

    model_config = ConfigDict(frozen=True)

    start: int = Field(ge=1)
    end: int = Field(ge=1)

    @model_validator(mode="after")
    def _ordered(self) -> "LineRange":
        if self.start > self.end:
            raise ValueError(f"start ({self.start}) must be <= end ({self.end})")
        return self

    @property
    def count(self) -> int:
        return self.end - self.start + 1

    def overlaps(self, other: "LineRange") -> bool:
        return self.start <= other.end and other.start <= self.end

    def contains(self, line: int) -> bool:
        return self.start <= line <= self.end

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


class RegionType(str, Enum):
    TITLE_PAGE = "titlePage"
    COPYRIGHT_PAGE = "copyrightPage"
    DEDICATION = "dedication"
    EPIGRAPH = "epigraph"
    TABLE_OF_CONTENTS = "tableOfContents"
    LIST_OF_FIGURES = "listOfFigures"
    LIST_OF_TABLES = "listOfTables"
    LIST_OF_ABBREVIATIONS = "listOfAbbreviations"
    PREFACE = "preface"
    FOREWORD = "foreword"
    INTRODUCTION = "introduction"
    ABSTRACT = "abstract"
    FRONT_MATTER = "frontMatter"
    CORE_CONTENT = "coreContent"
    CHAPTER = "chapter"
    SECTION = "section"
    PART_DIVISION = "partDivision"
    BACK_MATTER = "backMatter"
    APPENDIX = "appendix"
    NOTES = "notes"
    BIBLIOGRAPHY = "bibliography"
    GLOSSARY = "glossary"
    INDEX = "index"
    COLOPHON = "colophon"
    ABOUT_AUTHOR = "aboutAuthor"
    ACKNOWLEDGMENTS = "acknowledgments"
    FOOTNOTE_SECTION = "footnoteSection"
    BLOCK_QUOTE = "blockQuote"

    @property
    def is_front_matter(self) -> bool:
        return self in _FRONT_TYPES

    @property
    def is_back_matter(self) -> bool:
        return self in _BACK_TYPES

    @property
    def is_core_content(self) -> bool:
        return self in _CORE_TYPES


_FRONT_TYPES = frozenset(
    {
        RegionType.FRONT_MATTER,
        RegionType.TITLE_PAGE,
        RegionType.COPYRIGHT_PAGE,
        RegionType.DEDICATION,
        RegionType.EPIGRAPH,
        RegionType.TABLE_OF_CONTENTS,
        RegionType.LIST_OF_FIGURES,
        RegionType.LIST_OF_TABLES,
        RegionType.LIST_OF_ABBREVIATIONS,
        RegionType.PREFACE,
        RegionType.FOREWORD,
    }
)
_BACK_TYPES = frozenset(
    {
        RegionType.BACK_MATTER,
        RegionType.APPENDIX,
        RegionType.NOTES,
        RegionType.BIBLIOGRAPHY,
        RegionType.GLOSSARY,
        RegionType.INDEX,
        RegionType.COLOPHON,
        RegionType.ABOUT_AUTHOR,
    }
)
_CORE_TYPES = frozenset(
    {
        RegionType.CORE_CONTENT,
        RegionType.CHAPTER,
        RegionType.SECTION,
        RegionType.PART_DIVISION,
    }
)


class DetectionMethod(str, Enum):
    PATTERN_MATCHING = "patternMatching"
    AI_ANALYSIS = "aiAnalysis"
    HEURISTIC = "heuristic"
    USER_SPECIFIED = "userSpecified"


class DetectedRegion(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    type: RegionType
    line_range: LineRange
    confidence: float = Field(ge=0.0, le=1.0)
    detection_method: DetectionMethod
    evidence: List[str] = Field(default_factory=list)
    has_overlap: bool = False
    overlapping_region_ids: List[str] = Field(default_factory=list)


class PatternKind(str, Enum):
    PAGE_NUMBER = "pageNumber"
    CITATION = "citation"
    FOOTNOTE = "footnote"


class DetectedPattern(BaseModel):
    """A regex family found in the document with its supporting samples."""

    kind: PatternKind
    style: str
    regex: str
    confidence: float = Field(ge=0.0, le=1.0)
    samples: List[str] = Field(default_factory=list)
    match_count: int = 0


class DetectedPatterns(BaseModel):
    page_numbers: Optional[DetectedPattern] = None
    citations: Optional[DetectedPattern] = None
    footnote_markers: Optional[DetectedPattern] = None
    header_lines: List[str] = Field(default_factory=list)
    footer_lines: List[str] = Field(default_factory=list)


class ContentCharacteristics(BaseModel):
    dialogue_ratio: float = 0.0
    has_lists: bool = False
    has_tables: bool = False
    has_code: bool = False
    has_math: bool = False
    ocr_artifact_likelihood: float = 0.0
    average_words_per_line: float = 0.0


class StructureHints(BaseModel):
    """Reconnaissance output; read-only input to every later phase."""

    id: str = Field(default_factory=new_id)
    document_id: str
    analyzed_at: datetime = Field(default_factory=utcnow)
    user_content_type: Optional[ContentType] = None
    detected_content_type: ContentType = ContentType.MIXED
    content_type_confidence: float = 0.0
    content_type_aligned: bool = True
    total_lines: int = 0
    total_words: int = 0
    total_characters: int = 0
    regions: List[DetectedRegion] = Field(default_factory=list)
    core_content_range: Optional[LineRange] = None
    patterns: DetectedPatterns = Field(default_factory=DetectedPatterns)
    characteristics: ContentCharacteristics = Field(
        default_factory=ContentCharacteristics
    )
    overall_confidence: float = 0.0
    warnings: List[str] = Field(default_factory=list)
    used_ai_analysis: bool = False

    @property
    def effective_content_type(self) -> ContentType:
        if self.user_content_type and self.user_content_type is not ContentType.AUTO_DETECT:
            return self.user_content_type
        return self.detected_content_type

    def regions_of(self, *types: RegionType) -> List[DetectedRegion]:
        return [r for r in self.regions if r.type in types]

    @property
    def front_matter_regions(self) -> List[DetectedRegion]:
        return [r for r in self.regions if r.type.is_front_matter]

    @property
    def back_matter_regions(self) -> List[DetectedRegion]:
        return [r for r in self.regions if r.type.is_back_matter]


class BackMatterType(str, Enum):
    BIBLIOGRAPHY = "bibliography"
    INDEX = "index"
    GLOSSARY = "glossary"
    APPENDIX = "appendix"
    ENDNOTES = "endnotes"
    ABOUT_AUTHOR = "aboutAuthor"
    COLOPHON = "colophon"
    OTHER = "other"


class BackMatterSection(BaseModel):
    type: BackMatterType
    start_line: int
    end_line: Optional[int] = None


class BoundaryDetectionResult(BaseModel):
    front_matter_end_line: Optional[int] = None
    back_matter_start_line: Optional[int] = None
    confidence: float = 0.0
    used_ai: bool = False
    front_evidence: List[str] = Field(default_factory=list)
    back_evidence: List[str] = Field(default_factory=list)
    back_matter_sections: List[BackMatterSection] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @property
    def has_boundaries(self) -> bool:
        return (
            self.front_matter_end_line is not None
            or self.back_matter_start_line is not None
        )


class IssueSeverity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class IssueCategory(str, Enum):
    CONTENT_LOSS = "contentLoss"
    FORMATTING_ISSUE = "formattingIssue"
    BOUNDARY_ERROR = "boundaryError"
    STRUCTURE_ISSUE = "structureIssue"
    QUALITY_CONCERN = "qualityConcern"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> "IssueCategory":
        key = str(value or "").replace("_", "").lower()
        return next((m for m in cls if m.value.lower() == key), cls.OTHER)


class QualityIssue(BaseModel):
    severity: IssueSeverity
    category: IssueCategory
    description: str
    location: Optional[str] = None


class QualityRating(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    POOR = "poor"

    @classmethod
    def from_score(cls, score: float) -> "QualityRating":
        if score >= 0.9:
            return cls.EXCELLENT
        if score >= 0.75:
            return cls.GOOD
        if score >= 0.6:
            return cls.ACCEPTABLE
        return cls.POOR

    def at_least(self, other: "QualityRating") -> bool:
        order = list(reversed(QualityRating))
        return order.index(self) >= order.index(other)


class FinalReviewResult(BaseModel):
    quality_score: float = Field(ge=0.0, le=1.0)
    quality_rating: QualityRating
    issues: List[QualityIssue] = Field(default_factory=list)
    retention_ratio: float = 0.0
    used_ai: bool = False
    confidence: float = 0.5
    recommendations: List[str] = Field(default_factory=list)
    summary: str = ""
    warnings: List[str] = Field(default_factory=list)

    @property
    def critical_issues(self) -> List[QualityIssue]:
        return [i for i in self.issues if i.severity is IssueSeverity.CRITICAL]


class DocumentMetadata(BaseModel):
    title: str = "Untitled Document"
    subtitle: Optional[str] = None
    author: Optional[str] = None
    translator: Optional[str] = None
    editor: Optional[str] = None
    publisher: Optional[str] = None
    publish_date: Optional[str] = None
    isbn: Optional[str] = None
    language: Optional[str] = None

    def present_fields(self) -> Dict[str, str]:
        """Non-empty fields in declaration order."""
        return {k: v for k, v in self.model_dump().items() if v}

    @classmethod
    def from_filename(cls, filename: str) -> "DocumentMetadata":
        stem = filename.rsplit("/", 1)[-1]
        stem = stem.rsplit(".", 1)[0] if "." in stem else stem
        name = stem.replace("_", " ").replace("-", " ").strip()
        return cls(title=name or "Untitled Document")

    def merging(self, other: "DocumentMetadata") -> "DocumentMetadata":
        """Fields of ``other`` where set, ours otherwise."""
        mine = self.model_dump()
        theirs = other.model_dump()
        merged = {key: theirs[key] or mine[key] for key in mine}
        if other.title == "Untitled Document":
            merged["title"] = self.title
        return DocumentMetadata(**merged)
