"""Run-scoped audit ledger for one cleaning run.

``AccumulatedContext`` is the single source of truth for the audit trail: every
removal, transformation, boundary, checkpoint, fallback and snapshot made
during a run is appended here by the phase currently executing.

Usage:
    ctx = AccumulatedContext.create(document_id="doc-1")
    ctx.begin_phase(PipelinePhase.STRUCTURAL_REMOVAL)
    ctx.record_removal(RemovalType.PAGE_NUMBERS, LineRange(start=12, end=12),
                       removed_text="42", justification="page number line")
    ctx.complete_phase(PipelinePhase.STRUCTURAL_REMOVAL)

    # Later, for debugging:
    print(ctx.debug_view())

Records are frozen once appended. The ledger itself is owned by exactly one
orchestrator task; nothing else writes to it.
"""

from __future__ import annotations

import hashlib
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ocr_cleaner.models import LineRange, new_id, utcnow
from ocr_cleaner.steps import PipelinePhase
from ocr_cleaner.text_utils import preview, word_count

SAMPLE_CHARS = 100


def _short_hash(text: str) -> str:
    """Return first 8 chars of MD5 hash for text identity."""
    return hashlib.md5(text.encode("utf-8", errors="replace")).hexdigest()[:8]


class RemovalType(str, Enum):
    FRONT_MATTER = "frontMatter"
    TABLE_OF_CONTENTS = "tableOfContents"
    BACK_MATTER = "backMatter"
    INDEX = "index"
    AUXILIARY_LIST = "auxiliaryList"
    PAGE_NUMBERS = "pageNumbers"
    HEADERS = "headers"
    FOOTERS = "footers"
    CITATIONS = "citations"
    FOOTNOTES = "footnotes"
    ENDNOTES = "endnotes"
    SPECIAL_CHARACTERS = "specialCharacters"
    WHITESPACE = "whitespace"
    OTHER = "other"


class ValidationMethod(str, Enum):
    PHASE_A = "phaseA"
    PHASE_B = "phaseB"
    PHASE_C = "phaseC"
    PHASE_AB = "phaseAB"
    PHASE_ABC = "phaseABC"
    NO_VALIDATION = "noValidation"
    USER_OVERRIDE = "userOverride"


class TransformationType(str, Enum):
    PARAGRAPH_REFLOW = "paragraphReflow"
    PARAGRAPH_SPLIT = "paragraphSplit"
    SPECIAL_CHAR_REMOVAL = "specialCharRemoval"
    WHITESPACE_NORMALIZATION = "whitespaceNormalization"
    LINE_BREAK_NORMALIZATION = "lineBreakNormalization"
    STRUCTURE_ADDITION = "structureAddition"
    OTHER = "other"


class BoundaryType(str, Enum):
    FRONT_MATTER_END = "frontMatterEnd"
    TABLE_OF_CONTENTS_START = "tableOfContentsStart"
    TABLE_OF_CONTENTS_END = "tableOfContentsEnd"
    CORE_CONTENT_START = "coreContentStart"
    CORE_CONTENT_END = "coreContentEnd"
    INDEX_START = "indexStart"
    BACK_MATTER_START = "backMatterStart"
    CHAPTER_START = "chapterStart"
    SECTION_START = "sectionStart"


class CheckpointType(str, Enum):
    RECONNAISSANCE_QUALITY = "reconnaissanceQuality"
    SEMANTIC_INTEGRITY = "semanticIntegrity"
    STRUCTURAL_INTEGRITY = "structuralIntegrity"
    REFERENCE_INTEGRITY = "referenceIntegrity"
    OPTIMIZATION_INTEGRITY = "optimizationIntegrity"
    FINAL_QUALITY = "finalQuality"


class FlagReason(str, Enum):
    AMBIGUOUS_REMOVAL = "ambiguousRemoval"
    LOW_CONFIDENCE = "lowConfidence"
    UNUSUAL_PATTERN = "unusualPattern"
    POTENTIAL_DATA_LOSS = "potentialDataLoss"
    USER_REVIEW = "userReview"
    PRESERVED_DESPITE_LOW_CONFIDENCE = "preservedDespiteLowConfidence"
    FALLBACK_USED = "fallbackUsed"


class SnapshotPosition(str, Enum):
    PRE = "pre"
    POST = "post"


class RemovalRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    removal_type: RemovalType
    line_range: LineRange
    word_count: int
    removed_in_phase: PipelinePhase
    timestamp: datetime = Field(default_factory=utcnow)
    justification: str
    validation_method: ValidationMethod = ValidationMethod.NO_VALIDATION
    confidence: float = 1.0
    content_sample: str = ""


class TransformationRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    type: TransformationType
    affected_ranges: List[LineRange] = Field(default_factory=list)
    phase: PipelinePhase
    timestamp: datetime = Field(default_factory=utcnow)
    description: str = ""
    confidence: float = 1.0
    before_sample: str = ""
    after_sample: str = ""


class ConfirmedBoundary(BaseModel):
    model_config = ConfigDict(frozen=True)

    boundary_type: BoundaryType
    line: int
    approved_by: List[str] = Field(default_factory=list)
    confidence: float
    confirmed_at: datetime = Field(default_factory=utcnow)
    confirmed_in_phase: PipelinePhase


class Checkpoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: CheckpointType
    phase: PipelinePhase
    passed: bool
    detail: str = ""
    at: datetime = Field(default_factory=utcnow)


class FlaggedContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    line_range: Optional[LineRange] = None
    reason: FlagReason
    phase: PipelinePhase
    note: str = ""
    confidence: Optional[float] = None


class ContextSnapshot(BaseModel):
    """Pre/post-phase text capture; restoring means reusing ``text``."""

    model_config = ConfigDict(frozen=True)

    phase: PipelinePhase
    position: SnapshotPosition
    text: str
    word_count: int
    text_hash: str
    taken_at: datetime = Field(default_factory=utcnow)


class AccumulatedContext(BaseModel):
    id: str = Field(default_factory=new_id)
    document_id: str
    structure_hints_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    last_updated_at: datetime = Field(default_factory=utcnow)
    current_phase: Optional[PipelinePhase] = None
    completed_phases: List[PipelinePhase] = Field(default_factory=list)
    skipped_phases: Dict[PipelinePhase, str] = Field(default_factory=dict)
    phase_completion_times: Dict[PipelinePhase, datetime] = Field(default_factory=dict)
    removals: List[RemovalRecord] = Field(default_factory=list)
    confirmed_boundaries: List[ConfirmedBoundary] = Field(default_factory=list)
    total_lines_removed: int = 0
    total_words_removed: int = 0
    transformations: List[TransformationRecord] = Field(default_factory=list)
    reflowed_ranges: List[LineRange] = Field(default_factory=list)
    optimized_ranges: List[LineRange] = Field(default_factory=list)
    passed_checkpoints: List[CheckpointType] = Field(default_factory=list)
    failed_checkpoints: Dict[CheckpointType, str] = Field(default_factory=dict)
    checkpoints: List[Checkpoint] = Field(default_factory=list)
    validation_warnings: List[str] = Field(default_factory=list)
    flagged_content: List[FlaggedContent] = Field(default_factory=list)
    fallbacks_used: Dict[PipelinePhase, str] = Field(default_factory=dict)
    snapshots: List[ContextSnapshot] = Field(default_factory=list)
    has_recovery_errors: bool = False
    error_messages: List[str] = Field(default_factory=list)
    user_notifications: List[str] = Field(default_factory=list)

    @classmethod
    def create(cls, document_id: str) -> AccumulatedContext:
        return cls(document_id=document_id)

    def _touch(self) -> None:
        self.last_updated_at = utcnow()

    @property
    def phase(self) -> PipelinePhase:
        """Phase records are attributed to; reconnaissance before any phase begins."""
        return self.current_phase or PipelinePhase.RECONNAISSANCE

    # -- phase lifecycle ----------------------------------------------------

    def begin_phase(self, phase: PipelinePhase) -> None:
        self.current_phase = phase
        self._touch()

    def complete_phase(self, phase: PipelinePhase) -> None:
        if phase not in self.completed_phases:
            self.completed_phases.append(phase)
        self.phase_completion_times[phase] = utcnow()
        self._touch()

    def skip_phase(self, phase: PipelinePhase, reason: str) -> None:
        self.skipped_phases[phase] = reason
        self._touch()

    def is_complete(self, phase: PipelinePhase) -> bool:
        return phase in self.completed_phases

    # -- records ------------------------------------------------------------

    def record_removal(
        self,
        removal_type: RemovalType,
        line_range: LineRange,
        *,
        removed_text: str,
        justification: str,
        confidence: float = 1.0,
        validation_method: ValidationMethod = ValidationMethod.NO_VALIDATION,
    ) -> RemovalRecord:
        record = RemovalRecord(
            removal_type=removal_type,
            line_range=line_range,
            word_count=word_count(removed_text),
            removed_in_phase=self.phase,
            justification=justification,
            validation_method=validation_method,
            confidence=confidence,
            content_sample=preview(removed_text, SAMPLE_CHARS),
        )
        self.removals.append(record)
        self.total_lines_removed += line_range.count
        self.total_words_removed += record.word_count
        self._touch()
        return record

    def record_boundary(
        self,
        boundary_type: BoundaryType,
        line: int,
        *,
        confidence: float,
        approved_by: List[str] | None = None,
    ) -> ConfirmedBoundary:
        boundary = ConfirmedBoundary(
            boundary_type=boundary_type,
            line=line,
            approved_by=list(approved_by or []),
            confidence=confidence,
            confirmed_in_phase=self.phase,
        )
        self.confirmed_boundaries.append(boundary)
        self._touch()
        return boundary

    def record_transformation(
        self,
        type: TransformationType,
        *,
        before: str,
        after: str,
        description: str = "",
        affected_ranges: List[LineRange] | None = None,
        confidence: float = 1.0,
    ) -> TransformationRecord:
        record = TransformationRecord(
            type=type,
            affected_ranges=list(affected_ranges or []),
            phase=self.phase,
            description=description,
            confidence=confidence,
            before_sample=preview(before, SAMPLE_CHARS),
            after_sample=preview(after, SAMPLE_CHARS),
        )
        self.transformations.append(record)
        if type is TransformationType.PARAGRAPH_REFLOW:
            self.reflowed_ranges.extend(record.affected_ranges)
        elif type is TransformationType.PARAGRAPH_SPLIT:
            self.optimized_ranges.extend(record.affected_ranges)
        self._touch()
        return record

    def record_checkpoint(
        self, checkpoint: CheckpointType, passed: bool, detail: str = ""
    ) -> None:
        self.checkpoints.append(
            Checkpoint(type=checkpoint, phase=self.phase, passed=passed, detail=detail)
        )
        if passed:
            self.passed_checkpoints.append(checkpoint)
            self.failed_checkpoints.pop(checkpoint, None)
        else:
            self.failed_checkpoints[checkpoint] = detail
            self.validation_warnings.append(f"{checkpoint.value}: {detail}")
        self._touch()

    def flag_content(
        self,
        reason: FlagReason,
        note: str = "",
        *,
        line_range: LineRange | None = None,
        confidence: float | None = None,
    ) -> None:
        self.flagged_content.append(
            FlaggedContent(
                line_range=line_range,
                reason=reason,
                phase=self.phase,
                note=note,
                confidence=confidence,
            )
        )
        self._touch()

    def record_fallback(self, phase: PipelinePhase, reason: str) -> None:
        self.fallbacks_used[phase] = reason
        self.flag_content(FlagReason.FALLBACK_USED, reason)

    def record_error(self, message: str, *, recovered: bool = True) -> None:
        self.error_messages.append(message)
        self.has_recovery_errors = self.has_recovery_errors or recovered
        self._touch()

    def queue_notification(self, message: str) -> None:
        self.user_notifications.append(message)
        self._touch()

    def add_warning(self, message: str) -> None:
        self.validation_warnings.append(message)
        self._touch()

    # -- snapshots ----------------------------------------------------------

    def take_snapshot(
        self, phase: PipelinePhase, position: SnapshotPosition, text: str
    ) -> ContextSnapshot:
        snapshot = ContextSnapshot(
            phase=phase,
            position=position,
            text=text,
            word_count=word_count(text),
            text_hash=_short_hash(text),
        )
        self.snapshots.append(snapshot)
        self._touch()
        return snapshot

    def last_snapshot_text(self, phase: PipelinePhase | None = None) -> Optional[str]:
        """Text of the most recent snapshot, optionally restricted to ``phase``."""
        matching = [
            s for s in self.snapshots if phase is None or s.phase is phase
        ]
        return matching[-1].text if matching else None

    # -- queries ------------------------------------------------------------

    def removals_of(self, removal_type: RemovalType) -> List[RemovalRecord]:
        return [r for r in self.removals if r.removal_type is removal_type]

    def transformations_of(self, type: TransformationType) -> List[TransformationRecord]:
        return [t for t in self.transformations if t.type is type]

    def debug_view(self) -> str:
        """Return human-readable run history."""
        lines = [
            f"Run {self.id[:8]} for document {self.document_id}",
            "-" * 60,
        ]
        lines += [
            f"[{r.removed_in_phase.value}] removed {r.removal_type.value} "
            f"lines {r.line_range} ({r.word_count} words): {r.justification}"
            for r in self.removals
        ]
        lines += [
            f"[{t.phase.value}] {t.type.value}: {t.description}"
            for t in self.transformations
        ]
        lines += [
            f"[{phase.value}] fallback: {reason}"
            for phase, reason in self.fallbacks_used.items()
        ]
        lines += [
            f"[{phase.value}] skipped: {reason}"
            for phase, reason in self.skipped_phases.items()
        ]
        return "\n".join(lines)
