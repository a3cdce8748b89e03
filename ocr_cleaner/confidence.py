"""Aggregate per-stage confidence into one pipeline-level figure.

Pure bookkeeping: stages report what they know, ``pipeline_confidence``
derives the rest on demand. Stages that ran without a native score count
at a nominal value; stages that never ran are left out.
"""

from __future__ import annotations

import logging
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from ocr_cleaner.steps import PipelineState

logger = logging.getLogger(__name__)

DEFAULT_FLOOR = 0.6

PHASE_WEIGHTS: Mapping[PipelineState, float] = MappingProxyType(
    {
        PipelineState.RECONNAISSANCE: 1.0,
        PipelineState.BOUNDARY_DETECTION: 1.0,
        PipelineState.STRUCTURAL_REMOVAL: 0.5,
        PipelineState.CONTENT_CLEANING: 0.5,
        PipelineState.SCHOLARLY_CONTENT: 0.5,
        PipelineState.BACK_MATTER_REMOVAL: 0.5,
        PipelineState.OPTIMIZATION: 0.5,
        PipelineState.ASSEMBLY: 0.5,
        PipelineState.FINAL_REVIEW: 1.5,
    }
)

NOMINAL_CONFIDENCE: Mapping[PipelineState, float] = MappingProxyType(
    {
        PipelineState.STRUCTURAL_REMOVAL: 0.85,
        PipelineState.CONTENT_CLEANING: 0.85,
        PipelineState.SCHOLARLY_CONTENT: 0.85,
        PipelineState.BACK_MATTER_REMOVAL: 0.85,
        PipelineState.OPTIMIZATION: 0.85,
        PipelineState.ASSEMBLY: 0.9,
    }
)


class ConfidenceRating(str, Enum):
    VERY_HIGH = "veryHigh"
    HIGH = "high"
    MODERATE = "moderate"
    LOW = "low"
    VERY_LOW = "veryLow"

    @classmethod
    def from_confidence(cls, confidence: Optional[float]) -> "ConfidenceRating":
        if confidence is None:
            return cls.VERY_LOW
        if confidence >= 0.9:
            return cls.VERY_HIGH
        if confidence >= 0.75:
            return cls.HIGH
        if confidence >= 0.6:
            return cls.MODERATE
        if confidence >= 0.4:
            return cls.LOW
        return cls.VERY_LOW


class WarningSeverity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


_SEVERITY_ORDER = {WarningSeverity.CRITICAL: 0, WarningSeverity.WARNING: 1, WarningSeverity.INFO: 2}


class PhaseConfidence(BaseModel):
    phase: PipelineState
    confidence: Optional[float] = None
    used_ai: bool = False
    used_fallback: bool = False
    warnings: List[str] = Field(default_factory=list)

    @property
    def effective(self) -> Optional[float]:
        """Native score, else the nominal one; None when neither is known."""
        if self.confidence is not None:
            return self.confidence
        return NOMINAL_CONFIDENCE.get(self.phase)


class ConfidenceWarning(BaseModel):
    severity: WarningSeverity
    phase: PipelineState
    message: str


class PipelineConfidence(BaseModel):
    overall_confidence: Optional[float] = None
    rating: ConfidenceRating = ConfidenceRating.VERY_LOW
    per_phase: Dict[PipelineState, PhaseConfidence] = Field(default_factory=dict)
    warnings: List[ConfidenceWarning] = Field(default_factory=list)
    fallbacks_used: int = 0

    def meets_threshold(self, threshold: float = DEFAULT_FLOOR) -> bool:
        return self.overall_confidence is not None and self.overall_confidence >= threshold

    def summary(self) -> str:
        if self.overall_confidence is None:
            return f"{self.rating.value} (unknown)"
        return f"{self.rating.value} ({self.overall_confidence:.0%})"


def weighted_confidence(phases: Mapping[PipelineState, PhaseConfidence]) -> Optional[float]:
    known = [
        (PHASE_WEIGHTS.get(stage, 0.5), value)
        for stage, phase in phases.items()
        for value in [phase.effective]
        if value is not None
    ]
    total = sum(w for w, _ in known)
    if not known or total <= 0:
        return None
    return round(sum(w * v for w, v in known) / total, 4)


class ConfidenceTracker:
    """Collects per-stage confidence during one run."""

    def __init__(self, floor: float = DEFAULT_FLOOR) -> None:
        self.floor = floor
        self._phases: Dict[PipelineState, PhaseConfidence] = {}

    def record(
        self,
        phase: PipelineState,
        confidence: Optional[float] = None,
        *,
        used_ai: bool = False,
        used_fallback: bool = False,
        warnings: List[str] | None = None,
    ) -> PhaseConfidence:
        entry = PhaseConfidence(
            phase=phase,
            confidence=confidence,
            used_ai=used_ai,
            used_fallback=used_fallback,
            warnings=list(warnings or []),
        )
        self._phases[phase] = entry
        return entry

    def get(self, phase: PipelineState) -> Optional[PhaseConfidence]:
        return self._phases.get(phase)

    def _warnings(self) -> List[ConfidenceWarning]:
        low = [
            ConfidenceWarning(
                severity=(
                    WarningSeverity.CRITICAL if value < self.floor / 2 else WarningSeverity.WARNING
                ),
                phase=stage,
                message=f"{stage.value} confidence {value:.2f} below {self.floor:.2f}",
            )
            for stage, phase in self._phases.items()
            for value in [phase.effective]
            if value is not None and value < self.floor
        ]
        fallbacks = [
            ConfidenceWarning(
                severity=WarningSeverity.WARNING,
                phase=stage,
                message=f"{stage.value} used heuristic fallback",
            )
            for stage, phase in self._phases.items()
            if phase.used_fallback
        ]
        unknown = [
            ConfidenceWarning(
                severity=WarningSeverity.INFO,
                phase=stage,
                message=f"{stage.value} confidence unknown",
            )
            for stage, phase in self._phases.items()
            if phase.effective is None
        ]
        return sorted([*low, *fallbacks, *unknown], key=lambda w: _SEVERITY_ORDER[w.severity])

    def pipeline_confidence(self) -> PipelineConfidence:
        overall = weighted_confidence(self._phases)
        result = PipelineConfidence(
            overall_confidence=overall,
            rating=ConfidenceRating.from_confidence(overall),
            per_phase=dict(self._phases),
            warnings=self._warnings(),
            fallbacks_used=sum(1 for p in self._phases.values() if p.used_fallback),
        )
        logger.info(
            "pipeline confidence %s (%d stages, %d fallbacks)",
            result.summary(),
            len(self._phases),
            result.fallbacks_used,
        )
        return result

    def meets_threshold(self, threshold: float = DEFAULT_FLOOR) -> bool:
        return self.pipeline_confidence().meets_threshold(threshold)

    def summary(self) -> str:
        return self.pipeline_confidence().summary()
