"""In-process telemetry for cleaning runs."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ocr_cleaner.models import utcnow

logger = logging.getLogger(__name__)


class TelemetryEventType(str, Enum):
    CLEANING_STARTED = "cleaningStarted"
    PHASE_COMPLETED = "phaseCompleted"
    FALLBACK_USED = "fallbackUsed"
    CLEANING_COMPLETED = "cleaningCompleted"
    CLEANING_FAILED = "cleaningFailed"
    CLEANING_CANCELLED = "cleaningCancelled"


_TERMINAL = {
    TelemetryEventType.CLEANING_COMPLETED,
    TelemetryEventType.CLEANING_FAILED,
    TelemetryEventType.CLEANING_CANCELLED,
}


class TelemetryEvent(BaseModel):
    type: TelemetryEventType
    document_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    phase: Optional[str] = None
    detail: str = ""
    duration: Optional[float] = None


class TelemetrySummary(BaseModel):
    runs: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    success_rate: float = 0.0
    fallback_counts: Dict[str, int] = Field(default_factory=dict)
    average_duration: Optional[float] = None


class PipelineTelemetry:
    def __init__(self) -> None:
        self.events: List[TelemetryEvent] = []

    def record(
        self,
        type: TelemetryEventType,
        document_id: str,
        *,
        phase: str | None = None,
        detail: str = "",
        duration: float | None = None,
    ) -> TelemetryEvent:
        event = TelemetryEvent(
            type=type, document_id=document_id, phase=phase, detail=detail, duration=duration
        )
        self.events.append(event)
        logger.info(
            "telemetry %s doc=%s%s%s",
            type.value,
            document_id,
            f" phase={phase}" if phase else "",
            f" ({detail})" if detail else "",
        )
        return event

    def started(self, document_id: str, detail: str = "") -> TelemetryEvent:
        return self.record(TelemetryEventType.CLEANING_STARTED, document_id, detail=detail)

    def phase_completed(self, document_id: str, phase: str, duration: float) -> TelemetryEvent:
        return self.record(
            TelemetryEventType.PHASE_COMPLETED, document_id, phase=phase, duration=duration
        )

    def fallback_used(self, document_id: str, phase: str, reason: str) -> TelemetryEvent:
        return self.record(
            TelemetryEventType.FALLBACK_USED, document_id, phase=phase, detail=reason
        )

    def completed(self, document_id: str, duration: float) -> TelemetryEvent:
        return self.record(TelemetryEventType.CLEANING_COMPLETED, document_id, duration=duration)

    def failed(self, document_id: str, phase: str, error: str, duration: float) -> TelemetryEvent:
        return self.record(
            TelemetryEventType.CLEANING_FAILED,
            document_id,
            phase=phase,
            detail=error,
            duration=duration,
        )

    def cancelled(self, document_id: str, phase: str, duration: float) -> TelemetryEvent:
        return self.record(
            TelemetryEventType.CLEANING_CANCELLED, document_id, phase=phase, duration=duration
        )

    def of_type(self, type: TelemetryEventType) -> List[TelemetryEvent]:
        return [e for e in self.events if e.type is type]

    def summary(self) -> TelemetrySummary:
        counts = Counter(e.type for e in self.events)
        finished = [e for e in self.events if e.type in _TERMINAL]
        durations = [e.duration for e in finished if e.duration is not None]
        completed = counts[TelemetryEventType.CLEANING_COMPLETED]
        fallbacks = Counter(
            e.phase or "unknown" for e in self.of_type(TelemetryEventType.FALLBACK_USED)
        )
        return TelemetrySummary(
            runs=counts[TelemetryEventType.CLEANING_STARTED],
            completed=completed,
            failed=counts[TelemetryEventType.CLEANING_FAILED],
            cancelled=counts[TelemetryEventType.CLEANING_CANCELLED],
            success_rate=round(completed / len(finished), 4) if finished else 0.0,
            fallback_counts=dict(fallbacks),
            average_duration=round(sum(durations) / len(durations), 4) if durations else None,
        )

    def reset(self) -> None:
        self.events.clear()
