"""Cooperative cancellation and progress reporting for one cleaning run."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ocr_cleaner.errors import PipelineCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Flag checked at phase and chunk boundaries; safe to set from any thread."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self, where: str) -> None:
        if self._event.is_set():
            logger.info("cancellation observed at %s", where)
            raise PipelineCancelledError(where)


@dataclass(frozen=True)
class ProgressEvent:
    sequence: int
    state: str
    message: str
    fraction: float
    chunk: Optional[int] = None
    total_chunks: Optional[int] = None


ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class RunControl:
    """Cancellation token plus an ordered progress channel."""

    token: CancellationToken = field(default_factory=CancellationToken)
    on_progress: Optional[ProgressCallback] = None
    events: List[ProgressEvent] = field(default_factory=list)
    state: str = "idle"
    _fraction: float = 0.0

    def check(self, where: str | None = None) -> None:
        self.token.check(where or self.state)

    def report(
        self,
        message: str,
        *,
        fraction: float | None = None,
        chunk: int | None = None,
        total_chunks: int | None = None,
    ) -> ProgressEvent:
        # Fractions never move backwards.
        self._fraction = max(self._fraction, fraction if fraction is not None else self._fraction)
        event = ProgressEvent(
            sequence=len(self.events),
            state=self.state,
            message=message,
            fraction=round(self._fraction, 4),
            chunk=chunk,
            total_chunks=total_chunks,
        )
        self.events.append(event)
        if self.on_progress is not None:
            self.on_progress(event)
        return event

    def chunk(self, index: int, total: int, label: str) -> None:
        """Checkpoint between chunks: report progress, then honour cancellation."""
        self.report(f"{label}: chunk {index}/{total}", chunk=index, total_chunks=total)
        self.check(f"{self.state} chunk {index}/{total}")
