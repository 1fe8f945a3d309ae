"""Progress reporting for long-running searches."""

import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)


class ProgressEvent(str, Enum):
    PROGRESS = "progress"
    ERROR = "error"
    COMPLETE = "complete"


class Stage(str, Enum):
    SCANNING = "scanning"
    SEARCHING = "searching"
    RANKING = "ranking"


@dataclass(frozen=True)
class SearchProgress:
    files_processed: int
    total_files: int
    current_file: str | None = None
    stage: Stage | None = None
    elapsed_time: float | None = None
    estimated_time_remaining: float | None = None


@dataclass(frozen=True)
class SearchSummary:
    """Emitted once a search finishes. Durations are in seconds."""

    total_files_searched: int
    total_matches_found: int
    search_duration: float
    average_file_processing_time: float
    errors: list[Exception] = field(default_factory=list)


Listener = Callable[[Any], None]


class ProgressTracker:
    """Fans progress, error and completion events out to listeners.

    Emission never raises: a listener that fails is logged and skipped.
    Progress events are throttled to one per ``update_interval`` seconds.
    """

    def __init__(self, update_interval: float = 0.1, clock: Callable[[], float] = time.monotonic):
        self.update_interval = update_interval
        self._clock = clock
        self._start_time = clock()
        self._last_update: float | None = None
        self._file_times: list[float] = []
        self.errors: list[Exception] = []
        self.summary: SearchSummary | None = None
        self._listeners: dict[ProgressEvent, list[Listener]] = {event: [] for event in ProgressEvent}

    def on(self, event: ProgressEvent, listener: Listener) -> None:
        self._listeners[ProgressEvent(event)].append(listener)

    def start(self) -> None:
        """Reset timings, errors and the last summary for a new search."""
        self._start_time = self._clock()
        self._last_update = None
        self._file_times = []
        self.errors = []
        self.summary = None

    def report_progress(self, progress: SearchProgress) -> None:
        now = self._clock()
        if self._last_update is not None and now - self._last_update < self.update_interval:
            return

        self._last_update = now
        self._emit(
            ProgressEvent.PROGRESS,
            replace(
                progress,
                elapsed_time=now - self._start_time,
                estimated_time_remaining=self._estimate_remaining(progress, now),
            ),
        )

    def report_error(self, error: Exception) -> None:
        self.errors.append(error)
        self._emit(ProgressEvent.ERROR, error)

    def file_processed(self, seconds: float) -> None:
        self._file_times.append(seconds)

    def complete(self, total_matches: int) -> SearchSummary:
        summary = SearchSummary(
            total_files_searched=len(self._file_times),
            total_matches_found=total_matches,
            search_duration=self._clock() - self._start_time,
            average_file_processing_time=(
                sum(self._file_times) / len(self._file_times) if self._file_times else 0.0
            ),
            errors=list(self.errors),
        )
        self.summary = summary
        self._emit(ProgressEvent.COMPLETE, summary)
        return summary

    def _estimate_remaining(self, progress: SearchProgress, now: float) -> float | None:
        if progress.files_processed == 0 or not progress.total_files:
            return None
        per_file = (now - self._start_time) / progress.files_processed
        return per_file * (progress.total_files - progress.files_processed)

    def _emit(self, event: ProgressEvent, payload: Any) -> None:
        for listener in list(self._listeners[event]):
            try:
                listener(payload)
            except Exception:
                logger.warning("Progress listener for %r failed", event.value, exc_info=True)
