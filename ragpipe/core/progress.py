"""
Build progress tracking - an observable state machine for long-running knowledge base builds.

A tracker instance is passed to the build coordinator rather than living in a
module global, so independent pipelines do not share state. Tracking never
raises into the pipeline: out-of-order transitions are ignored and logged.
"""

import threading
import time
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel

from ragpipe.util.logging import logger


class BuildPhase(str, Enum):
    IDLE = "idle"
    LOADING_DOCUMENTS = "loading"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    SAVING = "saving"
    COMPLETE = "completed"
    ERROR = "error"


PHASE_ORDER = [
    BuildPhase.IDLE,
    BuildPhase.LOADING_DOCUMENTS,
    BuildPhase.CHUNKING,
    BuildPhase.EMBEDDING,
    BuildPhase.SAVING,
    BuildPhase.COMPLETE,
]

# Share of the overall progress bar covered by each working phase
PHASE_PERCENT_RANGES = {
    BuildPhase.LOADING_DOCUMENTS: (0, 20),
    BuildPhase.CHUNKING: (20, 50),
    BuildPhase.EMBEDDING: (50, 90),
    BuildPhase.SAVING: (90, 100),
}

PHASE_DESCRIPTIONS = {
    BuildPhase.IDLE: "Waiting to start...",
    BuildPhase.LOADING_DOCUMENTS: "Loading documents from disk...",
    BuildPhase.CHUNKING: "Splitting documents into chunks...",
    BuildPhase.EMBEDDING: "Generating embeddings...",
    BuildPhase.SAVING: "Saving to database...",
    BuildPhase.COMPLETE: "Knowledge base built successfully!",
    BuildPhase.ERROR: "Building failed!",
}

TERMINAL_PHASES = (BuildPhase.COMPLETE, BuildPhase.ERROR)


def _format_seconds(seconds: int) -> str:
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


class ProgressSnapshot(BaseModel):
    """Read-only view of a build's progress."""

    phase: BuildPhase = BuildPhase.IDLE
    current_step: str = PHASE_DESCRIPTIONS[BuildPhase.IDLE]
    done: int = 0
    total: int = 0
    counters: Dict[str, Tuple[int, int]] = {}
    progress_percent: int = 0
    started_at: Optional[datetime] = None
    elapsed_seconds: int = 0
    estimated_remaining_seconds: int = 0
    degraded: bool = False
    error_message: Optional[str] = None
    logs: List[str] = []

    def progress_bar(self) -> str:
        filled = self.progress_percent // 5  # 20 cells for 100%
        return f"[{'█' * filled}{'░' * (20 - filled)}] {self.progress_percent}%"

    def formatted_time(self) -> str:
        return _format_seconds(self.elapsed_seconds)

    def estimated_time_remaining(self) -> str:
        if self.estimated_remaining_seconds <= 0:
            return "calculating..."
        return _format_seconds(self.estimated_remaining_seconds)

    def to_console_output(self) -> str:
        documents = self.counters.get(BuildPhase.LOADING_DOCUMENTS.value, (0, 0))
        chunks = self.counters.get(BuildPhase.EMBEDDING.value, (0, 0))
        lines = [
            "╔════════════════════════════════════════════════════════════╗",
            "║          RAG Knowledge Base Building Progress              ║",
            "╠════════════════════════════════════════════════════════════╣",
            f"║ Status: {self.phase.value}",
            f"║ Current Step: {self.current_step}",
            f"║ Documents: {documents[0]}/{documents[1]}",
            f"║ Chunks: {chunks[0]}/{chunks[1]}",
            f"║ Progress: {self.progress_bar()}",
            f"║ Elapsed: {self.formatted_time()} | ETA: {self.estimated_time_remaining()}",
        ]
        if self.degraded:
            lines.append("║ WARNING: embedding service failed, synthetic embeddings in use")
        if self.error_message is not None:
            lines.append(f"║ ERROR: {self.error_message}")
        lines.append("╚════════════════════════════════════════════════════════════╝")
        return "\n".join(lines)


class BuildProgressTracker:
    """Tracks the phase, counters and log lines of one build at a time.

    Phases advance Idle -> LoadingDocuments -> Chunking -> Embedding -> Saving
    -> Complete; Error is reachable from any non-terminal phase and stays until
    the next start_build(). State is kept after completion for inspection.
    """

    MAX_LOGS = 100

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._reset_state()

    def _reset_state(self):
        self._phase = BuildPhase.IDLE
        self._counters: Dict[BuildPhase, Tuple[int, int]] = {}
        self._logs: List[str] = []
        self._error_message: Optional[str] = None
        self._degraded = False
        self._started_at: Optional[datetime] = None
        self._start_clock: Optional[float] = None
        self._phase_clock: Optional[float] = None

    @property
    def phase(self) -> BuildPhase:
        return self._phase

    def reset(self):
        """Return to Idle, discarding the previous build's state."""
        with self._lock:
            self._reset_state()

    def start_build(self):
        """Begin a new build in the LoadingDocuments phase."""
        with self._lock:
            self._reset_state()
            self._phase = BuildPhase.LOADING_DOCUMENTS
            self._counters[BuildPhase.LOADING_DOCUMENTS] = (0, 0)
            self._started_at = datetime.now()
            self._start_clock = self._clock()
            self._phase_clock = self._start_clock

    def start_phase(self, phase: BuildPhase, total: int = 0):
        """Enter a working phase (or restart the current one) with fresh counters."""
        with self._lock:
            if phase not in PHASE_PERCENT_RANGES:
                logger.debug(f"Ignoring start_phase({phase.value}): not a working phase")
                return
            if self._phase in TERMINAL_PHASES or self._phase == BuildPhase.IDLE:
                logger.debug(f"Ignoring start_phase({phase.value}) while {self._phase.value}")
                return
            if PHASE_ORDER.index(phase) < PHASE_ORDER.index(self._phase):
                logger.debug(f"Ignoring backward transition {self._phase.value} -> {phase.value}")
                return

            self._phase = phase
            self._counters[phase] = (0, max(total, 0))
            self._phase_clock = self._clock()

    def update(self, done: int):
        """Update the current phase's done counter. The total is fixed by start_phase()."""
        with self._lock:
            if self._phase not in PHASE_PERCENT_RANGES:
                return
            _, total = self._counters.get(self._phase, (0, 0))
            self._counters[self._phase] = (max(done, 0), total)

    def mark_degraded(self):
        """Record that the build switched to synthetic embeddings."""
        with self._lock:
            self._degraded = True

    def add_log(self, message: str):
        """Append a timestamped status line; only the last MAX_LOGS are kept."""
        with self._lock:
            self._logs.append(f"[{_format_seconds(self._elapsed())}] {message}")
            if len(self._logs) > self.MAX_LOGS:
                del self._logs[:len(self._logs) - self.MAX_LOGS]

    def complete(self):
        with self._lock:
            if self._phase in TERMINAL_PHASES or self._phase == BuildPhase.IDLE:
                logger.debug(f"Ignoring complete() while {self._phase.value}")
                return
            for phase, (_, total) in list(self._counters.items()):
                self._counters[phase] = (total, total)
            self._phase = BuildPhase.COMPLETE

    def error(self, message: str):
        """Move to the terminal Error phase with a human-readable message."""
        with self._lock:
            if self._phase in TERMINAL_PHASES:
                logger.debug(f"Ignoring error() while {self._phase.value}: {message}")
                return
            self._phase = BuildPhase.ERROR
            self._error_message = message

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            phase = self._phase
            done, total = self._counters.get(phase, (0, 0))
            step = PHASE_DESCRIPTIONS[phase]
            if phase in PHASE_PERCENT_RANGES:
                step = f"{step} ({done}/{total})"

            return ProgressSnapshot(
                phase=phase,
                current_step=step,
                done=done,
                total=total,
                counters={p.value: c for p, c in self._counters.items()},
                progress_percent=self._percent(),
                started_at=self._started_at,
                elapsed_seconds=self._elapsed(),
                estimated_remaining_seconds=self._estimate_remaining(),
                degraded=self._degraded,
                error_message=self._error_message,
                logs=list(self._logs),
            )

    def _elapsed(self) -> int:
        if self._start_clock is None:
            return 0
        return int(self._clock() - self._start_clock)

    def _percent(self) -> int:
        if self._phase == BuildPhase.COMPLETE:
            return 100
        if self._phase == BuildPhase.ERROR:
            # Freeze at the furthest phase reached
            reached = [p for p in self._counters if p in PHASE_PERCENT_RANGES]
            if not reached:
                return 0
            furthest = max(reached, key=PHASE_ORDER.index)
            return self._phase_percent(furthest)
        if self._phase in PHASE_PERCENT_RANGES:
            return self._phase_percent(self._phase)
        return 0

    def _phase_percent(self, phase: BuildPhase) -> int:
        low, high = PHASE_PERCENT_RANGES[phase]
        done, total = self._counters.get(phase, (0, 0))
        if total <= 0:
            return low
        return low + min(done, total) * (high - low) // total

    def _estimate_remaining(self) -> int:
        if self._phase != BuildPhase.EMBEDDING or self._phase_clock is None:
            return 0
        done, total = self._counters.get(BuildPhase.EMBEDDING, (0, 0))
        if done <= 0:
            return 0
        per_item = (self._clock() - self._phase_clock) / done
        return int(per_item * (total - done))
