"""Dead-time analytics over a session history.

Pure functions: nothing here mutates the ledger.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .state import SessionEntry

DEFAULT_THRESHOLD_MINUTES = 10.0

START_OF_DAY = 'start_of_day'
BETWEEN_SESSIONS = 'between_sessions'
IN_PROGRESS = 'in_progress'


@dataclass(frozen=True)
class DeadTimeGap:
    kind: str
    start: float
    end: float
    after_session_index: Optional[int] = None

    @property
    def duration_minutes(self) -> float:
        return (self.end - self.start) / 60.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'after_session_index': self.after_session_index,
            'start': self.start,
            'end': self.end,
            'duration_minutes': self.duration_minutes,
        }


def calculate_dead_time_gaps(
    sessions: Sequence[SessionEntry],
    day_start: Optional[float] = None,
    in_progress_start: Optional[float] = None,
    threshold_minutes: float = DEFAULT_THRESHOLD_MINUTES,
) -> List[DeadTimeGap]:
    """Idle intervals of at least ``threshold_minutes`` between sessions.

    ``sessions`` are ordered by completion time; a session's start is its
    completion time minus its duration. ``day_start`` (local midnight) adds a
    gap before the first session, and ``in_progress_start`` (estimated start of
    the uncommitted session) adds a trailing gap after the last one.
    ``after_session_index`` refers to positions in ``sessions``.
    """
    threshold = threshold_minutes * 60.0
    ordered = sorted(enumerate(sessions), key=lambda pair: pair[1].completed_at)
    gaps: List[DeadTimeGap] = []

    first_start = ordered[0][1].started_at if ordered else in_progress_start
    if day_start is not None and first_start is not None and first_start - day_start >= threshold:
        gaps.append(DeadTimeGap(kind=START_OF_DAY, start=day_start, end=first_start))

    for (prev_index, prev), (_, current) in zip(ordered, ordered[1:]):
        gap_start = prev.completed_at
        gap_end = current.started_at
        if gap_end - gap_start >= threshold:
            gaps.append(DeadTimeGap(kind=BETWEEN_SESSIONS, start=gap_start, end=gap_end, after_session_index=prev_index))

    if ordered and in_progress_start is not None:
        last_index, last = ordered[-1]
        if in_progress_start - last.completed_at > threshold:
            gaps.append(DeadTimeGap(kind=IN_PROGRESS, start=last.completed_at, end=in_progress_start, after_session_index=last_index))

    return gaps
