"""Plain records shared by the timer engine, the ledger and persistence.

Every record serializes to JSON-ready dicts with ``to_dict`` and is rebuilt
with a tolerant ``from_dict`` that repairs bad values instead of raising.
"""

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional

MIN_DURATION_MINUTES = 1
MAX_DURATION_MINUTES = 180


class Mode(str, Enum):
    FOCUS = 'focus'
    BREAK = 'break'

    @property
    def opposite(self) -> 'Mode':
        return Mode.BREAK if self is Mode.FOCUS else Mode.FOCUS

    @classmethod
    def parse(cls, value: Any, default: Optional['Mode'] = None) -> Optional['Mode']:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return default


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        if value.lower() in ('1', 'true', 'yes', 'on'):
            return True
        if value.lower() in ('0', 'false', 'no', 'off'):
            return False
        return default
    if isinstance(value, (int, float)):
        return bool(value)
    return default


def _as_minutes(value: Any, default: float) -> float:
    try:
        minutes = float(value)
    except (TypeError, ValueError):
        return default
    if minutes != minutes:  # NaN
        return default
    return max(MIN_DURATION_MINUTES, min(MAX_DURATION_MINUTES, minutes))


@dataclass
class TimerSettings:
    focus_minutes: float = 50
    break_minutes: float = 10
    auto_start_breaks: bool = False
    auto_start_focus: bool = False

    def duration_seconds(self, mode: Mode) -> int:
        minutes = self.focus_minutes if mode is Mode.FOCUS else self.break_minutes
        return int(round(minutes * 60))

    def duration_minutes(self, mode: Mode) -> float:
        return self.focus_minutes if mode is Mode.FOCUS else self.break_minutes

    def auto_start_for(self, mode: Mode) -> bool:
        return self.auto_start_focus if mode is Mode.FOCUS else self.auto_start_breaks

    def merged(self, updates: Optional[Dict[str, Any]]) -> 'TimerSettings':
        """Return a copy with the recognised keys of ``updates`` applied."""
        updates = updates or {}
        return replace(
            self,
            focus_minutes=_as_minutes(updates.get('focus_minutes', self.focus_minutes), self.focus_minutes),
            break_minutes=_as_minutes(updates.get('break_minutes', self.break_minutes), self.break_minutes),
            auto_start_breaks=_as_bool(updates.get('auto_start_breaks', self.auto_start_breaks), self.auto_start_breaks),
            auto_start_focus=_as_bool(updates.get('auto_start_focus', self.auto_start_focus), self.auto_start_focus),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'focus_minutes': self.focus_minutes,
            'break_minutes': self.break_minutes,
            'auto_start_breaks': self.auto_start_breaks,
            'auto_start_focus': self.auto_start_focus,
        }

    @classmethod
    def from_dict(cls, data: Any, defaults: Optional['TimerSettings'] = None) -> 'TimerSettings':
        base = defaults or cls()
        if not isinstance(data, dict):
            return replace(base)
        return base.merged(data)


@dataclass
class TimerState:
    mode: Mode = Mode.FOCUS
    remaining_seconds: int = 0
    is_active: bool = False
    session_sequence: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'mode': self.mode.value,
            'remaining_seconds': self.remaining_seconds,
            'is_active': self.is_active,
            'session_sequence': self.session_sequence,
        }


@dataclass
class SessionEntry:
    type: Mode
    duration_minutes: float
    completed_at: float
    is_partial: bool = False
    end_of_day: bool = False
    completed_during_downtime: bool = False
    notes: str = ''

    @property
    def started_at(self) -> float:
        return self.completed_at - self.duration_minutes * 60

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'type': self.type.value,
            'duration_minutes': self.duration_minutes,
            'completed_at': self.completed_at,
            'is_partial': self.is_partial,
        }
        if self.end_of_day:
            data['end_of_day'] = True
        if self.completed_during_downtime:
            data['completed_during_downtime'] = True
        if self.notes:
            data['notes'] = self.notes
        return data

    @classmethod
    def from_dict(cls, data: Any) -> Optional['SessionEntry']:
        """Rebuild an entry, or return None when it cannot be trusted."""
        if not isinstance(data, dict):
            return None
        mode = Mode.parse(data.get('type'))
        try:
            duration = float(data.get('duration_minutes'))
            completed_at = float(data.get('completed_at'))
        except (TypeError, ValueError):
            return None
        if mode is None or duration < 0 or not math.isfinite(duration) or not math.isfinite(completed_at):
            return None
        return cls(
            type=mode,
            duration_minutes=duration,
            completed_at=completed_at,
            is_partial=bool(data.get('is_partial', False)),
            end_of_day=bool(data.get('end_of_day', False)),
            completed_during_downtime=bool(data.get('completed_during_downtime', False)),
            notes=str(data.get('notes') or ''),
        )


@dataclass
class TimerEvent:
    """One outbound message from an engine to its subscribers."""
    name: str
    user_id: str
    payload: Dict[str, Any] = field(default_factory=dict)

    TIMER_TICK = 'timer_tick'
    TIMER_COMPLETE = 'timer_complete'
    SETTINGS_CHANGED = 'settings_changed'
    USER_DATA_CHANGED = 'user_data_changed'
