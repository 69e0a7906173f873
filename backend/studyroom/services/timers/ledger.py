"""Per-user, per-day session ledger and its archive of past days."""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from .state import Mode, SessionEntry


@dataclass(frozen=True)
class DailySummary:
    completed_session_count: int
    accumulated_focus_minutes: float
    accumulated_break_minutes: float
    session_history: tuple = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'completed_session_count': self.completed_session_count,
            'accumulated_focus_minutes': self.accumulated_focus_minutes,
            'accumulated_break_minutes': self.accumulated_break_minutes,
            'session_history': [s.to_dict() for s in self.session_history],
        }

    @classmethod
    def from_dict(cls, data: Any) -> Optional['DailySummary']:
        if not isinstance(data, dict):
            return None
        entries = [SessionEntry.from_dict(s) for s in data.get('session_history') or []]
        try:
            return cls(
                completed_session_count=max(0, int(data.get('completed_session_count') or 0)),
                accumulated_focus_minutes=max(0.0, float(data.get('accumulated_focus_minutes') or 0)),
                accumulated_break_minutes=max(0.0, float(data.get('accumulated_break_minutes') or 0)),
                session_history=tuple(e for e in entries if e is not None),
            )
        except (TypeError, ValueError):
            return None


@dataclass
class SessionLedger:
    local_date_key: str
    completed_session_count: int = 0
    session_history: List[SessionEntry] = field(default_factory=list)
    accumulated_focus_minutes: float = 0.0
    accumulated_break_minutes: float = 0.0
    daily_history: Dict[str, DailySummary] = field(default_factory=dict)

    def record(self, entry: SessionEntry) -> None:
        """Append a session and fold it into today's totals.

        Zero-length entries are ignored.
        """
        if entry.duration_minutes <= 0:
            return
        self.session_history.append(entry)
        if entry.type is Mode.FOCUS:
            self.completed_session_count += 1
            self.accumulated_focus_minutes += entry.duration_minutes
        else:
            self.accumulated_break_minutes += entry.duration_minutes

    def summary(self) -> DailySummary:
        return DailySummary(
            completed_session_count=self.completed_session_count,
            accumulated_focus_minutes=self.accumulated_focus_minutes,
            accumulated_break_minutes=self.accumulated_break_minutes,
            session_history=tuple(self.session_history),
        )

    def archive_and_reset(self, new_date_key: str) -> str:
        """Move today's totals into ``daily_history`` and start ``new_date_key``.

        Returns the archived date key. An existing archive for the same date
        is never overwritten.
        """
        archived = self.local_date_key
        self.daily_history.setdefault(archived, self.summary())
        self.completed_session_count = 0
        self.session_history = []
        self.accumulated_focus_minutes = 0.0
        self.accumulated_break_minutes = 0.0
        self.local_date_key = new_date_key
        return archived

    def prune_history(self, days_to_keep: int, today: Optional[str] = None) -> int:
        """Drop archived days older than ``days_to_keep``; returns how many."""
        reference = date.fromisoformat(today or self.local_date_key)
        cutoff = reference - timedelta(days=days_to_keep)
        stale = []
        for key in self.daily_history:
            try:
                if date.fromisoformat(key) < cutoff:
                    stale.append(key)
            except ValueError:
                stale.append(key)
        for key in stale:
            del self.daily_history[key]
        return len(stale)

    def to_dict(self, include_history: bool = True) -> Dict[str, Any]:
        data = {
            'local_date_key': self.local_date_key,
            'completed_session_count': self.completed_session_count,
            'session_history': [s.to_dict() for s in self.session_history],
            'accumulated_focus_minutes': self.accumulated_focus_minutes,
            'accumulated_break_minutes': self.accumulated_break_minutes,
        }
        if include_history:
            data['daily_history'] = {k: v.to_dict() for k, v in sorted(self.daily_history.items())}
        return data

    @classmethod
    def from_dict(cls, data: Any, daily_history: Any, fallback_date_key: str) -> 'SessionLedger':
        data = data if isinstance(data, dict) else {}
        date_key = data.get('local_date_key')
        try:
            date.fromisoformat(str(date_key))
        except ValueError:
            date_key = fallback_date_key
        entries = [SessionEntry.from_dict(s) for s in data.get('session_history') or []]
        ledger = cls(local_date_key=date_key)
        ledger.session_history = [e for e in entries if e is not None]
        try:
            ledger.completed_session_count = max(0, int(data.get('completed_session_count') or 0))
            ledger.accumulated_focus_minutes = max(0.0, float(data.get('accumulated_focus_minutes') or 0))
            ledger.accumulated_break_minutes = max(0.0, float(data.get('accumulated_break_minutes') or 0))
        except (TypeError, ValueError):
            # Totals are unreadable; rebuild them from the surviving entries
            ledger.completed_session_count = sum(1 for e in ledger.session_history if e.type is Mode.FOCUS)
            ledger.accumulated_focus_minutes = sum(e.duration_minutes for e in ledger.session_history if e.type is Mode.FOCUS)
            ledger.accumulated_break_minutes = sum(e.duration_minutes for e in ledger.session_history if e.type is Mode.BREAK)
        if isinstance(daily_history, dict):
            for key, value in daily_history.items():
                summary = DailySummary.from_dict(value)
                if summary is not None:
                    ledger.daily_history[str(key)] = summary
        return ledger
