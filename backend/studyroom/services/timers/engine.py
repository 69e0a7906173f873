"""Per-user focus/break timer.

One ``UserTimerEngine`` exists per user id. All of its mutations, including
scheduler ticks, run under the engine's own lock, and every public method
starts with the daily rollover guard.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from .clock import end_of_day, local_date_key, local_midnight, resolve_timezone
from .gaps import DEFAULT_THRESHOLD_MINUTES, calculate_dead_time_gaps
from .ledger import SessionLedger
from .scheduler import Scheduler
from .state import Mode, SessionEntry, TimerEvent, TimerSettings, TimerState

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1
DEFAULT_AUTO_START_DELAY_SEC = 2.0
TICK_INTERVAL_SEC = 1.0

Subscriber = Callable[[TimerEvent], None]


class UserTimerEngine:

    def __init__(
        self,
        user_id: str,
        scheduler: Scheduler,
        name: Optional[str] = None,
        settings: Optional[TimerSettings] = None,
        timezone: Optional[str] = None,
        clock: Optional[Callable[[], float]] = None,
        auto_start_delay: float = DEFAULT_AUTO_START_DELAY_SEC,
        heartbeat_sec: int = 0,
    ):
        self.user_id = str(user_id)
        self.name = name or self.user_id
        self.scheduler = scheduler
        self.clock = clock or scheduler.time
        self.auto_start_delay = auto_start_delay
        self.heartbeat_sec = int(heartbeat_sec or 0)
        self.settings = settings or TimerSettings()
        self.timezone, self._zone = resolve_timezone(timezone)

        now = self.clock()
        self.state = TimerState(
            mode=Mode.FOCUS,
            remaining_seconds=self.settings.duration_seconds(Mode.FOCUS),
        )
        self.ledger = SessionLedger(local_date_key=local_date_key(now, self._zone))
        self.current_session_notes = ''
        # Wall-clock start of the uncommitted session; None until it first runs
        self.session_started_at: Optional[float] = None
        self.is_online = False
        self.last_activity = now
        self.room_id: Optional[str] = None
        self.recovery_info = None

        self._lock = threading.RLock()
        self._tick_generation = 0
        self._subscribers: List[Subscriber] = []

    def __repr__(self):
        return f"<UserTimerEngine {self.user_id} {self.state.mode.value} {self.state.remaining_seconds}s active={self.state.is_active}>"

    @property
    def _tick_key(self) -> str:
        return f"timer-tick:{self.user_id}"

    @property
    def _auto_start_key(self) -> str:
        return f"timer-autostart:{self.user_id}"

    @property
    def full_seconds(self) -> int:
        return self.settings.duration_seconds(self.state.mode)

    @property
    def session_in_progress(self) -> bool:
        with self._lock:
            return self._in_progress()

    # ---- outbound channel ----

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register an event consumer; returns a function that unregisters it."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def _emit(self, name: str, payload: Dict[str, Any]) -> None:
        event = TimerEvent(name=name, user_id=self.user_id, payload=payload)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception(f"[event-error] user={self.user_id} event={name} subscriber failed")

    def _state_payload(self) -> Dict[str, Any]:
        data = self.state.to_dict()
        data['full_seconds'] = self.full_seconds
        data['elapsed_seconds'] = self._elapsed_seconds()
        return data

    def _emit_tick(self) -> None:
        self._emit(TimerEvent.TIMER_TICK, {'timer_state': self._state_payload()})

    def _emit_user_data(self) -> None:
        self._emit(TimerEvent.USER_DATA_CHANGED, {
            'timer_state': self._state_payload(),
            'settings': self.settings.to_dict(),
            'ledger': self.ledger.to_dict(include_history=False),
        })

    # ---- internal helpers (lock held) ----

    def _elapsed_seconds(self) -> int:
        full = self.full_seconds
        return max(0, min(full, full - self.state.remaining_seconds))

    def _in_progress(self) -> bool:
        return self.state.is_active or self._elapsed_seconds() > 0

    def _stop_ticking(self) -> None:
        self.state.is_active = False
        # Ticks carry the generation they were registered with; bumping it
        # invalidates any tick already queued behind the lock
        self._tick_generation += 1
        self.scheduler.cancel(self._tick_key)
        self.scheduler.cancel(self._auto_start_key)

    def _switch_mode(self, target: Mode, bump_sequence: bool) -> None:
        self.state.mode = target
        self.state.remaining_seconds = self.settings.duration_seconds(target)
        self.session_started_at = None
        if bump_sequence:
            self.state.session_sequence += 1

    def _flush_partial(self, now: float, end_of_day_flush: bool = False) -> Optional[SessionEntry]:
        elapsed = self._elapsed_seconds()
        if elapsed <= 0:
            return None
        entry = SessionEntry(
            type=self.state.mode,
            duration_minutes=elapsed / 60.0,
            completed_at=now,
            is_partial=True,
            end_of_day=end_of_day_flush,
            notes=self.current_session_notes,
        )
        self.current_session_notes = ''
        self.ledger.record(entry)
        logger.info(
            f"[timer-partial] user={self.user_id} mode={entry.type.value} minutes={entry.duration_minutes:.2f} end_of_day={end_of_day_flush}"
        )
        return entry

    def _rollover(self, now: float) -> bool:
        today = local_date_key(now, self._zone)
        current = self.ledger.local_date_key
        # ISO dates order lexicographically; only move forward in time
        if today <= current:
            return False
        if self._in_progress():
            self._flush_partial(min(now, end_of_day(current, self._zone)), end_of_day_flush=True)
        self._stop_ticking()
        self.ledger.archive_and_reset(today)
        self.current_session_notes = ''
        self._switch_mode(Mode.FOCUS, bump_sequence=False)
        logger.info(f"[rollover] user={self.user_id} archived={current} today={today} tz={self.timezone}")
        return True

    def _guard(self) -> float:
        now = self.clock()
        self._rollover(now)
        return now

    def _complete(self, now: float, during_downtime: bool = False) -> None:
        finished = self.state.mode
        self._stop_ticking()
        entry = SessionEntry(
            type=finished,
            duration_minutes=self.settings.duration_minutes(finished),
            completed_at=now,
            completed_during_downtime=during_downtime,
            notes=self.current_session_notes,
        )
        self.current_session_notes = ''
        self.ledger.record(entry)
        self._switch_mode(finished.opposite, bump_sequence=True)
        logger.info(
            f"[timer-complete] user={self.user_id} finished={finished.value} next={self.state.mode.value} "
            f"session={self.state.session_sequence} downtime={during_downtime}"
        )
        self._emit(TimerEvent.TIMER_COMPLETE, {
            'timer_state': self._state_payload(),
            'ledger': self.ledger.to_dict(include_history=False),
        })
        self._schedule_auto_start()

    def _schedule_auto_start(self) -> None:
        if not self.settings.auto_start_for(self.state.mode) or not self.is_online:
            return
        sequence = self.state.session_sequence
        self.scheduler.call_later(self._auto_start_key, self.auto_start_delay, lambda: self._auto_start(sequence))

    def _auto_start(self, sequence: int) -> None:
        with self._lock:
            if self.state.session_sequence != sequence or self.state.is_active or not self.is_online:
                logger.info(f"[timer-skip] user={self.user_id} auto-start for session={sequence} no longer applies")
                return
            self.start()

    def _on_tick(self, generation: int) -> None:
        with self._lock:
            if generation != self._tick_generation or not self.state.is_active:
                return
            now = self.clock()
            if self._rollover(now):
                self._emit_user_data()
                return
            self.state.remaining_seconds = max(0, self.state.remaining_seconds - 1)
            remaining = self.state.remaining_seconds
            if self.heartbeat_sec and remaining and remaining % self.heartbeat_sec == 0:
                logger.info(f"[timer-heartbeat] user={self.user_id} mode={self.state.mode.value} remaining={remaining}s")
            self._emit_tick()
            if remaining == 0:
                self._complete(now)

    # ---- commands ----

    def start(self) -> bool:
        with self._lock:
            now = self._guard()
            if not self.is_online or self.state.is_active:
                logger.info(f"[timer-skip] user={self.user_id} start ignored online={self.is_online} active={self.state.is_active}")
                return False
            if self.state.remaining_seconds <= 0:
                self.state.remaining_seconds = self.full_seconds
            if self.session_started_at is None:
                self.session_started_at = now - self._elapsed_seconds()
            self.scheduler.cancel(self._auto_start_key)
            self.state.is_active = True
            self._tick_generation += 1
            generation = self._tick_generation
            self.scheduler.call_every(self._tick_key, TICK_INTERVAL_SEC, lambda: self._on_tick(generation))
            self.last_activity = now
            logger.info(
                f"[timer-start] user={self.user_id} mode={self.state.mode.value} remaining={self.state.remaining_seconds}s"
            )
            self._emit_tick()
            return True

    def pause(self) -> None:
        with self._lock:
            now = self._guard()
            if self.state.is_active:
                logger.info(f"[timer-pause] user={self.user_id} remaining={self.state.remaining_seconds}s")
            self._stop_ticking()
            self.last_activity = now
            self._emit_tick()

    def reset(self) -> None:
        """Back to a full focus session, keeping partial credit for the current one."""
        with self._lock:
            now = self._guard()
            self._stop_ticking()
            self._flush_partial(now)
            self._switch_mode(Mode.FOCUS, bump_sequence=False)
            self.last_activity = now
            logger.info(f"[timer-reset] user={self.user_id} session={self.state.session_sequence}")
            self._emit_user_data()

    def change_mode(self, target: Any) -> bool:
        """Switch to ``target`` with its full duration.

        Callers are expected to refuse this while a session is in progress;
        if they do not, the elapsed time is still credited as a partial.
        """
        mode = Mode.parse(target)
        with self._lock:
            now = self._guard()
            if mode is None:
                logger.info(f"[timer-skip] user={self.user_id} change_mode to unknown mode {target!r}")
                return False
            self._flush_partial(now)
            self._stop_ticking()
            self._switch_mode(mode, bump_sequence=mode is not self.state.mode)
            self.last_activity = now
            logger.info(f"[timer-mode] user={self.user_id} mode={mode.value} session={self.state.session_sequence}")
            self._emit_user_data()
            return True

    def skip_to_opposite(self, expected_mode: Any = None) -> bool:
        with self._lock:
            now = self._guard()
            if expected_mode is not None and Mode.parse(expected_mode) is not self.state.mode:
                logger.info(
                    f"[timer-skip] user={self.user_id} skip from {expected_mode!r} ignored in mode={self.state.mode.value}"
                )
                return False
            self._stop_ticking()
            self._flush_partial(now)
            self._switch_mode(self.state.mode.opposite, bump_sequence=True)
            self.last_activity = now
            logger.info(f"[timer-skip-to] user={self.user_id} mode={self.state.mode.value} session={self.state.session_sequence}")
            self._emit_user_data()
            return True

    def update_settings(self, updates: Optional[Dict[str, Any]]) -> None:
        with self._lock:
            now = self._guard()
            self.settings = self.settings.merged(updates)
            full = self.full_seconds
            if self.state.is_active:
                self.state.remaining_seconds = min(self.state.remaining_seconds, full)
            else:
                self.state.remaining_seconds = full
                self.session_started_at = None
            self.last_activity = now
            logger.info(f"[timer-settings] user={self.user_id} settings={self.settings.to_dict()}")
            self._emit(TimerEvent.SETTINGS_CHANGED, {
                'settings': self.settings.to_dict(),
                'timer_state': self._state_payload(),
            })

    def set_timezone(self, name: Optional[str]) -> bool:
        """Adopt a new timezone; returns True when it caused a rollover."""
        with self._lock:
            self.timezone, self._zone = resolve_timezone(name)
            rolled = self._rollover(self.clock())
            self._emit_user_data()
            return rolled

    def update_session_notes(self, index: Any, notes: Any) -> bool:
        """Attach notes to one of today's sessions, or to the running one.

        Returns True when a recorded session was updated.
        """
        with self._lock:
            self._guard()
            text = str(notes or '')
            try:
                position = int(index)
            except (TypeError, ValueError):
                position = -1
            history = self.ledger.session_history
            updated = 0 <= position < len(history)
            if updated:
                history[position].notes = text
            else:
                self.current_session_notes = text
            self._emit_user_data()
            return updated

    def rename(self, name: Any) -> Optional[str]:
        """Set a new display name; returns the old one, or None if ``name`` is blank."""
        text = str(name or '').strip()
        if not text:
            return None
        with self._lock:
            old, self.name = self.name, text
            self.last_activity = self.clock()
            logger.info(f"[user-rename] user={self.user_id} {old!r} -> {text!r}")
            return old

    def check_and_rollover(self, now: Optional[float] = None) -> bool:
        with self._lock:
            rolled = self._rollover(self.clock() if now is None else now)
            if rolled:
                self._emit_user_data()
            return rolled

    def set_online(self, room_id: Optional[str] = None) -> None:
        with self._lock:
            self.is_online = True
            if room_id is not None:
                self.room_id = room_id
            self.last_activity = self.clock()

    def set_offline(self) -> None:
        """Going offline pauses a running timer; coming back never resumes it."""
        with self._lock:
            was_active = self.state.is_active
            self.is_online = False
            self.last_activity = self.clock()
            if was_active:
                self.pause()
            else:
                self._stop_ticking()

    def apply_outage(self, elapsed_seconds: float, now: Optional[float] = None) -> bool:
        """Burn down time estimated to have run while the process was down.

        Returns True when that completed the session.
        """
        with self._lock:
            now = self.clock() if now is None else now
            full = self.full_seconds
            remaining = self.state.remaining_seconds - max(0.0, float(elapsed_seconds))
            self.state.remaining_seconds = max(0, min(full, int(remaining)))
            if self.state.remaining_seconds == 0:
                # A completion during an outage belongs to the ledger's own day
                self._complete(min(now, end_of_day(self.ledger.local_date_key, self._zone)), during_downtime=True)
                return True
            return False

    def prune_history(self, days_to_keep: int) -> int:
        with self._lock:
            return self.ledger.prune_history(days_to_keep)

    def dispose(self) -> None:
        with self._lock:
            self._stop_ticking()
            self._subscribers.clear()

    # ---- reads ----

    def user_data(self) -> Dict[str, Any]:
        with self._lock:
            self.check_and_rollover()
            return {
                'id': self.user_id,
                'name': self.name,
                'status': 'online' if self.is_online else 'offline',
                'room_id': self.room_id,
                'timezone': self.timezone,
                'last_activity': self.last_activity,
                'timer_state': self._state_payload(),
                'settings': self.settings.to_dict(),
                'ledger': self.ledger.to_dict(include_history=False),
                'current_session_notes': self.current_session_notes,
            }

    def stats(self, threshold_minutes: float = DEFAULT_THRESHOLD_MINUTES) -> Dict[str, Any]:
        """Today's ledger, the archive and dead-time gaps for display."""
        with self._lock:
            self.check_and_rollover()
            now = self.clock()
            elapsed = self._elapsed_seconds()
            in_progress_start = None
            if elapsed > 0:
                in_progress_start = self.session_started_at if self.session_started_at is not None else now - elapsed
            gaps = calculate_dead_time_gaps(
                self.ledger.session_history,
                day_start=local_midnight(now, self._zone),
                in_progress_start=in_progress_start,
                threshold_minutes=threshold_minutes,
            )
            in_progress_minutes = elapsed / 60.0
            focus_now = self.ledger.accumulated_focus_minutes
            break_now = self.ledger.accumulated_break_minutes
            if self.state.mode is Mode.FOCUS:
                focus_now += in_progress_minutes
            else:
                break_now += in_progress_minutes
            return {
                'user_id': self.user_id,
                'timer_state': self._state_payload(),
                'ledger': self.ledger.to_dict(include_history=True),
                'display_focus_minutes': focus_now,
                'display_break_minutes': break_now,
                'dead_time_gaps': [g.to_dict() for g in gaps],
            }

    # ---- snapshots ----

    def to_snapshot(self, now: Optional[float] = None) -> Dict[str, Any]:
        with self._lock:
            state = self.state.to_dict()
            state['is_active'] = False
            return {
                'version': SNAPSHOT_VERSION,
                'user_id': self.user_id,
                'name': self.name,
                'timezone': self.timezone,
                'room_id': self.room_id,
                'last_activity': self.last_activity,
                'settings': self.settings.to_dict(),
                'timer_state': state,
                'ledger': self.ledger.to_dict(include_history=False),
                'daily_history': {k: v.to_dict() for k, v in sorted(self.ledger.daily_history.items())},
                'current_session_notes': self.current_session_notes,
                'session_started_at': self.session_started_at,
                'last_save_timestamp': self.clock() if now is None else now,
            }

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any], scheduler: Scheduler, defaults: Optional[TimerSettings] = None, **kwargs) -> 'UserTimerEngine':
        """Rebuild a paused, offline engine, repairing anything implausible."""
        settings = TimerSettings.from_dict(data.get('settings'), defaults)
        engine = cls(
            user_id=data['user_id'],
            scheduler=scheduler,
            name=data.get('name'),
            settings=settings,
            timezone=data.get('timezone'),
            **kwargs,
        )
        raw_state = data.get('timer_state') if isinstance(data.get('timer_state'), dict) else {}
        mode = Mode.parse(raw_state.get('mode'), Mode.FOCUS)
        full = settings.duration_seconds(mode)
        try:
            remaining = int(float(raw_state.get('remaining_seconds')))
        except (TypeError, ValueError, OverflowError):
            remaining = full
        if remaining < 0 or remaining > full:
            remaining = full
        try:
            sequence = max(1, int(raw_state.get('session_sequence') or 1))
        except (TypeError, ValueError):
            sequence = 1
        engine.state = TimerState(mode=mode, remaining_seconds=remaining, is_active=False, session_sequence=sequence)
        engine.ledger = SessionLedger.from_dict(
            data.get('ledger'),
            data.get('daily_history'),
            fallback_date_key=engine.ledger.local_date_key,
        )
        engine.current_session_notes = str(data.get('current_session_notes') or '')
        engine.room_id = str(data['room_id']) if data.get('room_id') else None
        try:
            started = data.get('session_started_at')
            engine.session_started_at = float(started) if started is not None and engine._elapsed_seconds() > 0 else None
        except (TypeError, ValueError):
            engine.session_started_at = None
        try:
            engine.last_activity = float(data.get('last_activity') or engine.last_activity)
        except (TypeError, ValueError):
            pass
        return engine
