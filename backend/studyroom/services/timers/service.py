import logging
from dataclasses import replace
from typing import Any, Dict, Optional

from flask import current_app

from .broadcast import SocketIOBroadcaster
from .engine import UserTimerEngine
from .persistence import PersistenceManager
from .recovery import recover_engine, recovery_report
from .scheduler import Scheduler
from .state import TimerSettings
from .store import ConnectionRegistry, EngineStore, RoomRegistry

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'timers'
CLEANUP_KEY = 'users:inactive-cleanup'


def get_timer_service() -> 'TimerService':
    return current_app.extensions[EXTENSION_KEY]


class TimerService:
    """Everything the transport layers need, built once per Flask app."""

    def __init__(self, app, scheduler: Scheduler, socketio=None, namespaces=('/ws',)):
        cfg = app.config
        self.app = app
        self.scheduler = scheduler
        self.defaults = TimerSettings().merged({
            'focus_minutes': cfg.get('FOCUS_MINUTES', 50),
            'break_minutes': cfg.get('BREAK_MINUTES', 10),
            'auto_start_breaks': cfg.get('AUTO_START_BREAKS', False),
            'auto_start_focus': cfg.get('AUTO_START_FOCUS', False),
        })
        self.default_timezone = cfg.get('DEFAULT_TIMEZONE', 'UTC')
        self.auto_start_delay = float(cfg.get('AUTO_START_DELAY_SEC', 2))
        self.heartbeat_sec = int(cfg.get('TIMER_HEARTBEAT_SEC', 0))
        self.recovery_gap_threshold = float(cfg.get('RECOVERY_GAP_THRESHOLD_SEC', 120))
        self.recovery_active_ratio = float(cfg.get('RECOVERY_ACTIVE_RATIO', 0.5))
        self.dead_time_threshold = float(cfg.get('DEAD_TIME_THRESHOLD_MIN', 10))
        self.inactive_cleanup_sec = float(cfg.get('INACTIVE_USER_CLEANUP_HOURS', 24)) * 3600
        self.timer_save_debounce = float(cfg.get('TIMER_SAVE_DEBOUNCE_SEC', 1))

        self.broadcaster = SocketIOBroadcaster(socketio, namespaces) if socketio is not None else None
        self.store = EngineStore(factory=self._build_engine, on_create=self._attach)
        self.connections = ConnectionRegistry()
        self.rooms = RoomRegistry(max_users=int(cfg.get('ROOM_MAX_USERS', 2)))
        self.persistence = PersistenceManager(
            app,
            self.store,
            scheduler,
            snapshot_interval=float(cfg.get('SNAPSHOT_INTERVAL_SEC', 30)),
            active_snapshot_interval=float(cfg.get('ACTIVE_SNAPSHOT_INTERVAL_SEC', 10)),
            save_debounce=float(cfg.get('SAVE_DEBOUNCE_SEC', 5)),
        )

    def _engine_options(self) -> Dict[str, Any]:
        return {
            'clock': self.scheduler.time,
            'auto_start_delay': self.auto_start_delay,
            'heartbeat_sec': self.heartbeat_sec,
        }

    def _build_engine(self, user_id: str, name: Optional[str] = None, timezone: Optional[str] = None) -> UserTimerEngine:
        return UserTimerEngine(
            user_id,
            self.scheduler,
            name=name,
            settings=replace(self.defaults),
            timezone=timezone or self.default_timezone,
            **self._engine_options(),
        )

    def _attach(self, engine: UserTimerEngine) -> None:
        if self.broadcaster is not None:
            self.broadcaster.attach(engine)

    def restore(self) -> Dict[str, Any]:
        """Load every snapshot, estimate outage progress, and adopt the engines."""
        now = self.scheduler.time()
        for user_id, data in self.persistence.load_all().items():
            try:
                engine = UserTimerEngine.from_snapshot(data, self.scheduler, self.defaults, **self._engine_options())
            except (KeyError, TypeError, ValueError) as exc:
                logger.error(f"[persist-error] cannot rebuild user={user_id}: {exc}")
                continue
            try:
                last_save = float(data.get('last_save_timestamp'))
            except (TypeError, ValueError):
                last_save = None
            recover_engine(
                engine,
                last_save,
                now,
                gap_threshold_sec=self.recovery_gap_threshold,
                active_ratio=self.recovery_active_ratio,
            )
            engine.check_and_rollover(now)
            self.store.add(engine)
            # Keep the seat so the user lands back in the same room on reconnect
            if engine.room_id and not self.rooms.join(engine.room_id, engine.user_id):
                logger.warning(f"[recovery] user={user_id} could not rejoin full room={engine.room_id}")
                engine.room_id = None
        report = recovery_report(self.store.all())
        logger.info(
            f"[recovery] restored={report['total_users']} recovered={report['timers_recovered']} "
            f"completed_during_downtime={report['sessions_completed_during_downtime']}"
        )
        return report

    def recovery_report(self) -> Dict[str, Any]:
        return recovery_report(self.store.all())

    def cleanup_inactive_users(self) -> None:
        removed = self.store.cleanup_inactive(self.inactive_cleanup_sec, self.scheduler.time())
        if removed:
            for user_id in removed:
                room_id = self.rooms.room_of(user_id)
                if room_id:
                    self.rooms.leave(room_id, user_id)
            logger.info(f"[store-cleanup] removed {len(removed)} inactive users")
            self.persistence.delete(removed)

    def request_timer_save(self) -> None:
        self.persistence.request_save(self.timer_save_debounce)

    def discard_all(self) -> int:
        """Forget every engine and stop background saving; returns how many were dropped."""
        self.persistence.stop_autosave()
        self.scheduler.cancel(CLEANUP_KEY)
        dropped = 0
        for engine in self.store.all():
            user_id = engine.user_id
            room_id = self.rooms.room_of(user_id)
            if room_id:
                self.rooms.leave(room_id, user_id)
            self.store.remove(user_id)
            dropped += 1
        return dropped

    def start_background(self) -> None:
        self.persistence.start_autosave()
        self.scheduler.call_every(CLEANUP_KEY, 3600, self.cleanup_inactive_users)

    def shutdown(self) -> None:
        self.persistence.stop_autosave()
        self.scheduler.cancel(CLEANUP_KEY)
        self.persistence.save_all()
