"""Durable snapshots of every engine.

Snapshots are taken in memory under each engine's lock and written to the
database afterwards, so a slow or failing write never holds up ticking.
Write failures are logged and otherwise ignored: the live engines stay
authoritative.
"""

import logging
import threading
from typing import Any, Dict, Iterable, List

from sqlalchemy.exc import SQLAlchemyError

from studyroom import db
from studyroom.models import TimerSnapshot
from .scheduler import Scheduler
from .store import EngineStore

logger = logging.getLogger(__name__)

SAVE_KEY = 'persistence:debounced-save'
AUTOSAVE_KEY = 'persistence:autosave'
ACTIVE_AUTOSAVE_KEY = 'persistence:active-autosave'


class PersistenceManager:

    def __init__(self, app, store: EngineStore, scheduler: Scheduler, snapshot_interval: float = 30,
                 active_snapshot_interval: float = 10, save_debounce: float = 5):
        self.app = app
        self.store = store
        self.scheduler = scheduler
        self.snapshot_interval = snapshot_interval
        self.active_snapshot_interval = active_snapshot_interval
        self.save_debounce = save_debounce
        self.last_save_timestamp = None
        self.last_error = None
        self._write_lock = threading.Lock()

    def snapshot_all(self) -> List[Dict[str, Any]]:
        now = self.scheduler.time()
        return [engine.to_snapshot(now) for engine in self.store.all()]

    def save_all(self) -> int:
        """Write every engine; returns the number of rows written (0 on failure)."""
        snapshots = self.snapshot_all()
        return self.write(snapshots)

    def write(self, snapshots: Iterable[Dict[str, Any]]) -> int:
        snapshots = list(snapshots)
        with self._write_lock, self.app.app_context():
            try:
                for data in snapshots:
                    row = db.session.get(TimerSnapshot, data['user_id'])
                    if row is None:
                        row = TimerSnapshot(user_id=data['user_id'])
                    row.store_payload(data)
                    db.session.add(row)
                db.session.commit()
            except (SQLAlchemyError, OSError, TypeError, ValueError) as exc:
                db.session.rollback()
                self.last_error = str(exc)
                logger.error(f"[persist-error] saving {len(snapshots)} snapshots failed: {exc}")
                return 0
        self.last_save_timestamp = self.scheduler.time()
        self.last_error = None
        logger.info(f"[persist-save] saved {len(snapshots)} users")
        return len(snapshots)

    def load_all(self) -> Dict[str, Dict[str, Any]]:
        """Every readable snapshot keyed by user id; unreadable rows are skipped."""
        loaded: Dict[str, Dict[str, Any]] = {}
        with self.app.app_context():
            try:
                rows = TimerSnapshot.query.all()
            except SQLAlchemyError as exc:
                db.session.rollback()
                self.last_error = str(exc)
                logger.error(f"[persist-error] loading snapshots failed: {exc}")
                return loaded
            for row in rows:
                data = row.load_payload()
                if data is None:
                    logger.error(f"[persist-error] snapshot for user={row.user_id} is corrupt; skipping")
                    continue
                loaded[row.user_id] = data
        logger.info(f"[persist-load] loaded {len(loaded)} users")
        return loaded

    def delete(self, user_ids: Iterable[str]) -> None:
        user_ids = list(user_ids)
        if not user_ids:
            return
        with self._write_lock, self.app.app_context():
            try:
                TimerSnapshot.query.filter(TimerSnapshot.user_id.in_(user_ids)).delete(synchronize_session=False)
                db.session.commit()
            except SQLAlchemyError as exc:
                db.session.rollback()
                logger.error(f"[persist-error] deleting snapshots for {user_ids} failed: {exc}")

    def count(self) -> int:
        with self.app.app_context():
            try:
                return TimerSnapshot.query.count()
            except SQLAlchemyError as exc:
                db.session.rollback()
                logger.error(f"[persist-error] counting snapshots failed: {exc}")
                return 0

    def cleanup_old_history(self, days_to_keep: int = 30) -> int:
        """Drop archived days older than ``days_to_keep`` and persist the result."""
        removed = sum(engine.prune_history(days_to_keep) for engine in self.store.all())
        if removed:
            logger.info(f"[persist-cleanup] removed {removed} archived days older than {days_to_keep} days")
            self.save_all()
        return removed

    # ---- background saving ----

    def request_save(self, delay: float = None) -> None:
        """Debounced save: repeated requests collapse into one write."""
        self.scheduler.call_later(SAVE_KEY, self.save_debounce if delay is None else delay, self.save_all)

    def _save_if_active(self) -> None:
        if self.store.any_active():
            self.save_all()

    def start_autosave(self) -> None:
        self.scheduler.call_every(AUTOSAVE_KEY, self.snapshot_interval, self.save_all)
        self.scheduler.call_every(ACTIVE_AUTOSAVE_KEY, self.active_snapshot_interval, self._save_if_active)
        logger.info(
            f"[persist-autosave] every {self.snapshot_interval}s, every {self.active_snapshot_interval}s while timers run"
        )

    def stop_autosave(self) -> None:
        for key in (AUTOSAVE_KEY, ACTIVE_AUTOSAVE_KEY, SAVE_KEY):
            self.scheduler.cancel(key)

    def status(self) -> Dict[str, Any]:
        return {
            'persistent_users_count': len(self.store),
            'stored_snapshots_count': self.count(),
            'last_save_timestamp': self.last_save_timestamp,
            'last_error': self.last_error,
            'autosave_enabled': self.scheduler.is_scheduled(AUTOSAVE_KEY),
            'snapshot_interval_sec': self.snapshot_interval,
            'active_snapshot_interval_sec': self.active_snapshot_interval,
        }
