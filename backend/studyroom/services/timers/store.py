import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set, Tuple

from .engine import UserTimerEngine

logger = logging.getLogger(__name__)


class EngineStore:
    """Owns every user's engine, keyed by user id.

    Engines live as long as the user id does: reconnects and room changes
    reuse them, and only ``cleanup_inactive`` removes them.
    """

    def __init__(self, factory: Callable[..., UserTimerEngine], on_create: Optional[Callable[[UserTimerEngine], None]] = None):
        self._factory = factory
        self._on_create = on_create
        self._engines: Dict[str, UserTimerEngine] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._engines)

    def __contains__(self, user_id) -> bool:
        return str(user_id) in self._engines

    def get(self, user_id) -> Optional[UserTimerEngine]:
        return self._engines.get(str(user_id))

    def all(self) -> List[UserTimerEngine]:
        with self._lock:
            return list(self._engines.values())

    def get_or_create(self, user_id, name: Optional[str] = None, timezone: Optional[str] = None) -> Tuple[UserTimerEngine, bool]:
        with self._lock:
            engine = self._engines.get(str(user_id))
            if engine is not None:
                if name:
                    engine.name = name
                return engine, False
            engine = self._factory(user_id=str(user_id), name=name, timezone=timezone)
            self._engines[engine.user_id] = engine
        logger.info(f"[store-create] user={engine.user_id} name={engine.name}")
        if self._on_create:
            self._on_create(engine)
        return engine, True

    def add(self, engine: UserTimerEngine) -> None:
        """Adopt an engine built elsewhere (e.g. restored from a snapshot)."""
        with self._lock:
            previous = self._engines.get(engine.user_id)
            if previous is not None and previous is not engine:
                previous.dispose()
            self._engines[engine.user_id] = engine
        if self._on_create:
            self._on_create(engine)

    def remove(self, user_id) -> Optional[UserTimerEngine]:
        with self._lock:
            engine = self._engines.pop(str(user_id), None)
        if engine is not None:
            engine.dispose()
            logger.info(f"[store-remove] user={engine.user_id}")
        return engine

    def any_active(self) -> bool:
        return any(e.state.is_active for e in self.all())

    def cleanup_inactive(self, threshold_sec: float, now: float) -> List[str]:
        """Drop offline users idle for longer than ``threshold_sec``."""
        stale = [e.user_id for e in self.all() if not e.is_online and now - e.last_activity > threshold_sec]
        for user_id in stale:
            self.remove(user_id)
        return stale


@dataclass
class Connection:
    sid: str
    user_id: str
    room_id: str


class ConnectionRegistry:
    """Socket id -> (user id, room id). Kept apart from the engines."""

    def __init__(self):
        self._by_sid: Dict[str, Connection] = {}
        self._lock = threading.Lock()

    def bind(self, sid: str, user_id: str, room_id: str) -> Connection:
        conn = Connection(sid=sid, user_id=str(user_id), room_id=room_id)
        with self._lock:
            self._by_sid[sid] = conn
        return conn

    def get(self, sid: str) -> Optional[Connection]:
        return self._by_sid.get(sid)

    def unbind(self, sid: str) -> Optional[Connection]:
        with self._lock:
            return self._by_sid.pop(sid, None)

    def sids_for(self, user_id: str) -> List[str]:
        with self._lock:
            return [c.sid for c in self._by_sid.values() if c.user_id == str(user_id)]


class RoomRegistry:
    """Which user ids belong to which room, with a per-room capacity."""

    def __init__(self, max_users: int = 2):
        self.max_users = max_users
        self._members: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def join(self, room_id: str, user_id: str) -> bool:
        with self._lock:
            members = self._members.setdefault(room_id, set())
            if str(user_id) in members:
                return True
            if len(members) >= self.max_users:
                return False
            members.add(str(user_id))
            return True

    def leave(self, room_id: str, user_id: str) -> None:
        with self._lock:
            members = self._members.get(room_id)
            if members is None:
                return
            members.discard(str(user_id))
            if not members:
                self._members.pop(room_id, None)

    def members(self, room_id: str) -> List[str]:
        with self._lock:
            return sorted(self._members.get(room_id, set()))

    def room_of(self, user_id: str) -> Optional[str]:
        with self._lock:
            for room_id, members in self._members.items():
                if str(user_id) in members:
                    return room_id
        return None
