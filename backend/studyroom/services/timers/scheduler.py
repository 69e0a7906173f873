import heapq
import itertools
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


class Scheduler:
    """Keyed, cancellable timers.

    Registering a key that is already scheduled supersedes the previous
    registration, so there is at most one live task per key.
    """

    def call_later(self, key: str, delay: float, fn: Callback) -> None:
        raise NotImplementedError

    def call_every(self, key: str, interval: float, fn: Callback) -> None:
        raise NotImplementedError

    def cancel(self, key: str) -> None:
        raise NotImplementedError

    def is_scheduled(self, key: str) -> bool:
        raise NotImplementedError

    def time(self) -> float:
        return time.time()


class SocketIOScheduler(Scheduler):
    """Runs each registration as a Socket.IO background task.

    Works with whichever async mode the SocketIO server picked (threading,
    eventlet or gevent) because sleeping goes through ``socketio.sleep``.
    """

    def __init__(self, socketio):
        self.socketio = socketio
        self._tokens: Dict[str, int] = {}
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def _register(self, key: str) -> int:
        with self._lock:
            token = next(self._counter)
            self._tokens[key] = token
            return token

    def _alive(self, key: str, token: int) -> bool:
        with self._lock:
            return self._tokens.get(key) == token

    def call_later(self, key: str, delay: float, fn: Callback) -> None:
        token = self._register(key)

        def _runner():
            self.socketio.sleep(delay)
            with self._lock:
                if self._tokens.get(key) != token:
                    return
                self._tokens.pop(key, None)
            _run_safely(key, fn)

        self.socketio.start_background_task(_runner)

    def call_every(self, key: str, interval: float, fn: Callback) -> None:
        token = self._register(key)

        def _runner():
            # Sleep to the next absolute deadline so slow callbacks do not drift the cadence
            deadline = time.monotonic() + interval
            while True:
                self.socketio.sleep(max(0.0, deadline - time.monotonic()))
                if not self._alive(key, token):
                    return
                _run_safely(key, fn)
                deadline += interval

        self.socketio.start_background_task(_runner)

    def cancel(self, key: str) -> None:
        with self._lock:
            self._tokens.pop(key, None)

    def is_scheduled(self, key: str) -> bool:
        with self._lock:
            return key in self._tokens


class ManualScheduler(Scheduler):
    """Virtual-time scheduler for tests and offline tooling.

    Nothing runs until ``advance`` is called; ``time()`` returns the virtual
    clock, so it doubles as the engines' clock.
    """

    def __init__(self, start: Optional[float] = None):
        self.now = float(start if start is not None else time.time())
        self._queue: List[Tuple[float, int, str, int]] = []
        self._entries: Dict[str, Tuple[int, Callback, Optional[float]]] = {}
        self._seq = itertools.count()
        self._tokens = itertools.count(1)

    def time(self) -> float:
        return self.now

    def _push(self, key: str, due: float, fn: Callback, interval: Optional[float]) -> None:
        token = next(self._tokens)
        self._entries[key] = (token, fn, interval)
        heapq.heappush(self._queue, (due, next(self._seq), key, token))

    def call_later(self, key: str, delay: float, fn: Callback) -> None:
        self._push(key, self.now + delay, fn, None)

    def call_every(self, key: str, interval: float, fn: Callback) -> None:
        self._push(key, self.now + interval, fn, interval)

    def cancel(self, key: str) -> None:
        self._entries.pop(key, None)

    def is_scheduled(self, key: str) -> bool:
        return key in self._entries

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing everything due on the way in order."""
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target:
            due, _, key, token = heapq.heappop(self._queue)
            entry = self._entries.get(key)
            if not entry or entry[0] != token:
                continue
            _, fn, interval = entry
            self.now = max(self.now, due)
            if interval is None:
                self._entries.pop(key, None)
            else:
                heapq.heappush(self._queue, (due + interval, next(self._seq), key, token))
            _run_safely(key, fn)
        self.now = target

    def pending(self) -> List[str]:
        return sorted(self._entries)


def _run_safely(key: str, fn: Callback) -> None:
    # A failing callback must not kill the scheduler loop of other keys
    try:
        fn()
    except Exception:
        logger.exception(f"[scheduler-error] task {key} raised")
