import logging
from typing import Sequence

from .engine import UserTimerEngine
from .state import TimerEvent

logger = logging.getLogger(__name__)


def room_channel(room_id: str) -> str:
    return f"room:{room_id}"


class SocketIOBroadcaster:
    """Fans engine events out to the Socket.IO room the user is in.

    Events are emitted from the engine's own thread while its lock is held,
    so each room sees one user's events in the order they happened.
    """

    def __init__(self, socketio, namespaces: Sequence[str] = ('/ws',)):
        self.socketio = socketio
        self.namespaces = tuple(namespaces)

    def attach(self, engine: UserTimerEngine) -> None:
        engine.subscribe(lambda event: self.publish(engine, event))

    def publish(self, engine: UserTimerEngine, event: TimerEvent) -> None:
        if not engine.room_id:
            return
        message = {'user_id': event.user_id}
        message.update(event.payload)
        for namespace in self.namespaces:
            self.socketio.emit(event.name, message, to=room_channel(engine.room_id), namespace=namespace)
        if event.name != TimerEvent.TIMER_TICK:
            logger.debug(f"[broadcast] user={event.user_id} event={event.name} room={engine.room_id}")
