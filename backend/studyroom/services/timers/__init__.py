"""Per-user timer domain: engines, ledger, rollover, persistence, recovery.

This package keeps the timer rules independent of the transport; Socket.IO
handlers and HTTP routes only translate commands into engine calls and
subscribe to the events the engines emit.
"""

from .engine import UserTimerEngine
from .scheduler import ManualScheduler, Scheduler, SocketIOScheduler
from .service import TimerService, get_timer_service
from .state import Mode, TimerEvent, TimerSettings

__all__ = [
    'ManualScheduler',
    'Mode',
    'Scheduler',
    'SocketIOScheduler',
    'TimerEvent',
    'TimerService',
    'TimerSettings',
    'UserTimerEngine',
    'get_timer_service',
]
