"""Best-effort repair of timers restored after the process was down.

The estimate is deliberately rough: if the last snapshot is stale and the
session looked mid-flight, assume the timer ran for a fixed fraction of the
outage (never more than what was left) and burn that time down.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from .engine import UserTimerEngine

logger = logging.getLogger(__name__)

DEFAULT_GAP_THRESHOLD_SEC = 120
DEFAULT_ACTIVE_RATIO = 0.5


@dataclass
class RecoveryInfo:
    recovered: bool
    message: str
    gap_seconds: float = 0.0
    estimated_elapsed_seconds: float = 0.0
    session_completed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'recovered': self.recovered,
            'message': self.message,
            'gap_seconds': self.gap_seconds,
            'estimated_elapsed_seconds': self.estimated_elapsed_seconds,
            'session_completed': self.session_completed,
        }


def estimate_outage_elapsed(gap_seconds: float, remaining_seconds: int, active_ratio: float = DEFAULT_ACTIVE_RATIO) -> float:
    return max(0.0, min(gap_seconds * active_ratio, float(remaining_seconds)))


def recover_engine(
    engine: UserTimerEngine,
    last_save_timestamp: Optional[float],
    now: float,
    gap_threshold_sec: float = DEFAULT_GAP_THRESHOLD_SEC,
    active_ratio: float = DEFAULT_ACTIVE_RATIO,
) -> RecoveryInfo:
    """Apply the outage estimate to a freshly restored engine.

    The engine stays paused whatever happens; an explicit start is required.
    """
    if last_save_timestamp is None:
        info = RecoveryInfo(recovered=False, message='No save timestamp; nothing to recover')
        engine.recovery_info = info
        return info

    gap = max(0.0, now - float(last_save_timestamp))
    if gap <= gap_threshold_sec:
        info = RecoveryInfo(recovered=False, message='No timer recovery needed', gap_seconds=gap)
        engine.recovery_info = info
        return info

    logger.info(f"[recovery] user={engine.user_id} possible downtime detected: {round(gap)}s since last save")
    remaining = engine.state.remaining_seconds
    full = engine.full_seconds
    if not (0 < remaining < full):
        info = RecoveryInfo(recovered=False, message='Timer was idle at last save', gap_seconds=gap)
        engine.recovery_info = info
        return info

    elapsed = estimate_outage_elapsed(gap, remaining, active_ratio)
    completed = engine.apply_outage(elapsed, now=now)
    logger.info(
        f"[recovery] user={engine.user_id} was at {remaining}s, estimated {elapsed:.0f}s elapsed, "
        f"now {engine.state.remaining_seconds}s completed={completed}"
    )
    info = RecoveryInfo(
        recovered=True,
        message=f"Timer state recovered: estimated {round(elapsed)}s elapsed during server downtime",
        gap_seconds=gap,
        estimated_elapsed_seconds=elapsed,
        session_completed=completed,
    )
    engine.recovery_info = info
    return info


def recovery_report(engines: Iterable[UserTimerEngine]) -> Dict[str, Any]:
    engines = list(engines)
    details = []
    completed = 0
    for engine in engines:
        info = engine.recovery_info
        if not info or not info.recovered:
            continue
        if info.session_completed:
            completed += 1
        details.append({
            'user_id': engine.user_id,
            'user_name': engine.name,
            'timer_state': engine.state.to_dict(),
            **info.to_dict(),
        })
    return {
        'total_users': len(engines),
        'timers_recovered': len(details),
        'sessions_completed_during_downtime': completed,
        'details': details,
    }
