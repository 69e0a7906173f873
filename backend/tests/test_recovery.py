from datetime import datetime, timezone

import pytest

from studyroom.services.timers import Mode, UserTimerEngine
from studyroom.services.timers.recovery import estimate_outage_elapsed, recover_engine, recovery_report

from conftest import START_TS


def _snapshot(remaining, mode='focus', **extra):
    data = {
        'version': 1,
        'user_id': 'u1',
        'name': 'Ada',
        'timezone': 'UTC',
        'settings': {'focus_minutes': 50, 'break_minutes': 10},
        'timer_state': {'mode': mode, 'remaining_seconds': remaining, 'is_active': True, 'session_sequence': 4},
        'ledger': {'local_date_key': '2026-03-10', 'completed_session_count': 0, 'session_history': []},
        'daily_history': {},
        'last_save_timestamp': START_TS - 400,
    }
    data.update(extra)
    return data


def test_outage_burns_half_the_gap(scheduler):
    engine = UserTimerEngine.from_snapshot(_snapshot(1200), scheduler)
    info = recover_engine(engine, START_TS - 400, START_TS)

    assert info.recovered is True
    assert info.estimated_elapsed_seconds == 200
    assert info.session_completed is False
    assert engine.state.remaining_seconds == 1000
    assert engine.state.is_active is False
    assert engine.recovery_info is info


def test_short_gap_is_left_alone(scheduler):
    engine = UserTimerEngine.from_snapshot(_snapshot(1200), scheduler)
    info = recover_engine(engine, START_TS - 60, START_TS)
    assert info.recovered is False
    assert engine.state.remaining_seconds == 1200


def test_idle_timer_is_left_alone(scheduler):
    engine = UserTimerEngine.from_snapshot(_snapshot(3000), scheduler)
    info = recover_engine(engine, START_TS - 4000, START_TS)
    assert info.recovered is False
    assert engine.state.remaining_seconds == 3000


def test_missing_save_timestamp_is_left_alone(scheduler):
    engine = UserTimerEngine.from_snapshot(_snapshot(1200), scheduler)
    assert recover_engine(engine, None, START_TS).recovered is False
    assert engine.state.remaining_seconds == 1200


def test_outage_can_complete_session(scheduler):
    engine = UserTimerEngine.from_snapshot(_snapshot(100), scheduler)
    info = recover_engine(engine, START_TS - 1000, START_TS)

    assert info.session_completed is True
    assert engine.state.mode is Mode.BREAK
    assert engine.state.remaining_seconds == 600
    assert engine.state.is_active is False
    assert engine.state.session_sequence == 5
    [entry] = engine.ledger.session_history
    assert entry.completed_during_downtime is True
    assert entry.to_dict()['completed_during_downtime'] is True
    assert engine.ledger.completed_session_count == 1


@pytest.mark.parametrize('remaining,gap', [(1, 121), (1500, 121), (2999, 10000), (600, 86400), (2000, 300)])
def test_recovered_remaining_stays_in_bounds(scheduler, remaining, gap):
    engine = UserTimerEngine.from_snapshot(_snapshot(remaining), scheduler)
    recover_engine(engine, START_TS - gap, START_TS)
    assert 0 <= engine.state.remaining_seconds <= engine.full_seconds


def test_estimate_never_exceeds_remaining():
    assert estimate_outage_elapsed(1000, 100) == 100
    assert estimate_outage_elapsed(400, 1200) == 200
    assert estimate_outage_elapsed(400, 1200, active_ratio=1.0) == 400


@pytest.mark.parametrize('bad', [-5, 'abc', 99999, None])
def test_implausible_remaining_is_reset_to_full(scheduler, bad):
    engine = UserTimerEngine.from_snapshot(_snapshot(bad), scheduler)
    assert engine.state.remaining_seconds == 3000


def test_snapshot_restores_paused_and_repairs_mode(scheduler):
    engine = UserTimerEngine.from_snapshot(_snapshot(300, mode='nap'), scheduler)
    assert engine.state.mode is Mode.FOCUS
    assert engine.state.is_active is False
    assert engine.is_online is False
    assert engine.state.session_sequence == 4


def test_recovery_report_counts(scheduler):
    engines = []
    for user_id, remaining in (('a', 1200), ('b', 100), ('c', 3000)):
        engine = UserTimerEngine.from_snapshot(_snapshot(remaining, user_id=user_id), scheduler)
        recover_engine(engine, START_TS - 1000, START_TS)
        engines.append(engine)

    report = recovery_report(engines)
    assert report['total_users'] == 3
    assert report['timers_recovered'] == 2
    assert report['sessions_completed_during_downtime'] == 1
    assert {d['user_id'] for d in report['details']} == {'a', 'b'}


def test_downtime_completion_stays_on_its_own_day(scheduler):
    engine = UserTimerEngine.from_snapshot(_snapshot(100), scheduler)
    later = START_TS + 2 * 86400
    recover_engine(engine, START_TS, later)
    engine.check_and_rollover(later)

    [entry] = engine.ledger.daily_history['2026-03-10'].session_history
    assert entry.completed_during_downtime is True
    assert entry.completed_at == datetime(2026, 3, 11, tzinfo=timezone.utc).timestamp()
    assert engine.ledger.local_date_key == '2026-03-12'
    assert engine.ledger.session_history == []
