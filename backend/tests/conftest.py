import os
import sys
from datetime import datetime, timezone
import pytest

# Ensure the backend root (containing the `studyroom` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from studyroom import create_app, db, socketio
from studyroom.services.timers import ManualScheduler, TimerSettings, UserTimerEngine

# 2026-03-10 10:00:00 UTC, a Tuesday
START_TS = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc).timestamp()


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    RESTORE_ON_STARTUP = False
    FOCUS_MINUTES = 50
    BREAK_MINUTES = 10
    AUTO_START_DELAY_SEC = 2
    ROOM_MAX_USERS = 2


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    application.extensions['timers'].scheduler.now = START_TS
    with application.app_context():
        # Ensure models are imported so tables are created
        import studyroom.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def service(flask_app):
    return flask_app.extensions['timers']


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


@pytest.fixture()
def scheduler():
    return ManualScheduler(start=START_TS)


@pytest.fixture()
def make_engine(scheduler):
    """Build an online engine with 50/10 minute sessions on the virtual clock."""
    def _make(user_id='u1', timezone='UTC', **settings):
        values = {'focus_minutes': 50, 'break_minutes': 10}
        values.update(settings)
        engine = UserTimerEngine(user_id, scheduler, name='Ada', settings=TimerSettings(**values), timezone=timezone)
        engine.set_online('room-1')
        return engine
    return _make


@pytest.fixture()
def record_events():
    def _record(engine):
        events = []
        engine.subscribe(events.append)
        return events
    return _record
