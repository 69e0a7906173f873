from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import atexit
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:5174",
    "http://127.0.0.1:5174",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from studyroom.main import main
    flask_app.register_blueprint(main)

    testing = flask_app.config.get('TESTING', False)

    # Timer service: virtual-time scheduler in tests unless explicitly enabled
    from studyroom.services.timers import ManualScheduler, SocketIOScheduler, TimerService
    if testing and not flask_app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        scheduler = ManualScheduler()
    else:
        scheduler = SocketIOScheduler(socketio)
    namespaces = ('/ws', '/') if testing else ('/ws',)
    service = TimerService(flask_app, scheduler, socketio=socketio, namespaces=namespaces)
    flask_app.extensions['timers'] = service

    try:
        from studyroom.socketio_events import register_socketio_handlers
        register_socketio_handlers(testing=testing)
    except Exception as exc:
        flask_app.logger.warning(f"SocketIO events not loaded: {exc}")

    if flask_app.config.get('RESTORE_ON_STARTUP') and not testing:
        with flask_app.app_context():
            import studyroom.models  # noqa: F401
            db.create_all()
        report = service.restore()
        flask_app.logger.info(f"[startup] restored {report['total_users']} users, {report['timers_recovered']} timers recovered")
        service.start_background()
        atexit.register(service.shutdown)

    @click.command('snapshots-reset')
    def snapshots_reset_command():
        """Drops and recreates the timer snapshot table."""
        import studyroom.models  # noqa: F401
        # Engines restored at startup would otherwise be written back on exit
        dropped = service.discard_all()
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            print(f'Timer snapshots have been reset! ({dropped} loaded users discarded)')

    @click.command('snapshots-cleanup')
    @click.option('--days', default=None, type=int, help='Archived days to keep.')
    def snapshots_cleanup_command(days):
        """Prunes archived daily history older than the retention window."""
        keep = days if days is not None else int(flask_app.config.get('HISTORY_RETENTION_DAYS', 30))
        removed = service.persistence.cleanup_old_history(keep)
        print(f'Removed {removed} archived days older than {keep} days.')

    flask_app.cli.add_command(snapshots_reset_command)
    flask_app.cli.add_command(snapshots_cleanup_command)

    return flask_app
