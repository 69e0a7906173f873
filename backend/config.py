import os


def _flag(name, default='0'):
    return os.environ.get(name, default).lower() in ('1', 'true', 'yes', 'on')


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///studyroom.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # Default timer settings for new users (minutes)
    FOCUS_MINUTES = float(os.environ.get('FOCUS_MINUTES', '50'))
    BREAK_MINUTES = float(os.environ.get('BREAK_MINUTES', '10'))
    AUTO_START_BREAKS = _flag('AUTO_START_BREAKS')
    AUTO_START_FOCUS = _flag('AUTO_START_FOCUS')
    # Delay before an auto-started session begins, so clients can show the completion (seconds)
    AUTO_START_DELAY_SEC = float(os.environ.get('AUTO_START_DELAY_SEC', '2'))
    # Timezone used until a client reports its own
    DEFAULT_TIMEZONE = os.environ.get('DEFAULT_TIMEZONE', 'UTC')
    # Snapshot cadence (seconds): always, and faster while any timer runs
    SNAPSHOT_INTERVAL_SEC = float(os.environ.get('SNAPSHOT_INTERVAL_SEC', '30'))
    ACTIVE_SNAPSHOT_INTERVAL_SEC = float(os.environ.get('ACTIVE_SNAPSHOT_INTERVAL_SEC', '10'))
    # Debounce for saves triggered by user activity (seconds)
    SAVE_DEBOUNCE_SEC = float(os.environ.get('SAVE_DEBOUNCE_SEC', '5'))
    TIMER_SAVE_DEBOUNCE_SEC = float(os.environ.get('TIMER_SAVE_DEBOUNCE_SEC', '1'))
    # Crash recovery: a save older than this counts as downtime; assume this share of it was active
    RECOVERY_GAP_THRESHOLD_SEC = float(os.environ.get('RECOVERY_GAP_THRESHOLD_SEC', '120'))
    RECOVERY_ACTIVE_RATIO = float(os.environ.get('RECOVERY_ACTIVE_RATIO', '0.5'))
    RESTORE_ON_STARTUP = _flag('RESTORE_ON_STARTUP', '1')
    # Minimum idle time reported as dead time between sessions (minutes)
    DEAD_TIME_THRESHOLD_MIN = float(os.environ.get('DEAD_TIME_THRESHOLD_MIN', '10'))
    # Data retention
    HISTORY_RETENTION_DAYS = int(os.environ.get('HISTORY_RETENTION_DAYS', '30'))
    INACTIVE_USER_CLEANUP_HOURS = float(os.environ.get('INACTIVE_USER_CLEANUP_HOURS', '24'))
    ROOM_MAX_USERS = int(os.environ.get('ROOM_MAX_USERS', '2'))
    # Optional: heartbeat interval for timer tick logs (sec). 0 disables.
    TIMER_HEARTBEAT_SEC = int(os.environ.get('TIMER_HEARTBEAT_SEC', '0'))
