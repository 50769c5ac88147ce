import os


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    HOST = os.environ.get('HOST', '0.0.0.0')
    PORT = int(os.environ.get('PORT', '3000'))
    # Comma separated list, or '*' for any origin
    CORS_ALLOWED_ORIGINS = os.environ.get('CORS_ALLOWED_ORIGINS', '*')
    SOCKETIO_NAMESPACE = os.environ.get('SOCKETIO_NAMESPACE', '/')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    # Session lifecycle (seconds)
    SESSION_GRACE_PERIOD_SEC = float(os.environ.get('SESSION_GRACE_PERIOD_SEC', '5'))
    STALE_SESSION_SEC = int(os.environ.get('STALE_SESSION_SEC', '600'))
    SWEEP_INTERVAL_SEC = int(os.environ.get('SWEEP_INTERVAL_SEC', '300'))
    IDLE_TIMEOUT_SEC = int(os.environ.get('IDLE_TIMEOUT_SEC', '300'))
    IDLE_CHECK_INTERVAL_SEC = int(os.environ.get('IDLE_CHECK_INTERVAL_SEC', '60'))
    # Stale-session sweeper and idle-connection reaper
    ENABLE_BACKGROUND_TASKS = _env_bool('ENABLE_BACKGROUND_TASKS', True)
    # Relay rate limits (ms between accepted events per connection)
    INPUT_MIN_INTERVAL_MS = int(os.environ.get('INPUT_MIN_INTERVAL_MS', '50'))
    POSITION_MIN_INTERVAL_MS = int(os.environ.get('POSITION_MIN_INTERVAL_MS', '67'))
    # World bounds used for position clamping
    WORLD_WIDTH = int(os.environ.get('WORLD_WIDTH', '1000'))
    WORLD_HEIGHT = int(os.environ.get('WORLD_HEIGHT', '600'))
    PLAYER_WIDTH = int(os.environ.get('PLAYER_WIDTH', '28'))
    MAX_VELOCITY_X = float(os.environ.get('MAX_VELOCITY_X', '12'))
    MAX_VELOCITY_Y = float(os.environ.get('MAX_VELOCITY_Y', '20'))
    MAX_DISPLAY_NAME_LENGTH = int(os.environ.get('MAX_DISPLAY_NAME_LENGTH', '20'))
    MIN_SESSION_ID_LENGTH = int(os.environ.get('MIN_SESSION_ID_LENGTH', '3'))
