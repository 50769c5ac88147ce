import time

from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO

from duo_relay.config import Config

socketio = SocketIO(async_mode=None)


def _parse_origins(value):
    if value is None or value == '' or value == '*':
        return '*'
    if isinstance(value, (list, tuple)):
        return list(value)
    return [origin.strip() for origin in value.split(',') if origin.strip()]


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(str(flask_app.config.get('LOG_LEVEL', 'INFO')).upper())

    allowed_origins = _parse_origins(flask_app.config.get('CORS_ALLOWED_ORIGINS'))
    CORS(flask_app, origins=allowed_origins)
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from duo_relay.services.relay import RelayEngine
    from duo_relay.services.sessions import SessionManager
    from duo_relay.services.sessions.tasks import make_scheduler
    from duo_relay.socketio_events import make_emitter

    namespace = flask_app.config.get('SOCKETIO_NAMESPACE', '/')
    manager = SessionManager.from_config(
        flask_app.config,
        scheduler=make_scheduler(socketio, flask_app.logger),
        logger=flask_app.logger,
    )
    engine = RelayEngine.from_config(manager, make_emitter(namespace), flask_app.config, logger=flask_app.logger)
    flask_app.extensions['session_manager'] = manager
    flask_app.extensions['relay_engine'] = engine
    flask_app.extensions['relay_started_at'] = time.time()

    from duo_relay.api.health import health
    flask_app.register_blueprint(health)

    from duo_relay.socketio_events import register_socketio_handlers
    register_socketio_handlers(namespace=namespace)

    # Timers are driven by hand in tests
    if flask_app.config.get('ENABLE_BACKGROUND_TASKS', True) and not flask_app.config.get('TESTING'):
        from duo_relay.services.sessions.tasks import start_idle_reaper, start_session_sweeper
        from duo_relay.socketio_events import close_connection

        start_session_sweeper(flask_app, socketio, manager)
        start_idle_reaper(flask_app, socketio, manager, lambda sid: close_connection(flask_app, sid))

    return flask_app
