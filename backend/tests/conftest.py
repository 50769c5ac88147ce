import os
import sys
import pytest

# Ensure the backend root (containing the `duo_relay` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from duo_relay import create_app, socketio
from duo_relay.config import Config
from duo_relay.services.sessions import SessionManager


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SESSION_GRACE_PERIOD_SEC = 0.2
    ENABLE_BACKGROUND_TASKS = False
    SOCKETIO_NAMESPACE = '/'


class RecordingEmitter:
    """Stands in for the transport: records (event, message, sid) sends."""

    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    def __call__(self, event, message, sid):
        if sid in self.fail_for:
            raise ConnectionError(f'{sid} went away')
        self.sent.append((event, message, sid))

    def to(self, sid):
        return [(event, message) for event, message, target in self.sent if target == sid]


@pytest.fixture()
def manager():
    return SessionManager(grace_period_sec=5)


@pytest.fixture()
def emitter():
    return RecordingEmitter()


@pytest.fixture()
def make_emitter():
    return RecordingEmitter


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        yield application


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_factory(flask_app):
    clients = []

    def _make():
        test_client = socketio.test_client(flask_app, flask_test_client=flask_app.test_client(), namespace='/')
        clients.append(test_client)
        return test_client

    yield _make
    for test_client in clients:
        try:
            if test_client.is_connected('/'):
                test_client.disconnect(namespace='/')
        except Exception:
            pass


@pytest.fixture()
def sio_client(sio_factory):
    return sio_factory()
