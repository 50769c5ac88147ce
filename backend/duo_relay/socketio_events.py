from functools import wraps

from flask import current_app, request
from flask_socketio import emit, join_room, leave_room

from duo_relay import socketio
from duo_relay.errors import InvalidRequest, SessionFull
from duo_relay.models import MAX_OCCUPANTS
from duo_relay.services.relay import (
    EVENT_INPUT,
    EVENT_POSITION,
    SIGNAL_LEVEL_COMPLETE,
    SIGNAL_NEXT_LEVEL,
    SIGNAL_RESTART_LEVEL,
    RelayStatus,
)

SHUTDOWN_MESSAGE = 'Server is shutting down. Please reconnect shortly.'


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _manager():
    return current_app.extensions['session_manager']


def _engine():
    return current_app.extensions['relay_engine']


def _namespace() -> str:
    return current_app.config.get('SOCKETIO_NAMESPACE', '/')


def make_emitter(namespace: str):
    """Single-destination send used by the relay engine."""

    def _emit(event, message, sid):
        socketio.emit(event, message, to=sid, namespace=namespace)

    return _emit


def _guarded(handler):
    """Log and swallow unexpected errors so one bad message only drops itself."""

    @wraps(handler)
    def _wrapper(*args, **kwargs):
        try:
            return handler(*args, **kwargs)
        except Exception:
            current_app.logger.exception(f"[handler-error] event={handler.__name__} sid={_get_sid()}")
            return None

    return _wrapper


def _notify_left(result) -> None:
    namespace = _namespace()
    for peer in result.peers:
        socketio.emit('playerLeft', {
            'role': result.role.value,
            'occupancyCount': result.occupancy_count,
            'displayName': result.display_name,
        }, to=peer, namespace=namespace)


def handle_connect(auth=None):
    sid = _get_sid()
    _manager().connect(sid)
    current_app.logger.info(f"[connect] sid={sid}")


def handle_disconnect(reason=None):
    sid = _get_sid()
    result = _manager().disconnect(sid)
    current_app.logger.info(f"[disconnect] sid={sid} reason={reason}")
    if result is not None:
        _notify_left(result)


def handle_join(data=None, display_name=None):
    # Accept join({sessionId, displayName}) as well as join(sessionId, displayName)
    if isinstance(data, dict):
        raw_id = data.get('sessionId', data.get('roomId'))
        raw_name = data.get('displayName', data.get('playerName'))
    else:
        raw_id, raw_name = data, display_name

    sid = _get_sid()
    try:
        result = _manager().join(sid, raw_id, raw_name)
    except SessionFull as exc:
        emit('sessionFull', {'sessionId': exc.session_id})
        return
    except InvalidRequest as exc:
        emit('error', {'message': str(exc)})
        return

    if result.previous is not None:
        leave_room(result.previous.session_id)
        _notify_left(result.previous)
    join_room(result.session_id)

    emit('playerAssigned', {
        'role': result.role.value,
        'sessionId': result.session_id,
        'occupancyCount': result.occupancy_count,
        'maxOccupants': MAX_OCCUPANTS,
        'displayName': result.display_name,
    })
    if result.rejoined:
        return
    namespace = _namespace()
    for peer in result.peers:
        socketio.emit('playerJoined', {
            'role': result.role.value,
            'occupancyCount': result.occupancy_count,
            'displayName': result.display_name,
        }, to=peer, namespace=namespace)


def _relay(kind, payload):
    result = _engine().accept_event(_get_sid(), kind, payload)
    if result.status == RelayStatus.ERROR:
        current_app.logger.warning(f"[relay-dropped] sid={_get_sid()} kind={kind} status=error")


def handle_input(payload=None):
    _relay(EVENT_INPUT, payload)


def handle_position(payload=None):
    _relay(EVENT_POSITION, payload)


def _signal(signal):
    result = _engine().relay_signal(_get_sid(), signal)
    if result.status == RelayStatus.DROPPED:
        current_app.logger.debug(f"[signal-dropped] sid={_get_sid()} signal={signal}")


def handle_level_complete(*args):
    _signal(SIGNAL_LEVEL_COMPLETE)


def handle_restart_level(*args):
    _signal(SIGNAL_RESTART_LEVEL)


def handle_next_level(*args):
    _signal(SIGNAL_NEXT_LEVEL)


def handle_get_session_stats(*args):
    sid = _get_sid()
    _manager().touch(sid)
    stats = _manager().session_stats(sid)
    if stats is not None:
        emit('sessionStats', stats)


def handle_ping(data=None):
    _manager().touch(_get_sid())
    emit('pong', data or {})


# ---- Process-level helpers (no request context) ----

def broadcast_shutdown(app, message: str = SHUTDOWN_MESSAGE) -> int:
    """Tell every session room the server is going away. Returns rooms notified."""
    manager = app.extensions['session_manager']
    namespace = app.config.get('SOCKETIO_NAMESPACE', '/')
    session_ids = manager.session_ids()
    for session_id in session_ids:
        try:
            socketio.emit('serverShutdown', {'message': message}, to=session_id, namespace=namespace)
        except Exception:
            app.logger.exception(f"[shutdown-error] id={session_id}")
    app.logger.info(f"[shutdown] notified sessions={len(session_ids)}")
    return len(session_ids)


def close_connection(app, sid: str) -> None:
    manager = app.extensions['session_manager']
    namespace = app.config.get('SOCKETIO_NAMESPACE', '/')
    try:
        socketio.server.disconnect(sid, namespace=namespace)
    finally:
        # The disconnect handler normally cleans up; this covers sids the
        # transport no longer knows about.
        manager.disconnect(sid)


def close_all_connections(app) -> None:
    for sid in app.extensions['session_manager'].connection_ids():
        try:
            close_connection(app, sid)
        except Exception:
            app.logger.exception(f"[close-error] sid={sid}")


def shutdown(app, message: str = SHUTDOWN_MESSAGE) -> None:
    broadcast_shutdown(app, message)
    close_all_connections(app)


def register_socketio_handlers(namespace: str = '/') -> None:
    """Register Socket.IO event handlers on the given namespace."""
    handlers = {
        'connect': handle_connect,
        'disconnect': handle_disconnect,
        'join': handle_join,
        'input': handle_input,
        'position': handle_position,
        'levelComplete': handle_level_complete,
        'restartLevel': handle_restart_level,
        'nextLevel': handle_next_level,
        'getSessionStats': handle_get_session_stats,
        'ping': handle_ping,
    }
    for event, handler in handlers.items():
        socketio.on_event(event, _guarded(handler), namespace=namespace)
