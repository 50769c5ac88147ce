import time

from duo_relay.models import Phase
from duo_relay.socketio_events import broadcast_shutdown


def _by_name(received, name):
    return [pkt['args'][0] if pkt['args'] else None for pkt in received if pkt['name'] == name]


def _join(test_client, session_id, name):
    test_client.emit('join', {'sessionId': session_id, 'displayName': name}, namespace='/')
    return test_client.get_received('/')


def _wait_for(predicate, timeout=3.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


def test_socket_connect_registers_connection(flask_app, sio_client):
    assert sio_client.is_connected('/')
    manager = flask_app.extensions['session_manager']
    assert len(manager.connection_ids()) == 1


def test_two_players_pair_and_part(flask_app, sio_factory):
    manager = flask_app.extensions['session_manager']
    alice, bob = sio_factory(), sio_factory()

    assigned = _by_name(_join(alice, 'room1', 'Alice'), 'playerAssigned')
    assert assigned == [{
        'role': 'fire',
        'sessionId': 'ROOM1',
        'occupancyCount': 1,
        'maxOccupants': 2,
        'displayName': 'Alice',
    }]

    assigned = _by_name(_join(bob, 'room1', 'Bob'), 'playerAssigned')
    assert assigned[0]['role'] == 'water'
    assert assigned[0]['occupancyCount'] == 2
    assert _by_name(alice.get_received('/'), 'playerJoined') == [
        {'role': 'water', 'occupancyCount': 2, 'displayName': 'Bob'}
    ]
    assert manager.get('ROOM1').phase == Phase.PLAYING

    bob.disconnect(namespace='/')
    assert _by_name(alice.get_received('/'), 'playerLeft') == [
        {'role': 'water', 'occupancyCount': 1, 'displayName': 'Bob'}
    ]
    assert manager.get('ROOM1').phase == Phase.WAITING

    # Last one out: the session outlives the grace period only if someone rejoins
    alice.disconnect(namespace='/')
    assert manager.get('ROOM1') is not None
    assert _wait_for(lambda: manager.get('ROOM1') is None)


def test_rejoin_within_grace_period_keeps_session(flask_app, sio_factory):
    manager = flask_app.extensions['session_manager']
    alice = sio_factory()
    _join(alice, 'room2', 'Alice')
    alice.disconnect(namespace='/')

    cara = sio_factory()
    assigned = _by_name(_join(cara, 'room2', 'Cara'), 'playerAssigned')
    assert assigned[0]['role'] == 'fire'
    time.sleep(0.5)
    assert manager.get('ROOM2') is not None
    assert manager.get('ROOM2').occupant_count == 1


def test_join_with_positional_arguments(sio_client):
    sio_client.emit('join', 'ab!! c1', 'Positional', namespace='/')
    assigned = _by_name(sio_client.get_received('/'), 'playerAssigned')
    assert assigned[0]['sessionId'] == 'ABC1'
    assert assigned[0]['displayName'] == 'Positional'


def test_join_accepts_legacy_keys(sio_client):
    sio_client.emit('join', {'roomId': 'legacy', 'playerName': 'Old Client'}, namespace='/')
    assigned = _by_name(sio_client.get_received('/'), 'playerAssigned')
    assert assigned[0]['sessionId'] == 'LEGACY'


def test_third_player_gets_session_full(sio_factory):
    alice, bob, cara = sio_factory(), sio_factory(), sio_factory()
    _join(alice, 'room3', 'Alice')
    _join(bob, 'room3', 'Bob')
    received = _join(cara, 'room3', 'Cara')
    assert _by_name(received, 'sessionFull') == [{'sessionId': 'ROOM3'}]
    assert _by_name(received, 'playerAssigned') == []


def test_invalid_join_reports_error(sio_client):
    received = _join(sio_client, 'a', 'Alice')
    errors = _by_name(received, 'error')
    assert len(errors) == 1
    assert 'sessionId' in errors[0]['message']

    received = _join(sio_client, 'room4', '   ')
    assert _by_name(received, 'error')[0]['message'] == 'displayName is required'


def test_position_relayed_to_peer_not_sender(sio_factory):
    alice, bob = sio_factory(), sio_factory()
    _join(alice, 'room5', 'Alice')
    _join(bob, 'room5', 'Bob')
    alice.get_received('/')

    alice.emit('position', {'x': 9999, 'y': 10, 'velX': 50, 'velY': 0}, namespace='/')
    positions = _by_name(bob.get_received('/'), 'position')
    assert len(positions) == 1
    assert positions[0]['role'] == 'fire'
    assert positions[0]['x'] == 972
    assert positions[0]['velX'] == 12
    assert 'serverTimestamp' in positions[0]
    assert _by_name(alice.get_received('/'), 'position') == []


def test_input_relayed(sio_factory):
    alice, bob = sio_factory(), sio_factory()
    _join(alice, 'room6', 'Alice')
    _join(bob, 'room6', 'Bob')
    alice.get_received('/')

    bob.emit('input', {'left': True, 'jump': False}, namespace='/')
    inputs = _by_name(alice.get_received('/'), 'input')
    assert inputs[0]['role'] == 'water'
    assert inputs[0]['payload'] == {'left': True, 'jump': False}


def test_events_before_join_are_dropped(sio_client):
    sio_client.emit('position', {'x': 1}, namespace='/')
    sio_client.emit('nextLevel', namespace='/')
    assert sio_client.get_received('/') == []


def test_level_flow(flask_app, sio_factory):
    manager = flask_app.extensions['session_manager']
    alice, bob = sio_factory(), sio_factory()
    _join(alice, 'room7', 'Alice')
    _join(bob, 'room7', 'Bob')
    alice.get_received('/')

    alice.emit('levelComplete', namespace='/')
    assert [pkt['name'] for pkt in bob.get_received('/')] == ['levelComplete']
    assert manager.get('ROOM7').phase == Phase.COMPLETE

    bob.emit('nextLevel', namespace='/')
    assert _by_name(alice.get_received('/'), 'nextLevel') == [{'role': 'water', 'currentLevel': 2}]
    assert manager.get('ROOM7').phase == Phase.PLAYING

    alice.emit('getSessionStats', namespace='/')
    stats = _by_name(alice.get_received('/'), 'sessionStats')[0]
    assert stats['id'] == 'ROOM7'
    assert stats['currentLevel'] == 2
    assert stats['occupantCount'] == 2


def test_malformed_message_does_not_break_connection(sio_factory):
    alice, bob = sio_factory(), sio_factory()
    _join(alice, 'room8', 'Alice')
    _join(bob, 'room8', 'Bob')
    alice.get_received('/')

    # Too many arguments for the handler: logged and dropped
    bob.emit('join', 'room8', 'Bob', 'extra', namespace='/')
    assert bob.is_connected('/')

    bob.emit('input', {'up': True}, namespace='/')
    assert len(_by_name(alice.get_received('/'), 'input')) == 1


def test_ping_pong(sio_client):
    sio_client.emit('ping', {'t': 1}, namespace='/')
    assert _by_name(sio_client.get_received('/'), 'pong') == [{'t': 1}]


def test_shutdown_broadcast_reaches_every_session(flask_app, sio_factory):
    alice, bob, cara = sio_factory(), sio_factory(), sio_factory()
    _join(alice, 'room9', 'Alice')
    _join(bob, 'room9', 'Bob')
    _join(cara, 'room10', 'Cara')
    alice.get_received('/')

    assert broadcast_shutdown(flask_app, 'bye') == 2
    for test_client in (alice, bob, cara):
        assert _by_name(test_client.get_received('/'), 'serverShutdown') == [{'message': 'bye'}]


def _sid_for(manager, session_id, role):
    return manager.get(session_id).slots[role]


def test_close_connection_notifies_peer_and_unregisters(flask_app, sio_factory):
    from duo_relay.models import Role
    from duo_relay.socketio_events import close_connection

    manager = flask_app.extensions['session_manager']
    alice, bob = sio_factory(), sio_factory()
    _join(alice, 'room11', 'Alice')
    _join(bob, 'room11', 'Bob')
    alice.get_received('/')
    bob_sid = _sid_for(manager, 'ROOM11', Role.WATER)

    close_connection(flask_app, bob_sid)

    assert _by_name(alice.get_received('/'), 'playerLeft') == [
        {'role': 'water', 'occupancyCount': 1, 'displayName': 'Bob'}
    ]
    assert manager.get_connection(bob_sid) is None
    assert bob_sid not in manager.connection_ids()
    assert not bob.is_connected('/')


def test_close_connection_cleans_up_unknown_transport_sid(flask_app):
    manager = flask_app.extensions['session_manager']
    manager.join('gone-sid', 'room12', 'Ghost')

    from duo_relay.socketio_events import close_connection
    close_connection(flask_app, 'gone-sid')

    assert manager.get_connection('gone-sid') is None
    assert manager.get('ROOM12').occupant_count == 0


def test_shutdown_disconnects_everyone(flask_app, sio_factory, monkeypatch):
    from duo_relay import socketio_events

    manager = flask_app.extensions['session_manager']
    alice, bob, cara = sio_factory(), sio_factory(), sio_factory()
    _join(alice, 'room13', 'Alice')
    _join(bob, 'room13', 'Bob')
    _join(cara, 'room14', 'Cara')

    notified = []
    original = socketio_events.broadcast_shutdown

    def _recording_broadcast(app, message):
        notified.append(original(app, message))
        # Read before the server closes the sockets
        for test_client in (alice, bob, cara):
            assert _by_name(test_client.get_received('/'), 'serverShutdown') == [{'message': message}]

    monkeypatch.setattr(socketio_events, 'broadcast_shutdown', _recording_broadcast)
    socketio_events.shutdown(flask_app, 'maintenance')

    assert notified == [2]
    assert manager.connection_ids() == []
    for test_client in (alice, bob, cara):
        assert not test_client.is_connected('/')


def test_stats_poll_counts_as_traffic(flask_app, sio_client):
    manager = flask_app.extensions['session_manager']
    _join(sio_client, 'room15', 'Alice')
    sid = manager.connection_ids()[0]
    manager.get_connection(sid).last_seen_at = 0

    sio_client.emit('getSessionStats', namespace='/')

    assert manager.get_connection(sid).last_seen_at > 0
    assert manager.idle_connections(timeout_ms=60_000) == []
