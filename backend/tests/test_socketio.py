from studyroom import socketio


def _names(client):
    return [pkt['name'] for pkt in client.get_received('/ws')]


def _join(client, user_id, room_id='library', name=None, timezone='UTC'):
    client.emit('join_room', {'room_id': room_id, 'user': {'id': user_id, 'name': name or user_id}, 'timezone': timezone},
                namespace='/ws')


def test_socket_connect_and_join(sio_client, service):
    assert sio_client.is_connected('/ws')
    sio_client.get_received('/ws')

    _join(sio_client, 'alice', name='Alice')
    received = sio_client.get_received('/ws')
    joined = [pkt for pkt in received if pkt['name'] == 'room_joined']
    assert joined
    payload = joined[0]['args'][0]
    assert payload['current_user']['id'] == 'alice'
    assert payload['current_user']['timer_state']['remaining_seconds'] == 3000
    assert payload['room']['current_users'] == 1
    assert service.store.get('alice').is_online is True


def test_join_requires_room_id(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('join_room', {'user': {'id': 'alice'}}, namespace='/ws')
    assert 'error' in _names(sio_client)


def test_start_timer_broadcasts_ticks(sio_client, service):
    _join(sio_client, 'alice')
    sio_client.get_received('/ws')

    sio_client.emit('start_timer', namespace='/ws')
    service.scheduler.advance(3)
    ticks = [pkt['args'][0] for pkt in sio_client.get_received('/ws') if pkt['name'] == 'timer_tick']
    assert [t['timer_state']['remaining_seconds'] for t in ticks] == [3000, 2999, 2998, 2997]
    assert all(t['user_id'] == 'alice' for t in ticks)


def test_command_before_join_is_ignored(sio_client, service):
    sio_client.emit('start_timer', namespace='/ws')
    assert len(service.store) == 0


def test_change_mode_refused_mid_session(sio_client, service):
    _join(sio_client, 'alice')
    sio_client.emit('start_timer', namespace='/ws')
    service.scheduler.advance(10)
    sio_client.emit('change_mode', {'mode': 'break'}, namespace='/ws')
    engine = service.store.get('alice')
    assert engine.state.mode.value == 'focus'
    assert engine.state.is_active is True

    sio_client.emit('skip_to_break', namespace='/ws')
    assert engine.state.mode.value == 'break'
    assert 'user_data_changed' in _names(sio_client)


def test_settings_and_timezone_updates(sio_client, service):
    _join(sio_client, 'alice')
    sio_client.emit('update_settings', {'focus_minutes': 25, 'auto_start_breaks': True}, namespace='/ws')
    sio_client.emit('update_timezone', {'timezone': 'Europe/Berlin'}, namespace='/ws')
    engine = service.store.get('alice')
    assert engine.state.remaining_seconds == 1500
    assert engine.settings.auto_start_breaks is True
    assert engine.timezone == 'Europe/Berlin'
    assert 'settings_changed' in _names(sio_client)


def test_disconnect_pauses_timer(flask_app, service):
    client = socketio.test_client(flask_app, namespace='/ws')
    _join(client, 'alice')
    client.emit('start_timer', namespace='/ws')
    service.scheduler.advance(5)

    client.disconnect(namespace='/ws')
    engine = service.store.get('alice')
    assert engine.is_online is False
    assert engine.state.is_active is False
    service.scheduler.advance(60)
    assert engine.state.remaining_seconds == 2995

    # Reconnecting keeps the engine and does not resume it
    again = socketio.test_client(flask_app, namespace='/ws')
    _join(again, 'alice')
    assert service.store.get('alice') is engine
    assert engine.state.is_active is False
    again.disconnect(namespace='/ws')


def test_room_is_full_for_third_user(flask_app, sio_client, service):
    others = [socketio.test_client(flask_app, namespace='/ws') for _ in range(2)]
    _join(others[0], 'alice')
    _join(others[1], 'bob')
    assert 'user_joined' in _names(others[0])

    sio_client.get_received('/ws')
    _join(sio_client, 'carol')
    received = sio_client.get_received('/ws')
    errors = [pkt['args'][0] for pkt in received if pkt['name'] == 'error']
    assert errors and 'full' in errors[0]['message']
    assert 'carol' not in service.rooms.members('library')

    for other in others:
        other.disconnect(namespace='/ws')


def test_ping(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('ping', {'n': 1}, namespace='/ws')
    received = sio_client.get_received('/ws')
    assert any(pkt['name'] == 'pong' and pkt['args'][0] == {'n': 1} for pkt in received)


def test_update_user_name_broadcasts_to_room(flask_app, sio_client, service):
    partner = socketio.test_client(flask_app, namespace='/ws')
    _join(partner, 'bob', name='Bob')
    _join(sio_client, 'alice', name='Alice')
    partner.get_received('/ws')
    sio_client.get_received('/ws')

    sio_client.emit('update_user_name', {'name': 'Alicia'}, namespace='/ws')
    updates = [pkt['args'][0] for pkt in partner.get_received('/ws') if pkt['name'] == 'user_name_updated']
    assert updates
    assert updates[0]['old_name'] == 'Alice'
    assert updates[0]['new_name'] == 'Alicia'
    assert service.store.get('alice').name == 'Alicia'

    sio_client.emit('update_user_name', {'name': '  '}, namespace='/ws')
    assert 'error' in _names(sio_client)
    assert service.store.get('alice').name == 'Alicia'
    partner.disconnect(namespace='/ws')
