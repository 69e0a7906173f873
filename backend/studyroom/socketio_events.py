from functools import wraps
from typing import Any, Callable

from flask import current_app, request
from flask_socketio import emit, join_room, leave_room

from studyroom import socketio
from studyroom.services.timers import Mode, get_timer_service
from studyroom.services.timers.broadcast import room_channel


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _room_users(service, room_id: str) -> list:
    users = []
    for user_id in service.rooms.members(room_id):
        engine = service.store.get(user_id)
        if engine is not None:
            users.append(engine.user_data())
    return users


def handle_connect(auth=None):
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(reason=None):
    """Mark the user offline (pausing a running timer) but keep their engine."""
    service = get_timer_service()
    conn = service.connections.unbind(_get_sid())
    if not conn:
        return
    # Another tab of the same user is still connected
    if service.connections.sids_for(conn.user_id):
        return
    engine = service.store.get(conn.user_id)
    if engine is not None:
        engine.set_offline()
        current_app.logger.info(f"[presence] user={conn.user_id} offline room={conn.room_id}")
    emit('user_disconnected', {'user_id': conn.user_id, 'users': _room_users(service, conn.room_id)},
         to=room_channel(conn.room_id))
    service.persistence.request_save()


def handle_join_room(data):
    data = data or {}
    room_id = data.get('room_id')
    user = data.get('user') or {}
    if not room_id:
        emit('error', {'message': 'room_id is required'})
        return
    room_id = str(room_id)
    sid = _get_sid()
    user_id = str(user.get('id') or sid)
    service = get_timer_service()

    previous_room = service.rooms.room_of(user_id)
    if not service.rooms.join(room_id, user_id):
        emit('error', {'message': f'Room is full (max {service.rooms.max_users} users)'})
        return
    if previous_room and previous_room != room_id:
        service.rooms.leave(previous_room, user_id)
        leave_room(room_channel(previous_room))

    engine, created = service.store.get_or_create(user_id, name=user.get('name'), timezone=data.get('timezone'))
    if not created and data.get('timezone'):
        engine.set_timezone(data.get('timezone'))
    engine.set_online(room_id)
    service.connections.bind(sid, engine.user_id, room_id)
    join_room(room_channel(room_id))

    users = _room_users(service, room_id)
    emit('room_joined', {
        'room': {'id': room_id, 'max_users': service.rooms.max_users, 'current_users': len(users)},
        'users': users,
        'current_user': engine.user_data(),
    })
    emit('user_joined', {'user': engine.user_data(), 'users': users}, to=room_channel(room_id), include_self=False)
    current_app.logger.info(f"[presence] user={engine.user_id} joined room={room_id} created={created}")
    service.persistence.request_save()


def handle_leave_room(data=None):
    service = get_timer_service()
    conn = service.connections.unbind(_get_sid())
    if not conn:
        emit('error', {'message': 'Not in a room'})
        return
    service.rooms.leave(conn.room_id, conn.user_id)
    engine = service.store.get(conn.user_id)
    if engine is not None:
        engine.set_offline()
        engine.room_id = None
    leave_room(room_channel(conn.room_id))
    emit('left', {'room_id': conn.room_id})
    emit('user_left', {'user_id': conn.user_id, 'users': _room_users(service, conn.room_id)},
         to=room_channel(conn.room_id))
    service.persistence.request_save()


def timer_command(name: str, timer_save: bool = True):
    """Resolve the caller's engine, run the command, then schedule a save.

    Commands from unknown or offline users are ignored.
    """
    def decorator(fn: Callable[..., Any]):
        @wraps(fn)
        def wrapper(data=None):
            service = get_timer_service()
            conn = service.connections.get(_get_sid())
            engine = service.store.get(conn.user_id) if conn else None
            if engine is None:
                current_app.logger.info(f"[command-skip] {name}: user not found")
                return
            if not engine.is_online:
                current_app.logger.info(f"[command-skip] {name}: blocked for offline user={engine.user_id}")
                return
            fn(engine, data or {})
            if timer_save:
                service.request_timer_save()
            else:
                service.persistence.request_save()
        return wrapper
    return decorator


@timer_command('start_timer')
def handle_start_timer(engine, data):
    engine.start()


@timer_command('pause_timer')
def handle_pause_timer(engine, data):
    engine.pause()


@timer_command('reset_timer')
def handle_reset_timer(engine, data):
    engine.reset()


@timer_command('change_mode')
def handle_change_mode(engine, data):
    # Switching mode mid-session is refused here; skip is the way to end a session early
    if engine.session_in_progress:
        current_app.logger.info(f"[command-skip] change_mode: session in progress for user={engine.user_id}")
        return
    engine.change_mode(data.get('mode'))


@timer_command('skip_to_break')
def handle_skip_to_break(engine, data):
    engine.skip_to_opposite(expected_mode=Mode.FOCUS)


@timer_command('skip_to_focus')
def handle_skip_to_focus(engine, data):
    engine.skip_to_opposite(expected_mode=Mode.BREAK)


@timer_command('update_settings', timer_save=False)
def handle_update_settings(engine, data):
    engine.update_settings(data)


@timer_command('update_timezone', timer_save=False)
def handle_update_timezone(engine, data):
    timezone = data.get('timezone') if isinstance(data, dict) else data
    engine.set_timezone(timezone)


@timer_command('update_session_notes', timer_save=False)
def handle_update_session_notes(engine, data):
    engine.update_session_notes(data.get('session_index'), data.get('notes'))


@timer_command('update_user_name', timer_save=False)
def handle_update_user_name(engine, data):
    new_name = data.get('name') if isinstance(data, dict) else data
    old_name = engine.rename(new_name)
    if old_name is None:
        emit('error', {'message': 'name is required'})
        return
    service = get_timer_service()
    emit('user_name_updated', {
        'user_id': engine.user_id,
        'old_name': old_name,
        'new_name': engine.name,
        'users': _room_users(service, engine.room_id),
    }, to=room_channel(engine.room_id))


def handle_ping(data=None):
    emit('pong', data or {})


_HANDLERS = {
    'connect': handle_connect,
    'disconnect': handle_disconnect,
    'join_room': handle_join_room,
    'leave_room': handle_leave_room,
    'start_timer': handle_start_timer,
    'pause_timer': handle_pause_timer,
    'reset_timer': handle_reset_timer,
    'change_mode': handle_change_mode,
    'skip_to_break': handle_skip_to_break,
    'skip_to_focus': handle_skip_to_focus,
    'update_settings': handle_update_settings,
    'update_timezone': handle_update_timezone,
    'update_session_notes': handle_update_session_notes,
    'update_user_name': handle_update_user_name,
    'ping': handle_ping,
}


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    for event, handler in _HANDLERS.items():
        socketio.on_event(event, handler, namespace='/ws')

    if testing:
        # Test-only mirror on default namespace
        for event, handler in _HANDLERS.items():
            socketio.on_event(event, handler, namespace='/')
