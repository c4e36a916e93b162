from flask_socketio import join_room, leave_room, emit
from flask import current_app, request
from quizroom import socketio, get_store
from quizroom.errors import QuizError
from typing import Dict, Set


# sid -> room channels this socket subscribed to
_sid_rooms: Dict[str, Set[str]] = {}


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(*args):
    channels = _sid_rooms.pop(_get_sid(), set())
    if channels:
        current_app.logger.info(f"[ws-disconnect] sid={_get_sid()} channels={sorted(channels)}")


def handle_subscribe_room(data):
    """Join ``room:<room_id>`` and send the current room and players snapshot.

    Later changes arrive as ``room_update``/``players_update``/``room_deleted``
    pushed by the store. A ``nickname`` also subscribes to that player's
    profile channel.
    """
    room_id = (data or {}).get('room_id')
    nickname = (data or {}).get('nickname')
    if not room_id:
        emit('error', {'message': 'room_id is required'})
        return
    store = get_store()
    try:
        room = store.get_room(room_id)
        players = store.list_players(room_id)
    except QuizError as exc:
        emit('error', {'message': exc.message, 'type': exc.__class__.__name__})
        return
    channel = f"room:{room_id}"
    join_room(channel)
    _sid_rooms.setdefault(_get_sid(), set()).add(channel)
    if nickname:
        join_room(f"profile:{nickname}")
    emit('subscribed', {
        'room': channel,
        'snapshot': {
            'room': room.model_dump(mode='json'),
            'players': [p.model_dump(mode='json') for p in players],
        },
    })


def handle_unsubscribe_room(data):
    room_id = (data or {}).get('room_id')
    if not room_id:
        emit('error', {'message': 'room_id is required'})
        return
    channel = f"room:{room_id}"
    leave_room(channel)
    _sid_rooms.get(_get_sid(), set()).discard(channel)
    nickname = (data or {}).get('nickname')
    if nickname:
        leave_room(f"profile:{nickname}")
    emit('unsubscribed', {'room': channel})


def handle_ping(data):
    emit('pong', data or {})


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    namespaces = ['/ws', '/'] if testing else ['/ws']
    for namespace in namespaces:
        socketio.on_event('connect', handle_connect, namespace=namespace)
        socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
        socketio.on_event('subscribe_room', handle_subscribe_room, namespace=namespace)
        socketio.on_event('unsubscribe_room', handle_unsubscribe_room, namespace=namespace)
        socketio.on_event('ping', handle_ping, namespace=namespace)
