from flask import Blueprint, jsonify, request, current_app, session
from quizroom import get_store
from quizroom.errors import NotFoundError, QuizError, ValidationError
from quizroom.services.quiz import scheduler
from quizroom.services.quiz.documents import RoomStatus, Role
from quizroom.services.quiz.scoring import rank
from quizroom.services.quiz.state_machine import RoomStateMachine


rooms = Blueprint('rooms', __name__)

# Flask session cookie key for the last-known player or admin session
SESSION_KEY = 'quizroom'


@rooms.errorhandler(QuizError)
def handle_quiz_error(exc):
    current_app.logger.info(f"[api-error] {request.method} {request.path} {exc.__class__.__name__}: {exc.message}")
    return jsonify(exc.to_dict()), exc.status_code


def _machine() -> RoomStateMachine:
    return RoomStateMachine(get_store(), final_level=current_app.config.get('FINAL_LEVEL', 4))


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _room_payload(room) -> dict:
    return room.model_dump(mode='json')


def _remember(room_id, nickname, role, score=0):
    session[SESSION_KEY] = {'room_id': room_id, 'nickname': nickname, 'role': role, 'score': score}


def _hosted_session(room_id, nickname):
    # the player must exist before a session is hosted for them
    get_store().get_player(room_id, nickname)
    room = get_store().get_room(room_id)
    if not room.is_active:
        raise ValidationError(f'Room {room.code} is {room.status.value}')
    return scheduler.open_session(current_app._get_current_object(), room_id, nickname)


def _player_snapshot(room, nickname) -> dict:
    app = current_app._get_current_object()
    if room.is_active:
        return scheduler.open_session(app, room.id, nickname).snapshot()
    # ended and off rooms host nothing; read the final state once
    return scheduler.snapshot_once(app, room.id, nickname)


@rooms.route('', methods=['POST'])
def create_room():
    data = _body()
    room = _machine().create_room(str(data.get('code') or ''), str(data.get('admin_id') or ''))
    _remember(room.id, room.admin_id, Role.ADMIN.value)
    return jsonify(_room_payload(room)), 201


@rooms.route('', methods=['GET'])
def list_rooms():
    admin_id = request.args.get('admin_id')
    return jsonify([_room_payload(r) for r in get_store().list_rooms(admin_id)])


@rooms.route('/join', methods=['POST'])
def join_room():
    data = _body()
    machine = _machine()
    player = machine.join(str(data.get('code') or ''), str(data.get('nickname') or ''), data.get('avatar'))
    room = get_store().find_room_by_code(str(data.get('code')).strip())
    hosted = scheduler.open_session(current_app._get_current_object(), room.id, player.nickname)
    _remember(room.id, player.nickname, player.role.value, player.score)
    return jsonify({
        'room': _room_payload(room),
        'player': player.model_dump(mode='json'),
        'session': hosted.snapshot(),
    }), 201


@rooms.route('/<string:room_id>/state', methods=['GET'])
def room_state(room_id):
    store = get_store()
    room = store.get_room(room_id)
    players = store.list_players(room_id)
    return jsonify({
        'room': _room_payload(room),
        'players': [p.model_dump(mode='json') for p in players],
        'ranking': [r._asdict() for r in rank(p for p in players if p.role is Role.USER)],
    })


@rooms.route('/<string:room_id>/admin/<string:action>', methods=['POST'])
def admin_action(room_id, action):
    app = current_app._get_current_object()
    room = _machine().apply(room_id, action)
    if action in ('open', 'start'):
        scheduler.open_countdown(app, room_id)
    elif room.status in (RoomStatus.ENDED, RoomStatus.OFF):
        scheduler.close_room(room_id)
    app.logger.info(f"[admin] room={room_id} action={action} phase={room.phase.value} status={room.status.value}")
    return jsonify(_room_payload(room))


@rooms.route('/<string:room_id>', methods=['DELETE'])
def delete_room(room_id):
    _machine().delete(room_id)
    scheduler.close_room(room_id)
    return jsonify({'message': 'Room deleted', 'room_id': room_id})


@rooms.route('/<string:room_id>/players/<string:nickname>/session', methods=['GET'])
def player_session(room_id, nickname):
    store = get_store()
    store.get_player(room_id, nickname)
    return jsonify(_player_snapshot(store.get_room(room_id), nickname))


@rooms.route('/<string:room_id>/players/<string:nickname>/select', methods=['POST'])
def select_answer(room_id, nickname):
    hosted = _hosted_session(room_id, nickname)
    hosted.select(_body().get('answer'))
    return jsonify(hosted.snapshot())


@rooms.route('/<string:room_id>/players/<string:nickname>/answer', methods=['POST'])
def submit_answer(room_id, nickname):
    hosted = _hosted_session(room_id, nickname)
    recorded = hosted.submit(_body().get('answer'))
    if not recorded:
        failure = hosted.pop_error()
        if failure:
            return jsonify({'error': failure, 'type': 'TransientStoreError', 'recorded': False}), 503
    return jsonify({'recorded': recorded, 'session': hosted.snapshot()})


@rooms.route('/<string:room_id>/players/<string:nickname>/help', methods=['POST'])
def use_help_tool(room_id, nickname):
    tool = _body().get('tool')
    if not tool:
        raise ValidationError('tool is required')
    hosted = _hosted_session(room_id, nickname)
    hosted.use_tool(tool)
    return jsonify(hosted.snapshot())


@rooms.route('/<string:room_id>/players/<string:nickname>/leave', methods=['POST'])
def leave_room(room_id, nickname):
    _machine().leave(room_id, nickname)
    scheduler.close_session(room_id, nickname)
    remembered = session.get(SESSION_KEY) or {}
    if remembered.get('room_id') == room_id and remembered.get('nickname') == nickname:
        session.pop(SESSION_KEY, None)
    return jsonify({'message': 'Left room', 'room_id': room_id, 'nickname': nickname})


@rooms.route('/resume', methods=['GET'])
def resume():
    """Reconcile the cookie's last-known session with a fresh store read."""
    remembered = session.get(SESSION_KEY)
    if not remembered:
        raise NotFoundError('No session to resume')
    store = get_store()
    room_id, nickname = remembered.get('room_id'), remembered.get('nickname')
    try:
        room = store.get_room(room_id)
        if remembered.get('role') == Role.ADMIN.value:
            return jsonify({'room': _room_payload(room), 'role': Role.ADMIN.value, 'nickname': nickname})
        player = store.get_player(room_id, nickname)
    except NotFoundError:
        session.pop(SESSION_KEY, None)
        raise
    snapshot = _player_snapshot(room, nickname)
    _remember(room_id, nickname, player.role.value, player.score)
    return jsonify({
        'room': _room_payload(room),
        'role': player.role.value,
        'player': player.model_dump(mode='json'),
        'session': snapshot,
    })
