import pytest

from quizroom import create_app
from quizroom.services.quiz import scheduler
from quizroom.services.quiz.documents import Phase
from quizroom.services.quiz.memory_store import InMemoryRoomStore
from quizroom.services.quiz.state_machine import RoomStateMachine

from conftest import TestConfig as QuizConfig, seed_levels


@pytest.fixture()
def memory_app():
    store = InMemoryRoomStore()
    application = create_app(QuizConfig, store=store)
    with application.app_context():
        yield application


@pytest.fixture()
def room_id(memory_app):
    store = memory_app.extensions['quizroom_store']
    seed_levels(store, {1: 1})
    machine = RoomStateMachine(store)
    room = machine.create_room('12345', 'admin-1')
    machine.open(room.id)
    machine.join('12345', 'Ann')
    return room.id


def test_sessions_are_hosted_once(memory_app, room_id):
    first = scheduler.open_session(memory_app, room_id, 'Ann')
    assert scheduler.open_session(memory_app, room_id, 'Ann') is first
    assert scheduler.find_session(room_id, 'Ann') is first
    scheduler.close_session(room_id, 'Ann')
    assert first.closed
    assert scheduler.find_session(room_id, 'Ann') is None


def test_tick_room_auto_submits_then_ends_the_question(memory_app, room_id):
    store = memory_app.extensions['quizroom_store']
    scheduler.open_session(memory_app, room_id, 'Ann')
    scheduler.open_countdown(memory_app, room_id)
    RoomStateMachine(store).start(room_id)

    fired = [scheduler.tick_room(room_id) for _ in range(60)]
    assert fired[-1] == 1 and sum(fired) == 1
    room = store.get_room(room_id)
    assert room.phase is Phase.RESULT
    assert room.submitted_count == 1


def test_countdown_respects_admin_auto_end(memory_app, room_id):
    memory_app.config['ADMIN_AUTO_END'] = False
    store = memory_app.extensions['quizroom_store']
    scheduler.open_countdown(memory_app, room_id)
    RoomStateMachine(store).start(room_id)
    for _ in range(61):
        scheduler.tick_room(room_id)
    assert store.get_room(room_id).phase is Phase.PLAYING


def test_no_ticker_runs_in_tests(memory_app, room_id):
    scheduler.open_session(memory_app, room_id, 'Ann')
    assert scheduler._tickers == set()


def test_close_room_stops_everything(memory_app, room_id):
    session = scheduler.open_session(memory_app, room_id, 'Ann')
    scheduler.open_countdown(memory_app, room_id)
    scheduler.close_room(room_id)
    assert session.closed
    assert scheduler.tick_room(room_id) == 0


@pytest.mark.parametrize('action', ['endgame', 'off', 'close'])
def test_finished_room_releases_its_clocks(memory_app, action):
    seed_levels(memory_app.extensions['quizroom_store'], {1: 1})
    client = memory_app.test_client()
    room_id = client.post('/api/rooms', json={'code': '12345', 'admin_id': 'admin-1'}).get_json()['id']
    client.post(f'/api/rooms/{room_id}/admin/open')
    client.post('/api/rooms/join', json={'code': '12345', 'nickname': 'Ann'})
    client.post(f'/api/rooms/{room_id}/admin/start')
    assert scheduler._room_has_clocks(room_id)

    assert client.post(f'/api/rooms/{room_id}/admin/{action}').status_code == 200
    assert not scheduler._room_has_clocks(room_id)
    assert scheduler.find_session(room_id, 'Ann') is None

    # reading the final state does not host the player again
    res = client.get(f'/api/rooms/{room_id}/players/Ann/session')
    assert res.status_code == 200
    assert res.get_json()['nickname'] == 'Ann'
    assert client.get('/api/rooms/resume').status_code == 200
    res = client.post(f'/api/rooms/{room_id}/players/Ann/answer', json={'answer': 0})
    assert res.status_code == 400
    assert not scheduler._room_has_clocks(room_id)


def test_off_after_endgame_leaves_nothing_hosted(memory_app):
    seed_levels(memory_app.extensions['quizroom_store'], {1: 1})
    client = memory_app.test_client()
    room_id = client.post('/api/rooms', json={'code': '12345', 'admin_id': 'admin-1'}).get_json()['id']
    client.post(f'/api/rooms/{room_id}/admin/open')
    client.post('/api/rooms/join', json={'code': '12345', 'nickname': 'Ann'})
    client.post(f'/api/rooms/{room_id}/admin/endgame')

    session = client.get(f'/api/rooms/{room_id}/players/Ann/session').get_json()
    assert session['view'] == 'endgame'
    client.post(f'/api/rooms/{room_id}/admin/off')
    assert not scheduler._room_has_clocks(room_id)
