from quizroom.services.quiz import scheduler


def make_room(client, code='12345'):
    res = client.post('/api/rooms', json={'code': code, 'admin_id': 'admin-1'})
    assert res.status_code == 201
    return res.get_json()


def add_questions(client, level, count, correct_index=1):
    for i in range(count):
        res = client.post('/api/questions', json={
            'level': level,
            'text': f'L{level} Q{i + 1}',
            'options': ['w', 'x', 'y', 'z'],
            'correct_index': correct_index,
        })
        assert res.status_code == 201


def admin(client, room_id, action):
    return client.post(f'/api/rooms/{room_id}/admin/{action}')


def join(client, nickname, code='12345'):
    return client.post('/api/rooms/join', json={'code': code, 'nickname': nickname})


def test_index_and_health(client):
    assert client.get('/').status_code == 200
    assert client.get('/health').get_json() == {'status': 'ok'}


def test_create_room_validates_and_rejects_duplicates(client):
    room = make_room(client)
    assert room['status'] == 'waiting'
    assert room['current_q'] == 0
    res = client.post('/api/rooms', json={'code': '12345', 'admin_id': 'admin-2'})
    assert res.status_code == 409
    assert res.get_json()['type'] == 'DuplicateCode'
    res = client.post('/api/rooms', json={'code': '12a45', 'admin_id': 'admin-2'})
    assert res.status_code == 400
    listed = client.get('/api/rooms?admin_id=admin-1').get_json()
    assert [r['id'] for r in listed] == [room['id']]


def test_join_needs_an_open_room(client):
    room = make_room(client)
    assert join(client, 'Ann').status_code == 400
    assert admin(client, room['id'], 'open').get_json()['status'] == 'in-progress'
    res = join(client, 'Ann')
    assert res.status_code == 201
    body = res.get_json()
    assert body['player']['nickname'] == 'Ann'
    assert body['session']['view'] == 'waiting'
    assert join(client, 'Ann', code='99999').status_code == 404


def test_question_round_with_manual_and_auto_submit(flask_app, client):
    add_questions(client, 1, 2)
    room_id = make_room(client)['id']
    admin(client, room_id, 'open')
    ann = flask_app.test_client()
    bob = flask_app.test_client()
    join(ann, 'Ann')
    join(bob, 'Bob')

    started = admin(client, room_id, 'start').get_json()
    assert (started['phase'], started['current_q']) == ('playing', 1)

    session = ann.get(f'/api/rooms/{room_id}/players/Ann/session').get_json()
    assert session['view'] == 'playing'
    assert session['time_left'] == 60
    assert 'correct_index' not in session['question']

    res = ann.post(f'/api/rooms/{room_id}/players/Ann/answer', json={'answer': 1})
    assert res.get_json()['recorded'] is True
    res = ann.post(f'/api/rooms/{room_id}/players/Ann/answer', json={'answer': 1})
    assert res.get_json()['recorded'] is False
    res = ann.post(f'/api/rooms/{room_id}/players/Ann/help', json={'tool': 'reveal_one'})
    assert res.status_code == 400

    # Bob never answers: the clock submits for him, then the question ends
    assert sum(scheduler.tick_room(room_id) for _ in range(60)) == 1

    state = client.get(f'/api/rooms/{room_id}/state').get_json()
    assert state['room']['phase'] == 'result'
    assert state['room']['submitted_count'] == 2
    assert state['ranking'] == [
        {'nickname': 'Ann', 'score': 160, 'rank': 1},
        {'nickname': 'Bob', 'score': 0, 'rank': 2},
    ]

    assert admin(client, room_id, 'learn').get_json()['phase'] == 'learn'
    nxt = admin(client, room_id, 'next').get_json()
    assert (nxt['current_q'], nxt['submitted_count']) == (2, 0)
    admin(client, room_id, 'start')
    session = bob.get(f'/api/rooms/{room_id}/players/Bob/session').get_json()
    assert (session['view'], session['submitted'], session['time_left']) == ('playing', False, 60)


def test_help_tools_over_http(flask_app, client):
    add_questions(client, 1, 1, correct_index=0)
    room_id = make_room(client)['id']
    admin(client, room_id, 'open')
    join(client, 'Ann')
    admin(client, room_id, 'start')

    snap = client.post(f'/api/rooms/{room_id}/players/Ann/help', json={'tool': 'reveal_half'}).get_json()
    assert snap['hidden_answers'] == [1, 2]
    assert snap['help_tools']['reveal_half'] is True
    res = client.post(f'/api/rooms/{room_id}/players/Ann/select', json={'answer': 2})
    assert res.status_code == 400
    res = client.post(f'/api/rooms/{room_id}/players/Ann/help', json={'tool': 'reveal_half'})
    assert res.status_code == 400
    res = client.post(f'/api/rooms/{room_id}/players/Ann/help', json={})
    assert res.status_code == 400


def test_admin_errors(client):
    room_id = make_room(client)['id']
    assert admin(client, room_id, 'explode').status_code == 400
    assert admin(client, room_id, 'learn').status_code == 400
    assert admin(client, 'missing', 'start').status_code == 404
    assert client.get('/api/rooms/missing/state').status_code == 404
    admin(client, room_id, 'off')
    assert admin(client, room_id, 'start').status_code == 400


def test_resume_reconciles_with_the_store(flask_app, client):
    room_id = make_room(client)['id']
    admin(client, room_id, 'open')
    player = flask_app.test_client()
    assert player.get('/api/rooms/resume').status_code == 404
    join(player, 'Ann')

    resumed = player.get('/api/rooms/resume').get_json()
    assert resumed['role'] == 'user'
    assert resumed['player']['nickname'] == 'Ann'
    assert resumed['session']['room_id'] == room_id

    admin_view = client.get('/api/rooms/resume').get_json()
    assert admin_view['role'] == 'admin'

    assert client.delete(f'/api/rooms/{room_id}').status_code == 200
    assert player.get('/api/rooms/resume').status_code == 404
    # the stale cookie was dropped
    assert player.get('/api/rooms/resume').get_json()['error'] == 'No session to resume'


def test_leave_and_delete(flask_app, client):
    room_id = make_room(client)['id']
    admin(client, room_id, 'open')
    join(client, 'Ann')
    res = client.post(f'/api/rooms/{room_id}/players/Ann/leave')
    assert res.status_code == 200
    assert scheduler.find_session(room_id, 'Ann') is None
    assert client.get(f'/api/rooms/{room_id}/players/Ann/session').status_code == 404
    assert client.get(f'/api/rooms/{room_id}/state').get_json()['players'] == []
    assert client.delete(f'/api/rooms/{room_id}').status_code == 200
    assert client.delete(f'/api/rooms/{room_id}').status_code == 404


def test_question_crud(client):
    add_questions(client, 1, 3)
    listed = client.get('/api/questions?level=1').get_json()
    assert [q['order'] for q in listed] == [1, 2, 3]
    first = listed[0]['id']

    res = client.patch(f'/api/questions/{first}', json={'level': 2})
    assert (res.get_json()['level'], res.get_json()['order']) == (2, 1)
    assert [q['text'] for q in client.get('/api/questions?level=1').get_json()] == ['L1 Q2', 'L1 Q3']
    assert [q['order'] for q in client.get('/api/questions?level=1').get_json()] == [1, 2]

    assert client.post('/api/questions', json={'level': 1, 'text': 'q'}).status_code == 400
    assert client.get('/api/questions?level=x').status_code == 400
    assert client.delete(f'/api/questions/{first}').status_code == 200
    assert client.get(f'/api/questions/{first}').status_code == 404
    assert client.get('/api/questions/not-a-number').status_code == 404
