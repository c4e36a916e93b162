import pytest

from quizroom.errors import DuplicateCode, NotFoundError, ValidationError
from quizroom.services.quiz.documents import Phase, Role, RoomStatus


def test_create_room_starts_waiting(machine):
    room = machine.create_room('54321', 'admin-1')
    assert room.status is RoomStatus.WAITING
    assert room.phase is Phase.WAITING
    assert (room.level, room.current_q, room.submitted_count) == (1, 0, 0)


@pytest.mark.parametrize('code', ['1234', '123456', 'abcde', ''])
def test_create_room_rejects_bad_codes(machine, store, code):
    with pytest.raises(ValidationError):
        machine.create_room(code, 'admin-1')
    assert store.list_rooms() == []


def test_duplicate_code_only_clashes_with_active_rooms(machine):
    first = machine.create_room('11111', 'admin-1')
    with pytest.raises(DuplicateCode):
        machine.create_room('11111', 'admin-2')
    machine.close(first.id)
    again = machine.create_room('11111', 'admin-2')
    assert again.id != first.id


def test_join_requires_an_open_room(machine):
    machine.create_room('22222', 'admin-1')
    with pytest.raises(ValidationError):
        machine.join('22222', 'Ann')


def test_join_creates_player_and_profile(store, live_room):
    players = store.list_players(live_room.id)
    assert [p.nickname for p in players] == ['Ann', 'Bob']
    assert all(p.score == 0 and p.help_tools == [] for p in players)
    assert store.get_user_profile('Ann').level == 1


def test_rejoin_keeps_score_and_profile_level(store, machine, live_room):
    store.upsert_player(live_room.id, 'Ann', {'score': 140})
    store.upsert_user_profile('Ann', {'level': 3})
    player = machine.join('12345', 'Ann', avatar='owl')
    assert player.score == 140
    assert player.avatar == 'owl'
    assert len(store.list_players(live_room.id)) == 2
    assert store.get_user_profile('Ann').level == 3


def test_start_arms_the_first_question(machine, live_room):
    room = machine.start(live_room.id)
    assert room.status is RoomStatus.IN_PROGRESS
    assert room.phase is Phase.PLAYING
    assert room.current_q == 1
    assert room.question_key == '1:1'


def test_start_while_playing_is_a_no_op(store, machine, live_room):
    machine.start(live_room.id)
    store.increment_field(live_room.id, 'submitted_count', 1)
    room = machine.start(live_room.id)
    assert room.submitted_count == 1


def test_end_and_learn(machine, live_room):
    machine.start(live_room.id)
    assert machine.end(live_room.id).phase is Phase.RESULT
    assert machine.end(live_room.id).phase is Phase.RESULT
    assert machine.learn(live_room.id).phase is Phase.LEARN
    assert machine.learn(live_room.id).phase is Phase.LEARN


def test_learn_outside_result_is_rejected(machine, live_room):
    machine.start(live_room.id)
    with pytest.raises(ValidationError):
        machine.learn(live_room.id)


def test_next_within_a_level_clears_the_counter(store, machine, live_room):
    machine.start(live_room.id)
    store.increment_field(live_room.id, 'submitted_count', 2)
    machine.end(live_room.id)
    room = machine.next(live_room.id)
    assert (room.level, room.current_q, room.submitted_count) == (1, 2, 0)


def test_next_across_a_level_goes_home_and_raises_profiles(store, machine, live_room):
    store.upsert_user_profile('Bob', {'level': 4})
    machine.start(live_room.id)
    machine.next(live_room.id)
    room = machine.next(live_room.id)
    assert (room.level, room.current_q, room.phase) == (2, 1, Phase.HOME)
    assert store.get_user_profile('Ann').level == 2
    # never lowered
    assert store.get_user_profile('Bob').level == 4


def test_next_on_the_last_question_ends_the_game(store, machine, live_room):
    store.update_room(live_room.id, {'level': 4, 'current_q': 2, 'phase': Phase.RESULT,
                                     'status': RoomStatus.IN_PROGRESS})
    room = machine.next(live_room.id)
    assert room.phase is Phase.ENDGAME
    assert room.status is RoomStatus.ENDED
    with pytest.raises(ValidationError):
        machine.next(live_room.id)
    with pytest.raises(ValidationError):
        machine.start(live_room.id)


def test_empty_level_counts_as_one_question(store, machine):
    room = machine.create_room('33333', 'admin-1')
    machine.start(room.id)
    room = machine.next(room.id)
    assert (room.level, room.current_q, room.phase) == (2, 1, Phase.HOME)


def test_reset_replays_from_the_first_question(store, machine, live_room):
    machine.start(live_room.id)
    store.record_answer(live_room.id, 'Ann', '1:1', 0, 160)
    machine.next(live_room.id)
    machine.next(live_room.id)
    room = machine.reset(live_room.id)
    assert (room.level, room.current_q, room.phase, room.status) == (1, 1, Phase.HOME, RoomStatus.WAITING)
    assert room.submitted_count == 0
    assert store.get_user_profile('Ann').level == 1
    ann = store.get_player(live_room.id, 'Ann')
    assert ann.answered_q is None
    assert ann.score == 160
    assert machine.reset(live_room.id) == room


def test_reset_lowers_every_profile_whatever_the_role(store, machine, live_room):
    store.upsert_player(live_room.id, 'Host', {'role': Role.ADMIN})
    store.upsert_user_profile('Host', {'role': Role.ADMIN, 'level': 3})
    store.upsert_user_profile('Bob', {'level': 2})
    store.upsert_player(live_room.id, 'Bob', {'double_points_q': '1:1'})
    machine.reset(live_room.id)
    assert store.get_user_profile('Host').level == 1
    assert store.get_user_profile('Bob').level == 1
    assert store.get_player(live_room.id, 'Bob').double_points_q is None


def test_endgame_off_and_close(machine, live_room):
    room = machine.endgame(live_room.id)
    assert (room.phase, room.status) == (Phase.ENDGAME, RoomStatus.ENDED)
    assert machine.off(live_room.id).status is RoomStatus.OFF
    assert machine.close(live_room.id).status is RoomStatus.ENDED


def test_delete_removes_room_and_players(store, machine, live_room):
    machine.delete(live_room.id)
    with pytest.raises(NotFoundError):
        store.get_room(live_room.id)
    assert store.list_players(live_room.id) == []
    with pytest.raises(NotFoundError):
        machine.delete(live_room.id)


def test_apply_rejects_unknown_actions(machine, live_room):
    with pytest.raises(ValidationError):
        machine.apply(live_room.id, 'explode')
    assert machine.apply(live_room.id, 'start').phase is Phase.PLAYING


def test_leave_removes_only_that_player(store, machine, live_room):
    machine.leave(live_room.id, 'Ann')
    assert [p.nickname for p in store.list_players(live_room.id)] == ['Bob']
