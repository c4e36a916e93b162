import functools

import pytest

from quizroom.errors import TransientStoreError
from quizroom.services.quiz.subscriptions import RoomFeed


@pytest.fixture()
def room_id(store):
    return store.create_room('12345', 'admin-1')


def make_feed(store, room_id, events, sleeps, retries=3):
    return RoomFeed('room', functools.partial(store.subscribe_room, room_id), events.append,
                    retries=retries, backoff=0.5, sleep=sleeps.append)


def test_open_retries_with_exponential_backoff(store, room_id):
    events, sleeps = [], []
    store.fail_next_subscribes(2)
    feed = make_feed(store, room_id, events, sleeps)
    feed.open()
    assert feed.connected
    assert sleeps == [0.5, 1.0]
    assert len(events) == 1


def test_open_gives_up_after_the_retry_limit(store, room_id):
    events, sleeps = [], []
    store.fail_next_subscribes(5)
    feed = make_feed(store, room_id, events, sleeps, retries=2)
    with pytest.raises(TransientStoreError):
        feed.open()
    assert sleeps == [0.5, 1.0]
    assert not feed.connected


def test_dropped_feed_resubscribes_and_gets_a_fresh_snapshot(store, room_id):
    events, sleeps = [], []
    feed = make_feed(store, room_id, events, sleeps)
    feed.open()
    store.update_room(room_id, {'level': 2})
    store.drop_subscriptions(room_id)
    assert feed.reconnects == 1
    assert feed.connected
    assert events[-1].room.level == 2
    store.update_room(room_id, {'level': 3})
    assert events[-1].room.level == 3


def test_closed_feed_stops_delivering(store, room_id):
    events, sleeps = [], []
    feed = make_feed(store, room_id, events, sleeps)
    feed.open()
    feed.close()
    store.update_room(room_id, {'level': 2})
    store.drop_subscriptions(room_id)
    assert len(events) == 1
    assert feed.reconnects == 0
