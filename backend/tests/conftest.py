import os
import sys
import pytest

# Ensure the backend root (containing the `quizroom` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from quizroom import create_app, db, socketio
from quizroom.services.quiz import scheduler
from quizroom.services.quiz.memory_store import InMemoryRoomStore
from quizroom.services.quiz.state_machine import RoomStateMachine


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    QUESTION_DURATION_SEC = 60
    RESULT_DISPLAY_DELAY_SEC = 2
    FINAL_LEVEL = 4
    ADMIN_AUTO_END = True
    SUBSCRIBE_RETRY_LIMIT = 2
    SUBSCRIBE_BACKOFF_SEC = 0
    TIMER_HEARTBEAT_SEC = 0
    CORS_ORIGINS = ['http://localhost:5173']
    LOG_LEVEL = 'DEBUG'


def make_question(level, text=None, correct_index=0):
    return {
        'level': level,
        'text': text or f'Question for level {level}',
        'options': ['A', 'B', 'C', 'D'],
        'correct_index': correct_index,
    }


def seed_levels(store, per_level, correct_index=0):
    """Add ``per_level[level]`` questions to each level, orders 1..N."""
    from quizroom.services.quiz.questions import QuestionBank
    bank = QuestionBank(store)
    for level, count in per_level.items():
        for i in range(count):
            bank.add(make_question(level, f'L{level} Q{i + 1}', correct_index))


@pytest.fixture(autouse=True)
def clean_scheduler():
    scheduler.reset()
    yield
    scheduler.reset()


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import quizroom.models  # noqa: F401
        db.create_all()
        yield application
        scheduler.reset()
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')


@pytest.fixture()
def store():
    return InMemoryRoomStore()


@pytest.fixture()
def machine(store):
    return RoomStateMachine(store, final_level=4)


@pytest.fixture()
def live_room(store, machine):
    """An opened room with two questions per level and players Ann and Bob."""
    seed_levels(store, {1: 2, 2: 2, 3: 2, 4: 2})
    room = machine.create_room('12345', 'admin-1')
    machine.open(room.id)
    machine.join('12345', 'Ann')
    machine.join('12345', 'Bob')
    return store.get_room(room.id)
