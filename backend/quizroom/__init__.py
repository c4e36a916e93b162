from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import logging
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
socketio = SocketIO(cors_allowed_origins=Config.CORS_ORIGINS, async_mode=None)


def get_store(app=None):
    """The room store bound to ``app`` (or the current app)."""
    from flask import current_app
    return (app or current_app).extensions['quizroom_store']


def create_app(config_class=Config, store=None):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    logging.getLogger('quizroom').setLevel(flask_app.config.get('LOG_LEVEL', 'INFO'))
    origins = flask_app.config.get('CORS_ORIGINS') or Config.CORS_ORIGINS

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=origins)

    if store is None:
        from quizroom.services.quiz.sql_store import SqlRoomStore
        store = SqlRoomStore(socketio=socketio)
    flask_app.extensions['quizroom_store'] = store

    from quizroom.routes import main
    flask_app.register_blueprint(main)

    from quizroom.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/api/rooms')

    from quizroom.api.questions import questions
    flask_app.register_blueprint(questions, url_prefix='/api/questions')

    # Register Socket.IO event handlers
    from quizroom.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database with sample questions."""
        from quizroom import models  # noqa: F401
        from quizroom.seed import seed_questions
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            count = seed_questions(get_store(flask_app))
            print(f'Database has been reset and seeded with {count} questions!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
