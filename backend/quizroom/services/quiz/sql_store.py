"""SQLAlchemy-backed ``RoomStore`` used by the Flask server.

Counters and scores only ever change through single ``UPDATE ... SET x = x + n``
statements so concurrent submissions cannot lose increments. Every committed
change is pushed to in-process subscribers and to the Socket.IO channel
``room:<room_id>`` on the ``/ws`` namespace.
"""
import functools
import json
import logging
from typing import List, Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import OperationalError

from quizroom import db
from quizroom.errors import DuplicateCode, NotFoundError, TransientStoreError
from quizroom.models import Player, Question, Room, UserProfile

from .documents import (
    ACTIVE_STATUSES, ChangeEvent, PlayerDoc, QuestionDoc, RoomDoc, UserProfileDoc, validate_doc,
)
from .store import (
    INCREMENTABLE_ROOM_FIELDS, PLAYER_FIELDS, PROFILE_FIELDS, QUESTION_FIELDS, ROOM_FIELDS,
    RoomStore, check_fields, plain_fields,
)

logger = logging.getLogger(__name__)

_ACTIVE = [s.value for s in ACTIVE_STATUSES]


def translate_errors(fn):
    """Roll back and surface connection-level failures as ``TransientStoreError``."""
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except OperationalError as exc:
            db.session.rollback()
            logger.warning(f"[store-error] op={fn.__name__} error={exc.orig}")
            raise TransientStoreError(f'Store unavailable during {fn.__name__}') from exc
    return wrapper


class SqlRoomStore(RoomStore):

    def __init__(self, socketio=None, namespace: str = '/ws'):
        super().__init__()
        self.socketio = socketio
        self.namespace = namespace

    # ---- rooms ----
    @translate_errors
    def create_room(self, code: str, admin_id: str) -> str:
        clash = Room.query.filter(Room.code == code, Room.status.in_(_ACTIVE)).first()
        if clash:
            raise DuplicateCode(code)
        room = Room(code=code, admin_id=admin_id, status='waiting', phase='waiting',
                    level=1, current_q=0, submitted_count=0)
        validate_doc(RoomDoc, {'id': 'pending', 'code': code, 'admin_id': admin_id})
        db.session.add(room)
        db.session.commit()
        logger.info(f"[room-create] room={room.id} code={code} admin={admin_id}")
        return room.id

    def _room_row(self, room_id) -> Room:
        room = db.session.get(Room, room_id)
        if room is None:
            raise NotFoundError(f'Room {room_id} not found')
        return room

    @translate_errors
    def get_room(self, room_id: str) -> RoomDoc:
        return validate_doc(RoomDoc, self._room_row(room_id).to_dict())

    @translate_errors
    def find_room_by_code(self, code: str) -> RoomDoc:
        rooms = Room.query.filter_by(code=code).order_by(Room.created_at).all()
        if not rooms:
            raise NotFoundError(f'No room with code {code}')
        active = [r for r in rooms if r.status in _ACTIVE]
        return validate_doc(RoomDoc, (active or rooms)[-1].to_dict())

    @translate_errors
    def list_rooms(self, admin_id: Optional[str] = None) -> List[RoomDoc]:
        query = Room.query
        if admin_id is not None:
            query = query.filter_by(admin_id=admin_id)
        return [validate_doc(RoomDoc, r.to_dict()) for r in query.order_by(Room.created_at).all()]

    @translate_errors
    def update_room(self, room_id: str, fields: dict) -> None:
        check_fields(fields, ROOM_FIELDS, 'room')
        room = self._room_row(room_id)
        merged = dict(room.to_dict(), **plain_fields(fields))
        validate_doc(RoomDoc, merged)
        for key in fields:
            setattr(room, key, merged[key])
        db.session.add(room)
        db.session.commit()
        self.publish_room(room_id)

    @translate_errors
    def increment_field(self, room_id: str, field: str, delta: int) -> int:
        check_fields({field: delta}, INCREMENTABLE_ROOM_FIELDS, 'room')
        column = getattr(Room, field)
        result = db.session.execute(
            update(Room).where(Room.id == room_id).values({field: column + int(delta)})
        )
        if result.rowcount != 1:
            db.session.rollback()
            raise NotFoundError(f'Room {room_id} not found')
        db.session.commit()
        value = getattr(self._room_row(room_id), field)
        self.publish_room(room_id)
        return value

    @translate_errors
    def delete_room(self, room_id: str) -> None:
        room = self._room_row(room_id)
        db.session.delete(room)
        db.session.commit()
        logger.info(f"[room-delete] room={room_id}")
        self.publish_room(room_id)
        self.publish_players(room_id)

    # ---- players ----
    def _player_row(self, room_id, nickname) -> Optional[Player]:
        return Player.query.filter_by(room_id=room_id, nickname=nickname).first()

    @translate_errors
    def list_players(self, room_id: str) -> List[PlayerDoc]:
        rows = Player.query.filter_by(room_id=room_id).order_by(Player.id).all()
        return [validate_doc(PlayerDoc, p.to_dict()) for p in rows]

    @translate_errors
    def get_player(self, room_id: str, nickname: str) -> PlayerDoc:
        player = self._player_row(room_id, nickname)
        if player is None:
            raise NotFoundError(f'Player {nickname} not found in room {room_id}')
        return validate_doc(PlayerDoc, player.to_dict())

    @translate_errors
    def upsert_player(self, room_id: str, nickname: str, fields: dict) -> PlayerDoc:
        check_fields(fields, PLAYER_FIELDS, 'player')
        self._room_row(room_id)
        player = self._player_row(room_id, nickname)
        base = player.to_dict() if player else {'nickname': nickname}
        merged = dict(base, **plain_fields(fields))
        doc = validate_doc(PlayerDoc, merged)
        if player is None:
            player = Player(room_id=room_id, nickname=nickname)
        for key in fields:
            value = merged[key]
            if key == 'help_tools':
                value = json.dumps(value)
            setattr(player, key, value)
        db.session.add(player)
        db.session.commit()
        self.publish_players(room_id)
        return doc

    @translate_errors
    def delete_player(self, room_id: str, nickname: str) -> None:
        Player.query.filter_by(room_id=room_id, nickname=nickname).delete()
        db.session.commit()
        self.publish_players(room_id)

    @translate_errors
    def record_answer(self, room_id, nickname, question_key, answer, delta) -> bool:
        self._room_row(room_id)
        if self._player_row(room_id, nickname) is None:
            raise NotFoundError(f'Player {nickname} not found in room {room_id}')
        result = db.session.execute(
            update(Player)
            .where(
                Player.room_id == room_id,
                Player.nickname == nickname,
                or_(Player.answered_q.is_(None), Player.answered_q != question_key),
            )
            .values(score=Player.score + int(delta), answer=answer, answered_q=question_key)
        )
        if result.rowcount != 1:
            db.session.rollback()
            logger.info(f"[answer-duplicate] room={room_id} player={nickname} q={question_key}")
            return False
        db.session.execute(
            update(Room).where(Room.id == room_id).values(submitted_count=Room.submitted_count + 1)
        )
        db.session.commit()
        logger.info(f"[answer] room={room_id} player={nickname} q={question_key} answer={answer} delta={delta}")
        self.publish_players(room_id)
        self.publish_room(room_id)
        return True

    # ---- questions ----
    def _question_row(self, question_id) -> Question:
        try:
            question = db.session.get(Question, int(question_id))
        except (TypeError, ValueError):
            question = None
        if question is None:
            raise NotFoundError(f'Question {question_id} not found')
        return question

    @translate_errors
    def get_question(self, level: int, order: int) -> QuestionDoc:
        question = Question.query.filter_by(level=level, order=order).first()
        if question is None:
            raise NotFoundError(f'No question at level {level}, order {order}')
        return validate_doc(QuestionDoc, question.to_dict())

    @translate_errors
    def get_question_by_id(self, question_id: str) -> QuestionDoc:
        question = self._question_row(question_id)
        return validate_doc(QuestionDoc, question.to_dict())

    @translate_errors
    def list_questions(self, level: Optional[int] = None) -> List[QuestionDoc]:
        query = Question.query
        if level is not None:
            query = query.filter_by(level=level)
        rows = query.order_by(Question.level, Question.order).all()
        return [validate_doc(QuestionDoc, q.to_dict()) for q in rows]

    @translate_errors
    def upsert_question(self, question_id: Optional[str], fields: dict) -> QuestionDoc:
        check_fields(fields, QUESTION_FIELDS, 'question')
        if question_id is None:
            question = Question()
            base = {'id': 'new'}
        else:
            question = self._question_row(question_id)
            base = question.to_dict()
        merged = dict(base, **fields)
        validate_doc(QuestionDoc, merged)
        for key in fields:
            value = merged[key]
            if key == 'options':
                value = json.dumps(list(value))
            setattr(question, key, value)
        db.session.add(question)
        db.session.commit()
        return validate_doc(QuestionDoc, question.to_dict())

    @translate_errors
    def delete_question(self, question_id: str) -> None:
        question = self._question_row(question_id)
        db.session.delete(question)
        db.session.commit()

    # ---- user profiles ----
    @translate_errors
    def get_user_profile(self, nickname: str) -> UserProfileDoc:
        profile = db.session.get(UserProfile, nickname)
        if profile is None:
            raise NotFoundError(f'No profile for {nickname}')
        return validate_doc(UserProfileDoc, profile.to_dict())

    @translate_errors
    def upsert_user_profile(self, nickname: str, fields: dict) -> UserProfileDoc:
        check_fields(fields, PROFILE_FIELDS, 'profile')
        profile = db.session.get(UserProfile, nickname)
        base = profile.to_dict() if profile else {'nickname': nickname}
        merged = dict(base, **plain_fields(fields))
        doc = validate_doc(UserProfileDoc, merged)
        if profile is None:
            profile = UserProfile(nickname=nickname)
        for key in fields:
            setattr(profile, key, merged[key])
        db.session.add(profile)
        db.session.commit()
        self.publish_profile(nickname)
        return doc

    # ---- snapshots and push ----
    def _room_event(self, room_id: str) -> ChangeEvent:
        room = db.session.get(Room, room_id)
        if room is None:
            return ChangeEvent(kind='room', room_id=room_id, deleted=True)
        return ChangeEvent(kind='room', room_id=room_id, room=validate_doc(RoomDoc, room.to_dict()))

    def _players_event(self, room_id: str) -> ChangeEvent:
        deleted = db.session.get(Room, room_id) is None
        return ChangeEvent(kind='players', room_id=room_id, players=self.list_players(room_id), deleted=deleted)

    def _profile_event(self, nickname: str) -> ChangeEvent:
        profile = db.session.get(UserProfile, nickname)
        doc = validate_doc(UserProfileDoc, profile.to_dict()) if profile else None
        return ChangeEvent(kind='profile', nickname=nickname, profile=doc, deleted=profile is None)

    def _emit(self, name: str, event: ChangeEvent, room: str) -> None:
        if self.socketio is None:
            return
        self.socketio.emit(name, event.model_dump(mode='json'), to=room, namespace=self.namespace)

    def publish_room(self, room_id: str) -> None:
        event = self._room_event(room_id)
        self._notify(('room', room_id), event)
        self._emit('room_deleted' if event.deleted else 'room_update', event, f'room:{room_id}')

    def publish_players(self, room_id: str) -> None:
        event = self._players_event(room_id)
        self._notify(('players', room_id), event)
        if not event.deleted:
            self._emit('players_update', event, f'room:{room_id}')

    def publish_profile(self, nickname: str) -> None:
        event = self._profile_event(nickname)
        self._notify(('profile', nickname), event)
        self._emit('profile_update', event, f'profile:{nickname}')
