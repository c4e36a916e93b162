"""In-memory ``RoomStore``: the test double and local-play backend.

A single lock serialises every mutation, which gives the same atomicity the
SQL adapter gets from single-statement increments. Subscribers are notified
after the lock is released so listeners may read the store again.
"""
import copy
import itertools
import threading
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from quizroom.errors import DuplicateCode, NotFoundError, TransientStoreError

from .documents import (
    ACTIVE_STATUSES, ChangeEvent, PlayerDoc, QuestionDoc, RoomDoc, RoomStatus, UserProfileDoc, validate_doc,
)
from .store import (
    INCREMENTABLE_ROOM_FIELDS, PLAYER_FIELDS, PROFILE_FIELDS, QUESTION_FIELDS, ROOM_FIELDS,
    RoomStore, check_fields, plain_fields,
)

_ACTIVE = {s.value for s in ACTIVE_STATUSES}


class InMemoryRoomStore(RoomStore):

    def __init__(self):
        super().__init__()
        self._lock = threading.RLock()
        self._rooms = {}
        self._players = {}      # room_id -> {nickname: dict}, insertion ordered
        self._profiles = {}
        self._questions = {}
        self._question_ids = itertools.count(1)
        self._failing_writes = 0
        self._failing_subscribes = 0

    # ---- fault injection ----
    def fail_next_writes(self, count: int = 1) -> None:
        self._failing_writes = count

    def fail_next_subscribes(self, count: int = 1) -> None:
        self._failing_subscribes = count

    def drop_subscriptions(self, room_id: str, reason: str = 'connection lost') -> None:
        """Simulate a network drop for every subscriber of ``room_id``."""
        exc = TransientStoreError(reason)
        self._drop(('room', room_id), exc)
        self._drop(('players', room_id), exc)

    def _check_write(self):
        if self._failing_writes > 0:
            self._failing_writes -= 1
            raise TransientStoreError('store unavailable')

    def _subscribe(self, key, snapshot, on_change, on_error):
        if self._failing_subscribes > 0:
            self._failing_subscribes -= 1
            raise TransientStoreError('subscribe failed')
        return super()._subscribe(key, snapshot, on_change, on_error)

    # ---- rooms ----
    def create_room(self, code: str, admin_id: str) -> str:
        with self._lock:
            self._check_write()
            for room in self._rooms.values():
                if room['code'] == code and room['status'] in _ACTIVE:
                    raise DuplicateCode(code)
            room_id = uuid.uuid4().hex
            self._rooms[room_id] = {
                'id': room_id,
                'code': code,
                'status': RoomStatus.WAITING.value,
                'phase': 'waiting',
                'level': 1,
                'current_q': 0,
                'submitted_count': 0,
                'admin_id': admin_id,
                'created_at': datetime.now(timezone.utc),
            }
            self._players[room_id] = {}
        return room_id

    def _room_row(self, room_id):
        row = self._rooms.get(room_id)
        if row is None:
            raise NotFoundError(f'Room {room_id} not found')
        return row

    def get_room(self, room_id: str) -> RoomDoc:
        with self._lock:
            return validate_doc(RoomDoc, dict(self._room_row(room_id)))

    def find_room_by_code(self, code: str) -> RoomDoc:
        with self._lock:
            matches = [r for r in self._rooms.values() if r['code'] == code]
            if not matches:
                raise NotFoundError(f'No room with code {code}')
            active = [r for r in matches if r['status'] in _ACTIVE]
            row = (active or matches)[-1]
            return validate_doc(RoomDoc, dict(row))

    def list_rooms(self, admin_id: Optional[str] = None) -> List[RoomDoc]:
        with self._lock:
            rows = [dict(r) for r in self._rooms.values() if admin_id is None or r['admin_id'] == admin_id]
        return [validate_doc(RoomDoc, r) for r in rows]

    def update_room(self, room_id: str, fields: dict) -> None:
        check_fields(fields, ROOM_FIELDS, 'room')
        with self._lock:
            self._check_write()
            row = self._room_row(room_id)
            merged = dict(row, **plain_fields(fields))
            validate_doc(RoomDoc, merged)
            row.update(merged)
        self.publish_room(room_id)

    def increment_field(self, room_id: str, field: str, delta: int) -> int:
        check_fields({field: delta}, INCREMENTABLE_ROOM_FIELDS, 'room')
        with self._lock:
            self._check_write()
            row = self._room_row(room_id)
            row[field] = int(row.get(field) or 0) + int(delta)
            value = row[field]
        self.publish_room(room_id)
        return value

    def delete_room(self, room_id: str) -> None:
        with self._lock:
            self._check_write()
            self._room_row(room_id)
            del self._rooms[room_id]
            self._players.pop(room_id, None)
        self.publish_room(room_id)
        self.publish_players(room_id)

    # ---- players ----
    def list_players(self, room_id: str) -> List[PlayerDoc]:
        with self._lock:
            rows = [dict(p) for p in self._players.get(room_id, {}).values()]
        return [validate_doc(PlayerDoc, r) for r in rows]

    def get_player(self, room_id: str, nickname: str) -> PlayerDoc:
        with self._lock:
            row = self._players.get(room_id, {}).get(nickname)
            if row is None:
                raise NotFoundError(f'Player {nickname} not found in room {room_id}')
            return validate_doc(PlayerDoc, dict(row))

    def upsert_player(self, room_id: str, nickname: str, fields: dict) -> PlayerDoc:
        check_fields(fields, PLAYER_FIELDS, 'player')
        with self._lock:
            self._check_write()
            self._room_row(room_id)
            players = self._players.setdefault(room_id, {})
            merged = dict(players.get(nickname, {'nickname': nickname}), **plain_fields(fields))
            doc = validate_doc(PlayerDoc, merged)
            players[nickname] = merged
        self.publish_players(room_id)
        return doc

    def delete_player(self, room_id: str, nickname: str) -> None:
        with self._lock:
            self._check_write()
            self._players.get(room_id, {}).pop(nickname, None)
        self.publish_players(room_id)

    def record_answer(self, room_id, nickname, question_key, answer, delta) -> bool:
        with self._lock:
            self._check_write()
            room = self._room_row(room_id)
            player = self._players.get(room_id, {}).get(nickname)
            if player is None:
                raise NotFoundError(f'Player {nickname} not found in room {room_id}')
            if player.get('answered_q') == question_key:
                return False
            player['score'] = int(player.get('score') or 0) + int(delta)
            player['answer'] = answer
            player['answered_q'] = question_key
            room['submitted_count'] = int(room.get('submitted_count') or 0) + 1
        self.publish_players(room_id)
        self.publish_room(room_id)
        return True

    # ---- questions ----
    def get_question(self, level: int, order: int) -> QuestionDoc:
        with self._lock:
            for row in self._questions.values():
                if row['level'] == level and row['order'] == order:
                    return validate_doc(QuestionDoc, copy.deepcopy(row))
        raise NotFoundError(f'No question at level {level}, order {order}')

    def get_question_by_id(self, question_id: str) -> QuestionDoc:
        with self._lock:
            row = self._questions.get(str(question_id))
            if row is None:
                raise NotFoundError(f'Question {question_id} not found')
            return validate_doc(QuestionDoc, copy.deepcopy(row))

    def list_questions(self, level: Optional[int] = None) -> List[QuestionDoc]:
        with self._lock:
            rows = [copy.deepcopy(r) for r in self._questions.values() if level is None or r['level'] == level]
        rows.sort(key=lambda r: (r['level'], r['order']))
        return [validate_doc(QuestionDoc, r) for r in rows]

    def upsert_question(self, question_id: Optional[str], fields: dict) -> QuestionDoc:
        check_fields(fields, QUESTION_FIELDS, 'question')
        with self._lock:
            self._check_write()
            if question_id is None:
                question_id = str(next(self._question_ids))
                base = {'id': question_id}
            else:
                question_id = str(question_id)
                if question_id not in self._questions:
                    raise NotFoundError(f'Question {question_id} not found')
                base = self._questions[question_id]
            merged = dict(copy.deepcopy(base), **copy.deepcopy(fields))
            doc = validate_doc(QuestionDoc, merged)
            self._questions[question_id] = merged
        return doc

    def delete_question(self, question_id: str) -> None:
        with self._lock:
            self._check_write()
            if self._questions.pop(str(question_id), None) is None:
                raise NotFoundError(f'Question {question_id} not found')

    # ---- user profiles ----
    def get_user_profile(self, nickname: str) -> UserProfileDoc:
        with self._lock:
            row = self._profiles.get(nickname)
            if row is None:
                raise NotFoundError(f'No profile for {nickname}')
            return validate_doc(UserProfileDoc, dict(row))

    def upsert_user_profile(self, nickname: str, fields: dict) -> UserProfileDoc:
        check_fields(fields, PROFILE_FIELDS, 'profile')
        with self._lock:
            self._check_write()
            merged = dict(self._profiles.get(nickname, {'nickname': nickname}), **plain_fields(fields))
            doc = validate_doc(UserProfileDoc, merged)
            self._profiles[nickname] = merged
        self.publish_profile(nickname)
        return doc

    # ---- snapshots ----
    def _room_event(self, room_id: str) -> ChangeEvent:
        with self._lock:
            row = self._rooms.get(room_id)
            if row is None:
                return ChangeEvent(kind='room', room_id=room_id, deleted=True)
            return ChangeEvent(kind='room', room_id=room_id, room=validate_doc(RoomDoc, dict(row)))

    def _players_event(self, room_id: str) -> ChangeEvent:
        with self._lock:
            deleted = room_id not in self._rooms
        return ChangeEvent(kind='players', room_id=room_id, players=self.list_players(room_id), deleted=deleted)

    def _profile_event(self, nickname: str) -> ChangeEvent:
        with self._lock:
            row = self._profiles.get(nickname)
        profile = validate_doc(UserProfileDoc, dict(row)) if row else None
        return ChangeEvent(kind='profile', nickname=nickname, profile=profile, deleted=row is None)
