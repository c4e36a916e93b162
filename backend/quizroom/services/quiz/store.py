"""The room store port.

The quiz core reads, writes and subscribes through this contract only, so it
runs unchanged against the in-memory adapter (tests, local play) and the
SQLAlchemy adapter (the Flask server).
"""
import abc
import logging
import threading
from collections import defaultdict
from typing import Callable, Dict, List, Optional, Tuple

from quizroom.errors import TransientStoreError, ValidationError

from .documents import ChangeEvent, PlayerDoc, QuestionDoc, RoomDoc, UserProfileDoc

logger = logging.getLogger(__name__)

OnChange = Callable[[ChangeEvent], None]
OnError = Callable[[TransientStoreError], None]
Unsubscribe = Callable[[], None]

ROOM_FIELDS = ('status', 'phase', 'level', 'current_q', 'submitted_count', 'admin_id', 'code')
INCREMENTABLE_ROOM_FIELDS = ('submitted_count', 'level', 'current_q')
PLAYER_FIELDS = ('role', 'score', 'answer', 'answered_q', 'avatar', 'help_tools', 'double_points_q')
PROFILE_FIELDS = ('role', 'avatar', 'level')
QUESTION_FIELDS = ('level', 'order', 'text', 'options', 'correct_index', 'background_img', 'slide_url')


class RoomStore(abc.ABC):
    """Abstract document store holding rooms, players, profiles and questions.

    Subscriptions deliver the current full state as soon as they are made and
    again after every mutation. A delivery failure calls ``on_error`` once and
    drops the subscription; re-subscribing is the caller's job.
    """

    def __init__(self):
        self._listeners: Dict[Tuple[str, str], List[Tuple[OnChange, Optional[OnError]]]] = defaultdict(list)
        self._listeners_lock = threading.RLock()

    # ---- rooms ----
    @abc.abstractmethod
    def create_room(self, code: str, admin_id: str) -> str:
        """Create a room; raises ``DuplicateCode`` when an active room uses ``code``."""

    @abc.abstractmethod
    def get_room(self, room_id: str) -> RoomDoc: ...

    @abc.abstractmethod
    def find_room_by_code(self, code: str) -> RoomDoc: ...

    @abc.abstractmethod
    def list_rooms(self, admin_id: Optional[str] = None) -> List[RoomDoc]: ...

    @abc.abstractmethod
    def update_room(self, room_id: str, fields: dict) -> None: ...

    @abc.abstractmethod
    def increment_field(self, room_id: str, field: str, delta: int) -> int:
        """Atomically add ``delta`` to a numeric room field and return the new value."""

    @abc.abstractmethod
    def delete_room(self, room_id: str) -> None: ...

    # ---- players ----
    @abc.abstractmethod
    def list_players(self, room_id: str) -> List[PlayerDoc]: ...

    @abc.abstractmethod
    def get_player(self, room_id: str, nickname: str) -> PlayerDoc: ...

    @abc.abstractmethod
    def upsert_player(self, room_id: str, nickname: str, fields: dict) -> PlayerDoc: ...

    @abc.abstractmethod
    def delete_player(self, room_id: str, nickname: str) -> None: ...

    @abc.abstractmethod
    def record_answer(self, room_id: str, nickname: str, question_key: str,
                      answer: Optional[int], delta: int) -> bool:
        """Apply one submission atomically.

        Adds ``delta`` to the player's score, stores ``answer`` and
        ``question_key`` and increments the room's ``submitted_count``, all
        or nothing. Returns False without writing when the player already
        answered ``question_key``.
        """

    # ---- questions ----
    @abc.abstractmethod
    def get_question(self, level: int, order: int) -> QuestionDoc: ...

    @abc.abstractmethod
    def get_question_by_id(self, question_id: str) -> QuestionDoc: ...

    @abc.abstractmethod
    def list_questions(self, level: Optional[int] = None) -> List[QuestionDoc]: ...

    @abc.abstractmethod
    def upsert_question(self, question_id: Optional[str], fields: dict) -> QuestionDoc: ...

    @abc.abstractmethod
    def delete_question(self, question_id: str) -> None: ...

    # ---- user profiles ----
    @abc.abstractmethod
    def get_user_profile(self, nickname: str) -> UserProfileDoc: ...

    @abc.abstractmethod
    def upsert_user_profile(self, nickname: str, fields: dict) -> UserProfileDoc: ...

    # ---- snapshots used by subscriptions ----
    @abc.abstractmethod
    def _room_event(self, room_id: str) -> ChangeEvent: ...

    @abc.abstractmethod
    def _players_event(self, room_id: str) -> ChangeEvent: ...

    @abc.abstractmethod
    def _profile_event(self, nickname: str) -> ChangeEvent: ...

    # ---- subscriptions ----
    def subscribe_room(self, room_id: str, on_change: OnChange, on_error: Optional[OnError] = None) -> Unsubscribe:
        return self._subscribe(('room', room_id), lambda: self._room_event(room_id), on_change, on_error)

    def subscribe_players(self, room_id: str, on_change: OnChange, on_error: Optional[OnError] = None) -> Unsubscribe:
        return self._subscribe(('players', room_id), lambda: self._players_event(room_id), on_change, on_error)

    def subscribe_user_profile(self, nickname: str, on_change: OnChange,
                               on_error: Optional[OnError] = None) -> Unsubscribe:
        return self._subscribe(('profile', nickname), lambda: self._profile_event(nickname), on_change, on_error)

    def _subscribe(self, key, snapshot, on_change, on_error) -> Unsubscribe:
        entry = (on_change, on_error)
        with self._listeners_lock:
            self._listeners[key].append(entry)
        logger.debug(f"[subscribe] {key[0]}={key[1]}")
        on_change(snapshot())

        def unsubscribe():
            with self._listeners_lock:
                entries = self._listeners.get(key)
                if entries and entry in entries:
                    entries.remove(entry)
                if not entries:
                    self._listeners.pop(key, None)
        return unsubscribe

    def _has_listeners(self, key) -> bool:
        with self._listeners_lock:
            return bool(self._listeners.get(key))

    def _notify(self, key, event: ChangeEvent) -> None:
        with self._listeners_lock:
            entries = list(self._listeners.get(key, ()))
        for on_change, _ in entries:
            on_change(event)

    def _drop(self, key, exc: TransientStoreError) -> None:
        """Cut every subscription on ``key`` and report the loss to its owner."""
        with self._listeners_lock:
            entries = self._listeners.pop(key, [])
        logger.warning(f"[subscription-drop] {key[0]}={key[1]} listeners={len(entries)} reason={exc.message}")
        for _, on_error in entries:
            if on_error is not None:
                on_error(exc)

    def publish_room(self, room_id: str) -> None:
        if self._has_listeners(('room', room_id)):
            self._notify(('room', room_id), self._room_event(room_id))

    def publish_players(self, room_id: str) -> None:
        if self._has_listeners(('players', room_id)):
            self._notify(('players', room_id), self._players_event(room_id))

    def publish_profile(self, nickname: str) -> None:
        if self._has_listeners(('profile', nickname)):
            self._notify(('profile', nickname), self._profile_event(nickname))


def check_fields(fields: dict, allowed, kind: str) -> dict:
    unknown = set(fields) - set(allowed)
    if unknown:
        raise ValidationError(f'Unknown {kind} field(s): {", ".join(sorted(unknown))}')
    return fields


def plain_fields(fields: dict) -> dict:
    """Store enum members by value, as a document database would."""
    out = {}
    for key, value in fields.items():
        if hasattr(value, 'value'):
            value = value.value
        elif isinstance(value, (list, tuple)):
            value = [getattr(v, 'value', v) for v in value]
        out[key] = value
    return out
