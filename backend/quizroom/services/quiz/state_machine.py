"""Room lifecycle: the admin-issued transitions every client reacts to.

status:  waiting -> in-progress -> ended | off
phase:   waiting -> playing -> result -> (learn) -> playing ... -> home (level
         boundary) -> ... -> endgame

Each transition is a single merge of room fields so re-issuing an action
lands on the same state.
"""
import logging
import re
from typing import Optional

from quizroom.errors import NotFoundError, ValidationError

from .documents import CODE_LENGTH, Phase, PlayerDoc, RoomDoc, RoomStatus, Role

logger = logging.getLogger(__name__)

CODE_RE = re.compile(rf'^[0-9]{{{CODE_LENGTH}}}$')
DEFAULT_FINAL_LEVEL = 4

ADMIN_ACTIONS = ('open', 'close', 'start', 'end', 'learn', 'next', 'reset', 'endgame', 'off')


class RoomStateMachine:

    def __init__(self, store, final_level: int = DEFAULT_FINAL_LEVEL):
        self.store = store
        self.final_level = int(final_level)

    # ---- room creation and membership ----
    def create_room(self, code: str, admin_id: str) -> RoomDoc:
        code = (code or '').strip()
        if not CODE_RE.match(code):
            raise ValidationError(f'Room code must be {CODE_LENGTH} digits')
        if not (admin_id or '').strip():
            raise ValidationError('admin_id is required')
        room_id = self.store.create_room(code, admin_id.strip())
        logger.info(f"[room-create] room={room_id} code={code}")
        return self.store.get_room(room_id)

    def join(self, code: str, nickname: str, avatar: Optional[str] = None) -> PlayerDoc:
        """Add a player to the in-progress room using ``code``.

        Rejoining with the same nickname keeps the existing score and help
        tools. The global profile is created at level 1 if missing and its
        level is never lowered here.
        """
        nickname = (nickname or '').strip()
        if not nickname:
            raise ValidationError('Nickname is required')
        if not CODE_RE.match((code or '').strip()):
            raise ValidationError(f'Room code must be {CODE_LENGTH} digits')
        room = self.store.find_room_by_code(code.strip())
        if room.status is not RoomStatus.IN_PROGRESS:
            raise ValidationError('This room is not accepting players')

        try:
            existing = self.store.get_player(room.id, nickname)
        except NotFoundError:
            existing = None
        if existing is not None:
            if existing.role is Role.ADMIN:
                raise ValidationError(f'Nickname {nickname} is taken in this room')
            fields = {'avatar': avatar} if avatar else {}
            player = self.store.upsert_player(room.id, nickname, fields) if fields else existing
            logger.info(f"[room-rejoin] room={room.id} player={nickname} score={player.score}")
        else:
            player = self.store.upsert_player(room.id, nickname, {
                'role': Role.USER, 'score': 0, 'avatar': avatar, 'help_tools': [],
            })
            logger.info(f"[room-join] room={room.id} player={nickname}")

        try:
            self.store.get_user_profile(nickname)
            if avatar:
                self.store.upsert_user_profile(nickname, {'avatar': avatar})
        except NotFoundError:
            self.store.upsert_user_profile(nickname, {'role': Role.USER, 'avatar': avatar, 'level': 1})
        return player

    def leave(self, room_id: str, nickname: str) -> None:
        self.store.delete_player(room_id, nickname)
        logger.info(f"[room-leave] room={room_id} player={nickname}")

    # ---- admin transitions ----
    def apply(self, room_id: str, action: str) -> RoomDoc:
        if action not in ADMIN_ACTIONS:
            raise ValidationError(f'Unknown admin action: {action}')
        return getattr(self, action)(room_id)

    def open(self, room_id: str) -> RoomDoc:
        """Dashboard start: let players join and wait for the first question."""
        room = self._live_room(room_id)
        if room.status is RoomStatus.IN_PROGRESS:
            return room
        return self._update(room, status=RoomStatus.IN_PROGRESS, phase=Phase.WAITING)

    def close(self, room_id: str) -> RoomDoc:
        room = self.store.get_room(room_id)
        return self._update(room, status=RoomStatus.ENDED)

    def start(self, room_id: str) -> RoomDoc:
        room = self._live_room(room_id)
        if room.status is RoomStatus.IN_PROGRESS and room.phase is Phase.PLAYING and room.current_q:
            return room
        return self._update(
            room,
            status=RoomStatus.IN_PROGRESS,
            phase=Phase.PLAYING,
            current_q=room.current_q or 1,
            submitted_count=0,
        )

    def end(self, room_id: str) -> RoomDoc:
        room = self.store.get_room(room_id)
        if room.phase is Phase.RESULT:
            return room
        return self._update(room, phase=Phase.RESULT)

    def learn(self, room_id: str) -> RoomDoc:
        room = self.store.get_room(room_id)
        if room.phase not in (Phase.RESULT, Phase.LEARN):
            raise ValidationError('The learning slide follows the result screen')
        return self._update(room, phase=Phase.LEARN)

    def next(self, room_id: str) -> RoomDoc:
        room = self._live_room(room_id)
        level = room.level or 1
        current = room.current_q or 1
        max_order = self.max_order(level)

        if current + 1 <= max_order:
            logger.info(f"[room-next] room={room_id} level={level} q {current} -> {current + 1}")
            return self._update(room, current_q=current + 1, submitted_count=0)

        if level >= self.final_level:
            logger.info(f"[room-finish] room={room_id} finished at level={level} q={current}")
            return self._update(room, phase=Phase.ENDGAME, status=RoomStatus.ENDED)

        new_level = level + 1
        logger.info(f"[room-level] room={room_id} level {level} -> {new_level}")
        updated = self._update(room, level=new_level, current_q=1, phase=Phase.HOME, submitted_count=0)
        for player in self._user_players(room_id):
            self._raise_profile_level(player.nickname, new_level)
        return updated

    def reset(self, room_id: str) -> RoomDoc:
        """Replay the room from question 1:1.

        Every player in the room, whatever the role, gets a fresh answer slot
        and profile level 1. Scores and used help tools are kept.
        """
        room = self.store.get_room(room_id)
        updated = self._update(
            room,
            level=1,
            current_q=1,
            phase=Phase.HOME,
            submitted_count=0,
            status=RoomStatus.WAITING,
        )
        for player in self.store.list_players(room_id):
            # questions replay from 1:1, so earlier answers and armed double points must not carry over
            if player.answered_q is not None or player.double_points_q is not None:
                self.store.upsert_player(room_id, player.nickname,
                                         {'answered_q': None, 'answer': None, 'double_points_q': None})
            try:
                self.store.get_user_profile(player.nickname)
            except NotFoundError:
                continue
            self.store.upsert_user_profile(player.nickname, {'level': 1})
        logger.info(f"[room-reset] room={room_id}")
        return updated

    def endgame(self, room_id: str) -> RoomDoc:
        room = self.store.get_room(room_id)
        return self._update(room, phase=Phase.ENDGAME, status=RoomStatus.ENDED)

    def off(self, room_id: str) -> RoomDoc:
        room = self.store.get_room(room_id)
        return self._update(room, status=RoomStatus.OFF)

    def delete(self, room_id: str) -> None:
        self.store.get_room(room_id)
        for player in self.store.list_players(room_id):
            self.store.delete_player(room_id, player.nickname)
        self.store.delete_room(room_id)
        logger.info(f"[room-delete] room={room_id}")

    # ---- helpers ----
    def max_order(self, level: int) -> int:
        orders = [q.order for q in self.store.list_questions(level)]
        return max(orders) if orders else 1

    def _live_room(self, room_id: str) -> RoomDoc:
        room = self.store.get_room(room_id)
        if room.status in (RoomStatus.ENDED, RoomStatus.OFF):
            raise ValidationError(f'Room {room.code} is {room.status.value}')
        return room

    def _update(self, room: RoomDoc, **fields) -> RoomDoc:
        changed = {k: v for k, v in fields.items() if getattr(room, k) != v}
        if changed:
            self.store.update_room(room.id, changed)
            logger.info(
                f"[room-update] room={room.id} "
                + ' '.join(f'{k}={getattr(v, "value", v)}' for k, v in changed.items())
            )
            return self.store.get_room(room.id)
        return room

    def _user_players(self, room_id: str):
        return [p for p in self.store.list_players(room_id) if p.role is Role.USER]

    def _raise_profile_level(self, nickname: str, level: int) -> None:
        try:
            profile = self.store.get_user_profile(nickname)
        except NotFoundError:
            logger.info(f"[profile-skip] player={nickname} has no profile")
            return
        if profile.level < level:
            self.store.upsert_user_profile(nickname, {'level': level})
