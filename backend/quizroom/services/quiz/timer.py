"""Per-player question countdown and auto-submit.

A ``PlayerSession`` mirrors one player's client: it ingests room and player
snapshots, counts the question down one ``tick()`` per second, and submits at
most once per question, either when the player answers or when the clock runs
out. ``AdminCountdown`` runs the same clock for the admin console and ends the
question when it expires.
"""
import functools
import logging
import time
from typing import Callable, List, Optional

from quizroom.errors import NotFoundError, QuizError, ValidationError

from .documents import OPTION_COUNT, ChangeEvent, HelpTool, Phase, PlayerDoc, QuestionDoc, RoomDoc, question_key
from .help_tools import HelpToolController
from .scoring import MAX_BONUS_SECONDS, compute_delta, rank, rank_of
from .subscriptions import RoomFeed

logger = logging.getLogger(__name__)

QUESTION_DURATION_SEC = 60
RESULT_DISPLAY_DELAY_SEC = 2.0


class QuestionClock:
    """The countdown shared by player sessions and the admin console."""

    def __init__(self, duration: int = QUESTION_DURATION_SEC):
        if not 0 < int(duration) <= MAX_BONUS_SECONDS:
            raise ValueError(f'duration must be within 1..{MAX_BONUS_SECONDS}')
        self.duration = int(duration)
        self.time_left = self.duration
        self.active = False
        self.key: Optional[str] = None
        self._in_playing = False

    def follow(self, room: Optional[RoomDoc]) -> bool:
        """Align the clock with a room snapshot; True when it was (re)armed.

        The clock arms when the room enters the playing phase or moves to a
        different question while playing. Further snapshots of the same
        playing question leave it alone, even after it ran out.
        """
        if room is None or room.phase is not Phase.PLAYING:
            self.active = False
            self._in_playing = False
            return False
        key = room.question_key
        if self._in_playing and key == self.key:
            return False
        self.key = key
        self.time_left = self.duration
        self.active = True
        self._in_playing = True
        return True

    def step(self) -> bool:
        """Advance one second; True when this step reached zero."""
        if not self.active or self.time_left <= 0:
            return False
        self.time_left -= 1
        if self.time_left <= 0:
            self.time_left = 0
            self.active = False
            return True
        return False


class PlayerSession:

    def __init__(self, store, room_id: str, nickname: str,
                 duration: int = QUESTION_DURATION_SEC,
                 result_delay: float = RESULT_DISPLAY_DELAY_SEC,
                 clock: Callable[[], float] = time.monotonic,
                 retries: int = 5, backoff: float = 0.5,
                 sleep: Callable[[float], None] = time.sleep):
        self.store = store
        self.room_id = room_id
        self.nickname = nickname
        self.result_delay = result_delay
        self._now = clock
        self._retries = retries
        self._backoff = backoff
        self._sleep = sleep

        self.timer = QuestionClock(duration)
        self.tools = HelpToolController(store, room_id, nickname)
        self.room: Optional[RoomDoc] = None
        self.players: List[PlayerDoc] = []
        self.me: Optional[PlayerDoc] = None
        self.question: Optional[QuestionDoc] = None
        self.selected: Optional[int] = None
        self.submitted = False
        self.auto_submitted = False
        self.not_found: Optional[str] = None
        self.closed = False
        self._auto_attempted = False
        self._show_result_at: Optional[float] = None
        self._question_for: Optional[str] = None
        self._answer_key: Optional[str] = None
        self._errors: List[str] = []
        self._feeds: List[RoomFeed] = []

    # ---- lifecycle ----
    def attach(self) -> 'PlayerSession':
        """Subscribe to the room and its players; snapshots arrive immediately."""
        for name, subscribe in (
            ('room', functools.partial(self.store.subscribe_room, self.room_id)),
            ('players', functools.partial(self.store.subscribe_players, self.room_id)),
        ):
            feed = RoomFeed(f'{name}:{self.room_id}:{self.nickname}', subscribe, self.ingest,
                            retries=self._retries, backoff=self._backoff, sleep=self._sleep)
            self._feeds.append(feed)
            feed.open()
        return self

    def close(self) -> None:
        """Cancel the countdown and every subscription; later ticks do nothing."""
        self.closed = True
        self.timer.active = False
        for feed in self._feeds:
            feed.close()
        self._feeds = []
        logger.info(f"[session-close] room={self.room_id} player={self.nickname}")

    # ---- ingestion ----
    def ingest(self, event: ChangeEvent) -> None:
        """Single entry point for store snapshots; re-derives all local state."""
        if self.closed:
            return
        if event.deleted:
            self.not_found = 'This room no longer exists'
            self.timer.active = False
            return
        if event.kind == 'room':
            self._ingest_room(event.room)
        elif event.kind == 'players':
            self._ingest_players(event.players)

    def _ingest_room(self, room: RoomDoc) -> None:
        self.room = room
        self.timer.follow(room)
        if room.phase in (Phase.HOME, Phase.WAITING):
            # a new cycle; the next playing question is fresh even if its key repeats
            self._answer_key = None
        elif room.phase is Phase.PLAYING and room.question_key != self._answer_key:
            self._answer_key = room.question_key
            self.submitted = False
            self.auto_submitted = False
            self._auto_attempted = False
            self.selected = None
            self._show_result_at = None
            logger.info(f"[session-question] room={self.room_id} player={self.nickname} q={room.question_key}")
        if room.current_q and self._question_for != room.question_key:
            self._load_question(room)
        self._reconcile()

    def _ingest_players(self, players: List[PlayerDoc]) -> None:
        self.players = list(players)
        me = next((p for p in players if p.nickname == self.nickname), None)
        if me is None:
            if self.me is not None:
                self.not_found = 'You are no longer in this room'
            return
        self.me = me
        self.tools.sync(me)
        self._reconcile()

    def _load_question(self, room: RoomDoc) -> None:
        key = room.question_key
        try:
            self.question = self.store.get_question(room.level, room.current_q)
            self._question_for = key
        except NotFoundError:
            self.question = None
            self._question_for = None
            logger.warning(f"[session-question-missing] room={self.room_id} q={key}")

    def _reconcile(self) -> None:
        """A stored answer for the current question means it is already submitted."""
        if self.room is None or self.me is None or self.submitted:
            return
        if self.room.phase is Phase.PLAYING and self.me.answered_q == self.room.question_key:
            self.submitted = True
            self.selected = self.me.answer

    # ---- player actions ----
    @property
    def current_key(self) -> Optional[str]:
        if self.room is None or not self.room.current_q:
            return None
        return question_key(self.room.level, self.room.current_q)

    def select(self, answer: Optional[int]) -> None:
        if self.submitted or self.closed:
            return
        self.selected = self._check_answer(answer)

    def submit(self, answer: Optional[int] = None) -> bool:
        """Manual submission; False when nothing was (or could be) recorded."""
        if answer is not None:
            answer = self._check_answer(answer)
        if self.submitted or self.closed or not self._playing():
            return False
        if answer is not None:
            self.selected = answer
        ok = self._record(self.timer.time_left, auto=False)
        if ok:
            self._show_result_at = self._now() + self.result_delay
        return ok

    def use_tool(self, tool) -> None:
        if not self._playing():
            raise ValidationError('Help tools are only available while a question is playing')
        self.tools.use(tool, self.current_key, submitted=self.submitted)

    def tick(self) -> bool:
        """One elapsed second. Returns True when it triggered an auto-submit."""
        if self.closed or self.submitted:
            return False
        self.timer.step()
        if self.timer.time_left == 0 and self._playing() and not self._auto_attempted:
            self._auto_attempted = True
            logger.info(f"[timer-fire] room={self.room_id} player={self.nickname} q={self.current_key} "
                        f"selected={self.selected}")
            return self._record(0, auto=True)
        return False

    def _playing(self) -> bool:
        return (self.room is not None and self.room.phase is Phase.PLAYING
                and self.not_found is None and self.question is not None)

    def _check_answer(self, answer) -> int:
        try:
            answer = int(answer)
        except (TypeError, ValueError) as exc:
            raise ValidationError('answer must be an option index') from exc
        if not 0 <= answer < OPTION_COUNT:
            raise ValidationError(f'answer must be between 0 and {OPTION_COUNT - 1}')
        if self.question is not None and answer in self.tools.hidden_answers(self.question.correct_index):
            raise ValidationError('That option has been removed')
        return answer

    def _record(self, seconds_remaining: int, auto: bool) -> bool:
        key = self.current_key
        is_correct = self.selected is not None and self.selected == self.question.correct_index
        delta = compute_delta(is_correct, seconds_remaining, self.tools.double_points_active(key))
        # claim the slot before the write so a concurrent tick cannot submit twice
        self.submitted = True
        try:
            recorded = self.store.record_answer(self.room_id, self.nickname, key, self.selected, delta)
        except QuizError as exc:
            self.submitted = False
            self._errors.append(exc.message)
            logger.warning(f"[submit-failed] room={self.room_id} player={self.nickname} q={key} error={exc.message}")
            return False
        self.auto_submitted = auto
        logger.info(f"[submit] room={self.room_id} player={self.nickname} q={key} auto={auto} "
                    f"answer={self.selected} delta={delta} recorded={recorded}")
        return recorded

    # ---- derived state ----
    def pop_error(self) -> Optional[str]:
        """The oldest unreported write failure, reported once."""
        return self._errors.pop(0) if self._errors else None

    @property
    def time_left(self) -> int:
        return self.timer.time_left

    @property
    def timer_active(self) -> bool:
        return self.timer.active

    @property
    def view(self) -> str:
        if self.closed:
            return 'closed'
        if self.not_found:
            return 'not_found'
        if self.room is None:
            return 'loading'
        phase = self.room.phase
        if phase in (Phase.PLAYING, Phase.RESULT, Phase.LEARN) and self.question is None:
            return 'not_found'
        if phase is Phase.PLAYING:
            if self.submitted and (self.auto_submitted or self._show_result_at is None
                                   or self._now() >= self._show_result_at):
                return 'result'
            return 'playing'
        return phase.value

    @property
    def error(self) -> Optional[str]:
        if self.not_found:
            return self.not_found
        if self.view == 'not_found':
            return f'Question {self.current_key} is missing'
        return None

    def hidden_answers(self) -> List[int]:
        if self.question is None:
            return []
        return self.tools.hidden_answers(self.question.correct_index)

    def ranking(self):
        return rank(self.players)

    def snapshot(self) -> dict:
        ranking = self.ranking()
        reveal = self.submitted or (self.room is not None and self.room.phase in (Phase.RESULT, Phase.LEARN))
        return {
            'room_id': self.room_id,
            'nickname': self.nickname,
            'view': self.view,
            'phase': self.room.phase.value if self.room else None,
            'level': self.room.level if self.room else None,
            'current_q': self.room.current_q if self.room else None,
            'time_left': self.time_left,
            'timer_active': self.timer_active,
            'submitted': self.submitted,
            'selected': self.selected,
            'hidden_answers': self.hidden_answers(),
            'help_tools': {t.value: self.tools.is_used(t) for t in HelpTool},
            'double_points_active': self.tools.double_points_active(self.current_key),
            'question': self.question.public_dict(reveal=reveal) if self.question else None,
            'score': self.me.score if self.me else 0,
            'rank': rank_of(ranking, self.nickname),
            'ranking': [r._asdict() for r in ranking],
            'error': self.error,
        }


class AdminCountdown:
    """The admin console's question clock: ends the question when time is up."""

    def __init__(self, store, machine, room_id: str, duration: int = QUESTION_DURATION_SEC):
        self.store = store
        self.machine = machine
        self.room_id = room_id
        self.timer = QuestionClock(duration)
        self.room: Optional[RoomDoc] = None
        self.closed = False
        self._fired_for: Optional[str] = None
        self._feed: Optional[RoomFeed] = None

    def attach(self) -> 'AdminCountdown':
        self._feed = RoomFeed(f'admin:{self.room_id}',
                              functools.partial(self.store.subscribe_room, self.room_id), self.ingest)
        self._feed.open()
        return self

    def ingest(self, event: ChangeEvent) -> None:
        if self.closed or event.kind != 'room':
            return
        if event.deleted:
            self.close()
            return
        self.room = event.room
        if self.timer.follow(event.room):
            self._fired_for = None

    def tick(self) -> bool:
        if self.closed:
            return False
        reached_zero = self.timer.step()
        key = self.timer.key
        if (reached_zero and self.room is not None and self.room.phase is Phase.PLAYING
                and self._fired_for != key):
            self._fired_for = key
            logger.info(f"[admin-timer-fire] room={self.room_id} q={key} -> result")
            self.machine.end(self.room_id)
            return True
        return False

    def close(self) -> None:
        self.closed = True
        self.timer.active = False
        if self._feed is not None:
            self._feed.close()
            self._feed = None
