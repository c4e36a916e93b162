"""Hosts player sessions and admin countdowns and drives their clocks.

One background task per room ticks every hosted session once a second, the
way the room's clients would. Player sessions tick before the admin
countdown so a timed-out player is submitted before the question ends.
"""
import logging
import time
from typing import Dict, Set, Tuple

from quizroom import get_store, socketio
from quizroom.errors import QuizError

from .state_machine import RoomStateMachine
from .timer import AdminCountdown, PlayerSession

logger = logging.getLogger(__name__)

_sessions: Dict[Tuple[str, str], PlayerSession] = {}
_countdowns: Dict[str, AdminCountdown] = {}
_tickers: Set[str] = set()


def _new_session(app, room_id: str, nickname: str) -> PlayerSession:
    cfg = app.config
    return PlayerSession(
        get_store(app), room_id, nickname,
        duration=int(cfg.get('QUESTION_DURATION_SEC', 60)),
        result_delay=float(cfg.get('RESULT_DISPLAY_DELAY_SEC', 2)),
        retries=int(cfg.get('SUBSCRIBE_RETRY_LIMIT', 5)),
        backoff=float(cfg.get('SUBSCRIBE_BACKOFF_SEC', 0.5)),
        sleep=socketio.sleep,
    )


def open_session(app, room_id: str, nickname: str) -> PlayerSession:
    """Return the hosted session for a player, creating and attaching it once."""
    key = (room_id, nickname)
    session = _sessions.get(key)
    if session is not None and not session.closed:
        return session
    session = _new_session(app, room_id, nickname).attach()
    _sessions[key] = session
    logger.info(f"[session-open] room={room_id} player={nickname}")
    ensure_ticker(app, room_id)
    return session


def snapshot_once(app, room_id: str, nickname: str) -> dict:
    """Snapshot of a player in a room that no longer runs clocks; nothing stays hosted."""
    session = _new_session(app, room_id, nickname).attach()
    try:
        return session.snapshot()
    finally:
        session.close()


def find_session(room_id: str, nickname: str):
    session = _sessions.get((room_id, nickname))
    if session is None or session.closed:
        return None
    return session


def close_session(room_id: str, nickname: str) -> None:
    session = _sessions.pop((room_id, nickname), None)
    if session is not None:
        session.close()


def open_countdown(app, room_id: str) -> None:
    if not app.config.get('ADMIN_AUTO_END', True):
        return
    countdown = _countdowns.get(room_id)
    if countdown is not None and not countdown.closed:
        return
    machine = RoomStateMachine(get_store(app), final_level=int(app.config.get('FINAL_LEVEL', 4)))
    _countdowns[room_id] = AdminCountdown(
        get_store(app), machine, room_id, duration=int(app.config.get('QUESTION_DURATION_SEC', 60))
    ).attach()
    ensure_ticker(app, room_id)


def close_countdown(room_id: str) -> None:
    countdown = _countdowns.pop(room_id, None)
    if countdown is not None:
        countdown.close()


def close_room(room_id: str) -> None:
    """Stop every clock and subscription hosted for a room."""
    for key in [k for k in _sessions if k[0] == room_id]:
        close_session(*key)
    close_countdown(room_id)


def tick_room(room_id: str) -> int:
    """Advance every clock of a room by one second; returns the number of auto-submits."""
    fired = 0
    for key, session in list(_sessions.items()):
        if key[0] != room_id:
            continue
        try:
            if session.tick():
                fired += 1
        except QuizError as exc:
            logger.warning(f"[timer-error] room={room_id} player={key[1]} error={exc.message}")
    countdown = _countdowns.get(room_id)
    if countdown is not None:
        try:
            countdown.tick()
        except QuizError as exc:
            logger.warning(f"[admin-timer-error] room={room_id} error={exc.message}")
    return fired


def _room_has_clocks(room_id: str) -> bool:
    return any(k[0] == room_id for k in _sessions) or room_id in _countdowns


def ensure_ticker(app, room_id: str) -> None:
    """Start the one-second ticker for a room unless it is already running.

    - No-ops in TESTING mode (tests call ``tick_room`` themselves)
    - Ends on its own once the room has no hosted clocks left
    """
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return
    if room_id in _tickers:
        return
    _tickers.add(room_id)
    app.logger.info(f"[ticker-start] room={room_id}")
    socketio.start_background_task(_worker, app, room_id)


def _worker(app, room_id: str) -> None:
    hb = int(app.config.get('TIMER_HEARTBEAT_SEC', 0))
    started = time.monotonic()
    last_beat = started
    ticks = 0
    try:
        while _room_has_clocks(room_id):
            # sleep to the next whole second since start so the clock does not drift
            ticks += 1
            socketio.sleep(max(0.0, started + ticks - time.monotonic()))
            with app.app_context():
                tick_room(room_id)
            if hb > 0 and time.monotonic() - last_beat >= hb:
                last_beat = time.monotonic()
                app.logger.info(f"[ticker-heartbeat] room={room_id} ticks={ticks}")
    finally:
        _tickers.discard(room_id)
        app.logger.info(f"[ticker-stop] room={room_id} ticks={ticks}")


def reset() -> None:
    """Close everything hosted in this process."""
    for room_id in {k[0] for k in _sessions} | set(_countdowns):
        close_room(room_id)
    _tickers.clear()
