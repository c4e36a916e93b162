import logging
import time
from typing import Callable, Optional

from quizroom.errors import TransientStoreError

logger = logging.getLogger(__name__)


class RoomFeed:
    """One store subscription that re-subscribes itself after a drop.

    ``subscribe`` is a bound store method such as
    ``functools.partial(store.subscribe_room, room_id)``; it is called with
    ``(on_change, on_error)`` and returns an unsubscribe callable. Each
    successful (re)subscription delivers a full snapshot, which the owner
    treats as authoritative.
    """

    def __init__(self, name: str, subscribe: Callable, on_change: Callable,
                 retries: int = 5, backoff: float = 0.5, sleep: Callable[[float], None] = time.sleep):
        self.name = name
        self._subscribe = subscribe
        self._on_change = on_change
        self.retries = retries
        self.backoff = backoff
        self._sleep = sleep
        self._unsubscribe: Optional[Callable[[], None]] = None
        self.closed = False
        self.reconnects = 0

    @property
    def connected(self) -> bool:
        return self._unsubscribe is not None

    def open(self) -> None:
        attempt = 0
        while not self.closed:
            try:
                self._unsubscribe = self._subscribe(self._deliver, self._on_error)
                return
            except TransientStoreError:
                if attempt >= self.retries:
                    logger.error(f"[feed-give-up] feed={self.name} attempts={attempt + 1}")
                    raise
                delay = self.backoff * (2 ** attempt)
                logger.warning(f"[feed-retry] feed={self.name} attempt={attempt + 1} delay={delay}s")
                self._sleep(delay)
                attempt += 1

    def _deliver(self, event) -> None:
        if not self.closed:
            self._on_change(event)

    def _on_error(self, exc: TransientStoreError) -> None:
        self._unsubscribe = None
        if self.closed:
            return
        self.reconnects += 1
        logger.warning(f"[feed-drop] feed={self.name} reason={exc.message} reconnect={self.reconnects}")
        self.open()

    def close(self) -> None:
        self.closed = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
