from typing import Iterable, List, NamedTuple, Optional

BASE_POINTS = 100
MAX_BONUS_SECONDS = 60


class RankedPlayer(NamedTuple):
    nickname: str
    score: int
    rank: int


def compute_delta(is_correct: bool, seconds_remaining: int, doubled: bool) -> int:
    """Score awarded for one answer.

    A wrong (or missing) answer is worth nothing. A correct one earns the
    base points plus one point per second left on the clock, doubled when
    the double-points help tool was armed for this question.
    """
    seconds_remaining = int(seconds_remaining)
    if not 0 <= seconds_remaining <= MAX_BONUS_SECONDS:
        raise ValueError(f'seconds_remaining must be within 0..{MAX_BONUS_SECONDS}, got {seconds_remaining}')
    if not is_correct:
        return 0
    points = BASE_POINTS + seconds_remaining
    if doubled:
        points *= 2
    return points


def rank(players: Iterable) -> List[RankedPlayer]:
    """Competition ranking of players by score.

    Accepts objects or mappings with ``nickname`` and ``score``. Equal scores
    share a rank and the next lower score takes its 1-based position, so
    80, 80, 50 ranks 1, 1, 3. The sort is stable: ties keep input order.
    """
    rows = [(_field(p, 'nickname'), int(_field(p, 'score') or 0)) for p in players]
    ordered = sorted(rows, key=lambda row: -row[1])
    ranking: List[RankedPlayer] = []
    for position, (nickname, score) in enumerate(ordered, start=1):
        if ranking and ranking[-1].score == score:
            ranking.append(RankedPlayer(nickname, score, ranking[-1].rank))
        else:
            ranking.append(RankedPlayer(nickname, score, position))
    return ranking


def rank_of(ranking: List[RankedPlayer], nickname: str) -> Optional[int]:
    for entry in ranking:
        if entry.nickname == nickname:
            return entry.rank
    return None


def _field(item, name):
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name)
