import logging
from typing import Iterable, List, Optional

from quizroom.errors import ValidationError

from .documents import OPTION_COUNT, HelpTool, PlayerDoc

logger = logging.getLogger(__name__)


def hidden_answers(correct_index: int, used_tools: Iterable[HelpTool]) -> List[int]:
    """Option indices masked for a player, derived from the used tools.

    reveal-half hides the first two wrong options, reveal-one the first wrong
    option, both in ascending index order. The masks do not add up: when
    both were used, reveal-half wins. Masks stay in force for the rest of
    the room, so each question re-derives them from its own correct index.
    """
    used = {HelpTool(t) for t in used_tools}
    wrong = [i for i in range(OPTION_COUNT) if i != int(correct_index)]
    if HelpTool.REVEAL_HALF in used:
        return wrong[:2]
    if HelpTool.REVEAL_ONE in used:
        return wrong[:1]
    return []


class HelpToolController:
    """One player's one-shot help tools for one room.

    The used flags live on the player's document so a reconnecting player
    gets them back instead of a fresh set.
    """

    def __init__(self, store, room_id: str, nickname: str):
        self.store = store
        self.room_id = room_id
        self.nickname = nickname
        self.used: List[HelpTool] = []
        self.double_points_q: Optional[str] = None

    def sync(self, player: PlayerDoc) -> None:
        self.used = list(player.help_tools)
        self.double_points_q = player.double_points_q

    def is_used(self, tool: HelpTool) -> bool:
        return HelpTool(tool) in self.used

    def available(self) -> List[HelpTool]:
        return [t for t in HelpTool if t not in self.used]

    def use(self, tool, question_key: str, submitted: bool = False) -> None:
        try:
            tool = HelpTool(tool)
        except ValueError as exc:
            raise ValidationError(f'Unknown help tool: {tool}') from exc
        if submitted:
            raise ValidationError('Help tools cannot be used after answering')
        if self.is_used(tool):
            raise ValidationError(f'{tool.value} was already used in this room')
        fields = {'help_tools': self.used + [tool]}
        if tool is HelpTool.DOUBLE_POINTS:
            fields['double_points_q'] = question_key
        player = self.store.upsert_player(self.room_id, self.nickname, fields)
        self.sync(player)
        logger.info(f"[help-tool] room={self.room_id} player={self.nickname} tool={tool.value} q={question_key}")

    def hidden_answers(self, correct_index: int) -> List[int]:
        return hidden_answers(correct_index, self.used)

    def double_points_active(self, question_key: str) -> bool:
        return self.double_points_q is not None and self.double_points_q == question_key
