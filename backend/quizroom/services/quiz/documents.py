"""
Typed documents read from and written to the room store.

Every read from a store goes through these models so the core never trusts
field presence on loosely-typed rows.
"""
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from quizroom.errors import ValidationError

CODE_LENGTH = 5
OPTION_COUNT = 4


class RoomStatus(str, Enum):
    WAITING = 'waiting'
    IN_PROGRESS = 'in-progress'
    ENDED = 'ended'
    OFF = 'off'


ACTIVE_STATUSES = (RoomStatus.WAITING, RoomStatus.IN_PROGRESS)


class Phase(str, Enum):
    """Step of the question cycle; decides which screen every client shows."""
    WAITING = 'waiting'
    HOME = 'home'
    PLAYING = 'playing'
    RESULT = 'result'
    LEARN = 'learn'
    ENDGAME = 'endgame'


class Role(str, Enum):
    USER = 'user'
    ADMIN = 'admin'


class HelpTool(str, Enum):
    REVEAL_HALF = 'reveal_half'
    REVEAL_ONE = 'reveal_one'
    DOUBLE_POINTS = 'double_points'


def question_key(level: int, order: int) -> str:
    """Address of one question inside a room: ``"<level>:<order>"``."""
    return f'{int(level)}:{int(order)}'


def parse_question_key(key: str) -> Tuple[int, int]:
    level, _, order = key.partition(':')
    return int(level), int(order)


class RoomDoc(BaseModel):
    id: str
    code: str = Field(pattern=r'^[0-9]{5}$')
    status: RoomStatus = RoomStatus.WAITING
    phase: Phase = Phase.WAITING
    level: int = Field(default=1, ge=1)
    # 0 until the first start
    current_q: int = Field(default=0, ge=0)
    submitted_count: int = Field(default=0, ge=0)
    admin_id: str
    created_at: Optional[datetime] = None

    @property
    def question_key(self) -> str:
        return question_key(self.level, self.current_q or 1)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class PlayerDoc(BaseModel):
    nickname: str = Field(min_length=1, max_length=64)
    role: Role = Role.USER
    score: int = Field(default=0, ge=0)
    answer: Optional[int] = Field(default=None, ge=0, lt=OPTION_COUNT)
    answered_q: Optional[str] = None
    avatar: Optional[str] = None
    help_tools: List[HelpTool] = Field(default_factory=list)
    double_points_q: Optional[str] = None


class UserProfileDoc(BaseModel):
    nickname: str = Field(min_length=1, max_length=64)
    role: Role = Role.USER
    avatar: Optional[str] = None
    level: int = Field(default=1, ge=1)


class QuestionDoc(BaseModel):
    id: str
    level: int = Field(ge=1)
    order: int = Field(ge=1)
    text: str = Field(min_length=1)
    options: List[str]
    correct_index: int = Field(ge=0, lt=OPTION_COUNT)
    background_img: Optional[str] = None
    slide_url: Optional[str] = None

    @field_validator('options')
    @classmethod
    def _four_options(cls, v):
        if len(v) != OPTION_COUNT or any(not (o or '').strip() for o in v):
            raise ValueError(f'exactly {OPTION_COUNT} non-empty options are required')
        return v

    def public_dict(self, reveal: bool = False) -> dict:
        """Question as shown to a player; the answer only once revealed."""
        data = self.model_dump(mode='json')
        if not reveal:
            data.pop('correct_index', None)
        return data


class ChangeEvent(BaseModel):
    """Full-state notification delivered to store subscribers."""
    kind: Literal['room', 'players', 'profile']
    room_id: Optional[str] = None
    nickname: Optional[str] = None
    room: Optional[RoomDoc] = None
    players: List[PlayerDoc] = Field(default_factory=list)
    profile: Optional[UserProfileDoc] = None
    deleted: bool = False


def validate_doc(model, data):
    """Build ``model`` from a store row, mapping failures to ``ValidationError``."""
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(f'Invalid {model.__name__}: {exc.errors()[0]["msg"]}') from exc
