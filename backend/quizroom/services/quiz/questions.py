import logging
from typing import List, Optional

from quizroom.errors import ValidationError

from .documents import OPTION_COUNT, QuestionDoc

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('level', 'text', 'options', 'correct_index', 'background_img', 'slide_url')


def clean_question_fields(data: dict, partial: bool = False) -> dict:
    """Validate authored question fields before anything is written."""
    data = data or {}
    unknown = set(data) - set(EDITABLE_FIELDS) - {'order', 'id'}
    if unknown:
        raise ValidationError(f'Unknown question field(s): {", ".join(sorted(unknown))}')
    fields = {k: data[k] for k in EDITABLE_FIELDS if k in data}

    if not partial or 'text' in fields:
        text = (fields.get('text') or '').strip()
        if not text:
            raise ValidationError('Question text is required')
        fields['text'] = text
    if not partial or 'options' in fields:
        options = fields.get('options')
        if not isinstance(options, (list, tuple)) or len(options) != OPTION_COUNT:
            raise ValidationError(f'Exactly {OPTION_COUNT} options are required')
        options = [str(o).strip() if o is not None else '' for o in options]
        if any(not o for o in options):
            raise ValidationError('All options are required')
        fields['options'] = options
    if not partial or 'correct_index' in fields:
        fields['correct_index'] = _int_in(fields.get('correct_index', 0), 'correct_index', 0, OPTION_COUNT - 1)
    if not partial or 'level' in fields:
        fields['level'] = _int_in(fields.get('level', 1), 'level', 1, None)
    return fields


def _int_in(value, name, low, high):
    try:
        value = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f'{name} must be an integer') from exc
    if value < low or (high is not None and value > high):
        raise ValidationError(f'{name} must be between {low} and {high}' if high is not None
                              else f'{name} must be at least {low}')
    return value


class QuestionBank:
    """Question authoring on top of the store.

    Keeps each level's ``order`` values dense: new questions are appended at
    ``max(order) + 1``, and removing or moving a question closes the gap.
    """

    def __init__(self, store):
        self.store = store

    def list(self, level: Optional[int] = None) -> List[QuestionDoc]:
        return self.store.list_questions(level)

    def max_order(self, level: int) -> int:
        orders = [q.order for q in self.store.list_questions(level)]
        return max(orders) if orders else 0

    def add(self, data: dict) -> QuestionDoc:
        fields = clean_question_fields(data)
        fields['order'] = self.max_order(fields['level']) + 1
        question = self.store.upsert_question(None, fields)
        logger.info(f"[question-add] id={question.id} level={question.level} order={question.order}")
        return question

    def update(self, question_id: str, data: dict) -> QuestionDoc:
        current = self.store.get_question_by_id(question_id)
        fields = clean_question_fields(data, partial=True)
        moved = 'level' in fields and fields['level'] != current.level
        if moved:
            fields['order'] = self.max_order(fields['level']) + 1
        question = self.store.upsert_question(question_id, fields)
        if moved:
            self._compact(current.level)
            logger.info(f"[question-move] id={question_id} level {current.level} -> {question.level}")
        return question

    def remove(self, question_id: str) -> None:
        current = self.store.get_question_by_id(question_id)
        self.store.delete_question(question_id)
        self._compact(current.level)
        logger.info(f"[question-remove] id={question_id} level={current.level} order={current.order}")

    def _compact(self, level: int) -> None:
        for position, question in enumerate(self.store.list_questions(level), start=1):
            if question.order != position:
                self.store.upsert_question(question.id, {'order': position})
