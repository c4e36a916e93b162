from flask import Blueprint, jsonify, request, current_app
from quizroom import get_store
from quizroom.errors import QuizError, ValidationError
from quizroom.services.quiz.questions import QuestionBank


questions = Blueprint('questions', __name__)


@questions.errorhandler(QuizError)
def handle_quiz_error(exc):
    current_app.logger.info(f"[api-error] {request.method} {request.path} {exc.__class__.__name__}: {exc.message}")
    return jsonify(exc.to_dict()), exc.status_code


def _bank() -> QuestionBank:
    return QuestionBank(get_store())


@questions.route('', methods=['GET'])
def list_questions():
    level = request.args.get('level')
    if level is not None:
        try:
            level = int(level)
        except ValueError as exc:
            raise ValidationError('level must be an integer') from exc
    return jsonify([q.model_dump(mode='json') for q in _bank().list(level)])


@questions.route('/<string:question_id>', methods=['GET'])
def get_question(question_id):
    return jsonify(get_store().get_question_by_id(question_id).model_dump(mode='json'))


@questions.route('', methods=['POST'])
def create_question():
    question = _bank().add(request.get_json(silent=True) or {})
    return jsonify(question.model_dump(mode='json')), 201


@questions.route('/<string:question_id>', methods=['PATCH', 'PUT'])
def update_question(question_id):
    question = _bank().update(question_id, request.get_json(silent=True) or {})
    return jsonify(question.model_dump(mode='json'))


@questions.route('/<string:question_id>', methods=['DELETE'])
def delete_question(question_id):
    _bank().remove(question_id)
    return jsonify({'message': 'Question deleted', 'id': question_id})
