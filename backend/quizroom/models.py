from quizroom import db
from datetime import datetime, timezone
import json
import uuid


def _new_room_id():
    return uuid.uuid4().hex


def _utcnow():
    return datetime.now(timezone.utc)


class Room(db.Model):
    __tablename__ = 'room'
    id = db.Column(db.String(32), primary_key=True, default=_new_room_id)
    code = db.Column(db.String(5), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default='waiting')  # waiting, in-progress, ended, off
    phase = db.Column(db.String(16), nullable=False, default='waiting')  # waiting, home, playing, result, learn, endgame
    level = db.Column(db.Integer, nullable=False, default=1)
    current_q = db.Column(db.Integer, nullable=False, default=0)
    submitted_count = db.Column(db.Integer, nullable=False, default=0)
    admin_id = db.Column(db.String(64), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    players = db.relationship(
        'Player', back_populates='room', cascade='all, delete-orphan', order_by='Player.id'
    )

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'status': self.status,
            'phase': self.phase,
            'level': self.level,
            'current_q': self.current_q,
            'submitted_count': self.submitted_count,
            'admin_id': self.admin_id,
            'created_at': self.created_at,
        }


class Player(db.Model):
    __tablename__ = 'player'
    __table_args__ = (db.UniqueConstraint('room_id', 'nickname', name='uq_player_room_nickname'),)
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.String(32), db.ForeignKey('room.id'), nullable=False, index=True)
    nickname = db.Column(db.String(64), nullable=False)
    role = db.Column(db.String(16), nullable=False, default='user')
    score = db.Column(db.Integer, nullable=False, default=0)
    answer = db.Column(db.Integer, nullable=True)
    answered_q = db.Column(db.String(16), nullable=True)  # "<level>:<order>" of the last recorded answer
    avatar = db.Column(db.String(255), nullable=True)
    help_tools = db.Column(db.Text, nullable=True)  # JSON-encoded list of used tools
    double_points_q = db.Column(db.String(16), nullable=True)
    room = db.relationship('Room', back_populates='players')

    def to_dict(self):
        return {
            'nickname': self.nickname,
            'role': self.role,
            'score': self.score or 0,
            'answer': self.answer,
            'answered_q': self.answered_q,
            'avatar': self.avatar,
            'help_tools': json.loads(self.help_tools) if self.help_tools else [],
            'double_points_q': self.double_points_q,
        }


class UserProfile(db.Model):
    __tablename__ = 'user_profile'
    nickname = db.Column(db.String(64), primary_key=True)
    role = db.Column(db.String(16), nullable=False, default='user')
    avatar = db.Column(db.String(255), nullable=True)
    level = db.Column(db.Integer, nullable=False, default=1)

    def to_dict(self):
        return {
            'nickname': self.nickname,
            'role': self.role,
            'avatar': self.avatar,
            'level': self.level,
        }


class Question(db.Model):
    __tablename__ = 'question'
    __table_args__ = (db.Index('ix_question_level_order', 'level', 'order'),)
    id = db.Column(db.Integer, primary_key=True)
    level = db.Column(db.Integer, nullable=False)
    order = db.Column(db.Integer, nullable=False)
    text = db.Column(db.Text, nullable=False)
    options = db.Column(db.Text, nullable=False)  # JSON-encoded list of 4 strings
    correct_index = db.Column(db.Integer, nullable=False, default=0)
    background_img = db.Column(db.String(512), nullable=True)
    slide_url = db.Column(db.String(512), nullable=True)

    def to_dict(self):
        return {
            'id': str(self.id),
            'level': self.level,
            'order': self.order,
            'text': self.text,
            'options': json.loads(self.options) if self.options else [],
            'correct_index': self.correct_index,
            'background_img': self.background_img,
            'slide_url': self.slide_url,
        }
