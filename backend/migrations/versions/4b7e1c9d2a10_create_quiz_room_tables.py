"""create room, player, user_profile and question tables

Revision ID: 4b7e1c9d2a10
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4b7e1c9d2a10'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    if 'room' not in existing_tables:
        op.create_table(
            'room',
            sa.Column('id', sa.String(length=32), primary_key=True),
            sa.Column('code', sa.String(length=5), nullable=False),
            sa.Column('status', sa.String(length=16), nullable=False, server_default='waiting'),
            sa.Column('phase', sa.String(length=16), nullable=False, server_default='waiting'),
            sa.Column('level', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('current_q', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('submitted_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('admin_id', sa.String(length=64), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index('ix_room_code', 'room', ['code'])
        op.create_index('ix_room_admin_id', 'room', ['admin_id'])

    if 'player' not in existing_tables:
        op.create_table(
            'player',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('room_id', sa.String(length=32), sa.ForeignKey('room.id'), nullable=False),
            sa.Column('nickname', sa.String(length=64), nullable=False),
            sa.Column('role', sa.String(length=16), nullable=False, server_default='user'),
            sa.Column('score', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('answer', sa.Integer(), nullable=True),
            sa.Column('answered_q', sa.String(length=16), nullable=True),
            sa.Column('avatar', sa.String(length=255), nullable=True),
            sa.Column('help_tools', sa.Text(), nullable=True),
            sa.Column('double_points_q', sa.String(length=16), nullable=True),
            sa.UniqueConstraint('room_id', 'nickname', name='uq_player_room_nickname'),
        )
        op.create_index('ix_player_room_id', 'player', ['room_id'])

    if 'user_profile' not in existing_tables:
        op.create_table(
            'user_profile',
            sa.Column('nickname', sa.String(length=64), primary_key=True),
            sa.Column('role', sa.String(length=16), nullable=False, server_default='user'),
            sa.Column('avatar', sa.String(length=255), nullable=True),
            sa.Column('level', sa.Integer(), nullable=False, server_default='1'),
        )

    if 'question' not in existing_tables:
        op.create_table(
            'question',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('level', sa.Integer(), nullable=False),
            sa.Column('order', sa.Integer(), nullable=False),
            sa.Column('text', sa.Text(), nullable=False),
            sa.Column('options', sa.Text(), nullable=False),
            sa.Column('correct_index', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('background_img', sa.String(length=512), nullable=True),
            sa.Column('slide_url', sa.String(length=512), nullable=True),
        )
        op.create_index('ix_question_level_order', 'question', ['level', 'order'])


def downgrade():
    bind = op.get_bind()
    existing_tables = set(sa.inspect(bind).get_table_names())

    # players reference rooms, so they go first
    for table in ('player', 'question', 'user_profile', 'room'):
        if table in existing_tables:
            op.drop_table(table)
