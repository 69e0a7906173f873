"""create timer_snapshot table

Revision ID: 5c2d9a7e41b3
Revises:
Create Date: 2025-10-02 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c2d9a7e41b3'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    if 'timer_snapshot' in set(insp.get_table_names()):
        return
    op.create_table(
        'timer_snapshot',
        sa.Column('user_id', sa.String(length=128), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=True),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('last_save_timestamp', sa.Float(), nullable=False),
    )
    with op.batch_alter_table('timer_snapshot') as batch_op:
        batch_op.create_index('ix_timer_snapshot_last_save_timestamp', ['last_save_timestamp'], unique=False)


def downgrade():
    with op.batch_alter_table('timer_snapshot') as batch_op:
        batch_op.drop_index('ix_timer_snapshot_last_save_timestamp')
    op.drop_table('timer_snapshot')
