"""Add business_hours and blackouts tables

Revision ID: b1c2d3e4f5a6
Revises: a0b1c2d3e4f5
Create Date: 2025-11-10 09:30:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = 'b1c2d3e4f5a6'
down_revision: str | None = 'a0b1c2d3e4f5'
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table('business_hours',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('is_closed', sa.Boolean(), nullable=False),
        sa.Column('start_hour', sa.Integer(), nullable=True),
        sa.Column('start_minute', sa.Integer(), nullable=False),
        sa.Column('end_hour', sa.Integer(), nullable=True),
        sa.Column('end_minute', sa.Integer(), nullable=False),
        sa.CheckConstraint('day_of_week >= 0 AND day_of_week <= 6', name='valid_day_of_week'),
        sa.CheckConstraint('start_hour IS NULL OR (start_hour >= 0 AND start_hour <= 23)', name='valid_start_hour'),
        sa.CheckConstraint('end_hour IS NULL OR (end_hour >= 0 AND end_hour <= 23)', name='valid_end_hour'),
        sa.CheckConstraint(
            'start_minute >= 0 AND start_minute <= 59 AND end_minute >= 0 AND end_minute <= 59',
            name='valid_minutes',
        ),
        sa.CheckConstraint(
            'is_closed OR (start_hour IS NOT NULL AND end_hour IS NOT NULL)',
            name='open_day_has_hours',
        ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('day_of_week')
    )

    # Sao Paulo salon week: Monday-Saturday 09:00-18:00, closed on Sunday
    op.execute("""
        INSERT INTO business_hours (id, day_of_week, is_closed, start_hour, start_minute, end_hour, end_minute)
        SELECT gen_random_uuid(), d, d = 6, CASE WHEN d = 6 THEN NULL ELSE 9 END, 0,
               CASE WHEN d = 6 THEN NULL ELSE 18 END, 0
        FROM generate_series(0, 6) AS d;
    """)

    op.create_table('blackouts',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('staff_id', sa.UUID(), nullable=True),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('start_time', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('end_time', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.CheckConstraint('end_time > start_time', name='check_blackout_end_after_start'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_blackouts_staff_id', 'blackouts', ['staff_id'], unique=False)
    op.create_index('idx_blackouts_range', 'blackouts', ['start_time', 'end_time'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_blackouts_range', table_name='blackouts')
    op.drop_index('ix_blackouts_staff_id', table_name='blackouts')
    op.drop_table('blackouts')
    op.drop_table('business_hours')
