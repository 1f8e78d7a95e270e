"""Create interessenten_email_verlauf

Revision ID: c4d5e6f7a8b9
Revises:
Create Date: 2026-10-16 10:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

revision = 'c4d5e6f7a8b9'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'interessenten_email_verlauf',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('interessent_id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('screenshot_path', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('screenshot_path'),
    )
    op.create_index(
        'ix_interessenten_email_verlauf_interessent_id',
        'interessenten_email_verlauf',
        ['interessent_id'],
    )
    op.create_index(
        'ix_email_verlauf_owner',
        'interessenten_email_verlauf',
        ['user_id', 'interessent_id'],
    )


def downgrade() -> None:
    op.drop_index('ix_email_verlauf_owner', table_name='interessenten_email_verlauf')
    op.drop_index('ix_interessenten_email_verlauf_interessent_id', table_name='interessenten_email_verlauf')
    op.drop_table('interessenten_email_verlauf')
