"""create_team_members_table

Revision ID: b71d05e3c4f8
Revises: 8c4e2b6a1d93
Create Date: 2026-10-02 09:10:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

revision: str = 'b71d05e3c4f8'
down_revision: Union[str, None] = '8c4e2b6a1d93'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create team_members table with the team_role enum."""
    op.create_table(
        'team_members',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('team_id', UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('role', sa.Enum('owner', 'admin', 'member', name='team_role'), nullable=False),
        sa.Column('joined_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('team_id', 'user_id', name='uq_team_members_team_user'),
    )

    op.create_foreign_key(
        'team_members_team_id_fkey',
        'team_members', 'teams',
        ['team_id'], ['id'],
        ondelete='CASCADE',
    )
    op.create_foreign_key(
        'team_members_user_id_fkey',
        'team_members', 'users',
        ['user_id'], ['id'],
        ondelete='CASCADE',
    )

    op.create_index('ix_team_members_team_id', 'team_members', ['team_id'])
    op.create_index('ix_team_members_user_id', 'team_members', ['user_id'])


def downgrade() -> None:
    """Drop team_members table and role enum."""
    op.drop_index('ix_team_members_user_id', table_name='team_members')
    op.drop_index('ix_team_members_team_id', table_name='team_members')
    op.drop_constraint('team_members_user_id_fkey', 'team_members', type_='foreignkey')
    op.drop_constraint('team_members_team_id_fkey', 'team_members', type_='foreignkey')
    op.drop_table('team_members')
    sa.Enum(name='team_role').drop(op.get_bind(), checkfirst=True)
