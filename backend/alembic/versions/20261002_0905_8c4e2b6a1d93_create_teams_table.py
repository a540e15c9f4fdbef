"""create_teams_table

Revision ID: 8c4e2b6a1d93
Revises: 3f1a9c2d7b10
Create Date: 2026-10-02 09:05:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = '8c4e2b6a1d93'
down_revision: Union[str, None] = '3f1a9c2d7b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create teams table."""
    op.create_table(
        'teams',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('owner_id', UUID(as_uuid=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_foreign_key(
        'teams_owner_id_fkey',
        'teams', 'users',
        ['owner_id'], ['id'],
        ondelete='CASCADE',
    )
    op.create_index('ix_teams_owner_id', 'teams', ['owner_id'])


def downgrade() -> None:
    """Drop teams table."""
    op.drop_index('ix_teams_owner_id', table_name='teams')
    op.drop_constraint('teams_owner_id_fkey', 'teams', type_='foreignkey')
    op.drop_table('teams')
