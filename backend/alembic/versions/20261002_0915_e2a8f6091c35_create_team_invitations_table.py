"""create_team_invitations_table

Revision ID: e2a8f6091c35
Revises: b71d05e3c4f8
Create Date: 2026-10-02 09:15:00

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ENUM, UUID

# revision identifiers, used by Alembic.
revision: str = "e2a8f6091c35"
down_revision: Union[str, None] = "b71d05e3c4f8"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "team_invitations",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("team_id", UUID(as_uuid=True), nullable=False),
        sa.Column("invited_by", UUID(as_uuid=True), nullable=False),
        sa.Column(
            "role",
            ENUM("owner", "admin", "member", name="team_role", create_type=False),
            nullable=False,
        ),
        sa.Column("token", sa.String(length=255), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "accepted", "declined", "expired", name="invitation_status"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        # One invitation per (email, team); terminal rows are replaced, never duplicated
        sa.UniqueConstraint("email", "team_id", name="uq_team_invitations_email_team"),
    )

    op.create_foreign_key(
        "team_invitations_team_id_fkey",
        "team_invitations",
        "teams",
        ["team_id"],
        ["id"],
        ondelete="CASCADE",
    )
    op.create_foreign_key(
        "team_invitations_invited_by_fkey",
        "team_invitations",
        "users",
        ["invited_by"],
        ["id"],
        ondelete="CASCADE",
    )

    op.create_index("ix_team_invitations_team_id", "team_invitations", ["team_id"])
    op.create_index("ix_team_invitations_token", "team_invitations", ["token"], unique=True)
    op.create_index("ix_team_invitations_email", "team_invitations", ["email"])
    op.create_index("ix_team_invitations_status", "team_invitations", ["status"])
    op.create_index("ix_team_invitations_expires_at", "team_invitations", ["expires_at"])


def downgrade() -> None:
    op.drop_index("ix_team_invitations_expires_at", table_name="team_invitations")
    op.drop_index("ix_team_invitations_status", table_name="team_invitations")
    op.drop_index("ix_team_invitations_email", table_name="team_invitations")
    op.drop_index("ix_team_invitations_token", table_name="team_invitations")
    op.drop_index("ix_team_invitations_team_id", table_name="team_invitations")

    op.drop_constraint(
        "team_invitations_invited_by_fkey",
        "team_invitations",
        type_="foreignkey",
    )
    op.drop_constraint(
        "team_invitations_team_id_fkey",
        "team_invitations",
        type_="foreignkey",
    )

    op.drop_table("team_invitations")
    sa.Enum(name="invitation_status").drop(op.get_bind(), checkfirst=True)
