"""add group invitations

Revision ID: 20261019120000
Revises: 20261001090000
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

# revision identifiers, used by Alembic.
revision = "20261019120000"
down_revision = "20261001090000"
branch_labels = None
depends_on = None

_ROLES = ("OWNER", "ADMIN", "TEACHER", "TIME_TEACHER", "STUDENT")
_STATUSES = ("PENDING", "ACCEPTED", "REJECTED", "EXPIRED")


def upgrade() -> None:
    bind = op.get_bind()
    insp = inspect(bind)

    # fresh installs already get the table from the baseline create_all
    if "invitations" in insp.get_table_names():
        return

    op.create_table(
        "invitations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("group_id", sa.Integer(), sa.ForeignKey("groups.id"), nullable=False),
        sa.Column("inviter_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("invitee_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("email", sa.String(length=200), nullable=False),
        sa.Column("role", sa.Enum(*_ROLES, name="grouprole"), nullable=False),
        sa.Column("message", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.Enum(*_STATUSES, name="invitationstatus"), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("responded_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_invitations_group_id", "invitations", ["group_id"])
    op.create_index("ix_invitations_inviter_id", "invitations", ["inviter_id"])
    op.create_index("ix_invitations_invitee_id", "invitations", ["invitee_id"])
    op.create_index("ix_invitations_email", "invitations", ["email"])
    op.create_index("ix_invitations_status", "invitations", ["status"])
    op.create_index("ix_invitations_expires_at", "invitations", ["expires_at"])


def downgrade() -> None:
    for col in ("expires_at", "status", "email", "invitee_id", "inviter_id", "group_id"):
        op.drop_index(f"ix_invitations_{col}", table_name="invitations")
    op.drop_table("invitations")
