"""baseline

Revision ID: 20261001090000
Revises:
Create Date: 2026-10-01T09:00:00Z
"""

from alembic import op
import sqlalchemy as sa  # noqa: F401

# revision identifiers, used by Alembic.
revision = "20261001090000"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # eduflow.db.models.__init__ imports every model file.
    from eduflow.db.base import Base
    import eduflow.db.models  # noqa: F401

    bind = op.get_bind()
    Base.metadata.create_all(bind=bind)


def downgrade() -> None:
    # Downgrading baseline is a no-op to avoid accidental data loss.
    pass
