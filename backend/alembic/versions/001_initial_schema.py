"""initial vehicle health check schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from alembic import op

from vhc.database import Base
import vhc.models  # noqa: F401  (registers tables on Base.metadata)


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Schema snapshot of the models at this revision; later changes get explicit ops.
    Base.metadata.create_all(bind=op.get_bind())


def downgrade() -> None:
    Base.metadata.drop_all(bind=op.get_bind())
