"""company invitations

Revision ID: 8c3f2d6a1b90
Revises: 5e1a0c9b7d21
Create Date: 2026-10-19 15:02:11.402377

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from app.cvms.models import Invitation


# revision identifiers, used by Alembic.
revision: str = '8c3f2d6a1b90'
down_revision: Union[str, Sequence[str], None] = '5e1a0c9b7d21'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add the invitations table (already present when the initial revision ran on these models)."""
    conn = op.get_bind()
    if "invitations" not in set(sa.inspect(conn).get_table_names()):
        Invitation.__table__.create(bind=conn)


def downgrade() -> None:
    conn = op.get_bind()
    if "invitations" in set(sa.inspect(conn).get_table_names()):
        Invitation.__table__.drop(bind=conn)
