"""initial cvms schema

Revision ID: 5e1a0c9b7d21
Revises:
Create Date: 2026-10-19 09:12:40.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from app.cvms.models import Base


# revision identifiers, used by Alembic.
revision: str = '5e1a0c9b7d21'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create every table of the models (tenancy, accounts, audit and the validation modules)."""
    # Idempotent: databases bootstrapped with create_all keep their tables.
    conn = op.get_bind()
    existing_tables = set(sa.inspect(conn).get_table_names())
    for table in Base.metadata.sorted_tables:
        if table.name not in existing_tables:
            table.create(bind=conn)


def downgrade() -> None:
    conn = op.get_bind()
    existing_tables = set(sa.inspect(conn).get_table_names())
    for table in reversed(Base.metadata.sorted_tables):
        if table.name in existing_tables:
            table.drop(bind=conn)
