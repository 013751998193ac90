"""baseline schema: users, books, sessions, turns, recordings, images, tombstones

Revision ID: a1f0c2d9e4b7
Revises:
Create Date: 2026-10-17 09:12:40.118402

"""
from typing import Sequence, Union

from alembic import op
from sqlalchemy.engine import Connection

from memoir.database import Base
from memoir import models  # noqa: F401

# revision identifiers, used by Alembic.
revision: str = "a1f0c2d9e4b7"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all database objects for the current metadata."""
    bind: Connection = op.get_bind()
    Base.metadata.create_all(bind)


def downgrade() -> None:
    """Drop all database objects managed by the metadata."""
    bind: Connection = op.get_bind()
    Base.metadata.drop_all(bind)
