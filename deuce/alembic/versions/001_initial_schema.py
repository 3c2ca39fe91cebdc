"""001_initial_schema

Revision ID: 001
Revises:
Create Date: 2026-10-16 09:00:00.000000

Creates every table of the match engine: users, divisions and members,
matches with participants, invitations, time slots and scores, derived
results, ratings and standings, disputes, walkovers, admin actions,
penalties, notifications and recalculation jobs.
"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables from scratch."""
    from deuce.database.db import Base
    from deuce.database import models  # noqa: F401

    bind = op.get_bind()
    Base.metadata.create_all(bind=bind, checkfirst=True)


def downgrade() -> None:
    """Drop all tables."""
    from deuce.database.db import Base
    from deuce.database import models  # noqa: F401

    bind = op.get_bind()
    Base.metadata.drop_all(bind=bind, checkfirst=True)
