"""initial schema - orgs, vendors, policies, renewals, alerts, rules

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-18

Creates every table from the models, including the partial unique index
that keeps at most one open alert per (org, vendor, type, rule).
"""
from typing import Sequence, Union

from alembic import op

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables. checkfirst=True keeps it safe on a partially built DB."""
    from coverwatch.models import Base

    Base.metadata.create_all(bind=op.get_bind(), checkfirst=True)


def downgrade() -> None:
    """Drop all tables. DESTRUCTIVE — dev/test only."""
    from coverwatch.models import Base

    Base.metadata.drop_all(bind=op.get_bind())
