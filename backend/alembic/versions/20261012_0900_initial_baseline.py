"""Initial baseline - stamps existing database

Tables are created by Base.metadata.create_all() at startup (see main.py).
This migration establishes the baseline so later schema changes can build on it.

Revision ID: 001_baseline
Revises:
Create Date: 2026-10-12

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_baseline'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Baseline migration - no changes needed.

    Tables at this point:
    - clients, projects, studio_settings
    - quotes, quote_sections, quote_items
    - invoices, invoice_items
    - quote_templates, template_sections, template_items
    - notifications
    """
    pass


def downgrade() -> None:
    """Cannot downgrade from baseline."""
    pass
