"""Add item_type to quote and template items, keep subtotals at line precision

item_type marks FREE items (never billed) and A_LA_CARTE add-ons (billed only
while the client keeps them selected). Existing items become SERVICE.

subtotal moves from Numeric(12, 2) to Numeric(14, 4) like the line totals it
sums. Only taxes and the total are rounded to cents.

Revision ID: 003_item_types
Revises: 002_document_counters
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '003_item_types'
down_revision: Union[str, None] = '002_document_counters'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ITEM_TABLES = ('quote_items', 'template_items')
DOCUMENT_TABLES = ('quotes', 'invoices')


def _columns(table):
    return {column['name'] for column in sa.inspect(op.get_bind()).get_columns(table)}


def upgrade() -> None:
    """Add item_type with a SERVICE default and widen subtotal."""
    # create_all() may already have added the column on a fresh install
    for table in ITEM_TABLES:
        if 'item_type' not in _columns(table):
            with op.batch_alter_table(table) as batch_op:
                batch_op.add_column(
                    sa.Column('item_type', sa.String(), nullable=False, server_default='SERVICE')
                )

    for table in DOCUMENT_TABLES:
        with op.batch_alter_table(table) as batch_op:
            batch_op.alter_column(
                'subtotal',
                existing_type=sa.Numeric(12, 2),
                type_=sa.Numeric(14, 4),
                existing_nullable=False,
            )


def downgrade() -> None:
    """Round subtotals back to cents and drop item_type."""
    for table in DOCUMENT_TABLES:
        with op.batch_alter_table(table) as batch_op:
            batch_op.alter_column(
                'subtotal',
                existing_type=sa.Numeric(14, 4),
                type_=sa.Numeric(12, 2),
                existing_nullable=False,
            )

    for table in ITEM_TABLES:
        with op.batch_alter_table(table) as batch_op:
            batch_op.drop_column('item_type')
