"""Add document_counters table for atomic document numbering

Numbers used to be computed by scanning existing quotes and invoices, which
let two concurrent requests pick the same number. Each (kind, client code)
now has a counter row that is incremented in place.

Existing numbers (D-NOVA-007, F-NOVA-003, ...) are scanned once to seed the
counters so numbering continues where it left off.

Revision ID: 002_document_counters
Revises: 001_baseline
Create Date: 2026-10-15

"""
import re
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '002_document_counters'
down_revision: Union[str, None] = '001_baseline'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

NUMBER_PATTERN = re.compile(r'^([DF])-(.+)-(\d+)$')
KINDS = {'D': 'quote', 'F': 'invoice'}


def upgrade() -> None:
    """Create the counters table and seed it from existing numbers."""
    bind = op.get_bind()

    # 1. create_all() may already have created the table on a fresh install
    if not sa.inspect(bind).has_table('document_counters'):
        op.create_table(
            'document_counters',
            sa.Column('kind', sa.String(), nullable=False),
            sa.Column('client_code', sa.String(), nullable=False),
            sa.Column('last_value', sa.Integer(), nullable=False, server_default='0'),
            sa.PrimaryKeyConstraint('kind', 'client_code'),
        )

    # 2. Highest sequence per (kind, client code) among stored documents
    highest = {}
    for table in ('quotes', 'invoices'):
        for (number,) in bind.execute(sa.text(f"SELECT number FROM {table}")):
            match = NUMBER_PATTERN.match(number or '')
            if not match:
                continue
            key = (KINDS[match.group(1)], match.group(2))
            highest[key] = max(highest.get(key, 0), int(match.group(3)))

    # 3. Seed counters, never moving an existing one backwards
    for (kind, client_code), value in highest.items():
        current = bind.execute(
            sa.text("SELECT last_value FROM document_counters WHERE kind = :kind AND client_code = :code"),
            {"kind": kind, "code": client_code},
        ).scalar()
        if current is None:
            bind.execute(
                sa.text("INSERT INTO document_counters (kind, client_code, last_value) VALUES (:kind, :code, :value)"),
                {"kind": kind, "code": client_code, "value": value},
            )
        elif current < value:
            bind.execute(
                sa.text("UPDATE document_counters SET last_value = :value WHERE kind = :kind AND client_code = :code"),
                {"kind": kind, "code": client_code, "value": value},
            )


def downgrade() -> None:
    """Drop the counters table. Numbering falls back to scanning on next allocation."""
    op.drop_table('document_counters')
