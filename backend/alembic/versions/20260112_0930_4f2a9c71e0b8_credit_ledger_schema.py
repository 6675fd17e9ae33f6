"""Credit ledger schema: accounts and ledger_entries

Revision ID: 4f2a9c71e0b8
Revises:
Create Date: 2026-01-12 09:30:41.218406

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4f2a9c71e0b8'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

LEDGER_EVENT_TYPES = (
    'credit_pack_purchase',
    'admin_adjustment',
    'admin_refund_credit_pack',
    'admin_refund_marker',
    'in_person_scan_completed',
    'admin_refund',
    'admin_force_unlock',
)


def upgrade() -> None:
    """Create the accounts and ledger_entries tables."""
    # 1. Accounts table (balance is a projection of the ledger)
    op.create_table(
        'accounts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('identity_id', sa.String(length=128), nullable=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('credit_balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('ledger_sequence', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stripe_customer_id', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('credit_balance >= 0', name='ck_accounts_credit_balance_non_negative'),
    )
    op.create_index(op.f('ix_accounts_id'), 'accounts', ['id'])
    op.create_index(op.f('ix_accounts_created_at'), 'accounts', ['created_at'])
    op.create_index(op.f('ix_accounts_identity_id'), 'accounts', ['identity_id'], unique=True)
    op.create_index(op.f('ix_accounts_email'), 'accounts', ['email'], unique=True)
    op.create_index(op.f('ix_accounts_stripe_customer_id'), 'accounts', ['stripe_customer_id'])

    # 2. Ledger entries (append-only; reference is the idempotency key)
    op.create_table(
        'ledger_entries',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column(
            'event_type',
            sa.Enum(*LEDGER_EVENT_TYPES, name='ledgereventtype', native_enum=False, length=64),
            nullable=False,
        ),
        sa.Column('credits_delta', sa.Integer(), nullable=False),
        sa.Column('balance_after', sa.Integer(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('reference', sa.String(length=512), nullable=False),
        sa.Column('note', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('reference', name='uq_ledger_entries_reference'),
        sa.UniqueConstraint('account_id', 'sequence', name='uq_ledger_entries_account_sequence'),
        sa.CheckConstraint('balance_after >= 0', name='ck_ledger_entries_balance_after_non_negative'),
    )
    op.create_index(op.f('ix_ledger_entries_id'), 'ledger_entries', ['id'])
    op.create_index(op.f('ix_ledger_entries_created_at'), 'ledger_entries', ['created_at'])
    op.create_index(op.f('ix_ledger_entries_account_id'), 'ledger_entries', ['account_id'])
    op.create_index(op.f('ix_ledger_entries_event_type'), 'ledger_entries', ['event_type'])


def downgrade() -> None:
    """Drop the credit ledger tables."""
    op.drop_table('ledger_entries')
    op.drop_table('accounts')
