"""Initial schema - bridge tables

Revision ID: 001
Revises: 
Create Date: 2025-06-02 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False, comment='Row creation time (UTC)'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, comment='Last update time (UTC)'),
    ]


def _settlement_columns():
    return [
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('account', sa.String(length=35), nullable=False, comment='Destination XRPL address'),
        sa.Column('send_token', sa.String(length=40), nullable=False, comment='Currency paid out'),
        sa.Column('send_amount', sa.DECIMAL(precision=20, scale=6), nullable=False, comment='Amount paid out'),
        sa.Column('status', sa.String(length=20), nullable=False, comment='Settlement status'),
        sa.Column('fail_reason', sa.Text(), nullable=True, comment='Rejection reason, ledger result code or error message'),
        sa.Column('processing_started_at', sa.DateTime(), nullable=True, comment='When a processor claimed the row'),
    ]


def upgrade() -> None:
    # Staking state
    op.create_table('stakes',
        sa.Column('xrpl_address', sa.String(length=35), nullable=False, comment="Staker's classic XRPL address"),
        sa.Column('staked_amount', sa.DECIMAL(precision=20, scale=6), nullable=False, comment='Staked principal in stake token'),
        sa.Column('pocket_reward', sa.DECIMAL(precision=20, scale=6), nullable=False, comment='Accrued but unclaimed reward'),
        sa.Column('last_claim_at', sa.DateTime(), nullable=True, comment='Last successful claim authorization'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('xrpl_address')
    )

    op.create_table('reward_pools',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('stake_token', sa.String(length=40), nullable=False, comment='Token being staked'),
        sa.Column('reward_token', sa.String(length=40), nullable=False, comment='Token paid as reward'),
        sa.Column('period_start', sa.DateTime(), nullable=False, comment='Start of the reward period'),
        sa.Column('duration_days', sa.Integer(), nullable=False, comment='Length of the reward period in days'),
        sa.Column('total_reward', sa.DECIMAL(precision=20, scale=6), nullable=False, comment='Reward budget for the period'),
        sa.Column('status', sa.String(length=20), nullable=False, comment='active or ended'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )

    # Settlement queues
    op.create_table('swap_requests',
        *_settlement_columns(),
        sa.Column('receive_token', sa.String(length=40), nullable=False, comment='Currency received from the user'),
        sa.Column('receive_amount', sa.DECIMAL(precision=20, scale=6), nullable=False, comment='Amount received from the user'),
        sa.Column('source_tx_hash', sa.String(length=64), nullable=True, comment='Hash of the inbound payment that created this request'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_tx_hash')
    )
    op.create_table('unstake_requests',
        *_settlement_columns(),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table('claim_requests',
        *_settlement_columns(),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )

    # Audit ledger
    op.create_table('transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('xrpl_address', sa.String(length=35), nullable=False, comment='User address'),
        sa.Column('tx_type', sa.String(length=20), nullable=False, comment='Movement type'),
        sa.Column('amount', sa.DECIMAL(precision=20, scale=6), nullable=False, comment='Amount moved'),
        sa.Column('symbol', sa.String(length=40), nullable=False, comment='Currency code'),
        sa.Column('tx_hash', sa.String(length=64), nullable=False, comment='Ledger transaction hash'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tx_hash')
    )

    # Authorization intents
    op.create_table('nonce_requests',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('xrpl_address', sa.String(length=35), nullable=False, comment='Requesting address'),
        sa.Column('nonce', sa.String(length=64), nullable=False, comment='Random nonce embedded in the sign request'),
        sa.Column('request_type', sa.String(length=20), nullable=False, comment='unstake or claim'),
        sa.Column('amount', sa.DECIMAL(precision=20, scale=6), nullable=False, comment='Authorized amount'),
        sa.Column('uuid', sa.String(length=64), nullable=False, comment='External signing-session id'),
        sa.Column('status', sa.String(length=20), nullable=False, comment='pending or verified'),
        sa.Column('verified_at', sa.DateTime(), nullable=True, comment='When the signature was accepted'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('uuid')
    )

    op.create_table('exchange_rates',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('swap_type', sa.String(length=40), nullable=False, comment='Pair identifier'),
        sa.Column('rate', sa.DECIMAL(precision=20, scale=6), nullable=False, comment='Current rate'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('swap_type')
    )

    # Create indexes
    op.create_index(
        'uq_reward_pool_active_pair', 'reward_pools', ['stake_token', 'reward_token'],
        unique=True, postgresql_where=sa.text("status = 'active'"), sqlite_where=sa.text("status = 'active'")
    )
    op.create_index('idx_reward_pool_pair_status', 'reward_pools', ['stake_token', 'reward_token', 'status'])

    for table in ('swap_requests', 'unstake_requests', 'claim_requests'):
        op.create_index(f'idx_{table}_status_id', table, ['status', 'id'])
        op.create_index(f'idx_{table}_account_created', table, ['account', 'created_at'])

    op.create_index('idx_transactions_address_created', 'transactions', ['xrpl_address', 'created_at'])
    op.create_index('idx_nonce_requests_address_status', 'nonce_requests', ['xrpl_address', 'status'])


def downgrade() -> None:
    # Drop indexes
    op.drop_index('idx_nonce_requests_address_status', table_name='nonce_requests')
    op.drop_index('idx_transactions_address_created', table_name='transactions')

    for table in ('swap_requests', 'unstake_requests', 'claim_requests'):
        op.drop_index(f'idx_{table}_account_created', table_name=table)
        op.drop_index(f'idx_{table}_status_id', table_name=table)

    op.drop_index('idx_reward_pool_pair_status', table_name='reward_pools')
    op.drop_index('uq_reward_pool_active_pair', table_name='reward_pools')

    # Drop tables
    op.drop_table('exchange_rates')
    op.drop_table('nonce_requests')
    op.drop_table('transactions')
    op.drop_table('claim_requests')
    op.drop_table('unstake_requests')
    op.drop_table('swap_requests')
    op.drop_table('reward_pools')
    op.drop_table('stakes')
