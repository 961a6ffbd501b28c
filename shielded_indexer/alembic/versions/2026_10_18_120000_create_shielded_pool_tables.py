"""create_shielded_pool_tables

Revision ID: 2026_10_18_120000
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '2026_10_18_120000'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute('CREATE SCHEMA IF NOT EXISTS domain')
    op.execute('CREATE SCHEMA IF NOT EXISTS ingest')

    op.create_table(
        'nullifiers',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('block_timestamp', sa.BigInteger(), nullable=False),
        sa.Column('transaction_hash', postgresql.BYTEA(), nullable=False),
        sa.Column('tree_number', sa.Integer(), nullable=False),
        sa.Column('nullifier', postgresql.BYTEA(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        schema='domain',
    )
    op.create_index('ix_nullifiers_block_number', 'nullifiers', ['block_number'], schema='domain')
    op.create_index('ix_nullifiers_nullifier', 'nullifiers', ['nullifier'], schema='domain')
    op.create_index('ix_nullifiers_transaction_hash', 'nullifiers', ['transaction_hash'], schema='domain')

    op.create_table(
        'commitments',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('block_timestamp', sa.BigInteger(), nullable=False),
        sa.Column('transaction_hash', postgresql.BYTEA(), nullable=False),
        sa.Column('tree_number', sa.Integer(), nullable=False),
        sa.Column('tree_position', sa.BigInteger(), nullable=False),
        sa.Column('commitment', postgresql.BYTEA(), nullable=False),
        sa.Column('commitment_type', sa.Text(), nullable=False),
        sa.Column('hash_source', sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        schema='domain',
    )
    op.create_index('ix_commitments_block_number', 'commitments', ['block_number'], schema='domain')
    op.create_index(
        'ix_commitments_tree_position',
        'commitments',
        ['tree_number', 'tree_position'],
        schema='domain',
    )
    op.create_index('ix_commitments_transaction_hash', 'commitments', ['transaction_hash'], schema='domain')

    op.create_table(
        'verification_hashes',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('verification_hash', postgresql.BYTEA(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        schema='domain',
    )

    op.create_table(
        'transactions',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('transaction_hash', postgresql.BYTEA(), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('block_timestamp', sa.BigInteger(), nullable=False),
        sa.Column(
            'nullifiers',
            postgresql.ARRAY(postgresql.BYTEA()),
            server_default=sa.text("'{}'"),
            nullable=False,
        ),
        sa.Column(
            'commitments',
            postgresql.ARRAY(postgresql.BYTEA()),
            server_default=sa.text("'{}'"),
            nullable=False,
        ),
        sa.Column(
            'applied_log_indexes',
            postgresql.ARRAY(sa.Integer()),
            server_default=sa.text("'{}'"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint('id'),
        schema='domain',
    )
    op.create_index('ix_transactions_block_number', 'transactions', ['block_number'], schema='domain')

    op.create_table(
        'unshields',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('block_timestamp', sa.BigInteger(), nullable=False),
        sa.Column('transaction_hash', postgresql.BYTEA(), nullable=False),
        sa.Column('to_address', postgresql.BYTEA(), nullable=False),
        sa.Column('token_type', sa.SmallInteger(), nullable=False),
        sa.Column('token_address', postgresql.BYTEA(), nullable=False),
        sa.Column('token_sub_id', sa.Numeric(78, 0), nullable=False),
        sa.Column('amount', sa.Numeric(78, 0), nullable=False),
        sa.Column('fee', sa.Numeric(78, 0), nullable=False),
        sa.Column('event_log_index', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        schema='domain',
    )
    op.create_index('ix_unshields_block_number', 'unshields', ['block_number'], schema='domain')
    op.create_index('ix_unshields_token_address', 'unshields', ['token_address'], schema='domain')

    op.create_table(
        'tokens',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('token_type', sa.SmallInteger(), nullable=False),
        sa.Column('token_address', postgresql.BYTEA(), nullable=False),
        sa.Column('token_sub_id', sa.Numeric(78, 0), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        schema='domain',
    )
    op.create_index('ix_tokens_token_address', 'tokens', ['token_address'], schema='domain')

    op.create_table(
        'commitment_preimages',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('npk', postgresql.BYTEA(), nullable=False),
        sa.Column('token_id', sa.Text(), nullable=False),
        sa.Column('value', sa.Numeric(78, 0), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        schema='domain',
    )

    op.create_table(
        'commitment_ciphertexts',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('transaction_hash', postgresql.BYTEA(), nullable=False),
        sa.Column('ciphertext_type', sa.Text(), nullable=False),
        sa.Column('ciphertext', postgresql.ARRAY(postgresql.BYTEA()), nullable=False),
        sa.Column(
            'keys',
            postgresql.ARRAY(postgresql.BYTEA()),
            server_default=sa.text("'{}'"),
            nullable=False,
        ),
        sa.Column('annotation_data', postgresql.BYTEA(), nullable=False),
        sa.Column('memo', postgresql.BYTEA(), nullable=False),
        sa.Column('fee', sa.Numeric(78, 0), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        schema='domain',
    )
    op.create_index(
        'ix_commitment_ciphertexts_block_number',
        'commitment_ciphertexts',
        ['block_number'],
        schema='domain',
    )

    op.create_table(
        'checkpoints',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('tree_number', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('tree_position', sa.BigInteger(), server_default=sa.text('0'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        schema='ingest',
    )

    op.create_table(
        'quarantined_logs',
        sa.Column('transaction_hash', postgresql.BYTEA(), nullable=False),
        sa.Column('log_index', sa.Integer(), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('contract_address', postgresql.BYTEA(), nullable=False),
        sa.Column('topic0', postgresql.BYTEA(), nullable=True),
        sa.Column('topics', postgresql.ARRAY(postgresql.BYTEA()), nullable=False),
        sa.Column('data', postgresql.BYTEA(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('detail', sa.Text(), nullable=False),
        sa.Column('quarantined_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('transaction_hash', 'log_index'),
        schema='ingest',
    )
    op.create_index('ix_quarantined_logs_topic0', 'quarantined_logs', ['topic0'], schema='ingest')
    op.create_index('ix_quarantined_logs_block_number', 'quarantined_logs', ['block_number'], schema='ingest')


def downgrade() -> None:
    op.drop_table('quarantined_logs', schema='ingest')
    op.drop_table('checkpoints', schema='ingest')
    op.drop_table('commitment_ciphertexts', schema='domain')
    op.drop_table('commitment_preimages', schema='domain')
    op.drop_table('tokens', schema='domain')
    op.drop_table('unshields', schema='domain')
    op.drop_table('transactions', schema='domain')
    op.drop_table('verification_hashes', schema='domain')
    op.drop_table('commitments', schema='domain')
    op.drop_table('nullifiers', schema='domain')
