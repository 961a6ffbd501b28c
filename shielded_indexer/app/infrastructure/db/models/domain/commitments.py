from __future__ import annotations

from sqlalchemy import BigInteger, Index, Integer, Text
from sqlalchemy.dialects.postgresql import BYTEA
from sqlalchemy.orm import Mapped, mapped_column

from shielded_indexer.app.infrastructure.db.db_base import BaseDB


class CommitmentsDB(BaseDB):
    """
    Note commitments appended to the shielded pool merkle trees.

    Populated from Shield / Transact (and legacy CommitmentBatch /
    GeneratedCommitmentBatch) events. tree_position is the leaf index.
    """

    __tablename__ = "commitments"
    __table_args__ = (
        Index("ix_commitments_block_number", "block_number"),
        Index("ix_commitments_tree_position", "tree_number", "tree_position"),
        Index("ix_commitments_transaction_hash", "transaction_hash"),
        {"schema": "domain"},
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True)

    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    block_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_hash: Mapped[bytes] = mapped_column(BYTEA, nullable=False)

    tree_number: Mapped[int] = mapped_column(Integer, nullable=False)
    tree_position: Mapped[int] = mapped_column(BigInteger, nullable=False)
    commitment: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    commitment_type: Mapped[str] = mapped_column(Text, nullable=False)
    # "event" or "preimage_keccak" (surrogate for the Poseidon leaf)
    hash_source: Mapped[str] = mapped_column(Text, nullable=False)
