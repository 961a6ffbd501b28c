from __future__ import annotations

from sqlalchemy import BigInteger, Index, Integer, Text
from sqlalchemy.dialects.postgresql import BYTEA
from sqlalchemy.orm import Mapped, mapped_column

from shielded_indexer.app.infrastructure.db.db_base import BaseDB


class NullifiersDB(BaseDB):
    """
    Spent-note nullifiers emitted by Nullified / Nullifiers events.

    One row = one array element of one log; the id
    "{transaction_hash}:{log_index}:{position}" makes replays insert-if-absent.
    Rows are never updated. A reorg rollback is a delete by block_number range.
    """

    __tablename__ = "nullifiers"
    __table_args__ = (
        Index("ix_nullifiers_block_number", "block_number"),
        Index("ix_nullifiers_nullifier", "nullifier"),
        Index("ix_nullifiers_transaction_hash", "transaction_hash"),
        {"schema": "domain"},
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True)

    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    block_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_hash: Mapped[bytes] = mapped_column(BYTEA, nullable=False)

    tree_number: Mapped[int] = mapped_column(Integer, nullable=False)
    nullifier: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
