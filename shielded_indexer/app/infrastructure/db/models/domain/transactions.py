from __future__ import annotations

from sqlalchemy import BigInteger, Index, Integer, Text, text
from sqlalchemy.dialects.postgresql import ARRAY, BYTEA
from sqlalchemy.orm import Mapped, mapped_column

from shielded_indexer.app.infrastructure.db.db_base import BaseDB


class TransactionsDB(BaseDB):
    """
    Per-transaction aggregate of nullifiers and commitments.

    Built incrementally as events of the same transaction arrive. Both
    arrays are NOT NULL and always written together, so the serving layer
    never reads a spuriously empty array.
    """

    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_block_number", "block_number"),
        {"schema": "domain"},
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    transaction_hash: Mapped[bytes] = mapped_column(BYTEA, nullable=False)

    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    block_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)

    nullifiers: Mapped[list[bytes]] = mapped_column(
        ARRAY(BYTEA),
        nullable=False,
        server_default=text("'{}'"),
    )
    commitments: Mapped[list[bytes]] = mapped_column(
        ARRAY(BYTEA),
        nullable=False,
        server_default=text("'{}'"),
    )
    # log indexes already folded into the arrays; makes appends replay-safe
    applied_log_indexes: Mapped[list[int]] = mapped_column(
        ARRAY(Integer),
        nullable=False,
        server_default=text("'{}'"),
    )
