from __future__ import annotations

from decimal import Decimal

from sqlalchemy import BigInteger, Index, Integer, Numeric, SmallInteger, Text
from sqlalchemy.dialects.postgresql import BYTEA
from sqlalchemy.orm import Mapped, mapped_column

from shielded_indexer.app.infrastructure.db.db_base import BaseDB


class UnshieldsDB(BaseDB):
    """
    Withdrawals out of the shielded pool (Unshield events).

    Amounts are uint256 on-chain and stored as NUMERIC to avoid precision loss.
    """

    __tablename__ = "unshields"
    __table_args__ = (
        Index("ix_unshields_block_number", "block_number"),
        Index("ix_unshields_token_address", "token_address"),
        {"schema": "domain"},
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True)

    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    block_timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_hash: Mapped[bytes] = mapped_column(BYTEA, nullable=False)

    to_address: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    token_type: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    token_address: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    token_sub_id: Mapped[Decimal] = mapped_column(Numeric(78, 0), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(78, 0), nullable=False)
    fee: Mapped[Decimal] = mapped_column(Numeric(78, 0), nullable=False)
    event_log_index: Mapped[int] = mapped_column(Integer, nullable=False)
