from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Index, Numeric, SmallInteger, Text
from sqlalchemy.dialects.postgresql import BYTEA
from sqlalchemy.orm import Mapped, mapped_column

from shielded_indexer.app.infrastructure.db.db_base import BaseDB


class TokensDB(BaseDB):
    """
    Tokens referenced by shield-style commitment preimages.

    id is the 0x-hex Railgun token id: the padded address for ERC20, the
    field-reduced keccak of the token data otherwise.
    """

    __tablename__ = "tokens"
    __table_args__ = (
        Index("ix_tokens_token_address", "token_address"),
        {"schema": "domain"},
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    token_type: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    token_address: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    token_sub_id: Mapped[Decimal] = mapped_column(Numeric(78, 0), nullable=False)
