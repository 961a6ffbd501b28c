from __future__ import annotations

from decimal import Decimal

from sqlalchemy import BigInteger, Index, Numeric, Text, text
from sqlalchemy.dialects.postgresql import ARRAY, BYTEA
from sqlalchemy.orm import Mapped, mapped_column

from shielded_indexer.app.infrastructure.db.db_base import BaseDB


class CommitmentCiphertextsDB(BaseDB):
    """
    Encrypted note data emitted next to each commitment; id matches commitments.id.

    ciphertext_type tells how to read `ciphertext` / `keys`:
    ShieldCiphertext, CommitmentCiphertext, LegacyCommitmentCiphertext or
    LegacyEncryptedRandom. `fee` is only set for shields that carry fees.
    """

    __tablename__ = "commitment_ciphertexts"
    __table_args__ = (
        Index("ix_commitment_ciphertexts_block_number", "block_number"),
        {"schema": "domain"},
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True)

    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_hash: Mapped[bytes] = mapped_column(BYTEA, nullable=False)

    ciphertext_type: Mapped[str] = mapped_column(Text, nullable=False)
    ciphertext: Mapped[list[bytes]] = mapped_column(ARRAY(BYTEA), nullable=False)
    keys: Mapped[list[bytes]] = mapped_column(
        ARRAY(BYTEA),
        nullable=False,
        server_default=text("'{}'"),
    )
    annotation_data: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    memo: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    fee: Mapped[Decimal | None] = mapped_column(Numeric(78, 0), nullable=True)
