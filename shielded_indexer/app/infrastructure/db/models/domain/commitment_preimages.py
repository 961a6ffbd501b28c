from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Numeric, Text
from sqlalchemy.dialects.postgresql import BYTEA
from sqlalchemy.orm import Mapped, mapped_column

from shielded_indexer.app.infrastructure.db.db_base import BaseDB


class CommitmentPreimagesDB(BaseDB):
    """Plaintext notes of Shield / GeneratedCommitmentBatch commitments; id matches commitments.id."""

    __tablename__ = "commitment_preimages"
    __table_args__ = ({"schema": "domain"},)

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    npk: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    token_id: Mapped[str] = mapped_column(Text, nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(78, 0), nullable=False)
