from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, PrimaryKeyConstraint, Text, func
from sqlalchemy.dialects.postgresql import ARRAY, BYTEA
from sqlalchemy.orm import Mapped, mapped_column

from shielded_indexer.app.infrastructure.db.db_base import BaseDB


class QuarantinedLogsDB(BaseDB):
    """
    Logs that could not be resolved to a signature or decoded.

    Kept verbatim (topics + data) so they can be replayed once the missing
    schema is added to the registry.
    """

    __tablename__ = "quarantined_logs"
    __table_args__ = (
        PrimaryKeyConstraint("transaction_hash", "log_index"),
        Index("ix_quarantined_logs_topic0", "topic0"),
        Index("ix_quarantined_logs_block_number", "block_number"),
        {"schema": "ingest"},
    )

    transaction_hash: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)

    contract_address: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
    topic0: Mapped[bytes | None] = mapped_column(BYTEA, nullable=True)
    topics: Mapped[list[bytes]] = mapped_column(ARRAY(BYTEA), nullable=False)
    data: Mapped[bytes] = mapped_column(BYTEA, nullable=False)

    """Either "unresolved" or "decode_error"."""
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    detail: Mapped[str] = mapped_column(Text, nullable=False)

    quarantined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
