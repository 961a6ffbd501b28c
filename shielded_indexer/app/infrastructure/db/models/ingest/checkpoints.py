from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from shielded_indexer.app.infrastructure.db.db_base import BaseDB


class CheckpointsDB(BaseDB):
    """
    Highest fully-applied block per ingestion stream (e.g. "shielded-pool-1").

    Only advanced after every fact of every block up to block_number has
    been durably applied; restarts resume at block_number + 1. The tree
    pointer is the highest (tree_number, tree_position) committed up to there.
    """

    __tablename__ = "checkpoints"
    __table_args__ = ({"schema": "ingest"},)

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # commitment tree pointer at block_number
    tree_number: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    tree_position: Mapped[int] = mapped_column(BigInteger, nullable=False, server_default=text("0"))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
