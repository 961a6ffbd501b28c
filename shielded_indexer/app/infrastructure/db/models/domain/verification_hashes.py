from __future__ import annotations

from sqlalchemy import Text
from sqlalchemy.dialects.postgresql import BYTEA
from sqlalchemy.orm import Mapped, mapped_column

from shielded_indexer.app.infrastructure.db.db_base import BaseDB


class VerificationHashesDB(BaseDB):
    """Content-addressed verification hashes; id is the 0x-hex of the hash."""

    __tablename__ = "verification_hashes"
    __table_args__ = ({"schema": "domain"},)

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    verification_hash: Mapped[bytes] = mapped_column(BYTEA, nullable=False)
