"""Ticket hash records and Merkle batches."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import Base
from .id_type import ID_TYPE

if TYPE_CHECKING:
    from .draw import Draw
    from .ticket import Ticket


class TicketHashRecord(Base):
    """SHA-256 fingerprint of a ticket taken at purchase time.

    ``merkle_root``/``batch_id``/``leaf_index`` and ``blockchain_anchor`` are
    filled in later, once each, when the ticket's batch is built and anchored.
    """

    __tablename__ = "ticket_hashes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("tickets.id", ondelete="RESTRICT"), nullable=False, unique=True
    )
    hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    algorithm: Mapped[str] = mapped_column(String(20), nullable=False, default="SHA-256")
    batch_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("merkle_batches.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    leaf_index: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    merkle_root: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    blockchain_anchor: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    ticket: Mapped["Ticket"] = relationship(back_populates="hash_record")
    batch: Mapped[Optional["MerkleBatch"]] = relationship(back_populates="records")

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<TicketHashRecord(ticket_id={self.ticket_id}, hash={self.hash[:12]}..., "
            f"batch_id={self.batch_id})>"
        )

    def attach_batch(self, batch: "MerkleBatch", leaf_index: int) -> None:
        if self.batch_id is not None or self.merkle_root is not None:
            raise ValueError(f"Ticket hash {self.hash} is already part of a batch")
        self.batch = batch
        self.leaf_index = leaf_index
        self.merkle_root = batch.root

    def attach_anchor(self, reference: str) -> None:
        if self.blockchain_anchor is not None and self.blockchain_anchor != reference:
            raise ValueError(f"Ticket hash {self.hash} is already anchored")
        self.blockchain_anchor = reference

    @classmethod
    def get_by_ticket_id(cls, session: Session, ticket_id: int) -> Optional["TicketHashRecord"]:
        return session.scalar(select(cls).where(cls.ticket_id == ticket_id))


class MerkleBatch(Base):
    """Ordered leaf hashes and their Merkle root.

    Leaves and root never change after creation; only the anchoring
    bookkeeping is updated.
    """

    __tablename__ = "merkle_batches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    draw_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("draws.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    root: Mapped[str] = mapped_column(String(64), nullable=False)
    leaf_hashes: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    leaf_count: Mapped[int] = mapped_column(Integer, nullable=False)
    anchor_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    anchor_block_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    anchor_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_anchor_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    anchored_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    draw: Mapped[Optional["Draw"]] = relationship(back_populates="batches")
    records: Mapped[list["TicketHashRecord"]] = relationship(
        back_populates="batch", order_by="TicketHashRecord.leaf_index"
    )

    __table_args__ = (Index("ix_merkle_batches_anchored_at", "anchored_at"),)

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<MerkleBatch(id={self.id}, draw_id={self.draw_id}, root={self.root[:12]}..., "
            f"leaf_count={self.leaf_count}, anchored={self.is_anchored})>"
        )

    @property
    def is_anchored(self) -> bool:
        return self.anchor_reference is not None

    @classmethod
    def list_unanchored(cls, session: Session) -> list["MerkleBatch"]:
        stmt = select(cls).where(cls.anchor_reference.is_(None)).order_by(cls.id)
        return list(session.scalars(stmt))

    @classmethod
    def list_by_draw(cls, session: Session, draw_id: int) -> list["MerkleBatch"]:
        return list(
            session.scalars(select(cls).where(cls.draw_id == draw_id).order_by(cls.id))
        )


__all__ = ["TicketHashRecord", "MerkleBatch"]
