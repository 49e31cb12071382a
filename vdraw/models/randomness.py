"""Randomness audit trail."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    CheckConstraint,
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

CERTIFIED_CHAIN = "certified_chain"
LOCAL_SECURE = "local_secure"


class RandomnessAuditEntry(Base):
    """One randomness request and its provenance.

    Rows are never deleted. The only mutation is the single transition out
    of ``pending`` into ``fulfilled`` or ``failed``.
    """

    __tablename__ = "randomness_audit_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    request_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    draw_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("draws.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    oracle_source: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    seed: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Opaque until fulfilled."""
    proof: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """``sha256(seed + request_id)`` for local entries; oracle proof reference otherwise."""

    # Receipt of the certified oracle request, empty for local entries.
    transaction_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    block_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    oracle_address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    estimated_fulfillment_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    fulfilled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    failed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    draw: Mapped["Draw"] = relationship(back_populates="audit_entries")

    __table_args__ = (
        CheckConstraint(
            "oracle_source IN ('certified_chain','local_secure')",
            name="oracle_source_enum",
        ),
        CheckConstraint(
            "status IN ('pending','fulfilled','failed')", name="status_enum"
        ),
        Index("ix_randomness_audit_status", "status"),
    )

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<RandomnessAuditEntry(request_id={self.request_id}, draw_id={self.draw_id}, "
            f"oracle_source={self.oracle_source}, status={self.status})>"
        )

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"

    def mark_fulfilled(
        self, seed: str, proof: Optional[str], *, when: Optional[datetime] = None
    ) -> bool:
        """Move a pending entry to ``fulfilled``.

        Returns ``False`` without touching the row if it already left
        ``pending``; replays of a fulfilment are therefore harmless.
        """
        if not self.is_pending:
            return False
        self.seed = seed
        self.proof = proof
        self.status = "fulfilled"
        self.fulfilled_at = when or datetime.now(timezone.utc)
        return True

    def mark_failed(self, reason: str, *, when: Optional[datetime] = None) -> bool:
        if not self.is_pending:
            return False
        self.status = "failed"
        self.failure_reason = reason
        self.failed_at = when or datetime.now(timezone.utc)
        return True

    @classmethod
    def get_by_request_id(
        cls, session: Session, request_id: str
    ) -> Optional["RandomnessAuditEntry"]:
        return session.scalar(select(cls).where(cls.request_id == request_id))

    @classmethod
    def list_by_draw(cls, session: Session, draw_id: int) -> list["RandomnessAuditEntry"]:
        return list(
            session.scalars(select(cls).where(cls.draw_id == draw_id).order_by(cls.id))
        )


__all__ = ["RandomnessAuditEntry", "CERTIFIED_CHAIN", "LOCAL_SECURE"]
