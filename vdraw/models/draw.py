"""Database model for scheduled lottery draws."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional, Sequence

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from ..formats import DrawFormat, get_draw_format, validate_winning_numbers
from .base import Base
from .id_type import ID_TYPE

if TYPE_CHECKING:
    from .integrity import MerkleBatch
    from .randomness import RandomnessAuditEntry
    from .ticket import Ticket


class Draw(Base):
    """A single daily or weekly draw and, once known, its winning numbers."""

    __tablename__ = "draws"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Primary key, used as ``draw_id`` throughout the engine."""

    draw_type: Mapped[str] = mapped_column(String(10), nullable=False)
    """``"daily"`` or ``"weekly"``."""

    numbers_required: Mapped[int] = mapped_column(Integer, nullable=False)
    """Copied from the draw format at creation and never changed."""

    max_number_value: Mapped[int] = mapped_column(Integer, nullable=False)
    """Inclusive upper bound of the number pool."""

    jackpot_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    """Jackpot used as the base of percentage prize tiers."""

    draw_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    """Scheduled draw time."""

    winning_numbers: Mapped[Optional[list[int]]] = mapped_column(JSON, nullable=True)
    """Sorted winning numbers; written once from a fulfilled randomness request."""

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")
    """``"open"`` (selling), ``"closed"`` (randomness requested) or ``"completed"``."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    tickets: Mapped[list["Ticket"]] = relationship(
        back_populates="draw", order_by="Ticket.id"
    )
    audit_entries: Mapped[list["RandomnessAuditEntry"]] = relationship(
        back_populates="draw", order_by="RandomnessAuditEntry.id"
    )
    batches: Mapped[list["MerkleBatch"]] = relationship(
        back_populates="draw", order_by="MerkleBatch.id"
    )

    __table_args__ = (
        CheckConstraint("draw_type IN ('daily','weekly')", name="draw_type_enum"),
        CheckConstraint("status IN ('open','closed','completed')", name="status_enum"),
        Index("ix_draws_type_date", "draw_type", "draw_date"),
    )

    def __init__(
        self,
        *,
        draw_type: str,
        jackpot_amount: Decimal | str,
        draw_date: datetime,
        status: str = "open",
        created_at: Optional[datetime] = None,
    ) -> None:
        fmt = get_draw_format(draw_type)
        self.draw_type = fmt.draw_type
        self.numbers_required = fmt.numbers_required
        self.max_number_value = fmt.max_number_value
        self.jackpot_amount = Decimal(str(jackpot_amount))
        self.draw_date = draw_date
        self.status = status
        if created_at is not None:
            self.created_at = created_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<Draw(id={self.id}, draw_type={self.draw_type}, status={self.status}, "
            f"winning_numbers={self.winning_numbers})>"
        )

    @property
    def format(self) -> DrawFormat:
        return DrawFormat(self.draw_type, self.numbers_required, self.max_number_value)

    def record_winning_numbers(self, numbers: Sequence[int]) -> list[int]:
        """Store the canonical winning numbers exactly once.

        Re-recording the same numbers is a no-op; a different set raises
        :class:`ValueError`.
        """
        canonical = validate_winning_numbers(numbers, self.format)
        if self.winning_numbers is not None:
            if list(self.winning_numbers) != canonical:
                raise ValueError(
                    f"Draw {self.id} already has winning numbers {self.winning_numbers}"
                )
            return canonical
        self.winning_numbers = canonical
        return canonical

    def mark_completed(self, when: Optional[datetime] = None) -> None:
        if self.winning_numbers is None:
            raise ValueError("Draw cannot be completed without winning numbers")
        self.status = "completed"
        if self.completed_at is None:
            self.completed_at = when or datetime.now(timezone.utc)

    @classmethod
    def latest(cls, session: Session, draw_type: str) -> Optional["Draw"]:
        """Return the most recently scheduled draw of ``draw_type``."""
        stmt = (
            select(cls)
            .where(cls.draw_type == draw_type)
            .order_by(cls.draw_date.desc(), cls.id.desc())
        )
        return session.scalars(stmt).first()


__all__ = ["Draw"]
