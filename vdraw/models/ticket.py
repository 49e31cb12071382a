"""Database model for sold tickets and their write-once draw result."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from ..db.utils import as_utc
from .base import Base
from .id_type import ID_TYPE

if TYPE_CHECKING:
    from .draw import Draw
    from .integrity import TicketHashRecord
    from .wallet import PayoutRecord


class Ticket(Base):
    """A purchased ticket.

    Every column except the result annotation (``matched_count``,
    ``prize_amount``, ``is_winner``, ``resolved_at``) is fixed at purchase.
    The annotation is written once, by :meth:`record_result`.
    """

    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Primary key, the ``ticketId`` fed into the ticket hash."""

    ticket_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    """Human facing ticket reference printed on receipts."""

    user_id: Mapped[int] = mapped_column(ID_TYPE, nullable=False, index=True)
    """Owner of the ticket in the surrounding application."""

    draw_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("draws.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    selected_numbers: Mapped[list[int]] = mapped_column(JSON, nullable=False)
    """Numbers as entered; hashing and matching treat them as a set."""

    cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    purchased_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    agent_id: Mapped[Optional[int]] = mapped_column(ID_TYPE, nullable=True)
    """Sales agent who sold the ticket, if any."""

    matched_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    prize_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    is_winner: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    draw: Mapped["Draw"] = relationship(back_populates="tickets")
    hash_record: Mapped[Optional["TicketHashRecord"]] = relationship(
        back_populates="ticket", uselist=False
    )
    payout: Mapped[Optional["PayoutRecord"]] = relationship(
        back_populates="ticket", uselist=False
    )

    __table_args__ = (
        Index("ix_tickets_draw_winner", "draw_id", "is_winner"),
    )

    def __init__(
        self,
        *,
        ticket_number: str,
        user_id: int,
        draw_id: Optional[int] = None,
        draw: Optional["Draw"] = None,
        selected_numbers: list[int],
        cost: Decimal | str,
        purchased_at: Optional[datetime] = None,
        agent_id: Optional[int] = None,
    ) -> None:
        self.ticket_number = ticket_number
        self.user_id = user_id
        if draw is not None:
            self.draw = draw
        if draw_id is not None:
            self.draw_id = draw_id
        self.selected_numbers = list(selected_numbers)
        self.cost = Decimal(str(cost))
        if purchased_at is not None:
            # SQLite drops the offset, so always store UTC
            self.purchased_at = as_utc(purchased_at)
        self.agent_id = agent_id

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<Ticket(id={self.id}, ticket_number={self.ticket_number}, "
            f"draw_id={self.draw_id}, user_id={self.user_id}, is_winner={self.is_winner})>"
        )

    @property
    def is_resolved(self) -> bool:
        return self.matched_count is not None

    def record_result(
        self,
        *,
        matched_count: int,
        prize_amount: Decimal,
        is_winner: bool,
        resolved_at: Optional[datetime] = None,
    ) -> bool:
        """Write the draw result annotation once.

        Returns
        -------
        bool
            ``True`` when the annotation was written, ``False`` when an
            identical annotation already existed.

        Raises
        ------
        ValueError
            If a different annotation was already recorded.
        """
        if self.is_resolved:
            same = (
                self.matched_count == matched_count
                and Decimal(self.prize_amount or 0) == Decimal(prize_amount)
                and bool(self.is_winner) == is_winner
            )
            if not same:
                raise ValueError(
                    f"Ticket {self.id} already resolved with matched_count="
                    f"{self.matched_count}, prize_amount={self.prize_amount}"
                )
            return False
        self.matched_count = matched_count
        self.prize_amount = prize_amount
        self.is_winner = is_winner
        self.resolved_at = resolved_at or datetime.now(timezone.utc)
        return True

    @classmethod
    def list_by_draw(cls, session: Session, draw_id: int) -> list["Ticket"]:
        return list(
            session.scalars(select(cls).where(cls.draw_id == draw_id).order_by(cls.id))
        )

    @classmethod
    def list_winners_for_user(cls, session: Session, user_id: int) -> list["Ticket"]:
        stmt = (
            select(cls)
            .where(cls.user_id == user_id, cls.is_winner.is_(True))
            .order_by(cls.resolved_at.desc(), cls.id.desc())
        )
        return list(session.scalars(stmt))


__all__ = ["Ticket"]
