from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import Base
from .id_type import ID_TYPE

if TYPE_CHECKING:
    from .ticket import Ticket


class WalletAccount(Base):
    """Balance held for a user by the default SQL wallet ledger."""

    __tablename__ = "wallet_accounts"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ID_TYPE, nullable=False, unique=True)
    balance: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0.00")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @classmethod
    def get_by_user_id(cls, session: Session, user_id: int) -> Optional["WalletAccount"]:
        return session.scalar(select(cls).where(cls.user_id == user_id))

    def __repr__(self) -> str:
        return f"<WalletAccount(user_id={self.user_id}, balance={self.balance})>"


class WalletTransaction(Base):
    """Ledger line written for every balance movement."""

    __tablename__ = "wallet_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ID_TYPE, nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="completed")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint(
            "type IN ('deposit','ticket_purchase','prize_payout')", name="type_enum"
        ),
        CheckConstraint(
            "status IN ('pending','completed','failed')", name="status_enum"
        ),
        Index("ix_wallet_transactions_user_type", "user_id", "type"),
    )

    def __repr__(self) -> str:
        return (
            f"<WalletTransaction(id={self.id}, user_id={self.user_id}, type='{self.type}', "
            f"amount={self.amount})>"
        )


class PayoutRecord(Base):
    """Progress of the payout side effects for one winning ticket.

    Keyed by ``ticket_id`` so that re-running a draw resolution skips steps
    that already happened.
    """

    __tablename__ = "payout_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("tickets.id", ondelete="RESTRICT"), nullable=False, unique=True
    )
    user_id: Mapped[int] = mapped_column(ID_TYPE, nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    credit_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    new_balance: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    credited_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    transaction_recorded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    notified_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    ticket: Mapped["Ticket"] = relationship(back_populates="payout")

    def __repr__(self) -> str:
        return (
            f"<PayoutRecord(ticket_id={self.ticket_id}, amount={self.amount}, "
            f"credited_at={self.credited_at}, notified_at={self.notified_at})>"
        )

    @property
    def is_credited(self) -> bool:
        return self.credited_at is not None

    @classmethod
    def get_by_ticket_id(cls, session: Session, ticket_id: int) -> Optional["PayoutRecord"]:
        return session.scalar(select(cls).where(cls.ticket_id == ticket_id))
