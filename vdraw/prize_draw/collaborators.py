"""Wallet ledger and payout notifier used by the resolution engine."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import WalletAccount, WalletTransaction
from .tiers import PrizeOutcome

logger = logging.getLogger(__name__)

PRIZE_PAYOUT = "prize_payout"


class WalletLedger(Protocol):
    """Balance store credited with prizes."""

    def credit(self, user_id: int, amount: Decimal) -> Decimal:
        """Add ``amount`` to the user's balance and return the new balance."""
        ...

    def record_transaction(
        self, user_id: int, type: str, amount: Decimal, description: str
    ) -> None: ...


class PayoutNotifier(Protocol):
    """Fire-and-forget channel for telling users about payouts."""

    def notify(self, user_id: int, message: str) -> None: ...


class SqlWalletLedger:
    """Wallet ledger backed by :class:`WalletAccount` rows in the same database.

    The account row is selected ``FOR UPDATE`` so concurrent credits on
    backends that support row locks do not lose updates. SQLite ignores the
    lock; there the engine's per-user ordering is what keeps credits safe.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def _account_for(self, user_id: int) -> WalletAccount:
        account = self._session.scalar(
            select(WalletAccount)
            .where(WalletAccount.user_id == user_id)
            .with_for_update()
        )
        if account is None:
            account = WalletAccount(user_id=user_id, balance=Decimal("0.00"))
            self._session.add(account)
            self._session.flush()
        return account

    def balance(self, user_id: int) -> Decimal:
        account = WalletAccount.get_by_user_id(self._session, user_id)
        if account is None:
            return Decimal("0.00")
        return Decimal(account.balance)

    def credit(self, user_id: int, amount: Decimal) -> Decimal:
        if amount <= 0:
            raise ValueError("Credit amount must be positive")
        account = self._account_for(user_id)
        account.balance = Decimal(account.balance) + Decimal(amount)
        self._session.flush()
        logger.debug(f"Credited {amount} to user {user_id}; balance {account.balance}")
        return Decimal(account.balance)

    def record_transaction(
        self, user_id: int, type: str, amount: Decimal, description: str
    ) -> None:
        self._session.add(
            WalletTransaction(
                user_id=user_id,
                type=type,
                amount=amount,
                description=description,
                status="completed",
            )
        )
        self._session.flush()


class LoggingPayoutNotifier:
    """Notifier that only writes the message to the log."""

    def __init__(self, logger_name: Optional[str] = None) -> None:
        self._logger = logging.getLogger(logger_name or __name__)

    def notify(self, user_id: int, message: str) -> None:
        self._logger.info(f"Payout notification for user {user_id}: {message}")


def prize_title(outcome: PrizeOutcome) -> str:
    if outcome.tier_name == "Jackpot":
        return "JACKPOT WINNER"
    return outcome.tier_name or "Winner"


def build_prize_message(ticket_number: str, outcome: PrizeOutcome) -> str:
    """Text sent to a winner once their prize has been credited."""
    return (
        f"CONGRATULATIONS! You are a {prize_title(outcome)}!\n"
        f"Ticket: {ticket_number}\n"
        f"Matched: {outcome.matched_count} numbers\n"
        f"Prize: ${outcome.prize_amount}\n"
        "Your winnings have been credited to your account."
    )


__all__ = [
    "LoggingPayoutNotifier",
    "PRIZE_PAYOUT",
    "PayoutNotifier",
    "SqlWalletLedger",
    "WalletLedger",
    "build_prize_message",
    "prize_title",
]
