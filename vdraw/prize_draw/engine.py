"""Draw resolution: match tickets against winning numbers and pay out prizes."""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional, Sequence

from sqlalchemy.orm import Session

from ..errors import TicketCreditFailure, TicketValidationError
from ..formats import get_draw_format, normalize_selection, validate_winning_numbers
from ..models import Draw, PayoutRecord, Ticket
from ..retry import RetryExhausted, retry_with_backoff
from .collaborators import (
    PRIZE_PAYOUT,
    LoggingPayoutNotifier,
    PayoutNotifier,
    SqlWalletLedger,
    WalletLedger,
    build_prize_message,
)
from .tiers import DEFAULT_PRIZE_TABLES, ZERO, PrizeOutcome, PrizeTableRegistry

if TYPE_CHECKING:
    from ..config import DrawEngineSettings

logger = logging.getLogger(__name__)


def count_matches(selected_numbers: Iterable[int], winning_numbers: Iterable[int]) -> int:
    """Size of the intersection of the two number sets."""
    return len(set(selected_numbers) & set(winning_numbers))


@dataclass(frozen=True)
class TicketEvaluation:
    """Outcome computed for one ticket, before any side effect."""

    ticket_id: int
    user_id: int
    ticket_number: str
    outcome: PrizeOutcome

    @property
    def is_winner(self) -> bool:
        return self.outcome.is_winner


@dataclass
class DrawSummary:
    """Aggregate produced once every ticket of a draw has been processed.

    Attributes
    ----------
    draw_id : int
        Draw that was resolved.
    total_winners : int
        Number of winning tickets, whether or not their credit succeeded.
    total_prize_amount : Decimal
        Sum of all winning prize amounts, two decimals.
    winners_by_match_count : dict[int, int]
        Winning ticket count keyed by matched count.
    processed_ticket_count : int
        Tickets evaluated, winners and losers alike.
    failures : list[TicketCreditFailure]
        Winning tickets whose wallet credit failed after all retries. Their
        annotation and notification were skipped; a re-run picks them up.
    """

    draw_id: int
    total_winners: int = 0
    total_prize_amount: Decimal = ZERO
    winners_by_match_count: dict[int, int] = field(default_factory=dict)
    processed_ticket_count: int = 0
    failures: list[TicketCreditFailure] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "drawId": self.draw_id,
            "totalWinners": self.total_winners,
            "totalPrizeAmount": f"{self.total_prize_amount:.2f}",
            "winnersByMatchCount": {
                str(k): v for k, v in sorted(self.winners_by_match_count.items())
            },
            "processedTicketCount": self.processed_ticket_count,
            "failures": [
                {"ticketId": f.ticket_id, "userId": f.user_id, "error": str(f.cause)}
                for f in self.failures
            ],
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DrawResolutionEngine:
    """Resolves a draw's tickets and applies the payout side effects.

    Evaluation is a pure pass over every ticket. Payouts then run grouped by
    user, in ticket order within each user, so credits to one wallet never
    interleave. Each winning ticket goes through three steps keyed by its
    ``ticket_id`` through a :class:`PayoutRecord`: wallet credit, result
    annotation, notification. A re-run skips whatever already happened.
    """

    def __init__(
        self,
        session: Session,
        *,
        wallet: Optional[WalletLedger] = None,
        notifier: Optional[PayoutNotifier] = None,
        prize_tables: Optional[PrizeTableRegistry] = None,
        credit_max_attempts: int = 3,
        retry_base_delay: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Create a resolution engine bound to a SQLAlchemy session.

        Parameters
        ----------
        session : Session
            Session holding the draw, its tickets and payout records.
        wallet : Optional[WalletLedger], default: None
            Wallet credited with prizes. Defaults to :class:`SqlWalletLedger`
            on the same session.
        notifier : Optional[PayoutNotifier], default: None
            Channel for winner messages. Defaults to
            :class:`LoggingPayoutNotifier`.
        prize_tables : Optional[PrizeTableRegistry], default: None
            Tier tables by draw type; the built-in daily/weekly tables when
            omitted.
        credit_max_attempts : int, default: 3
            Attempts per ticket before the credit is given up.
        retry_base_delay : float, default: 0.5
            Base delay in seconds of the exponential backoff between credits.
        """
        self._session = session
        self._wallet = wallet or SqlWalletLedger(session)
        self._notifier = notifier or LoggingPayoutNotifier()
        self._tables = prize_tables or DEFAULT_PRIZE_TABLES
        self._credit_max_attempts = credit_max_attempts
        self._retry_base_delay = retry_base_delay
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        session: Session,
        settings: "DrawEngineSettings",
        *,
        wallet: Optional[WalletLedger] = None,
        notifier: Optional[PayoutNotifier] = None,
    ) -> "DrawResolutionEngine":
        return cls(
            session,
            wallet=wallet,
            notifier=notifier,
            credit_max_attempts=settings.credit_max_attempts,
            retry_base_delay=settings.retry_base_delay,
        )

    # -------- evaluation --------
    def evaluate_ticket(
        self,
        selected_numbers: Iterable[int],
        winning_numbers: Sequence[int],
        draw_type: str,
        jackpot_amount: Decimal,
    ) -> PrizeOutcome:
        """Prize outcome for a single selection. No database access."""
        matched = count_matches(selected_numbers, winning_numbers)
        return self._tables.evaluate(draw_type, matched, Decimal(jackpot_amount))

    def _resolve_parameters(
        self,
        draw_id: int,
        draw_type: Optional[str],
        jackpot_amount: Optional[Decimal],
    ) -> tuple[str, Decimal]:
        draw = self._session.get(Draw, draw_id)
        if draw is None:
            if draw_type is None or jackpot_amount is None:
                raise ValueError(
                    f"Draw {draw_id} not found; pass draw_type and jackpot_amount explicitly"
                )
            return draw_type, Decimal(jackpot_amount)
        if draw_type is not None and draw_type != draw.draw_type:
            raise ValueError(
                f"Draw {draw_id} is a {draw.draw_type} draw, not {draw_type}"
            )
        jackpot = draw.jackpot_amount if jackpot_amount is None else jackpot_amount
        return draw.draw_type, Decimal(jackpot)

    def evaluate_tickets(
        self,
        draw_id: int,
        winning_numbers: Sequence[int],
        tickets: Sequence[Ticket],
        *,
        draw_type: str,
        jackpot_amount: Decimal,
    ) -> list[TicketEvaluation]:
        """Validate every input and evaluate every ticket.

        Raises before anything is written, so a malformed ticket anywhere in
        the batch leaves the whole draw untouched.

        Raises
        ------
        ValueError
            If the winning numbers are malformed.
        TicketValidationError
            If a ticket is unsaved, belongs to another draw, or has a bad
            selection.
        """
        fmt = get_draw_format(draw_type)
        winning = validate_winning_numbers(winning_numbers, fmt)

        evaluations: list[TicketEvaluation] = []
        for ticket in tickets:
            if ticket.id is None:
                raise TicketValidationError("Ticket must be persisted before resolution")
            if ticket.draw_id != draw_id:
                raise TicketValidationError(
                    f"Ticket {ticket.id} belongs to draw {ticket.draw_id}, not {draw_id}",
                    details={"ticket_id": ticket.id},
                )
            selection = normalize_selection(ticket.selected_numbers, fmt)
            outcome = self.evaluate_ticket(selection, winning, draw_type, jackpot_amount)
            evaluations.append(
                TicketEvaluation(
                    ticket_id=ticket.id,
                    user_id=ticket.user_id,
                    ticket_number=ticket.ticket_number,
                    outcome=outcome,
                )
            )
        return evaluations

    # -------- resolution --------
    def resolve_draw(
        self,
        draw_id: int,
        winning_numbers: Sequence[int],
        tickets: Iterable[Ticket],
        *,
        draw_type: Optional[str] = None,
        jackpot_amount: Optional[Decimal] = None,
    ) -> DrawSummary:
        """Resolve ``tickets`` against ``winning_numbers`` and pay the winners.

        Parameters
        ----------
        draw_id : int
            Draw being resolved. Its type and jackpot are read from the
            database unless given explicitly.
        winning_numbers : Sequence[int]
            Winning numbers for the draw, in any order.
        tickets : Iterable[Ticket]
            Persisted tickets of the draw.
        draw_type : Optional[str], default: None
            Overrides the draw's type lookup; must agree with a stored draw.
        jackpot_amount : Optional[Decimal], default: None
            Overrides the stored jackpot.

        Returns
        -------
        DrawSummary
            Totals over all tickets plus any per-ticket credit failures.

        Notes
        -----
        1. Every ticket is validated and evaluated first (pure).
        2. Losing tickets get their annotation and nothing else.
        3. Winning tickets are grouped per user; each is credited and its
           wallet transaction recorded (both retried with backoff), then
           annotated, then notified.
        4. A wallet credit or transaction record that still fails is
           recorded on the summary as a :class:`TicketCreditFailure`; the
           remaining tickets proceed. A re-run repeats only the missing call.
        5. A notification failure is logged and does not undo steps 1-2 of
           that ticket.

        A ticket listed more than once is resolved once.
        """
        unique: dict[int, Ticket] = {}
        for ticket in tickets:
            if ticket.id is None:
                raise TicketValidationError("Ticket must be persisted before resolution")
            unique.setdefault(ticket.id, ticket)
        ticket_list = list(unique.values())
        resolved_type, jackpot = self._resolve_parameters(draw_id, draw_type, jackpot_amount)
        evaluations = self.evaluate_tickets(
            draw_id,
            winning_numbers,
            ticket_list,
            draw_type=resolved_type,
            jackpot_amount=jackpot,
        )
        by_id = {ticket.id: ticket for ticket in ticket_list}

        summary = DrawSummary(draw_id=draw_id, processed_ticket_count=len(evaluations))
        winners_by_user: dict[int, list[TicketEvaluation]] = {}
        match_counter: Counter[int] = Counter()
        for evaluation in evaluations:
            if evaluation.is_winner:
                winners_by_user.setdefault(evaluation.user_id, []).append(evaluation)
                match_counter[evaluation.outcome.matched_count] += 1
                summary.total_winners += 1
                summary.total_prize_amount += evaluation.outcome.prize_amount
            else:
                self._annotate(by_id[evaluation.ticket_id], evaluation.outcome)
        summary.winners_by_match_count = dict(match_counter)
        self._session.flush()

        for user_id, user_evaluations in winners_by_user.items():
            logger.debug(
                f"Paying {len(user_evaluations)} winning ticket(s) for user {user_id}"
            )
            for evaluation in user_evaluations:
                failure = self._pay(by_id[evaluation.ticket_id], evaluation)
                if failure is not None:
                    summary.failures.append(failure)
                self._session.flush()

        logger.info(
            f"Resolved draw {draw_id}: {summary.processed_ticket_count} ticket(s), "
            f"{summary.total_winners} winner(s), total {summary.total_prize_amount}, "
            f"{len(summary.failures)} credit failure(s)"
        )
        return summary

    def _annotate(self, ticket: Ticket, outcome: PrizeOutcome) -> None:
        ticket.record_result(
            matched_count=outcome.matched_count,
            prize_amount=outcome.prize_amount,
            is_winner=outcome.is_winner,
            resolved_at=self._clock(),
        )

    def _payout_record(self, ticket: Ticket, evaluation: TicketEvaluation) -> PayoutRecord:
        record = PayoutRecord.get_by_ticket_id(self._session, ticket.id)
        amount = evaluation.outcome.prize_amount
        if record is None:
            record = PayoutRecord(
                ticket=ticket,
                user_id=ticket.user_id,
                amount=amount,
                credit_attempts=0,
            )
            self._session.add(record)
            self._session.flush()
        elif Decimal(record.amount) != amount:
            raise ValueError(
                f"Ticket {ticket.id} already has a payout of {record.amount}, not {amount}"
            )
        return record

    def _credit_step(
        self, ticket: Ticket, record: PayoutRecord, func: Callable[[], Any], description: str
    ) -> tuple[Any, int]:
        """Run one wallet call with retries; returns its result and the attempts used."""
        attempts = 0

        def attempt() -> Any:
            nonlocal attempts
            attempts += 1
            return func()

        try:
            result = retry_with_backoff(
                attempt,
                max_attempts=self._credit_max_attempts,
                base_delay=self._retry_base_delay,
                sleep=self._sleep,
                description=f"{description} for ticket {ticket.id}",
            )
        except RetryExhausted as exc:
            record.last_error = f"{description} failed: {exc.last_error}"
            raise TicketCreditFailure(
                ticket.id, ticket.user_id, exc.attempts, exc.last_error
            ) from exc.last_error
        return result, attempts

    def _pay(
        self, ticket: Ticket, evaluation: TicketEvaluation
    ) -> Optional[TicketCreditFailure]:
        outcome = evaluation.outcome
        record = self._payout_record(ticket, evaluation)

        try:
            if not record.is_credited:
                try:
                    new_balance, attempts = self._credit_step(
                        ticket,
                        record,
                        lambda: self._wallet.credit(ticket.user_id, outcome.prize_amount),
                        "wallet credit",
                    )
                except TicketCreditFailure as failure:
                    record.credit_attempts += failure.attempts
                    raise
                record.credit_attempts += attempts
                record.new_balance = new_balance
                record.credited_at = self._clock()
                record.last_error = None
                logger.info(
                    f"Credited {outcome.prize_amount} to user {ticket.user_id} "
                    f"for ticket {ticket.ticket_number}"
                )
            else:
                logger.debug(f"Ticket {ticket.id} already credited at {record.credited_at}")

            if record.transaction_recorded_at is None:
                self._credit_step(
                    ticket,
                    record,
                    lambda: self._wallet.record_transaction(
                        ticket.user_id,
                        PRIZE_PAYOUT,
                        outcome.prize_amount,
                        f"Lottery prize for ticket {ticket.ticket_number}",
                    ),
                    "transaction record",
                )
                record.transaction_recorded_at = self._clock()
                record.last_error = None
        except TicketCreditFailure as failure:
            logger.error(failure.message)
            return failure

        self._annotate(ticket, outcome)

        if record.notified_at is None:
            try:
                self._notifier.notify(
                    ticket.user_id, build_prize_message(ticket.ticket_number, outcome)
                )
            except Exception as exc:
                record.last_error = f"notification failed: {exc}"
                logger.warning(
                    f"Payout notification for ticket {ticket.id} failed: {exc}"
                )
            else:
                record.notified_at = self._clock()
        return None


def resolve_draw(
    session: Session,
    draw_id: int,
    winning_numbers: Sequence[int],
    tickets: Iterable[Ticket],
    *,
    wallet: Optional[WalletLedger] = None,
    notifier: Optional[PayoutNotifier] = None,
    **kwargs: Any,
) -> DrawSummary:
    """Resolve a draw with a one-off :class:`DrawResolutionEngine`."""
    engine = DrawResolutionEngine(session, wallet=wallet, notifier=notifier)
    return engine.resolve_draw(draw_id, winning_numbers, tickets, **kwargs)


__all__ = [
    "DrawResolutionEngine",
    "DrawSummary",
    "TicketEvaluation",
    "count_matches",
    "resolve_draw",
]
