from typing import TYPE_CHECKING, Iterable, Optional
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import BatchIntegrityMismatch, TicketIntegrityMismatch, TicketValidationError
from .formats import normalize_selection
from .models import Draw, Ticket, TicketHashRecord
from .models.utils import generate_ticket_number

if TYPE_CHECKING:
    from .integrity import IntegrityLedger
    from .oracle import RandomnessOracle, RandomnessRequestReceipt
    from .prize_draw import DrawResolutionEngine, DrawSummary
    from .models import MerkleBatch

logger = logging.getLogger(__name__)


def purchase_ticket(
    session: Session,
    draw: Draw,
    user_id: int,
    selected_numbers: Iterable[int],
    cost: Decimal,
    ledger: "IntegrityLedger",
    agent_id: Optional[int] = None,
    purchased_at: Optional[datetime] = None,
    ticket_prefix: str = "TKT",
) -> Ticket:
    """Sell a ticket for ``draw`` and record its integrity hash.

    This function performs the following steps:

    1. Validate that the draw is still selling and the selection fits the
       draw format.
    2. Persist the :class:`Ticket` with a freshly generated ticket number.
    3. Record the ticket's SHA-256 hash through ``ledger``.

    Nothing touches the network; anchoring happens later in
    :func:`anchor_pending_batches`.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session.
    draw : Draw
        Persisted draw the ticket enters. Must have status ``"open"``.
    user_id : int
        Buyer of the ticket.
    selected_numbers : Iterable[int]
        Picked numbers in any order.
    cost : Decimal
        Ticket price.
    ledger : IntegrityLedger
        Ledger that stores the ticket hash.
    agent_id : Optional[int]
        Sales agent, if the ticket was sold through one.
    purchased_at : Optional[datetime]
        Purchase time; defaults to now.
    ticket_prefix : str
        Prefix of the generated ticket number.

    Returns
    -------
    Ticket
        The persisted ticket, with ``hash_record`` populated.

    Raises
    ------
    TicketValidationError
        If the draw is not open or the selection or cost is invalid.
    """
    if draw.id is None:
        raise ValueError("Draw must be persisted before selling tickets")
    if draw.status != "open":
        raise TicketValidationError(
            f"Draw {draw.id} is {draw.status}; tickets can no longer be sold"
        )
    picked = list(selected_numbers)
    normalize_selection(picked, draw.format)
    price = Decimal(str(cost))
    if price <= 0:
        raise TicketValidationError("Ticket cost must be positive")

    ticket = Ticket(
        ticket_number=generate_ticket_number(ticket_prefix, session=session),
        user_id=user_id,
        draw=draw,
        selected_numbers=picked,
        cost=price,
        purchased_at=purchased_at,
        agent_id=agent_id,
    )
    session.add(ticket)
    session.flush()

    ledger.record_ticket_hash(ticket)
    logger.info(f"Sold ticket {ticket.ticket_number} for draw {draw.id} to user {user_id}")
    return ticket


def close_ticket_batch(
    session: Session, draw: Draw, ledger: "IntegrityLedger"
) -> Optional["MerkleBatch"]:
    """Put every not-yet-batched ticket hash of ``draw`` into a Merkle batch."""
    return ledger.build_batch(draw_id=draw.id)


def request_draw_randomness(
    session: Session,
    draw: Draw,
    oracle: "RandomnessOracle",
    ledger: Optional["IntegrityLedger"] = None,
) -> "RandomnessRequestReceipt":
    """Stop sales for ``draw`` and ask the oracle for its randomness.

    When ``ledger`` is given, the draw's outstanding ticket hashes are sealed
    into a Merkle batch before the request so the batch root predates the
    winning numbers.
    """
    if draw.status == "completed":
        raise ValueError(f"Draw {draw.id} is already completed")
    draw.status = "closed"
    session.flush()
    if ledger is not None:
        close_ticket_batch(session, draw, ledger)
    return oracle.request_random_numbers(draw.id, draw.draw_type)


def complete_draw(
    session: Session, draw: Draw, oracle: "RandomnessOracle", request_id: str
) -> list[int]:
    """Copy the winning numbers of a fulfilled request onto ``draw``.

    Raises
    ------
    ValueError
        If the request belongs to another draw, is not fulfilled yet, or the
        draw already holds different winning numbers.
    """
    entry = oracle.require_entry(request_id)
    if entry.draw_id != draw.id:
        raise ValueError(f"Request {request_id} belongs to draw {entry.draw_id}, not {draw.id}")
    numbers = oracle.winning_numbers_for(request_id)
    if numbers is None:
        raise ValueError(f"Request {request_id} is {entry.status}; no winning numbers yet")
    canonical = draw.record_winning_numbers(numbers)
    session.flush()
    logger.info(f"Draw {draw.id} winning numbers {canonical} from {request_id}")
    return canonical


def resolve_draw_for(
    session: Session,
    draw: Draw,
    engine: "DrawResolutionEngine",
    ledger: Optional["IntegrityLedger"] = None,
) -> "DrawSummary":
    """Resolve every ticket of ``draw`` and mark the draw completed.

    With a ``ledger``, every Merkle batch holding a ticket of the draw and
    every ticket not yet batched is verified first. A
    :class:`~vdraw.errors.BatchIntegrityMismatch` or
    :class:`~vdraw.errors.TicketIntegrityMismatch` stops the flow before any
    payout happens. The draw is only marked completed once no ticket is left
    with a failed credit, so a re-run can finish the remaining payouts.
    """
    if draw.winning_numbers is None:
        raise ValueError(f"Draw {draw.id} has no winning numbers to resolve against")

    if ledger is not None:
        try:
            ledger.verify_draw_integrity(draw.id)
        except (BatchIntegrityMismatch, TicketIntegrityMismatch):
            logger.critical(f"Payouts for draw {draw.id} halted pending investigation")
            raise

    tickets = Ticket.list_by_draw(session, draw.id)
    summary = engine.resolve_draw(draw.id, list(draw.winning_numbers), tickets)
    if summary.failures:
        logger.warning(
            f"Draw {draw.id} left open for re-run: {len(summary.failures)} credit failure(s)"
        )
    else:
        draw.mark_completed()
    session.flush()
    return summary


def anchor_pending_batches(ledger: "IntegrityLedger") -> list["MerkleBatch"]:
    """Scheduled entry point that anchors every unanchored batch."""
    anchored = ledger.anchor_pending_batches()
    if anchored:
        logger.info(f"Anchored {len(anchored)} Merkle batch(es)")
    return anchored


@dataclass(frozen=True)
class TicketVerification:
    """Audit view of one ticket's integrity state."""

    ticket_id: int
    hash_valid: bool
    stored_hash: Optional[str]
    computed_hash: Optional[str]
    included_in_batch: bool
    merkle_root: Optional[str]
    anchor_reference: Optional[str]

    @property
    def anchored(self) -> bool:
        return self.anchor_reference is not None


def verify_ticket(
    session: Session, ticket_id: int, ledger: "IntegrityLedger"
) -> TicketVerification:
    """Check a ticket's stored hash, Merkle inclusion and anchor status."""
    hashes = ledger.verify_ticket_hash(ticket_id)
    record = TicketHashRecord.get_by_ticket_id(session, ticket_id)
    return TicketVerification(
        ticket_id=ticket_id,
        hash_valid=hashes.is_valid,
        stored_hash=hashes.stored_hash,
        computed_hash=hashes.computed_hash,
        included_in_batch=ledger.verify_ticket_inclusion(ticket_id),
        merkle_root=record.merkle_root if record is not None else None,
        anchor_reference=record.blockchain_anchor if record is not None else None,
    )


def draw_winners(session: Session, draw_id: int) -> list[Ticket]:
    """Winning tickets of a draw, biggest prize first."""
    stmt = (
        select(Ticket)
        .where(Ticket.draw_id == draw_id, Ticket.is_winner.is_(True))
        .order_by(Ticket.prize_amount.desc(), Ticket.id)
    )
    return list(session.scalars(stmt))


def user_winning_history(session: Session, user_id: int) -> list[Ticket]:
    return Ticket.list_winners_for_user(session, user_id)
