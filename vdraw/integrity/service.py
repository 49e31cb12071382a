"""Integrity ledger bound to a SQLAlchemy session."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..errors import AnchoringFailed, BatchIntegrityMismatch, TicketIntegrityMismatch
from ..models import MerkleBatch, Ticket, TicketHashRecord
from .anchoring import (
    DEFAULT_LEAF_PREVIEW,
    AnchorBackend,
    LocalDigestAnchor,
    anchor_batch,
)
from .hashing import HASH_ALGORITHM, hash_ticket
from .merkle import build_merkle_root, generate_merkle_proof, verify_merkle_proof

if TYPE_CHECKING:
    from ..config import DrawEngineSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TicketHashVerification:
    is_valid: bool
    stored_hash: Optional[str]
    computed_hash: Optional[str]


@dataclass(frozen=True)
class MerkleProof:
    """Everything needed to check a ticket's inclusion without the database."""

    leaf_hash: str
    root: str
    siblings: tuple[str, ...]
    index: int

    def verify(self) -> bool:
        return verify_merkle_proof(self.leaf_hash, self.root, self.siblings, self.index)


class IntegrityLedger:
    """Hashes tickets at purchase, groups them into Merkle batches and anchors those.

    Batch construction never touches the network. Anchoring is a separate,
    scheduled step (:meth:`anchor_pending_batches`) so ticket sales never
    wait on the external ledger.
    """

    def __init__(
        self,
        session: Session,
        *,
        anchor_backend: Optional[AnchorBackend] = None,
        leaf_preview: int = DEFAULT_LEAF_PREVIEW,
        anchor_max_attempts: int = 5,
        retry_base_delay: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session = session
        self._backend = anchor_backend or LocalDigestAnchor()
        self._leaf_preview = leaf_preview
        self._anchor_max_attempts = anchor_max_attempts
        self._retry_base_delay = retry_base_delay
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        session: Session,
        settings: "DrawEngineSettings",
        *,
        anchor_backend: Optional[AnchorBackend] = None,
    ) -> "IntegrityLedger":
        return cls(
            session,
            anchor_backend=anchor_backend,
            leaf_preview=settings.anchor_leaf_preview,
            anchor_max_attempts=settings.anchor_max_attempts,
            retry_base_delay=settings.retry_base_delay,
        )

    # -------- hashing --------
    def record_ticket_hash(self, ticket: Ticket) -> TicketHashRecord:
        """Create the ticket's hash record; returns the existing one on replay."""
        if ticket.id is None:
            raise ValueError("Ticket must be persisted before it can be hashed")
        existing = TicketHashRecord.get_by_ticket_id(self._session, ticket.id)
        if existing is not None:
            return existing
        record = TicketHashRecord(
            ticket=ticket,
            hash=hash_ticket(ticket),
            algorithm=HASH_ALGORITHM,
        )
        self._session.add(record)
        self._session.flush()
        logger.debug(f"Recorded hash {record.hash} for ticket {ticket.id}")
        return record

    def verify_ticket_hash(self, ticket_id: int) -> TicketHashVerification:
        """Recompute a ticket's hash and compare with the stored record."""
        ticket = self._session.get(Ticket, ticket_id)
        if ticket is None:
            return TicketHashVerification(False, None, None)
        record = TicketHashRecord.get_by_ticket_id(self._session, ticket_id)
        if record is None:
            return TicketHashVerification(False, None, hash_ticket(ticket))
        computed = hash_ticket(ticket)
        return TicketHashVerification(record.hash == computed, record.hash, computed)

    # -------- batching --------
    def build_batch(self, draw_id: Optional[int] = None) -> Optional[MerkleBatch]:
        """Group every unbatched hash record (of ``draw_id``, if given) into a batch.

        Leaves are ordered by record id, i.e. purchase order. Returns
        ``None`` when there is nothing to batch.
        """
        stmt = select(TicketHashRecord).where(TicketHashRecord.batch_id.is_(None))
        if draw_id is not None:
            stmt = stmt.join(Ticket, Ticket.id == TicketHashRecord.ticket_id).where(
                Ticket.draw_id == draw_id
            )
        records = list(self._session.scalars(stmt.order_by(TicketHashRecord.id)))
        if not records:
            return None

        leaves = [record.hash for record in records]
        batch = MerkleBatch(
            draw_id=draw_id,
            root=build_merkle_root(leaves),
            leaf_hashes=leaves,
            leaf_count=len(leaves),
            anchor_attempts=0,
        )
        self._session.add(batch)
        self._session.flush()
        for index, record in enumerate(records):
            record.attach_batch(batch, index)
        self._session.flush()
        logger.info(f"Built Merkle batch {batch.id} with {len(leaves)} leaves, root {batch.root}")
        return batch

    def anchor(self, batch: MerkleBatch) -> MerkleBatch:
        """Anchor a single batch. Already anchored batches are returned as-is.

        Raises
        ------
        AnchoringFailed
            After the retry budget is spent; the failure is recorded on the batch.
        """
        if batch.is_anchored:
            return batch
        self.verify_batch(batch)
        batch.anchor_attempts = (batch.anchor_attempts or 0) + 1
        try:
            result = anchor_batch(
                list(batch.leaf_hashes),
                self._backend,
                leaf_preview=self._leaf_preview,
                max_attempts=self._anchor_max_attempts,
                base_delay=self._retry_base_delay,
                sleep=self._sleep,
            )
        except AnchoringFailed as exc:
            batch.last_anchor_error = exc.message
            self._session.flush()
            raise

        batch.anchor_reference = result.anchor_reference
        batch.anchor_block_number = result.block_number
        batch.anchored_at = datetime.now(timezone.utc)
        batch.last_anchor_error = None
        for record in batch.records:
            record.attach_anchor(result.anchor_reference)
        self._session.flush()
        return batch

    def anchor_pending_batches(self) -> list[MerkleBatch]:
        """Scheduled job: try to anchor every unanchored batch.

        A batch that cannot be anchored is logged and left for the next run;
        the others still proceed.
        """
        anchored: list[MerkleBatch] = []
        for batch in MerkleBatch.list_unanchored(self._session):
            try:
                anchored.append(self.anchor(batch))
            except AnchoringFailed as exc:
                logger.error(f"Batch {batch.id} not anchored this run: {exc.message}")
        return anchored

    # -------- verification --------
    def verify_batch(self, batch: MerkleBatch) -> str:
        """Recompute a batch root from the current ticket data and stored leaves.

        Returns
        -------
        str
            The verified root.

        Raises
        ------
        BatchIntegrityMismatch
            If the current ticket data or the stored leaves no longer
            reproduce the stored root.
        """
        current_hashes = [hash_ticket(record.ticket) for record in batch.records]
        record_hashes = [record.hash for record in batch.records]
        computed = build_merkle_root(current_hashes)
        if record_hashes != list(batch.leaf_hashes) or computed != batch.root:
            logger.critical(
                f"Merkle batch {batch.id} failed verification: stored root {batch.root}, "
                f"recomputed {computed}"
            )
            raise BatchIntegrityMismatch(batch.id, batch.root, computed)
        return computed

    def verify_draw_batches(self, draw_id: int) -> list[MerkleBatch]:
        """Verify every batch holding at least one ticket of ``draw_id``.

        Batches built without a draw filter are included.
        """
        batch_ids = (
            select(TicketHashRecord.batch_id)
            .join(Ticket, Ticket.id == TicketHashRecord.ticket_id)
            .where(Ticket.draw_id == draw_id, TicketHashRecord.batch_id.is_not(None))
        )
        stmt = (
            select(MerkleBatch)
            .where(MerkleBatch.id.in_(batch_ids))
            .order_by(MerkleBatch.id)
        )
        batches = list(self._session.scalars(stmt))
        for batch in batches:
            self.verify_batch(batch)
        return batches

    def verify_unbatched_tickets(self, draw_id: int) -> list[Ticket]:
        """Check the stored hash of every ticket of ``draw_id`` not yet in a batch.

        Raises
        ------
        TicketIntegrityMismatch
            If a ticket was edited since purchase or was never hashed.
        """
        stmt = (
            select(Ticket)
            .outerjoin(TicketHashRecord, TicketHashRecord.ticket_id == Ticket.id)
            .where(Ticket.draw_id == draw_id, TicketHashRecord.batch_id.is_(None))
            .order_by(Ticket.id)
        )
        tickets = list(self._session.scalars(stmt))
        for ticket in tickets:
            result = self.verify_ticket_hash(ticket.id)
            if not result.is_valid:
                logger.critical(
                    f"Ticket {ticket.id} failed verification: stored hash "
                    f"{result.stored_hash}, recomputed {result.computed_hash}"
                )
                raise TicketIntegrityMismatch(
                    ticket.id, result.stored_hash, result.computed_hash
                )
        return tickets

    def verify_draw_integrity(self, draw_id: int) -> list[MerkleBatch]:
        """Verify every batch and every unbatched ticket of ``draw_id``."""
        batches = self.verify_draw_batches(draw_id)
        self.verify_unbatched_tickets(draw_id)
        return batches

    def merkle_proof_for(self, ticket_id: int) -> Optional[MerkleProof]:
        """Inclusion proof for a batched ticket, ``None`` if not yet batched."""
        record = TicketHashRecord.get_by_ticket_id(self._session, ticket_id)
        if record is None or record.batch is None or record.leaf_index is None:
            return None
        leaves = list(record.batch.leaf_hashes)
        return MerkleProof(
            leaf_hash=record.hash,
            root=record.batch.root,
            siblings=tuple(generate_merkle_proof(leaves, record.leaf_index)),
            index=record.leaf_index,
        )

    def verify_ticket_inclusion(self, ticket_id: int) -> bool:
        proof = self.merkle_proof_for(ticket_id)
        return proof is not None and proof.verify()


__all__ = ["IntegrityLedger", "MerkleProof", "TicketHashVerification"]
