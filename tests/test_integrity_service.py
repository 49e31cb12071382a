import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from vdraw.config import DrawEngineSettings
from vdraw.errors import AnchoringFailed, BatchIntegrityMismatch, TicketIntegrityMismatch
from vdraw.integrity import AnchorReceipt, IntegrityLedger, build_merkle_root, hash_ticket
from vdraw.models import Base, Draw, MerkleBatch, Ticket, TicketHashRecord

NOW = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


class IntegrityLedgerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, future=True, expire_on_commit=False)
        self.session = self.Session()
        self.draw = Draw(draw_type="daily", jackpot_amount="1000.00", draw_date=NOW)
        self.other_draw = Draw(draw_type="weekly", jackpot_amount="5000.00", draw_date=NOW)
        self.session.add_all([self.draw, self.other_draw])
        self.session.flush()
        self.ledger = IntegrityLedger(self.session, sleep=lambda _: None)
        self._counter = 0

    def tearDown(self) -> None:
        self.session.close()
        self.engine.dispose()

    def _ticket(self, draw: Draw = None, numbers=(1, 2, 3, 4, 5)) -> Ticket:
        self._counter += 1
        ticket = Ticket(
            ticket_number=f"TKT-{self._counter}",
            user_id=self._counter,
            draw=draw or self.draw,
            selected_numbers=list(numbers),
            cost=Decimal("2.00"),
            purchased_at=NOW + timedelta(minutes=self._counter),
        )
        self.session.add(ticket)
        self.session.flush()
        self.ledger.record_ticket_hash(ticket)
        return ticket

    def test_record_ticket_hash_is_idempotent(self) -> None:
        ticket = self._ticket()
        first = ticket.hash_record
        self.assertEqual(first.hash, hash_ticket(ticket))
        self.assertEqual(first.algorithm, "SHA-256")
        self.assertIs(self.ledger.record_ticket_hash(ticket), first)

    def test_unsaved_ticket_cannot_be_hashed(self) -> None:
        ticket = Ticket(
            ticket_number="TKT-X",
            user_id=1,
            draw_id=self.draw.id,
            selected_numbers=[1, 2, 3, 4, 5],
            cost="2.00",
        )
        with self.assertRaises(ValueError):
            self.ledger.record_ticket_hash(ticket)

    def test_verify_ticket_hash_detects_edits(self) -> None:
        ticket = self._ticket()
        self.assertTrue(self.ledger.verify_ticket_hash(ticket.id).is_valid)

        ticket.cost = Decimal("200.00")
        result = self.ledger.verify_ticket_hash(ticket.id)
        self.assertFalse(result.is_valid)
        self.assertNotEqual(result.stored_hash, result.computed_hash)

        missing = self.ledger.verify_ticket_hash(9999)
        self.assertFalse(missing.is_valid)
        self.assertIsNone(missing.stored_hash)

    def test_build_batch_orders_leaves_by_purchase(self) -> None:
        tickets = [self._ticket() for _ in range(3)]
        batch = self.ledger.build_batch(self.draw.id)

        leaves = [t.hash_record.hash for t in tickets]
        self.assertEqual(batch.leaf_hashes, leaves)
        self.assertEqual(batch.leaf_count, 3)
        self.assertEqual(batch.root, build_merkle_root(leaves))
        self.assertEqual([t.hash_record.leaf_index for t in tickets], [0, 1, 2])
        self.assertTrue(all(t.hash_record.merkle_root == batch.root for t in tickets))
        self.assertIsNone(self.ledger.build_batch(self.draw.id))

    def test_build_batch_scoped_to_draw(self) -> None:
        mine = self._ticket()
        theirs = self._ticket(draw=self.other_draw, numbers=(1, 2, 3, 4, 5, 6))
        batch = self.ledger.build_batch(self.draw.id)
        self.assertEqual(batch.leaf_hashes, [mine.hash_record.hash])
        self.assertIsNone(theirs.hash_record.batch_id)

        everything = self.ledger.build_batch()
        self.assertIsNone(everything.draw_id)
        self.assertEqual(everything.leaf_hashes, [theirs.hash_record.hash])

    def test_inclusion_proofs(self) -> None:
        tickets = [self._ticket() for _ in range(5)]
        unbatched = self._ticket(draw=self.other_draw, numbers=(1, 2, 3, 4, 5, 6))
        self.ledger.build_batch(self.draw.id)

        for ticket in tickets:
            with self.subTest(ticket=ticket.id):
                proof = self.ledger.merkle_proof_for(ticket.id)
                self.assertEqual(proof.leaf_hash, ticket.hash_record.hash)
                self.assertTrue(proof.verify())
                self.assertTrue(self.ledger.verify_ticket_inclusion(ticket.id))

        self.assertIsNone(self.ledger.merkle_proof_for(unbatched.id))
        self.assertFalse(self.ledger.verify_ticket_inclusion(unbatched.id))

    def test_anchor_fills_references(self) -> None:
        tickets = [self._ticket() for _ in range(2)]
        batch = self.ledger.build_batch(self.draw.id)

        anchored = self.ledger.anchor_pending_batches()

        self.assertEqual(anchored, [batch])
        self.assertTrue(batch.is_anchored)
        self.assertEqual(batch.anchor_attempts, 1)
        self.assertIsNotNone(batch.anchored_at)
        for ticket in tickets:
            self.assertEqual(ticket.hash_record.blockchain_anchor, batch.anchor_reference)
        self.assertEqual(self.ledger.anchor_pending_batches(), [])

    def test_failed_anchor_is_recorded_and_retried_next_run(self) -> None:
        self._ticket()
        batch = self.ledger.build_batch(self.draw.id)
        backend = MagicMock()
        backend.submit.side_effect = ConnectionError("gateway down")
        flaky = IntegrityLedger(
            self.session, anchor_backend=backend, anchor_max_attempts=2, sleep=lambda _: None
        )

        with self.assertLogs("vdraw.integrity.service", level="ERROR"):
            self.assertEqual(flaky.anchor_pending_batches(), [])
        self.assertFalse(batch.is_anchored)
        self.assertEqual(batch.anchor_attempts, 1)
        self.assertIn("gateway down", batch.last_anchor_error)
        self.assertEqual(backend.submit.call_count, 2)

        with self.assertRaises(AnchoringFailed):
            flaky.anchor(batch)
        self.assertEqual(batch.anchor_attempts, 2)

        backend.submit.side_effect = None
        backend.submit.return_value = AnchorReceipt(reference="0xanchor", block_number=5)
        self.assertEqual(flaky.anchor_pending_batches(), [batch])
        self.assertEqual(batch.anchor_reference, "0xanchor")
        self.assertEqual(batch.anchor_block_number, 5)
        self.assertIsNone(batch.last_anchor_error)

    def test_tampered_ticket_breaks_batch_verification(self) -> None:
        tickets = [self._ticket() for _ in range(3)]
        batch = self.ledger.build_batch(self.draw.id)
        self.assertEqual(self.ledger.verify_batch(batch), batch.root)

        tickets[1].selected_numbers = [5, 6, 7, 8, 9]
        with self.assertLogs("vdraw.integrity.service", level="CRITICAL"):
            with self.assertRaises(BatchIntegrityMismatch) as ctx:
                self.ledger.verify_draw_batches(self.draw.id)
        self.assertEqual(ctx.exception.batch_id, batch.id)
        self.assertEqual(ctx.exception.stored_root, batch.root)

        with self.assertLogs("vdraw.integrity.service", level="CRITICAL"):
            with self.assertRaises(BatchIntegrityMismatch):
                self.ledger.anchor(batch)
        self.assertFalse(batch.is_anchored)

    def test_tampered_leaf_list_breaks_batch_verification(self) -> None:
        self._ticket()
        self._ticket()
        batch = self.ledger.build_batch(self.draw.id)
        batch.leaf_hashes = list(reversed(batch.leaf_hashes))
        with self.assertLogs("vdraw.integrity.service", level="CRITICAL"):
            with self.assertRaises(BatchIntegrityMismatch):
                self.ledger.verify_batch(batch)

    def test_draw_check_covers_batches_built_without_a_draw(self) -> None:
        ticket = self._ticket()
        self._ticket(draw=self.other_draw, numbers=(1, 2, 3, 4, 5, 6))
        batch = self.ledger.build_batch()
        self.assertIsNone(batch.draw_id)
        self.assertEqual(self.ledger.verify_draw_integrity(self.draw.id), [batch])

        ticket.selected_numbers = [5, 6, 7, 8, 9]
        with self.assertLogs("vdraw.integrity.service", level="CRITICAL"):
            with self.assertRaises(BatchIntegrityMismatch) as ctx:
                self.ledger.verify_draw_integrity(self.draw.id)
        self.assertEqual(ctx.exception.batch_id, batch.id)

    def test_draw_check_covers_unbatched_tickets(self) -> None:
        self._ticket()
        self.ledger.build_batch(self.draw.id)
        loose = self._ticket()
        self.assertEqual(self.ledger.verify_unbatched_tickets(self.draw.id), [loose])
        self.assertEqual(len(self.ledger.verify_draw_integrity(self.draw.id)), 1)

        loose.cost = Decimal("200.00")
        with self.assertLogs("vdraw.integrity.service", level="CRITICAL"):
            with self.assertRaises(TicketIntegrityMismatch) as ctx:
                self.ledger.verify_draw_integrity(self.draw.id)
        self.assertEqual(ctx.exception.ticket_id, loose.id)
        self.assertEqual(ctx.exception.stored_hash, loose.hash_record.hash)

    def test_ticket_without_hash_record_fails_draw_check(self) -> None:
        ticket = Ticket(
            ticket_number="TKT-NOHASH",
            user_id=99,
            draw=self.draw,
            selected_numbers=[1, 2, 3, 4, 5],
            cost=Decimal("2.00"),
            purchased_at=NOW,
        )
        self.session.add(ticket)
        self.session.flush()

        with self.assertLogs("vdraw.integrity.service", level="CRITICAL"):
            with self.assertRaises(TicketIntegrityMismatch) as ctx:
                self.ledger.verify_draw_integrity(self.draw.id)
        self.assertEqual(ctx.exception.ticket_id, ticket.id)
        self.assertIsNone(ctx.exception.stored_hash)
        self.assertEqual(ctx.exception.computed_hash, hash_ticket(ticket))

    def test_write_once_batch_membership(self) -> None:
        ticket = self._ticket()
        batch = self.ledger.build_batch(self.draw.id)
        with self.assertRaises(ValueError):
            ticket.hash_record.attach_batch(batch, 0)
        record = TicketHashRecord.get_by_ticket_id(self.session, ticket.id)
        record.attach_anchor("0xfirst")
        record.attach_anchor("0xfirst")
        with self.assertRaises(ValueError):
            record.attach_anchor("0xsecond")

    def test_from_settings(self) -> None:
        settings = DrawEngineSettings(anchor_leaf_preview=1, anchor_max_attempts=1)
        backend = MagicMock()
        backend.submit.return_value = AnchorReceipt(reference="0xanchor")
        ledger = IntegrityLedger.from_settings(self.session, settings, anchor_backend=backend)
        first = self._ticket()
        self._ticket()
        batch = ledger.build_batch(self.draw.id)
        ledger.anchor(batch)
        backend.submit.assert_called_once_with(batch.root, [first.hash_record.hash])
        self.assertEqual(MerkleBatch.list_unanchored(self.session), [])


if __name__ == "__main__":
    unittest.main()
