import unittest
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from vdraw.errors import BatchIntegrityMismatch, TicketIntegrityMismatch, TicketValidationError
from vdraw.integrity import IntegrityLedger
from vdraw.models import Base, Draw, PayoutRecord, WalletAccount
from vdraw.oracle import RandomnessOracle, derive_winning_numbers
from vdraw.prize_draw import DrawResolutionEngine
from vdraw.workflows import (
    anchor_pending_batches,
    close_ticket_batch,
    complete_draw,
    draw_winners,
    purchase_ticket,
    request_draw_randomness,
    resolve_draw_for,
    user_winning_history,
    verify_ticket,
)

SEED = "c0ffee" * 10 + "abcd"
NOW = datetime(2024, 6, 1, 20, 0, tzinfo=timezone.utc)


class RecordingNotifier:
    def __init__(self):
        self.messages = []

    def notify(self, user_id, message):
        self.messages.append((user_id, message))


class DrawWorkflowTestCase(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, future=True, expire_on_commit=False)
        self.session = self.Session()

        self.draw = Draw(draw_type="daily", jackpot_amount="1000.00", draw_date=NOW)
        self.session.add(self.draw)
        self.session.flush()

        self.ledger = IntegrityLedger(self.session, sleep=lambda _: None)
        self.oracle = RandomnessOracle(self.session, seed_factory=lambda: SEED, clock=lambda: NOW)
        self.notifier = RecordingNotifier()
        self.resolver = DrawResolutionEngine(
            self.session, notifier=self.notifier, sleep=lambda _: None, clock=lambda: NOW
        )
        self.winning = derive_winning_numbers(SEED, 5, 45)
        self.losing = [n for n in range(1, 46) if n not in self.winning]

    def tearDown(self):
        self.session.close()
        self.engine.dispose()

    def _buy(self, user_id, numbers):
        return purchase_ticket(
            self.session, self.draw, user_id, numbers, Decimal("2.00"), self.ledger
        )

    def _run_draw(self):
        receipt = request_draw_randomness(self.session, self.draw, self.oracle, self.ledger)
        return complete_draw(self.session, self.draw, self.oracle, receipt.request_id)

    def test_full_draw_pays_winners_and_anchors(self):
        jackpot = self._buy(1, list(reversed(self.winning)))
        three = self._buy(2, self.winning[:3] + self.losing[:2])
        nothing = self._buy(3, self.losing[:5])

        self.assertEqual(jackpot.selected_numbers, list(reversed(self.winning)))
        self.assertTrue(jackpot.ticket_number.startswith("TKT-"))
        self.assertIsNotNone(jackpot.hash_record)

        numbers = self._run_draw()
        self.assertEqual(numbers, self.winning)
        self.assertEqual(self.draw.status, "closed")
        self.assertEqual(len(self.draw.batches), 1)

        summary = resolve_draw_for(self.session, self.draw, self.resolver, self.ledger)

        self.assertEqual(self.draw.status, "completed")
        self.assertEqual(summary.total_winners, 2)
        self.assertEqual(summary.total_prize_amount, Decimal("1050.00"))
        self.assertEqual(summary.winners_by_match_count, {5: 1, 3: 1})
        self.assertEqual(summary.processed_ticket_count, 3)
        self.assertEqual(WalletAccount.get_by_user_id(self.session, 1).balance, Decimal("1000.00"))
        self.assertEqual(WalletAccount.get_by_user_id(self.session, 2).balance, Decimal("50.00"))
        self.assertIsNone(WalletAccount.get_by_user_id(self.session, 3))
        self.assertFalse(nothing.is_winner)
        self.assertEqual(nothing.prize_amount, Decimal("0.00"))
        self.assertEqual([user for user, _ in self.notifier.messages], [1, 2])

        self.assertEqual(
            [t.id for t in draw_winners(self.session, self.draw.id)], [jackpot.id, three.id]
        )
        self.assertEqual(user_winning_history(self.session, 2), [three])
        self.assertEqual(user_winning_history(self.session, 3), [])

        before = verify_ticket(self.session, three.id, self.ledger)
        self.assertTrue(before.hash_valid)
        self.assertTrue(before.included_in_batch)
        self.assertFalse(before.anchored)

        anchored = anchor_pending_batches(self.ledger)
        self.assertEqual(len(anchored), 1)
        after = verify_ticket(self.session, three.id, self.ledger)
        self.assertTrue(after.anchored)
        self.assertEqual(after.anchor_reference, anchored[0].anchor_reference)
        self.assertEqual(after.merkle_root, anchored[0].root)

    def test_rerun_does_not_pay_twice(self):
        self._buy(1, self.winning)
        self._run_draw()
        resolve_draw_for(self.session, self.draw, self.resolver, self.ledger)
        resolve_draw_for(self.session, self.draw, self.resolver, self.ledger)

        self.assertEqual(WalletAccount.get_by_user_id(self.session, 1).balance, Decimal("1000.00"))
        self.assertEqual(len(self.notifier.messages), 1)

    def test_closed_draw_rejects_purchases(self):
        self._buy(1, self.losing[:5])
        self._run_draw()
        with self.assertRaises(TicketValidationError):
            self._buy(2, self.losing[:5])

    def test_purchase_validation(self):
        with self.assertRaises(TicketValidationError):
            self._buy(1, [1, 2, 3, 4])
        with self.assertRaises(TicketValidationError):
            self._buy(1, [1, 2, 3, 4, 46])
        with self.assertRaises(TicketValidationError):
            purchase_ticket(
                self.session, self.draw, 1, [1, 2, 3, 4, 5], Decimal("0"), self.ledger
            )
        unsaved = Draw(draw_type="daily", jackpot_amount="1.00", draw_date=NOW)
        with self.assertRaises(ValueError):
            purchase_ticket(self.session, unsaved, 1, [1, 2, 3, 4, 5], Decimal("2.00"), self.ledger)

    def test_tampering_halts_payouts(self):
        ticket = self._buy(1, self.losing[:5])
        self._run_draw()
        ticket.selected_numbers = list(self.winning)
        self.session.flush()

        with self.assertLogs("vdraw.workflows", level="CRITICAL"):
            with self.assertRaises(BatchIntegrityMismatch):
                resolve_draw_for(self.session, self.draw, self.resolver, self.ledger)

        self.assertIsNone(ticket.is_winner)
        self.assertIsNone(PayoutRecord.get_by_ticket_id(self.session, ticket.id))
        self.assertEqual(self.draw.status, "closed")
        self.assertFalse(verify_ticket(self.session, ticket.id, self.ledger).hash_valid)

    def test_tampered_unbatched_ticket_halts_payouts(self):
        ticket = self._buy(1, self.losing[:5])
        receipt = request_draw_randomness(self.session, self.draw, self.oracle)
        complete_draw(self.session, self.draw, self.oracle, receipt.request_id)
        self.assertEqual(self.draw.batches, [])
        ticket.selected_numbers = list(self.winning)
        self.session.flush()

        with self.assertLogs("vdraw.workflows", level="CRITICAL"):
            with self.assertRaises(TicketIntegrityMismatch):
                resolve_draw_for(self.session, self.draw, self.resolver, self.ledger)

        self.assertIsNone(ticket.is_winner)
        self.assertIsNone(PayoutRecord.get_by_ticket_id(self.session, ticket.id))
        self.assertEqual(self.draw.status, "closed")

    def test_complete_draw_checks_request(self):
        other = Draw(draw_type="daily", jackpot_amount="1.00", draw_date=NOW)
        self.session.add(other)
        self.session.flush()
        receipt = request_draw_randomness(self.session, other, self.oracle)

        with self.assertRaises(ValueError):
            complete_draw(self.session, self.draw, self.oracle, receipt.request_id)
        with self.assertRaises(ValueError):
            resolve_draw_for(self.session, self.draw, self.resolver)

    def test_close_ticket_batch_without_tickets(self):
        self.assertIsNone(close_ticket_batch(self.session, self.draw, self.ledger))


if __name__ == "__main__":
    unittest.main()
