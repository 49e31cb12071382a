import hashlib
import unittest
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from vdraw.integrity import (
    IntegrityLedger,
    TicketSnapshot,
    canonical_ticket_payload,
    hash_ticket,
)
from vdraw.models import Base, Draw, Ticket
from vdraw.workflows import purchase_ticket

PURCHASED_AT = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _snapshot(**overrides) -> TicketSnapshot:
    ticket = TicketSnapshot(
        id=1,
        user_id=2,
        draw_id=3,
        selected_numbers=(42, 7, 12, 31, 23),
        cost=Decimal("2"),
        purchased_at=PURCHASED_AT,
        agent_id=None,
    )
    return replace(ticket, **overrides)


class CanonicalPayloadTests(unittest.TestCase):
    def test_compact_json_in_fixed_key_order(self) -> None:
        self.assertEqual(
            canonical_ticket_payload(_snapshot()),
            '{"ticketId":1,"userId":2,"drawId":3,"selectedNumbers":[7,12,23,31,42],'
            '"cost":"2.00","purchaseTimestamp":1704067200000,"agentId":null}',
        )

    def test_agent_id_is_included_when_present(self) -> None:
        self.assertTrue(canonical_ticket_payload(_snapshot(agent_id=9)).endswith('"agentId":9}'))

    def test_unsaved_ticket_rejected(self) -> None:
        with self.assertRaises(ValueError):
            canonical_ticket_payload(_snapshot(id=None))


class HashTicketTests(unittest.TestCase):
    def test_hash_is_sha256_of_payload(self) -> None:
        ticket = _snapshot()
        expected = hashlib.sha256(canonical_ticket_payload(ticket).encode()).hexdigest()
        digest = hash_ticket(ticket)
        self.assertEqual(digest, expected)
        self.assertRegex(digest, r"^[0-9a-f]{64}$")

    def test_selection_order_does_not_matter(self) -> None:
        base = hash_ticket(_snapshot())
        for order in ((7, 12, 23, 31, 42), (23, 42, 7, 31, 12), (31, 23, 12, 7, 42)):
            with self.subTest(order=order):
                self.assertEqual(hash_ticket(_snapshot(selected_numbers=order)), base)

    def test_every_field_changes_hash(self) -> None:
        base = hash_ticket(_snapshot())
        changes = {
            "id": 2,
            "user_id": 5,
            "draw_id": 4,
            "selected_numbers": (7, 12, 23, 31, 41),
            "cost": Decimal("2.01"),
            "purchased_at": datetime(2024, 1, 1, 0, 0, 0, 1000, tzinfo=timezone.utc),
            "agent_id": 1,
        }
        for field_name, value in changes.items():
            with self.subTest(field=field_name):
                self.assertNotEqual(hash_ticket(_snapshot(**{field_name: value})), base)

    def test_equivalent_cost_spellings_hash_alike(self) -> None:
        self.assertEqual(
            hash_ticket(_snapshot(cost=Decimal("2.00"))),
            hash_ticket(_snapshot(cost="2")),
        )


class PersistedTicketHashTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, future=True, expire_on_commit=False)

    def tearDown(self) -> None:
        self.engine.dispose()

    def test_hash_survives_database_round_trip(self) -> None:
        with self.Session.begin() as session:
            draw = Draw(draw_type="daily", jackpot_amount="1000.00", draw_date=PURCHASED_AT)
            ticket = Ticket(
                ticket_number="TKT-1",
                user_id=2,
                draw=draw,
                selected_numbers=[42, 7, 12, 31, 23],
                cost=Decimal("2.00"),
                purchased_at=PURCHASED_AT,
            )
            session.add_all([draw, ticket])
            session.flush()
            before = hash_ticket(ticket)
            ticket_id = ticket.id

        with self.Session() as session:
            reloaded = session.get(Ticket, ticket_id)
            self.assertEqual(hash_ticket(reloaded), before)

    def test_non_utc_purchase_time_hashes_alike_after_reload(self) -> None:
        plus_two = timezone(timedelta(hours=2))
        local_time = datetime(2024, 6, 1, 12, 0, tzinfo=plus_two)
        with self.Session.begin() as session:
            draw = Draw(draw_type="daily", jackpot_amount="1000.00", draw_date=PURCHASED_AT)
            session.add(draw)
            session.flush()
            ledger = IntegrityLedger(session)
            ticket = purchase_ticket(
                session,
                draw,
                2,
                [42, 7, 12, 31, 23],
                Decimal("2.00"),
                ledger,
                purchased_at=local_time,
            )
            self.assertEqual(ticket.purchased_at, local_time)
            self.assertEqual(ticket.purchased_at.utcoffset(), timedelta(0))
            ticket_id = ticket.id

        with self.Session() as session:
            result = IntegrityLedger(session).verify_ticket_hash(ticket_id)
            self.assertTrue(result.is_valid)
            self.assertIn(
                '"purchaseTimestamp":1717236000000',
                canonical_ticket_payload(session.get(Ticket, ticket_id)),
            )


if __name__ == "__main__":
    unittest.main()
