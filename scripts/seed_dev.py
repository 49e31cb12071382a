from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy.orm import sessionmaker
from vdraw.db.engine import make_engine
from vdraw.integrity import IntegrityLedger
from vdraw.logging_config import configure_logging
from vdraw.models import Base, Draw, WalletAccount
from vdraw.oracle import RandomnessOracle
from vdraw.prize_draw import DrawResolutionEngine
from vdraw.workflows import (
    anchor_pending_batches,
    complete_draw,
    purchase_ticket,
    request_draw_randomness,
    resolve_draw_for,
)


def main() -> None:
    """Reset the development database and run one daily draw end to end."""
    configure_logging()
    engine = make_engine()

    with engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
        Base.metadata.drop_all(bind=conn)
        conn.exec_driver_sql("PRAGMA foreign_keys=ON")

    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, expire_on_commit=False)

    now = datetime.now(timezone.utc)

    with Session.begin() as session:
        session.add_all(
            [
                WalletAccount(user_id=1, balance=Decimal("20.00")),
                WalletAccount(user_id=2, balance=Decimal("20.00")),
            ]
        )
        daily = Draw(
            draw_type="daily",
            jackpot_amount=Decimal("1000.00"),
            draw_date=now + timedelta(hours=1),
        )
        weekly = Draw(
            draw_type="weekly",
            jackpot_amount=Decimal("25000.00"),
            draw_date=now + timedelta(days=7),
        )
        session.add_all([daily, weekly])
        session.flush()

        ledger = IntegrityLedger(session)
        picks = [
            (1, [7, 12, 23, 31, 42]),
            (1, [3, 9, 18, 27, 36]),
            (2, [7, 12, 23, 31, 10]),
            (2, [1, 2, 3, 4, 5]),
        ]
        for user_id, numbers in picks:
            purchase_ticket(session, daily, user_id, numbers, Decimal("2.00"), ledger)
        purchase_ticket(
            session, weekly, 2, [4, 8, 15, 16, 23, 42], Decimal("5.00"), ledger
        )

        oracle = RandomnessOracle(session)
        receipt = request_draw_randomness(session, daily, oracle, ledger)
        numbers = complete_draw(session, daily, oracle, receipt.request_id)
        summary = resolve_draw_for(session, daily, DrawResolutionEngine(session), ledger)
        anchor_pending_batches(ledger)

    print(f"Daily draw {daily.id} winning numbers: {numbers}")
    print(f"Summary: {summary.as_dict()}")
    print("Development database seeded.")


if __name__ == "__main__":
    main()
