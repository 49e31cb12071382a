from __future__ import annotations

import argparse
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import func, inspect, select
from sqlalchemy.orm import Session

from vdraw.db.engine import make_engine
from vdraw.models import Draw, MerkleBatch, RandomnessAuditEntry, Ticket

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def upgrade_db(target_revision: str = "head") -> None:
    """Apply Alembic migrations up to the requested revision."""
    alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    command.upgrade(alembic_cfg, target_revision)


def print_summary() -> None:
    """Print the tables of the configured database and how many rows the ledger holds."""
    engine = make_engine()
    tables = set(inspect(engine).get_table_names())
    print("Current tables:", ", ".join(sorted(tables)))
    with Session(engine) as session:
        for model in (Draw, Ticket, RandomnessAuditEntry, MerkleBatch):
            if model.__tablename__ not in tables:
                continue
            count = session.scalar(select(func.count()).select_from(model))
            print(f"  {model.__tablename__}: {count} row(s)")


def main() -> None:
    parser = argparse.ArgumentParser(description="Migrate the draw engine database.")
    parser.add_argument("revision", nargs="?", default="head")
    args = parser.parse_args()
    upgrade_db(args.revision)
    print_summary()


if __name__ == "__main__":
    main()
