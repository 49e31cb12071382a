from __future__ import annotations

import argparse
import sys
from typing import Optional

from alembic.autogenerate import api as ag_api
from alembic.runtime.migration import MigrationContext

from vdraw.db.engine import make_engine
from vdraw.models import Base


def _describe(ops, indent: int = 0) -> list[str]:
    lines: list[str] = []
    for op in ops:
        lines.append(f"{'  ' * indent}- {op}")
        sub_ops = getattr(op, "ops", None)
        if sub_ops:
            lines.extend(_describe(sub_ops, indent + 1))
    return lines


def check_drift(database_url: Optional[str] = None) -> int:
    """Compare the ORM models with a live database.

    Returns ``0`` when they agree, ``1`` on drift and ``2`` when the
    comparison itself failed.
    """
    engine = make_engine(database_url)
    url_display = engine.url.render_as_string(hide_password=True)
    try:
        with engine.connect() as connection:
            context = MigrationContext.configure(
                connection=connection,
                opts={
                    "compare_type": True,
                    "render_as_batch": connection.dialect.name == "sqlite",
                },
            )
            upgrade_ops = ag_api.produce_migrations(context, Base.metadata).upgrade_ops
    except Exception as exc:
        print(f"Schema drift check: ERROR for {url_display}: {exc}", file=sys.stderr)
        return 2

    if upgrade_ops is None or upgrade_ops.is_empty():
        print(f"Schema drift check: OK for {url_display}.")
        return 0
    print(f"Schema drift check: FAILED for {url_display}:")
    print("\n".join(_describe(upgrade_ops.ops or [])))
    return 1


def main() -> int:
    parser = argparse.ArgumentParser(description="Detect drift between models and database.")
    parser.add_argument("--url", default=None, help="database URL; defaults to DB_URL")
    args = parser.parse_args()
    return check_drift(args.url)


if __name__ == "__main__":
    raise SystemExit(main())
