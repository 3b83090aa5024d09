#!/usr/bin/env python3
"""
Simple migration bootstrapper.

Creates all tables defined in `bottlerun.db.models`, upgrades order rows written
by older releases (single `bottleType`/`quantity` shape, missing bottle types,
stale totals or statuses) and prints a quick table-row summary.
"""
from __future__ import annotations

import sys
from pathlib import Path
ROOT_DIR = Path(__file__).resolve().parents[2]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import argparse
import logging
from typing import Dict

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from bottlerun.db.models import Base, Order
from bottlerun.db.session import get_database_url, get_engine, get_session
from bottlerun.services.bottles import BottlePolicy, normalize_bottles, total_count
from bottlerun.services.status import derive_order_status
from bottlerun.utils.config import load_config

logger = logging.getLogger(__name__)


def _ensure_sqlite_directory() -> None:
    url = get_database_url()
    if url.get_backend_name() != "sqlite":
        return
    database = url.database
    if not database or database in {":memory:", ""}:
        return
    db_path = Path(database)
    db_path.parent.mkdir(parents=True, exist_ok=True)


def upgrade_orders(session: Session, policy: BottlePolicy) -> int:
    """Rewrite orders into the canonical bottle map; returns the number of rows changed."""
    changed = 0
    for order in session.scalars(select(Order)):
        bottles = normalize_bottles(dict(order.bottles or {}), policy)
        total = total_count(bottles)
        status = derive_order_status(order)
        if bottles != order.bottles or total != order.total_bottle_count or status != order.status:
            order.bottles = bottles
            order.total_bottle_count = total
            order.status = status
            changed += 1
    session.flush()
    return changed


def _collect_counts() -> Dict[str, int]:
    counts: Dict[str, int] = {}
    with get_session() as session:
        for table in Base.metadata.sorted_tables:
            result = session.execute(select(func.count()).select_from(table))
            counts[table.name] = result.scalar_one()
    return counts


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Create or upgrade the dispatch schema")
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Drop and recreate all tables (SQLite only). WARNING: destructive.",
    )
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    _ensure_sqlite_directory()
    engine = get_engine()
    if args.reset:
        if engine.dialect.name != "sqlite":
            print("--reset is only supported for SQLite databases.", file=sys.stderr)
            sys.exit(1)
        Base.metadata.drop_all(engine)
        print("Dropped existing tables (SQLite reset).")

    Base.metadata.create_all(engine)
    policy = BottlePolicy.from_settings(load_config().run_policy)
    with get_session() as session:
        upgraded = upgrade_orders(session, policy)
    logger.info("Upgraded %d legacy order row(s)", upgraded)

    counts = _collect_counts()
    print("Migration complete. Table row counts:")
    for name, count in counts.items():
        print(f"  - {name}: {count}")


if __name__ == "__main__":
    main()
