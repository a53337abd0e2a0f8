"""
PostgresTreeStore against a real database.

runs only when MLM_TEST_DATABASE_URL points at a scratch Postgres
database; db/schema.sql is applied and both tables are truncated first.
"""

import os
from decimal import Decimal
from pathlib import Path

import pytest

from errors import RootExists, SlotOccupied
from models import Position, Rank
from tree_service import place_new_member, record_purchase

TEST_DSN = os.environ.get("MLM_TEST_DATABASE_URL")

pytestmark = pytest.mark.skipif(not TEST_DSN, reason="MLM_TEST_DATABASE_URL not set")

SCHEMA = Path(__file__).resolve().parent.parent / "db" / "schema.sql"


@pytest.fixture
def pg_store():
    from db.db import get_conn
    from db.tree_store_db import PostgresTreeStore

    with get_conn(TEST_DSN) as conn:
        with conn.cursor() as cur:
            cur.execute(SCHEMA.read_text())
            cur.execute("TRUNCATE rank_achievements, member_nodes RESTART IDENTITY CASCADE;")
        conn.commit()
        yield PostgresTreeStore(conn)


def test_db_placement_and_propagation(pg_store):
    place_new_member(pg_store, "S", None, "left", "root")
    place_new_member(pg_store, "A", "S", "left", "auto")
    place_new_member(pg_store, "X", "S", "right", "auto")
    result = place_new_member(pg_store, "B", "S", "left", "auto")

    assert result.parent_id == "A"
    assert result.position is Position.LEFT
    assert result.level == 2

    a = pg_store.get_node("A")
    assert a.left_child_id == "B"
    assert pg_store.get_children("S") == ("A", "X")

    record_purchase(pg_store, "B", "6000")
    credits = record_purchase(pg_store, "X", "5000")

    s = pg_store.get_node("S")
    assert s.left_bv == Decimal("6000.00")
    assert s.right_bv == Decimal("5000.00")
    assert s.total_bv == Decimal("11000.00")
    assert s.current_rank is Rank.BRONZE_STAR
    assert credits[-1].rank is Rank.BRONZE_STAR
    assert [a.rank for a in pg_store.get_rank_history("S")] == [Rank.BRONZE_STAR]


def test_db_strategic_conflict_and_single_root(pg_store):
    place_new_member(pg_store, "S", None, "left", "root")
    place_new_member(pg_store, "A", "S", "left", "auto")

    with pytest.raises(SlotOccupied):
        place_new_member(pg_store, "K", "S", "left", "strategic", parent_id="S")
    assert pg_store.get_node("K") is None

    with pytest.raises(RootExists):
        place_new_member(pg_store, "T", None, "left", "root")

    assert pg_store.get_node("S").total_directs == 1
