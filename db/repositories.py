from decimal import Decimal
from typing import Optional, Tuple, List

from psycopg import Connection

from models import MemberNode, Position, Rank, RankAchievement


NODE_COLUMNS = """
    id, sponsor_id, parent_id, position, level,
    left_child_id, right_child_id,
    left_bv, right_bv, total_bv,
    total_directs, left_directs, right_directs,
    current_rank
"""


def _row_to_node(row) -> MemberNode:
    (
        member_id,
        sponsor_id,
        parent_id,
        position,
        level,
        left_child_id,
        right_child_id,
        left_bv,
        right_bv,
        total_bv,
        total_directs,
        left_directs,
        right_directs,
        current_rank,
    ) = row
    return MemberNode(
        id=member_id,
        sponsor_id=sponsor_id,
        parent_id=parent_id,
        position=Position(position) if position else None,
        level=level,
        left_child_id=left_child_id,
        right_child_id=right_child_id,
        left_bv=left_bv,
        right_bv=right_bv,
        total_bv=total_bv,
        total_directs=total_directs,
        left_directs=left_directs,
        right_directs=right_directs,
        current_rank=Rank(current_rank),
    )


def get_member_node(conn: Connection, member_id: str, for_update: bool = False) -> Optional[MemberNode]:
    """
    fetch one node, or None if it doesn't exist.
    for_update=True takes a row lock until the transaction ends.
    """
    sql = f"SELECT {NODE_COLUMNS} FROM member_nodes WHERE id = %s"
    if for_update:
        sql += " FOR UPDATE"
    with conn.cursor() as cur:
        cur.execute(sql, (member_id,))
        row = cur.fetchone()
    return _row_to_node(row) if row else None


def get_root_node(conn: Connection) -> Optional[MemberNode]:
    with conn.cursor() as cur:
        cur.execute(f"SELECT {NODE_COLUMNS} FROM member_nodes WHERE parent_id IS NULL LIMIT 1")
        row = cur.fetchone()
    return _row_to_node(row) if row else None


def get_child_ids(conn: Connection, member_id: str) -> Tuple[Optional[str], Optional[str]]:
    with conn.cursor() as cur:
        cur.execute(
            "SELECT left_child_id, right_child_id FROM member_nodes WHERE id = %s",
            (member_id,),
        )
        row = cur.fetchone()
        if row is None:
            raise ValueError(f"Member {member_id} not found")
        return row[0], row[1]


def insert_member_node(conn: Connection, node: MemberNode) -> None:
    """
    insert a freshly placed node. assumes placement checks already done;
    constraint violations surface as psycopg UniqueViolation.
    """
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO member_nodes
                (id, sponsor_id, parent_id, position, level, current_rank)
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (
                node.id,
                node.sponsor_id,
                node.parent_id,
                node.position.value if node.position else None,
                node.level,
                node.current_rank.value,
            ),
        )


def set_child_pointer(conn: Connection, parent_id: str, position: Position, child_id: str) -> bool:
    """
    point parent's left/right slot at child_id, only if the slot is empty.
    returns False when the slot was already taken.
    """
    column = "left_child_id" if position is Position.LEFT else "right_child_id"
    with conn.cursor() as cur:
        cur.execute(
            f"""
            UPDATE member_nodes
            SET {column} = %s, updated_at = NOW()
            WHERE id = %s AND {column} IS NULL
            """,
            (child_id, parent_id),
        )
        return cur.rowcount == 1


def update_member_bv(
    conn: Connection,
    member_id: str,
    left_bv: Decimal,
    right_bv: Decimal,
    total_bv: Decimal,
) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE member_nodes
            SET left_bv = %s, right_bv = %s, total_bv = %s, updated_at = NOW()
            WHERE id = %s
            """,
            (left_bv, right_bv, total_bv, member_id),
        )
        if cur.rowcount != 1:
            raise ValueError(f"Failed to update BV for member {member_id}")


def update_member_directs(
    conn: Connection,
    member_id: str,
    total_directs: int,
    left_directs: int,
    right_directs: int,
) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE member_nodes
            SET total_directs = %s, left_directs = %s, right_directs = %s,
                updated_at = NOW()
            WHERE id = %s
            """,
            (total_directs, left_directs, right_directs, member_id),
        )
        if cur.rowcount != 1:
            raise ValueError(f"Failed to update directs for member {member_id}")


def update_member_rank(conn: Connection, member_id: str, rank: Rank) -> None:
    with conn.cursor() as cur:
        cur.execute(
            "UPDATE member_nodes SET current_rank = %s, updated_at = NOW() WHERE id = %s",
            (rank.value, member_id),
        )
        if cur.rowcount != 1:
            raise ValueError(f"Failed to update rank for member {member_id}")


def insert_rank_achievement(conn: Connection, achievement: RankAchievement) -> None:
    """
    idempotent on (member_id, rank): a rank is only ever reached once.
    """
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO rank_achievements
                (member_id, rank, total_bv, left_bv, right_bv, total_directs, achieved_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (member_id, rank) DO NOTHING
            """,
            (
                achievement.member_id,
                achievement.rank.value,
                achievement.total_bv,
                achievement.left_bv,
                achievement.right_bv,
                achievement.total_directs,
                achievement.achieved_at,
            ),
        )


def get_rank_achievements(conn: Connection, member_id: str) -> List[RankAchievement]:
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT member_id, rank, total_bv, left_bv, right_bv, total_directs, achieved_at
            FROM rank_achievements
            WHERE member_id = %s
            ORDER BY achieved_at, id
            """,
            (member_id,),
        )
        rows = cur.fetchall()

    return [
        RankAchievement(
            member_id=r[0],
            rank=Rank(r[1]),
            total_bv=r[2],
            left_bv=r[3],
            right_bv=r[4],
            total_directs=r[5],
            achieved_at=r[6],
        )
        for r in rows
    ]
