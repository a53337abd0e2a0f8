from contextlib import contextmanager
from decimal import Decimal
from typing import List, Optional, Tuple

from loguru import logger
from psycopg import Connection
from psycopg.errors import DeadlockDetected, SerializationFailure, UniqueViolation

from db.repositories import (
    get_child_ids,
    get_member_node,
    get_rank_achievements,
    get_root_node,
    insert_member_node,
    insert_rank_achievement,
    set_child_pointer,
    update_member_bv,
    update_member_directs,
    update_member_rank,
)
from errors import (
    ConcurrentPlacementConflict,
    MemberAlreadyPlaced,
    MemberNotFound,
    RootExists,
    TransactionConflict,
)
from models import MemberNode, Rank, RankAchievement

SLOT_CONSTRAINT = "member_nodes_parent_position_key"
ROOT_CONSTRAINT = "member_nodes_single_root"
PKEY_CONSTRAINT = "member_nodes_pkey"


class PostgresTreeStore:
    """
    TreeStore over a single psycopg connection (autocommit off).
    one instance per request; transaction() commits or rolls back.
    """

    def __init__(self, conn: Connection):
        self.conn = conn

    @contextmanager
    def transaction(self):
        try:
            yield self
            self.conn.commit()
        except (DeadlockDetected, SerializationFailure) as e:
            # placement locks top-down, propagation bottom-up; postgres
            # breaks the cycle by aborting one side
            self.conn.rollback()
            logger.warning("transaction aborted by the database: {}", e)
            raise TransactionConflict(str(e).strip()) from e
        except Exception:
            self.conn.rollback()
            raise

    def get_node(self, member_id: str) -> Optional[MemberNode]:
        return get_member_node(self.conn, member_id)

    def get_root(self) -> Optional[MemberNode]:
        return get_root_node(self.conn)

    def get_children(self, member_id: str) -> Tuple[Optional[str], Optional[str]]:
        try:
            return get_child_ids(self.conn, member_id)
        except ValueError:
            raise MemberNotFound(member_id)

    def lock_node(self, member_id: str) -> None:
        if get_member_node(self.conn, member_id, for_update=True) is None:
            raise MemberNotFound(member_id)

    def create_node(self, node: MemberNode) -> None:
        if node.parent_id is not None:
            # lock the parent row so the slot check below can't go stale
            parent = get_member_node(self.conn, node.parent_id, for_update=True)
            if parent is None:
                raise MemberNotFound(node.parent_id)
            if parent.child_id(node.position) is not None:
                raise ConcurrentPlacementConflict(node.parent_id, node.position)

        try:
            insert_member_node(self.conn, node)
        except UniqueViolation as e:
            constraint = e.diag.constraint_name
            logger.warning("insert of {} violated {}", node.id, constraint)
            if constraint == SLOT_CONSTRAINT:
                raise ConcurrentPlacementConflict(node.parent_id, node.position) from e
            if constraint == ROOT_CONSTRAINT:
                raise RootExists() from e
            if constraint == PKEY_CONSTRAINT:
                raise MemberAlreadyPlaced(node.id) from e
            raise

        if node.parent_id is not None:
            if not set_child_pointer(self.conn, node.parent_id, node.position, node.id):
                raise ConcurrentPlacementConflict(node.parent_id, node.position)

    def update_bv(
        self, member_id: str, left_bv: Decimal, right_bv: Decimal, total_bv: Decimal
    ) -> None:
        update_member_bv(self.conn, member_id, left_bv, right_bv, total_bv)

    def update_directs(
        self, member_id: str, total_directs: int, left_directs: int, right_directs: int
    ) -> None:
        update_member_directs(self.conn, member_id, total_directs, left_directs, right_directs)

    def update_rank(self, member_id: str, rank: Rank) -> None:
        update_member_rank(self.conn, member_id, rank)

    def add_rank_achievement(self, achievement: RankAchievement) -> None:
        insert_rank_achievement(self.conn, achievement)

    def get_rank_history(self, member_id: str) -> List[RankAchievement]:
        return get_rank_achievements(self.conn, member_id)
