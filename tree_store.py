import copy
import threading
from contextlib import contextmanager
from dataclasses import replace
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Protocol, Tuple

from errors import ConcurrentPlacementConflict, MemberAlreadyPlaced, MemberNotFound, RootExists
from models import MemberNode, Position, Rank, RankAchievement


class TreeStore(Protocol):
    """
    the narrow persistence contract the placement / propagation / rank
    engines depend on. implementations:
      - InMemoryTreeStore (tests, simulations)
      - db.tree_store_db.PostgresTreeStore
    """

    def transaction(self): ...

    def get_node(self, member_id: str) -> Optional[MemberNode]: ...

    def get_root(self) -> Optional[MemberNode]: ...

    def get_children(self, member_id: str) -> Tuple[Optional[str], Optional[str]]: ...

    def lock_node(self, member_id: str) -> None: ...

    def create_node(self, node: MemberNode) -> None: ...

    def update_bv(
        self, member_id: str, left_bv: Decimal, right_bv: Decimal, total_bv: Decimal
    ) -> None: ...

    def update_directs(
        self, member_id: str, total_directs: int, left_directs: int, right_directs: int
    ) -> None: ...

    def update_rank(self, member_id: str, rank: Rank) -> None: ...

    def add_rank_achievement(self, achievement: RankAchievement) -> None: ...

    def get_rank_history(self, member_id: str) -> List[RankAchievement]: ...


class InMemoryTreeStore:
    """
    dict-backed TreeStore.

    transactions are serialized with a re-entrant lock and rolled back by
    restoring a snapshot, so a failure mid-propagation leaves nothing
    credited.
    """

    def __init__(self):
        self._nodes: Dict[str, MemberNode] = {}
        self._achievements: List[RankAchievement] = []
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator["InMemoryTreeStore"]:
        with self._lock:
            nodes_before = copy.deepcopy(self._nodes)
            achievements_before = list(self._achievements)
            try:
                yield self
            except BaseException:
                self._nodes = nodes_before
                self._achievements = achievements_before
                raise

    def get_node(self, member_id: str) -> Optional[MemberNode]:
        node = self._nodes.get(member_id)
        # hand out copies so callers can't mutate stored state behind our back
        return replace(node) if node is not None else None

    def get_root(self) -> Optional[MemberNode]:
        for node in self._nodes.values():
            if node.parent_id is None:
                return replace(node)
        return None

    def get_children(self, member_id: str) -> Tuple[Optional[str], Optional[str]]:
        node = self._require(member_id)
        return node.left_child_id, node.right_child_id

    def lock_node(self, member_id: str) -> None:
        # the transaction lock already serializes writers
        self._require(member_id)

    def create_node(self, node: MemberNode) -> None:
        with self._lock:
            if node.id in self._nodes:
                raise MemberAlreadyPlaced(node.id)

            if node.parent_id is None:
                root = self.get_root()
                if root is not None:
                    raise RootExists(root.id)
                self._nodes[node.id] = replace(node)
                return

            parent = self._require(node.parent_id)
            if parent.child_id(node.position) is not None:
                raise ConcurrentPlacementConflict(node.parent_id, node.position)

            if node.position is Position.LEFT:
                parent.left_child_id = node.id
            else:
                parent.right_child_id = node.id
            self._nodes[node.id] = replace(node)

    def update_bv(
        self, member_id: str, left_bv: Decimal, right_bv: Decimal, total_bv: Decimal
    ) -> None:
        node = self._require(member_id)
        node.left_bv = left_bv
        node.right_bv = right_bv
        node.total_bv = total_bv

    def update_directs(
        self, member_id: str, total_directs: int, left_directs: int, right_directs: int
    ) -> None:
        node = self._require(member_id)
        node.total_directs = total_directs
        node.left_directs = left_directs
        node.right_directs = right_directs

    def update_rank(self, member_id: str, rank: Rank) -> None:
        self._require(member_id).current_rank = rank

    def add_rank_achievement(self, achievement: RankAchievement) -> None:
        self._achievements.append(achievement)

    def get_rank_history(self, member_id: str) -> List[RankAchievement]:
        return [a for a in self._achievements if a.member_id == member_id]

    def all_nodes(self) -> List[MemberNode]:
        return [replace(n) for n in self._nodes.values()]

    def _require(self, member_id: str) -> MemberNode:
        node = self._nodes.get(member_id)
        if node is None:
            raise MemberNotFound(member_id)
        return node
