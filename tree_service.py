from collections import deque
from typing import Any, Dict, List, Optional

from loguru import logger

from bv_engine import propagate_purchase
from config import settings
from errors import (
    ConcurrentPlacementConflict,
    InvalidTreeQuery,
    MemberNotFound,
    TransactionConflict,
    TreeError,
)
from models import (
    AncestorCredit,
    MemberNode,
    PlacementMode,
    PlacementResult,
    Position,
    RankAchievement,
    RankEvaluation,
    RankProgress,
)
from placement_engine import resolve_placement, sponsor_leg
from rank_engine import evaluate_rank, rank_progress


def place_new_member(
    store,
    member_id: str,
    sponsor_id: Optional[str],
    requested_side,
    mode,
    parent_id: Optional[str] = None,
) -> PlacementResult:
    """
    approved recruit / completed referral registration -> new tree node.

    resolve + insert + sponsor direct-count update run in one transaction.
    if another writer fills the resolved slot first (or the database
    aborts us on a lock conflict) we retry with a fresh resolve.
    """
    side = Position(requested_side)
    mode = PlacementMode(mode)
    attempts = settings.placement_max_retries

    for attempt in range(1, attempts + 1):
        try:
            with store.transaction():
                result = _place_in_tx(store, member_id, sponsor_id, side, mode, parent_id)
        except TreeError as e:
            if not e.retryable:
                raise
            if attempt >= attempts:
                logger.error(
                    "placement of {} gave up after {} attempts: {}", member_id, attempt, e
                )
                if isinstance(e, ConcurrentPlacementConflict):
                    raise
                raise ConcurrentPlacementConflict(parent_id or sponsor_id, side) from e
            logger.warning(
                "placement of {} lost a race (attempt {}/{}): {}",
                member_id,
                attempt,
                attempts,
                e,
            )
            continue

        logger.info(
            "placed {} under {} ({}) at level {}, sponsor {}, mode {}",
            member_id,
            result.parent_id,
            result.position.value if result.position else "root",
            result.level,
            sponsor_id,
            mode.value,
        )
        return result

    # unreachable: the loop either returns or re-raises
    raise ConcurrentPlacementConflict(parent_id or sponsor_id, side)


def _place_in_tx(
    store,
    member_id: str,
    sponsor_id: Optional[str],
    side: Position,
    mode: PlacementMode,
    parent_id: Optional[str],
) -> PlacementResult:
    # 1) serialize placements under this sponsor (and strategic parent)
    if sponsor_id is not None and store.get_node(sponsor_id) is not None:
        store.lock_node(sponsor_id)
    if mode is PlacementMode.STRATEGIC and parent_id is not None and parent_id != sponsor_id:
        if store.get_node(parent_id) is not None:
            store.lock_node(parent_id)

    # 2) find the slot
    result = resolve_placement(store, sponsor_id, side, mode, parent_id=parent_id)

    # 3) insert the node + parent child pointer
    store.create_node(
        MemberNode(
            id=member_id,
            sponsor_id=sponsor_id,
            parent_id=result.parent_id,
            position=result.position,
            level=result.level,
        )
    )

    # 4) referral credit for the sponsor
    if sponsor_id is not None:
        sponsor = store.get_node(sponsor_id)
        leg = sponsor_leg(store, result.parent_id, result.position, sponsor_id)
        store.update_directs(
            sponsor_id,
            sponsor.total_directs + 1,
            sponsor.left_directs + (1 if leg is Position.LEFT else 0),
            sponsor.right_directs + (1 if leg is Position.RIGHT else 0),
        )

    return result


def record_purchase(store, buyer_id: str, bv_amount) -> List[AncestorCredit]:
    """
    purchase marked paid -> BV up the ancestor chain, all-or-nothing.

    a transaction the database aborts on a lock conflict wrote nothing,
    so the whole walk is run again.
    """
    attempts = settings.purchase_max_retries

    for attempt in range(1, attempts + 1):
        try:
            with store.transaction():
                credits = propagate_purchase(store, buyer_id, bv_amount)
        except TreeError as e:
            if not e.retryable:
                raise
            if attempt >= attempts:
                logger.error(
                    "purchase by {} gave up after {} attempts: {}", buyer_id, attempt, e
                )
                raise
            logger.warning(
                "purchase by {} hit a lock conflict (attempt {}/{}): {}",
                buyer_id,
                attempt,
                attempts,
                e,
            )
            continue

        logger.info(
            "purchase by {} of {} BV credited {} member(s)", buyer_id, bv_amount, len(credits)
        )
        return credits

    # unreachable: the loop either returns or re-raises
    raise TransactionConflict(f"purchase by {buyer_id} was not processed")


def evaluate_member_rank(store, member_id: str) -> RankEvaluation:
    with store.transaction():
        return evaluate_rank(store, member_id)


def get_member(store, member_id: str) -> MemberNode:
    node = store.get_node(member_id)
    if node is None:
        raise MemberNotFound(member_id)
    return node


def get_rank_progress(store, member_id: str) -> RankProgress:
    return rank_progress(get_member(store, member_id))


def get_rank_history(store, member_id: str) -> List[RankAchievement]:
    get_member(store, member_id)
    return store.get_rank_history(member_id)


def node_to_dict(node: MemberNode) -> Dict[str, Any]:
    return {
        "member_id": node.id,
        "sponsor_id": node.sponsor_id,
        "parent_id": node.parent_id,
        "position": node.position.value if node.position else None,
        "level": node.level,
        "left_child_id": node.left_child_id,
        "right_child_id": node.right_child_id,
        "left_bv": f"{node.left_bv:.2f}",
        "right_bv": f"{node.right_bv:.2f}",
        "total_bv": f"{node.total_bv:.2f}",
        "total_directs": node.total_directs,
        "left_directs": node.left_directs,
        "right_directs": node.right_directs,
        "current_rank": node.current_rank.value,
    }


def get_binary_tree(store, member_id: str, depth: int = 3) -> Dict[str, Any]:
    """
    nested view of member_id's subtree, `depth` levels including the member.

    {"member_id": ..., ..., "left": {...} | None, "right": {...} | None}
    """
    if not 1 <= depth <= settings.subtree_max_depth:
        raise InvalidTreeQuery(
            f"depth must be between 1 and {settings.subtree_max_depth}, got {depth}"
        )
    root = get_member(store, member_id)

    def build(node: MemberNode, remaining: int) -> Dict[str, Any]:
        view = node_to_dict(node)
        view["left"] = None
        view["right"] = None
        if remaining <= 1:
            return view
        for side, child_id in (("left", node.left_child_id), ("right", node.right_child_id)):
            if child_id is None:
                continue
            child = store.get_node(child_id)
            if child is not None:
                view[side] = build(child, remaining - 1)
        return view

    return build(root, depth)


def get_downline(store, member_id: str) -> List[Dict[str, Any]]:
    """
    every descendant of member_id, breadth-first, tagged with which of
    member_id's legs it sits in.
    """
    root = get_member(store, member_id)

    downline: List[Dict[str, Any]] = []
    seen = {root.id}
    queue = deque()
    for leg in (Position.LEFT, Position.RIGHT):
        child_id = root.child_id(leg)
        if child_id is not None:
            queue.append((child_id, leg))

    while queue:
        current_id, leg = queue.popleft()
        if current_id in seen:
            # only reachable on a corrupted store
            continue
        seen.add(current_id)

        node = store.get_node(current_id)
        if node is None:
            continue

        entry = node_to_dict(node)
        entry["leg"] = leg.value
        downline.append(entry)

        for child_id in (node.left_child_id, node.right_child_id):
            if child_id is not None:
                queue.append((child_id, leg))

    return downline
