from typing import Optional

from loguru import logger

from config import settings
from errors import (
    CycleDetected,
    InvalidPlacementRequest,
    ParentNotFound,
    RootExists,
    SlotOccupied,
    SponsorNotFound,
)
from models import PlacementMode, PlacementResult, Position


def resolve_placement(
    store,
    sponsor_id: Optional[str],
    requested_side: Position,
    mode: PlacementMode,
    parent_id: Optional[str] = None,
    max_depth: Optional[int] = None,
) -> PlacementResult:
    """
    find the concrete slot a new recruit should occupy.

    modes:
      - strategic: (parent_id, requested_side) must be empty, no search
      - auto: extreme-leg descent from the sponsor on requested_side
      - root: only valid while the tree has no root

    pure query: nothing is written. the caller must insert the node in the
    same transaction (see tree_service.place_new_member).
    """
    requested_side = Position(requested_side)
    mode = PlacementMode(mode)

    if mode is PlacementMode.ROOT:
        return _resolve_root(store, sponsor_id)

    if sponsor_id is None:
        raise InvalidPlacementRequest(f"{mode.value} placement requires a sponsor")

    sponsor = store.get_node(sponsor_id)
    if sponsor is None:
        raise SponsorNotFound(sponsor_id)

    if mode is PlacementMode.STRATEGIC:
        if parent_id is None:
            raise InvalidPlacementRequest("strategic placement requires parent_id")

        parent = store.get_node(parent_id)
        if parent is None:
            raise ParentNotFound(parent_id)

        if parent.child_id(requested_side) is not None:
            raise SlotOccupied(parent_id, requested_side)

        return PlacementResult(
            parent_id=parent.id, position=requested_side, level=parent.level + 1
        )

    if max_depth is None:
        max_depth = settings.max_tree_depth
    return _descend_leg(store, sponsor, requested_side, max_depth)


def _resolve_root(store, sponsor_id: Optional[str]) -> PlacementResult:
    if sponsor_id is not None and store.get_node(sponsor_id) is None:
        raise SponsorNotFound(sponsor_id)

    root = store.get_root()
    if root is not None:
        raise RootExists(root.id)

    return PlacementResult(parent_id=None, position=None, level=0)


def _descend_leg(store, sponsor, side: Position, max_depth: int) -> PlacementResult:
    """
    walk down the sponsor's outer `side` line until that slot is free.

    S -left-> A -left-> B -left-> (empty)   => new node goes under B, left
    """
    current = sponsor
    for _ in range(max_depth):
        occupant_id = current.child_id(side)
        if occupant_id is None:
            logger.debug(
                "resolved {} slot under {} (level {}) for sponsor {}",
                side.value,
                current.id,
                current.level + 1,
                sponsor.id,
            )
            return PlacementResult(
                parent_id=current.id, position=side, level=current.level + 1
            )

        nxt = store.get_node(occupant_id)
        if nxt is None:
            # child pointer without a row: the store is inconsistent
            raise ParentNotFound(occupant_id)
        current = nxt

    raise CycleDetected(sponsor.id, max_depth)


def sponsor_leg(
    store,
    parent_id: Optional[str],
    position: Optional[Position],
    sponsor_id: Optional[str],
    max_depth: Optional[int] = None,
) -> Optional[Position]:
    """
    which of the sponsor's legs a slot (parent_id, position) belongs to.
    returns None when the slot is not inside the sponsor's subtree.
    """
    if sponsor_id is None or parent_id is None:
        return None

    # slot directly under the sponsor
    if parent_id == sponsor_id:
        return position

    # otherwise walk up from the slot's parent until the node whose
    # parent is the sponsor; that node's position is the leg.
    if max_depth is None:
        max_depth = settings.max_tree_depth
    current = store.get_node(parent_id)
    for _ in range(max_depth):
        if current is None or current.parent_id is None:
            return None
        if current.parent_id == sponsor_id:
            return current.position
        current = store.get_node(current.parent_id)

    raise CycleDetected(parent_id, max_depth)
