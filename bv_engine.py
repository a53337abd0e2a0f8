from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import List, Optional

from loguru import logger

from config import settings
from errors import (
    BuyerNotFound,
    CycleDetected,
    InvalidBVAmount,
    MemberNotFound,
    TreeIntegrityError,
)
from models import AncestorCredit, Position
from rank_engine import evaluate_rank

BV_QUANT = Decimal("0.01")


def normalize_bv(bv_amount) -> Decimal:
    """
    convert an incoming BV amount to a 2dp Decimal.
    floats go through str() so 0.1 stays 0.10 and not 0.1000000000000000055...
    """
    if isinstance(bv_amount, bool):
        raise InvalidBVAmount(f"Invalid BV amount: {bv_amount!r}")
    try:
        amount = Decimal(str(bv_amount))
    except (InvalidOperation, ValueError):
        raise InvalidBVAmount(f"Invalid BV amount: {bv_amount!r}")

    if not amount.is_finite():
        raise InvalidBVAmount(f"Invalid BV amount: {bv_amount!r}")

    amount = amount.quantize(BV_QUANT, rounding=ROUND_DOWN)
    if amount <= 0:
        raise InvalidBVAmount(f"BV amount must be positive, got {bv_amount!r}")
    return amount


def propagate_purchase(
    store,
    buyer_id: str,
    bv_amount,
    credit_buyer: Optional[bool] = None,
    max_depth: Optional[int] = None,
) -> List[AncestorCredit]:
    """
    credit bv_amount to every ancestor of buyer_id, nearest first.

    at each ancestor the leg is the position of the node we walked up
    from: arriving from a left child credits left_bv, from a right child
    credits right_bv. total_bv is credited at every ancestor. each
    ancestor's rank is re-evaluated right after its own update.

    must run inside store.transaction() so a failure part way up the
    chain leaves no ancestor credited.
    """
    amount = normalize_bv(bv_amount)
    if credit_buyer is None:
        credit_buyer = settings.credit_buyer_total_bv
    if max_depth is None:
        max_depth = settings.max_tree_depth

    buyer = store.get_node(buyer_id)
    if buyer is None:
        raise BuyerNotFound(buyer_id)

    credits: List[AncestorCredit] = []

    if credit_buyer:
        store.lock_node(buyer.id)
        buyer = store.get_node(buyer.id)
        new_total = buyer.total_bv + amount
        store.update_bv(buyer.id, buyer.left_bv, buyer.right_bv, new_total)
        credits.append(
            AncestorCredit(
                ancestor_id=buyer.id,
                leg=None,
                new_left_bv=buyer.left_bv,
                new_right_bv=buyer.right_bv,
                new_total_bv=new_total,
                rank=buyer.current_rank,
            )
        )

    child = buyer
    steps = 0
    while child.parent_id is not None:
        steps += 1
        if steps > max_depth:
            raise CycleDetected(buyer_id, max_depth)

        # row lock so concurrent purchases can't lose each other's credit
        store.lock_node(child.parent_id)
        ancestor = store.get_node(child.parent_id)
        if ancestor is None:
            raise MemberNotFound(child.parent_id)

        if child.position is None:
            raise TreeIntegrityError(f"Member {child.id} has a parent but no position")
        leg = Position(child.position)
        new_left = ancestor.left_bv + amount if leg is Position.LEFT else ancestor.left_bv
        new_right = ancestor.right_bv + amount if leg is Position.RIGHT else ancestor.right_bv
        new_total = ancestor.total_bv + amount

        store.update_bv(ancestor.id, new_left, new_right, new_total)
        evaluation = evaluate_rank(store, ancestor.id)

        logger.debug(
            "credited {} BV to {} leg of {} (total {})",
            amount,
            leg.value,
            ancestor.id,
            new_total,
        )

        credits.append(
            AncestorCredit(
                ancestor_id=ancestor.id,
                leg=leg,
                new_left_bv=new_left,
                new_right_bv=new_right,
                new_total_bv=new_total,
                rank=evaluation.current_rank,
            )
        )
        child = ancestor

    return credits
