from decimal import Decimal
from typing import Optional, Dict, Any, List

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from pydantic import BaseModel, Field

from bv_engine import normalize_bv
from config import settings
from db.db import get_conn
from db.tree_store_db import PostgresTreeStore
from errors import (
    BuyerNotFound,
    ConcurrentPlacementConflict,
    MemberAlreadyPlaced,
    MemberNotFound,
    ParentNotFound,
    RootExists,
    SlotOccupied,
    SponsorNotFound,
    TreeError,
    TreeIntegrityError,
)
from logger import setup_logging
from models import AncestorCredit, PlacementMode, Position, RankAchievement
from tree_service import (
    evaluate_member_rank,
    get_binary_tree,
    get_downline,
    get_member,
    get_rank_history,
    get_rank_progress,
    node_to_dict,
    place_new_member,
    record_purchase,
)


setup_logging()

app = FastAPI(title="Binary MLM Tree Service", version="0.1.0")

# CORS middleware to allow the dashboards to call the API
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_store():
    """
    one connection + store per request.
    """
    with get_conn() as conn:
        yield PostgresTreeStore(conn)


# ---------
# pydantic models (requests)
# ---------

class PlacementRequest(BaseModel):
    member_id: str = Field(..., min_length=1, description="ID of the approved recruit")
    sponsor_id: Optional[str] = Field(None, description="Recruiting member; omit for the first root")
    side: Position = Field(..., description="Preferred leg: left or right")
    mode: PlacementMode = Field(PlacementMode.AUTO, description="auto, strategic or root")
    parent_id: Optional[str] = Field(None, description="Exact parent for strategic placement")


class PurchaseRequest(BaseModel):
    buyer_id: str = Field(..., min_length=1, description="Member who paid for the purchase")
    bv_amount: Decimal = Field(..., gt=0, description="Business volume of the purchase")


# ---------
# helpers
# ---------

NOT_FOUND_ERRORS = (SponsorNotFound, ParentNotFound, BuyerNotFound, MemberNotFound)
CONFLICT_ERRORS = (RootExists, MemberAlreadyPlaced)


def _to_http(e: Exception) -> HTTPException:
    """
    normalize service errors into HTTP errors.
    """
    if isinstance(e, NOT_FOUND_ERRORS):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (SlotOccupied, ConcurrentPlacementConflict)):
        return HTTPException(
            status_code=409,
            detail=f"unable to place recruit, please retry: {e}",
        )
    if isinstance(e, TreeError) and e.retryable:
        return HTTPException(status_code=409, detail=f"request conflicted, please retry: {e}")
    if isinstance(e, CONFLICT_ERRORS):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, TreeIntegrityError):
        logger.error("tree integrity failure: {}", e)
        return HTTPException(status_code=500, detail="Internal server error")
    if isinstance(e, ValueError):
        # business rule violations (bad amount, missing parent_id, etc.)
        return HTTPException(status_code=400, detail=str(e))
    logger.opt(exception=e).error("unexpected error")
    return HTTPException(status_code=500, detail="Internal server error")


def _fmt(d: Decimal) -> str:
    return f"{d:.2f}"


def _credit_to_dict(c: AncestorCredit) -> Dict[str, Any]:
    return {
        "ancestor_id": c.ancestor_id,
        "leg": c.leg.value if c.leg else None,
        "left_bv": _fmt(c.new_left_bv),
        "right_bv": _fmt(c.new_right_bv),
        "total_bv": _fmt(c.new_total_bv),
        "rank": c.rank.value,
    }


def _achievement_to_dict(a: RankAchievement) -> Dict[str, Any]:
    return {
        "rank": a.rank.value,
        "total_bv": _fmt(a.total_bv),
        "left_bv": _fmt(a.left_bv),
        "right_bv": _fmt(a.right_bv),
        "total_directs": a.total_directs,
        "achieved_at": a.achieved_at.isoformat() if a.achieved_at else None,
    }


# ---------
# endpoints
# ---------


@app.post("/api/tree/place", status_code=201)
def tree_place(payload: PlacementRequest, store=Depends(get_store)):
    """
    place an approved recruit in the binary tree.
    """
    try:
        result = place_new_member(
            store,
            member_id=payload.member_id,
            sponsor_id=payload.sponsor_id,
            requested_side=payload.side,
            mode=payload.mode,
            parent_id=payload.parent_id,
        )
    except Exception as e:
        raise _to_http(e)

    return {
        "member_id": payload.member_id,
        "parent_id": result.parent_id,
        "position": result.position.value if result.position else None,
        "level": result.level,
    }


@app.post("/api/purchases")
def purchase_record(payload: PurchaseRequest, store=Depends(get_store)):
    """
    purchase marked paid: credit BV to every ancestor of the buyer.

    response:
    {
      "buyer_id": "M",
      "bv_amount": "1000.00",
      "updates": [{"ancestor_id": ..., "leg": "left", "left_bv": ..., ...}, ...]
    }
    """
    try:
        credits = record_purchase(store, payload.buyer_id, payload.bv_amount)
    except Exception as e:
        raise _to_http(e)

    return {
        "buyer_id": payload.buyer_id,
        "bv_amount": _fmt(normalize_bv(payload.bv_amount)),
        "updates": [_credit_to_dict(c) for c in credits],
    }


@app.get("/api/tree/members/{member_id}")
def tree_member(member_id: str, store=Depends(get_store)):
    try:
        node = get_member(store, member_id)
    except Exception as e:
        raise _to_http(e)
    return node_to_dict(node)


@app.get("/api/tree/members/{member_id}/subtree")
def tree_subtree(
    member_id: str,
    depth: int = Query(
        3,
        ge=1,
        le=settings.subtree_max_depth,
        description="Levels to include, counting the member",
    ),
    store=Depends(get_store),
):
    try:
        return get_binary_tree(store, member_id, depth=depth)
    except Exception as e:
        raise _to_http(e)


@app.get("/api/tree/members/{member_id}/downline")
def tree_downline(member_id: str, store=Depends(get_store)):
    try:
        members: List[Dict[str, Any]] = get_downline(store, member_id)
    except Exception as e:
        raise _to_http(e)

    return {
        "member_id": member_id,
        "left_count": sum(1 for m in members if m["leg"] == "left"),
        "right_count": sum(1 for m in members if m["leg"] == "right"),
        "members": members,
    }


@app.post("/api/ranks/{member_id}/evaluate")
def rank_evaluate(member_id: str, store=Depends(get_store)):
    try:
        evaluation = evaluate_member_rank(store, member_id)
    except Exception as e:
        raise _to_http(e)

    return {
        "member_id": member_id,
        "previous_rank": evaluation.previous_rank.value,
        "current_rank": evaluation.current_rank.value,
        "advanced": evaluation.advanced,
    }


@app.get("/api/ranks/{member_id}/progress")
def rank_progress_view(member_id: str, store=Depends(get_store)):
    """
    dashboard progress toward the next rank. display only.
    """
    try:
        progress = get_rank_progress(store, member_id)
    except Exception as e:
        raise _to_http(e)

    return {
        "member_id": member_id,
        "current_rank": progress.current_rank.value,
        "next_rank": progress.next_rank.value if progress.next_rank else None,
        "progress": {
            "team_bv": _fmt(progress.team_bv_pct),
            "left_bv": _fmt(progress.left_bv_pct),
            "right_bv": _fmt(progress.right_bv_pct),
            "directs": _fmt(progress.directs_pct),
            "overall": _fmt(progress.overall_pct),
        },
    }


@app.get("/api/ranks/{member_id}/history")
def rank_history(member_id: str, store=Depends(get_store)):
    try:
        achievements = get_rank_history(store, member_id)
    except Exception as e:
        raise _to_http(e)

    return {
        "member_id": member_id,
        "achievements": [_achievement_to_dict(a) for a in achievements],
    }
