from decimal import Decimal, ROUND_DOWN
from typing import Optional

from loguru import logger

from errors import MemberNotFound
from models import (
    MemberNode,
    RANK_ORDER,
    Rank,
    RankAchievement,
    RankEvaluation,
    RankProgress,
    RankRequirement,
)


def _req(team_bv, leg_bv, directs) -> RankRequirement:
    return RankRequirement(
        team_bv=Decimal(team_bv),
        left_bv=Decimal(leg_bv),
        right_bv=Decimal(leg_bv),
        direct_recruits=directs,
    )


# team BV / per-leg BV / direct recruits needed to hold each rank
RANK_REQUIREMENTS = {
    Rank.EXECUTIVE: _req(0, 0, 0),
    Rank.BRONZE_STAR: _req(10000, 5000, 2),
    Rank.GOLD_STAR: _req(25000, 12500, 4),
    Rank.EMERALD_STAR: _req(50000, 25000, 6),
    Rank.RUBY_STAR: _req(100000, 50000, 8),
    Rank.DIAMOND: _req(250000, 125000, 10),
    Rank.WISE_PRESIDENT: _req(500000, 250000, 12),
    Rank.PRESIDENT: _req(1000000, 500000, 15),
    Rank.AMBASSADOR: _req(2500000, 1250000, 20),
    Rank.DEPUTY_DIRECTOR: _req(5000000, 2500000, 25),
    Rank.DIRECTOR: _req(10000000, 5000000, 30),
    Rank.FOUNDER: _req(25000000, 12500000, 40),
}

HUNDRED = Decimal("100")
PCT = Decimal("0.01")


def next_rank(rank: Rank) -> Optional[Rank]:
    idx = RANK_ORDER.index(rank)
    if idx + 1 >= len(RANK_ORDER):
        return None
    return RANK_ORDER[idx + 1]


def qualifies(node: MemberNode, requirement: RankRequirement) -> bool:
    """
    all four thresholds must be met at once; no weighting.
    """
    return (
        node.total_bv >= requirement.team_bv
        and node.left_bv >= requirement.left_bv
        and node.right_bv >= requirement.right_bv
        and node.total_directs >= requirement.direct_recruits
    )


def next_rank_if_eligible(node: MemberNode, requirements=None) -> Optional[Rank]:
    """
    the single tier above node.current_rank, if the node meets it.
    never skips tiers, even when a higher one is also satisfied.
    """
    requirements = requirements or RANK_REQUIREMENTS
    candidate = next_rank(node.current_rank)
    if candidate is None:
        return None
    if qualifies(node, requirements[candidate]):
        return candidate
    return None


def evaluate_rank(store, member_id: str, requirements=None) -> RankEvaluation:
    """
    advance member_id by at most one tier and persist it.
    calling this again with no new volume is a no-op unless the
    following tier is also already met.
    """
    node = store.get_node(member_id)
    if node is None:
        raise MemberNotFound(member_id)

    previous = node.current_rank
    promoted = next_rank_if_eligible(node, requirements)
    if promoted is None:
        return RankEvaluation(member_id=member_id, previous_rank=previous, current_rank=previous)

    store.update_rank(member_id, promoted)
    store.add_rank_achievement(
        RankAchievement(
            member_id=member_id,
            rank=promoted,
            total_bv=node.total_bv,
            left_bv=node.left_bv,
            right_bv=node.right_bv,
            total_directs=node.total_directs,
        )
    )
    logger.info("member {} advanced {} -> {}", member_id, previous.value, promoted.value)

    return RankEvaluation(member_id=member_id, previous_rank=previous, current_rank=promoted)


def _pct(value, target) -> Decimal:
    if target <= 0:
        return HUNDRED
    pct = Decimal(value) / Decimal(target) * HUNDRED
    return min(pct, HUNDRED).quantize(PCT, rounding=ROUND_DOWN)


def rank_progress(node: MemberNode, requirements=None) -> RankProgress:
    """
    dashboard-only progress toward the next rank: each metric capped at
    100%, then averaged. promotion never looks at this number.
    at Founder the progress is measured against Founder itself.
    """
    requirements = requirements or RANK_REQUIREMENTS
    upcoming = next_rank(node.current_rank)
    target = requirements[upcoming or node.current_rank]

    team = _pct(node.total_bv, target.team_bv)
    left = _pct(node.left_bv, target.left_bv)
    right = _pct(node.right_bv, target.right_bv)
    directs = _pct(node.total_directs, target.direct_recruits)
    overall = ((team + left + right + directs) / 4).quantize(PCT, rounding=ROUND_DOWN)

    return RankProgress(
        member_id=node.id,
        current_rank=node.current_rank,
        next_rank=upcoming,
        team_bv_pct=team,
        left_bv_pct=left,
        right_bv_pct=right,
        directs_pct=directs,
        overall_pct=overall,
    )
