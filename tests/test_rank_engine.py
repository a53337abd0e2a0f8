from decimal import Decimal

import pytest

from errors import MemberNotFound
from models import MemberNode, Rank, RankRequirement
from rank_engine import (
    RANK_REQUIREMENTS,
    evaluate_rank,
    next_rank,
    next_rank_if_eligible,
    qualifies,
    rank_progress,
)


def _member(store, member_id="M", total="0", left="0", right="0", directs=0, rank=Rank.EXECUTIVE):
    store.create_node(MemberNode(id=member_id, current_rank=rank))
    store.update_bv(member_id, Decimal(left), Decimal(right), Decimal(total))
    store.update_directs(member_id, directs, 0, 0)
    return member_id


def test_rank_order_is_fixed():
    assert next_rank(Rank.EXECUTIVE) is Rank.BRONZE_STAR
    assert next_rank(Rank.BRONZE_STAR) is Rank.GOLD_STAR
    assert next_rank(Rank.DIRECTOR) is Rank.FOUNDER
    assert next_rank(Rank.FOUNDER) is None
    assert list(RANK_REQUIREMENTS) == list(Rank)


def test_requirements_increase_with_rank():
    reqs = [RANK_REQUIREMENTS[r] for r in Rank]
    for lower, higher in zip(reqs, reqs[1:]):
        assert higher.team_bv > lower.team_bv
        assert higher.left_bv > lower.left_bv
        assert higher.direct_recruits > lower.direct_recruits


def test_qualifies_is_a_logical_and():
    req = RankRequirement(
        team_bv=Decimal("10000"), left_bv=Decimal("5000"), right_bv=Decimal("5000"), direct_recruits=2
    )
    ok = MemberNode(id="x", total_bv=Decimal("10000"), left_bv=Decimal("5000"),
                    right_bv=Decimal("5000"), total_directs=2)
    assert qualifies(ok, req)

    # huge volume can't make up for one missing direct
    short_directs = MemberNode(id="x", total_bv=Decimal("999999"), left_bv=Decimal("999999"),
                               right_bv=Decimal("999999"), total_directs=1)
    assert not qualifies(short_directs, req)

    weak_leg = MemberNode(id="x", total_bv=Decimal("20000"), left_bv=Decimal("15000"),
                          right_bv=Decimal("4999.99"), total_directs=5)
    assert not qualifies(weak_leg, req)


def test_bronze_star_scenario(store):
    """
    15000 team / 6000 / 6000 / 3 directs -> exactly Bronze Star,
    and a second call without new volume stays there.
    """
    _member(store, total="15000", left="6000", right="6000", directs=3)

    first = evaluate_rank(store, "M")
    assert first.previous_rank is Rank.EXECUTIVE
    assert first.current_rank is Rank.BRONZE_STAR
    assert first.advanced

    second = evaluate_rank(store, "M")
    assert second.current_rank is Rank.BRONZE_STAR
    assert not second.advanced
    assert store.get_node("M").current_rank is Rank.BRONZE_STAR


def test_one_tier_per_call_when_higher_tiers_are_met(store):
    """
    totals good enough for Gold Star: Bronze on the first call, Gold on
    the second, then nothing (Emerald needs 50000 team BV).
    """
    _member(store, total="30000", left="13000", right="13000", directs=5)

    assert evaluate_rank(store, "M").current_rank is Rank.BRONZE_STAR
    assert evaluate_rank(store, "M").current_rank is Rank.GOLD_STAR
    third = evaluate_rank(store, "M")
    assert third.current_rank is Rank.GOLD_STAR
    assert not third.advanced

    history = store.get_rank_history("M")
    assert [a.rank for a in history] == [Rank.BRONZE_STAR, Rank.GOLD_STAR]
    assert history[0].total_bv == Decimal("30000")


def test_founder_is_terminal(store):
    _member(store, total="99999999", left="99999999", right="99999999", directs=100,
            rank=Rank.FOUNDER)
    result = evaluate_rank(store, "M")
    assert result.current_rank is Rank.FOUNDER
    assert not result.advanced


def test_evaluate_unknown_member(store):
    with pytest.raises(MemberNotFound):
        evaluate_rank(store, "nobody")


def test_next_rank_if_eligible_with_custom_table():
    custom = dict(RANK_REQUIREMENTS)
    custom[Rank.BRONZE_STAR] = RankRequirement(
        team_bv=Decimal("1"), left_bv=Decimal("0"), right_bv=Decimal("0"), direct_recruits=0
    )
    node = MemberNode(id="x", total_bv=Decimal("1"))
    assert next_rank_if_eligible(node) is None
    assert next_rank_if_eligible(node, custom) is Rank.BRONZE_STAR


def test_rank_progress_is_a_capped_average():
    """
    toward Bronze Star (10000 / 5000 / 5000 / 2):
    team 50%, left 100% (capped), right 20%, directs 50% -> 55%
    """
    node = MemberNode(id="x", total_bv=Decimal("5000"), left_bv=Decimal("9000"),
                      right_bv=Decimal("1000"), total_directs=1)
    progress = rank_progress(node)

    assert progress.next_rank is Rank.BRONZE_STAR
    assert progress.team_bv_pct == Decimal("50.00")
    assert progress.left_bv_pct == Decimal("100.00")
    assert progress.right_bv_pct == Decimal("20.00")
    assert progress.directs_pct == Decimal("50.00")
    assert progress.overall_pct == Decimal("55.00")


def test_rank_progress_does_not_gate_promotion(store):
    """
    75% average progress, but directs are short: no promotion.
    """
    _member(store, total="10000", left="5000", right="5000", directs=0)
    node = store.get_node("M")
    assert rank_progress(node).overall_pct == Decimal("75.00")
    assert not evaluate_rank(store, "M").advanced


def test_rank_progress_at_founder():
    node = MemberNode(id="x", current_rank=Rank.FOUNDER, total_bv=Decimal("25000000"),
                      left_bv=Decimal("12500000"), right_bv=Decimal("12500000"), total_directs=40)
    progress = rank_progress(node)
    assert progress.next_rank is None
    assert progress.overall_pct == Decimal("100.00")
