from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional


ZERO_BV = Decimal("0.00")


class Position(str, Enum):
    LEFT = "left"
    RIGHT = "right"


class PlacementMode(str, Enum):
    AUTO = "auto"
    STRATEGIC = "strategic"
    ROOT = "root"


class Rank(str, Enum):
    EXECUTIVE = "Executive"
    BRONZE_STAR = "Bronze Star"
    GOLD_STAR = "Gold Star"
    EMERALD_STAR = "Emerald Star"
    RUBY_STAR = "Ruby Star"
    DIAMOND = "Diamond"
    WISE_PRESIDENT = "Wise President"
    PRESIDENT = "President"
    AMBASSADOR = "Ambassador"
    DEPUTY_DIRECTOR = "Deputy Director"
    DIRECTOR = "Director"
    FOUNDER = "Founder"


# enum definition order is the promotion order
RANK_ORDER = list(Rank)


@dataclass
class MemberNode:
    id: str
    sponsor_id: Optional[str] = None
    parent_id: Optional[str] = None
    position: Optional[Position] = None
    level: int = 0
    left_child_id: Optional[str] = None
    right_child_id: Optional[str] = None
    left_bv: Decimal = ZERO_BV
    right_bv: Decimal = ZERO_BV
    total_bv: Decimal = ZERO_BV
    total_directs: int = 0
    left_directs: int = 0
    right_directs: int = 0
    current_rank: Rank = Rank.EXECUTIVE

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def child_id(self, side: Position) -> Optional[str]:
        return self.left_child_id if side is Position.LEFT else self.right_child_id


@dataclass(frozen=True)
class PlacementResult:
    parent_id: Optional[str]
    position: Optional[Position]
    level: int


@dataclass(frozen=True)
class AncestorCredit:
    """
    one row of a purchase propagation.
    leg is None only for the buyer's own base-case credit.
    """

    ancestor_id: str
    leg: Optional[Position]
    new_left_bv: Decimal
    new_right_bv: Decimal
    new_total_bv: Decimal
    rank: Rank


@dataclass(frozen=True)
class RankRequirement:
    team_bv: Decimal
    left_bv: Decimal
    right_bv: Decimal
    direct_recruits: int


@dataclass(frozen=True)
class RankEvaluation:
    member_id: str
    previous_rank: Rank
    current_rank: Rank

    @property
    def advanced(self) -> bool:
        return self.current_rank is not self.previous_rank


@dataclass(frozen=True)
class RankProgress:
    member_id: str
    current_rank: Rank
    next_rank: Optional[Rank]
    team_bv_pct: Decimal
    left_bv_pct: Decimal
    right_bv_pct: Decimal
    directs_pct: Decimal
    overall_pct: Decimal


@dataclass(frozen=True)
class RankAchievement:
    member_id: str
    rank: Rank
    total_bv: Decimal
    left_bv: Decimal
    right_bv: Decimal
    total_directs: int
    achieved_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
