"""
Tier strategies and their ordering.

A tier only has meaning inside its strategy. Tiers are listed in
ascending cost order, so the first tier is the default and the last
tier is the escalation ceiling.
"""

from enum import Enum
from typing import Dict, Optional, Tuple, Union

from .errors import InvalidStrategyError


class Strategy(str, Enum):
    """Available tier strategies."""
    TWO_TIER = "2-tier"
    THREE_TIER = "3-tier"


STRATEGY_TIERS: Dict[Strategy, Tuple[str, ...]] = {
    Strategy.TWO_TIER: ("primary", "critical"),
    Strategy.THREE_TIER: ("tier1", "tier2", "tier3"),
}

ALL_TIERS: Tuple[str, ...] = tuple(
    tier for tiers in STRATEGY_TIERS.values() for tier in tiers
)


def parse_strategy(value: Union[str, Strategy]) -> Strategy:
    """Convert a strategy name into a Strategy.

    Raises:
        InvalidStrategyError: If the name is not a known strategy
    """
    if isinstance(value, Strategy):
        return value
    try:
        return Strategy(value)
    except ValueError:
        raise InvalidStrategyError(str(value), [s.value for s in Strategy])


def tiers_for(strategy: Strategy) -> Tuple[str, ...]:
    return STRATEGY_TIERS[strategy]


def is_valid_tier(strategy: Strategy, tier: str) -> bool:
    return tier in STRATEGY_TIERS[strategy]


def lowest_tier(strategy: Strategy) -> str:
    """Lowest-cost tier of a strategy, also its default tier."""
    return STRATEGY_TIERS[strategy][0]


def high_cost_tiers(strategy: Strategy) -> Tuple[str, ...]:
    """Tiers removed by budget blocking: everything above the lowest tier."""
    return STRATEGY_TIERS[strategy][1:]


def escalate(strategy: Strategy, tier: str) -> Optional[str]:
    """Return the tier one step above `tier`, or None at the ceiling.

    An unknown tier also yields None.
    """
    tiers = STRATEGY_TIERS[strategy]
    if tier not in tiers:
        return None
    index = tiers.index(tier)
    if index + 1 >= len(tiers):
        return None
    return tiers[index + 1]
