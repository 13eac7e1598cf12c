"""
Unit tests for tier strategies.

Tests tier ordering, validation and escalation within a strategy.
"""

import pytest

from tier_router.core.errors import InvalidStrategyError, ValidationError
from tier_router.core.tiers import (
    Strategy,
    escalate,
    high_cost_tiers,
    is_valid_tier,
    lowest_tier,
    parse_strategy,
    tiers_for,
)


class TestStrategy:
    """Test strategy parsing and tier lists."""

    def test_parse_known_strategies(self):
        assert parse_strategy("2-tier") is Strategy.TWO_TIER
        assert parse_strategy("3-tier") is Strategy.THREE_TIER
        assert parse_strategy(Strategy.THREE_TIER) is Strategy.THREE_TIER

    def test_parse_unknown_strategy(self):
        with pytest.raises(InvalidStrategyError, match="Invalid strategy '4-tier'") as exc_info:
            parse_strategy("4-tier")
        assert exc_info.value.available == ("2-tier", "3-tier")
        assert isinstance(exc_info.value, ValidationError)

    def test_tiers_in_cost_order(self):
        assert tiers_for(Strategy.TWO_TIER) == ("primary", "critical")
        assert tiers_for(Strategy.THREE_TIER) == ("tier1", "tier2", "tier3")

    def test_tier_only_valid_in_own_strategy(self):
        assert is_valid_tier(Strategy.TWO_TIER, "critical")
        assert not is_valid_tier(Strategy.TWO_TIER, "tier3")
        assert not is_valid_tier(Strategy.THREE_TIER, "primary")

    def test_lowest_and_high_cost_tiers(self):
        assert lowest_tier(Strategy.TWO_TIER) == "primary"
        assert lowest_tier(Strategy.THREE_TIER) == "tier1"
        assert high_cost_tiers(Strategy.TWO_TIER) == ("critical",)
        assert high_cost_tiers(Strategy.THREE_TIER) == ("tier2", "tier3")


class TestEscalate:
    """Test one-step escalation."""

    def test_escalates_one_step(self):
        assert escalate(Strategy.THREE_TIER, "tier1") == "tier2"
        assert escalate(Strategy.THREE_TIER, "tier2") == "tier3"
        assert escalate(Strategy.TWO_TIER, "primary") == "critical"

    def test_ceiling_has_no_escalation(self):
        assert escalate(Strategy.THREE_TIER, "tier3") is None
        assert escalate(Strategy.TWO_TIER, "critical") is None

    def test_unknown_tier_has_no_escalation(self):
        assert escalate(Strategy.TWO_TIER, "tier1") is None
