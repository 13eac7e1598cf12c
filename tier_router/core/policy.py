"""
Tier policy: rule-based task classification.

Evaluation order:
1. Keyword rules - explicit signals from the task text
2. Error escalation - repeated failures push one tier up
3. Cost optimization - simple tasks default to the lowest tier
4. Session memory - what worked for similar tasks this session

Every evaluator contributes zero or more candidates; the highest
priority candidate wins. Steps 3 and 4 only run when nothing has
matched yet.
"""

from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Deque, Iterable, List, Optional, Tuple

import structlog

from tier_router.config.loader import RulesConfig

from .tiers import (
    Strategy,
    escalate,
    is_valid_tier,
    lowest_tier,
    parse_strategy,
    tiers_for,
)

logger = structlog.get_logger()

ERROR_ESCALATION_PRIORITY = 200  # outranks every ordinary keyword rule
MEMORY_PRIORITY = 30             # beats cost optimization, loses to keyword rules
COST_OPTIMIZATION_PRIORITY = 10


@dataclass(frozen=True)
class Decision:
    """A candidate tier produced by one evaluator."""
    rule_name: str
    target_tier: str
    priority: int
    reason: str
    matched_pattern: Optional[str] = None


class ErrorWindow:
    """Error timestamps within a rolling time window.

    Expired entries are purged before every read.
    """

    def __init__(self, window_minutes: float, clock: Callable[[], datetime] = datetime.now):
        self.window = timedelta(minutes=window_minutes)
        self._clock = clock
        self._errors: Deque[datetime] = deque()

    def record(self) -> None:
        self._errors.append(self._clock())
        self._purge()

    def count(self) -> int:
        self._purge()
        return len(self._errors)

    def reset(self) -> None:
        self._errors.clear()

    def _purge(self) -> None:
        cutoff = self._clock() - self.window
        while self._errors and self._errors[0] <= cutoff:
            self._errors.popleft()


class TierPolicy:
    """Classifies tasks into tiers for the active strategy.

    `memory` is any object with a `recommend(task) -> Optional[str]` method,
    normally a SessionMemory.
    """

    def __init__(
        self,
        rules: Optional[RulesConfig],
        strategy: Strategy = Strategy.TWO_TIER,
        memory=None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.rules = rules
        self._strategy = parse_strategy(strategy)
        self._memory = memory
        window_minutes = rules.error_escalation.window_minutes if rules else 30
        self.errors = ErrorWindow(window_minutes, clock)
        self._evaluators: Tuple[Callable[[str, str, str, List[Decision]], Iterable[Decision]], ...] = (
            self._keyword_matches,
            self._error_escalation_match,
            self._cost_optimization_match,
            self._memory_match,
        )

    @property
    def strategy(self) -> Strategy:
        return self._strategy

    def set_strategy(self, strategy: Strategy) -> None:
        self._strategy = parse_strategy(strategy)

    def set_memory(self, memory) -> None:
        self._memory = memory

    @property
    def escalation_enabled(self) -> bool:
        return bool(self.rules and self.rules.error_escalation.enabled)

    def record_error(self) -> None:
        """Record a failed invocation; ignored when escalation is disabled."""
        if not self.escalation_enabled:
            return
        self.errors.record()
        logger.info("error_recorded", error_count=self.errors.count())

    def reset_errors(self) -> None:
        self.errors.reset()

    def error_count(self) -> int:
        return self.errors.count()

    def available_tiers(self) -> Tuple[str, ...]:
        return tiers_for(self._strategy)

    def is_valid_tier(self, tier: str) -> bool:
        return is_valid_tier(self._strategy, tier)

    def default_tier(self) -> str:
        return lowest_tier(self._strategy)

    def classify(self, task: str, current_tier: str) -> Optional[Decision]:
        """Pick a tier for `task`, or None to keep the current tier."""
        if self.rules is None:
            return None

        task_lower = task.lower()
        matches: List[Decision] = []
        for evaluator in self._evaluators:
            candidates = list(evaluator(task, task_lower, current_tier, matches))
            matches.extend(candidates)

        if not matches:
            return None
        # max() keeps the first of equal priorities, so declaration order breaks ties
        return max(matches, key=lambda match: match.priority)

    def _keyword_matches(self, task, task_lower, current_tier, found):
        for rule in self.rules.keyword_rules:
            for pattern in rule.patterns:
                if pattern.lower() in task_lower:
                    target = rule.target_for(self._strategy)
                    if target:
                        yield Decision(
                            rule_name=rule.name,
                            target_tier=target,
                            priority=rule.priority,
                            reason=f'Matched pattern "{pattern}" in {rule.name}',
                            matched_pattern=pattern,
                        )
                    break

    def _error_escalation_match(self, task, task_lower, current_tier, found):
        escalation = self.rules.error_escalation
        if not escalation.enabled:
            return
        count = self.errors.count()
        if count < escalation.threshold:
            return
        target = escalate(self._strategy, current_tier)
        if target:
            yield Decision(
                rule_name="error_escalation",
                target_tier=target,
                priority=ERROR_ESCALATION_PRIORITY,
                reason=f"Error escalation: {count} errors in last {escalation.window_minutes:g} minutes",
            )

    def _cost_optimization_match(self, task, task_lower, current_tier, found):
        optimization = self.rules.cost_optimization
        if found or not optimization or not optimization.enabled:
            return
        for pattern in optimization.simple_task_patterns:
            if pattern.lower() in task_lower:
                yield Decision(
                    rule_name="cost_optimization",
                    target_tier=lowest_tier(self._strategy),
                    priority=COST_OPTIMIZATION_PRIORITY,
                    reason="Simple task detected - using lowest cost tier",
                    matched_pattern=pattern,
                )
                return

    def _memory_match(self, task, task_lower, current_tier, found):
        if found or self._memory is None:
            return
        recommended = self._memory.recommend(task)
        if recommended and self.is_valid_tier(recommended):
            yield Decision(
                rule_name="memory_based",
                target_tier=recommended,
                priority=MEMORY_PRIORITY,
                reason="Based on previous similar tasks",
            )
