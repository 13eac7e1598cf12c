"""
Dispatcher: the tier state machine.

Holds the current tier, strategy and auto-mode flag and runs each task
through classify -> budget gate -> memory write -> transition.

State is owned by the Dispatcher instance; several dispatchers can
coexist without sharing anything.
"""

from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple

import structlog

from tier_router.config.loader import BudgetConfig, RouterConfig

from .budget import DEFAULT_ALERT_PERCENT, DEFAULT_MONTHLY_LIMIT_USD, BudgetStatus, build_budget
from .errors import InvalidTierError, UnknownModelReferenceError, ValidationError
from .ledger import UsageLedger
from .memory import MemorySummary, SessionMemory
from .policy import Decision, TierPolicy
from .tiers import Strategy, high_cost_tiers, lowest_tier, parse_strategy

logger = structlog.get_logger()

NO_MATCH_REASON = "no rule match"
FORCED_REASON = "forced by user"
BUDGET_BLOCKED_SUFFIX = "(budget blocked)"


@dataclass
class DispatcherState:
    """Current routing state."""
    current_tier: str
    strategy: Strategy
    auto_mode: bool


@dataclass(frozen=True)
class ModelSelection:
    """The concrete model serving a tier."""
    provider: str
    model: str
    model_id: str
    model_ref: str


@dataclass
class OrchestrationResult:
    """Outcome of routing one task.

    `target_tier` is always usable: when the budget blocks the proposed
    tier, it holds the fallback and `blocked_tier` the tier that was refused.
    """
    task: str
    target_tier: str
    previous_tier: str
    reason: str
    switched: bool
    decision: Optional[Decision] = None
    forced: bool = False
    budget_blocked: bool = False
    blocked_tier: Optional[str] = None

    @property
    def tier_changed(self) -> bool:
        return self.target_tier != self.previous_tier


@dataclass
class DispatcherStatus:
    """Snapshot of dispatcher state, spend and memory."""
    state: DispatcherState
    budget: BudgetConfig
    usage: BudgetStatus
    tier_models: Dict[str, str]
    error_count: int
    model: Optional[ModelSelection] = None
    model_error: Optional[str] = None
    memory: Optional[MemorySummary] = None


class Dispatcher:
    """Routes tasks to tiers and owns the routing state."""

    def __init__(
        self,
        config: RouterConfig,
        ledger: UsageLedger,
        memory: SessionMemory,
        policy: Optional[TierPolicy] = None,
        auto_mode: bool = True,
        budget: Optional[BudgetConfig] = None,
    ):
        self.config = config
        self.ledger = ledger
        self.memory = memory
        strategy = config.defaults.strategy
        self.policy = policy or TierPolicy(config.rules, strategy, memory)
        self.policy.set_strategy(strategy)
        self._state = DispatcherState(
            current_tier=lowest_tier(strategy),
            strategy=strategy,
            auto_mode=auto_mode,
        )
        self._budget = budget or config.budget or BudgetConfig(monthly_limit_usd=DEFAULT_MONTHLY_LIMIT_USD)

    @property
    def state(self) -> DispatcherState:
        """A copy of the current state; mutate through the transition methods."""
        return replace(self._state)

    @property
    def current_tier(self) -> str:
        return self._state.current_tier

    @property
    def strategy(self) -> Strategy:
        return self._state.strategy

    @property
    def auto_mode(self) -> bool:
        return self._state.auto_mode

    @property
    def budget(self) -> BudgetConfig:
        return self._budget

    def switch_tier(self, tier: str, reason: Optional[str] = None) -> str:
        """Switch to `tier` and return the previous tier.

        Raises:
            InvalidTierError: If the tier is not legal for the current strategy
            PersistenceError: If the switch could not be written to memory;
                the tier is left unchanged in that case
        """
        if not self.policy.is_valid_tier(tier):
            raise InvalidTierError(tier, self.strategy.value, self.policy.available_tiers())

        previous = self._state.current_tier
        self.memory.record_tier_switch(previous, tier, reason)
        self._set_tier(previous, tier, reason)
        return previous

    def _set_tier(self, previous: str, tier: str, reason: Optional[str]) -> None:
        self._state.current_tier = tier
        logger.info("tier_switched", from_tier=previous, to_tier=tier, reason=reason)

    def _budget_gate(self, tier: str) -> Tuple[str, Optional[str]]:
        """Return the tier to use and the tier refused by the budget, if any."""
        usage = self.ledger.status(self._budget)
        if not (usage.is_blocked and tier in high_cost_tiers(self.strategy)):
            return tier, None
        fallback = lowest_tier(self.strategy)
        logger.warning(
            "budget_fallback",
            blocked_tier=tier,
            fallback_tier=fallback,
            percent_used=round(usage.percent_used, 1),
        )
        return fallback, tier

    def serving_tier(self) -> str:
        """The tier a call made now should run on.

        This is the current tier unless the budget blocks it, in which case
        it is the lowest tier. The state is not changed.
        """
        tier, _ = self._budget_gate(self._state.current_tier)
        return tier

    def set_strategy(self, strategy) -> Strategy:
        """Change strategy and reset to its lowest tier. Returns the previous strategy.

        Tier names are not comparable across strategies, so nothing carries over.

        Raises:
            InvalidStrategyError: If the strategy is unknown
        """
        new_strategy = parse_strategy(strategy)
        previous = self._state.strategy
        self._state.strategy = new_strategy
        self._state.current_tier = lowest_tier(new_strategy)
        self.policy.set_strategy(new_strategy)
        logger.info(
            "strategy_changed",
            from_strategy=previous.value,
            to_strategy=new_strategy.value,
            current_tier=self._state.current_tier,
        )
        return previous

    def set_auto_mode(self, enabled: bool) -> bool:
        """Enable or disable automatic switching. Returns the previous setting."""
        previous = self._state.auto_mode
        self._state.auto_mode = bool(enabled)
        if previous != self._state.auto_mode:
            logger.info("auto_mode_changed", enabled=self._state.auto_mode)
        return previous

    def orchestrate(
        self,
        task: str,
        force_tier: Optional[str] = None,
        auto_switch: bool = True,
        context: Optional[Dict[str, Any]] = None,
        record_outcome: bool = True,
    ) -> OrchestrationResult:
        """Decide which tier should serve `task`.

        A forced tier skips classification but is still subject to the
        budget gate. The state only changes when the tier differs, auto
        mode is on and `auto_switch` is true; otherwise the result is a
        recommendation.

        A switch is written to memory together with a successful outcome
        for `task`. Callers that report the real outcome themselves pass
        `record_outcome=False`.

        Raises:
            ValidationError: If the task is empty
            InvalidTierError: If `force_tier` is not legal for the strategy
            PersistenceError: If a memory write fails; the tier is left
                unchanged in that case
        """
        if not isinstance(task, str) or not task.strip():
            raise ValidationError("Task must be a non-empty string", field="task")

        previous = self._state.current_tier
        decision = None
        forced = force_tier is not None

        if forced:
            if not self.policy.is_valid_tier(force_tier):
                raise InvalidTierError(force_tier, self.strategy.value, self.policy.available_tiers())
            target, reason = force_tier, FORCED_REASON
        else:
            decision = self.policy.classify(task, previous)
            if decision:
                target, reason = decision.target_tier, decision.reason
            else:
                target, reason = previous, NO_MATCH_REASON

        target, blocked_tier = self._budget_gate(target)
        if blocked_tier is not None:
            reason = f"{reason} {BUDGET_BLOCKED_SUFFIX}"

        switched = False
        if target != previous and self._state.auto_mode and auto_switch:
            # Every memory write lands before the tier changes
            self.memory.record_tier_switch(previous, target, reason)
            if record_outcome:
                memory_context: Dict[str, Any] = {"reason": reason}
                if context:
                    memory_context["context"] = context
                self.memory.record_outcome(task, target, True, memory_context)
            self._set_tier(previous, target, reason)
            switched = True

        return OrchestrationResult(
            task=task,
            target_tier=target,
            previous_tier=previous,
            reason=reason,
            switched=switched,
            decision=decision,
            forced=forced,
            budget_blocked=blocked_tier is not None,
            blocked_tier=blocked_tier,
        )

    def record_error(self) -> None:
        """Feed a provider failure into error escalation."""
        self.policy.record_error()

    def record_outcome(
        self,
        task: str,
        tier: str,
        success: bool,
        context: Optional[Dict[str, Any]] = None,
    ):
        return self.memory.record_outcome(task, tier, success, context)

    def current_model(self) -> ModelSelection:
        """Resolve the model serving the current tier.

        Raises:
            UnknownModelReferenceError: If the tier maps to an unconfigured model
        """
        return self.model_for(self._state.current_tier)

    def model_for(self, tier: str) -> ModelSelection:
        ref = self.config.tier_model_ref(self.strategy, tier)
        provider, model, model_config = self.config.resolve_model(ref)
        return ModelSelection(provider=provider, model=model, model_id=model_config.id, model_ref=ref)

    def set_budget(self, monthly_limit_usd: float, alert_percent: float = DEFAULT_ALERT_PERCENT) -> BudgetConfig:
        """Replace the in-memory budget. Configuration files are not touched.

        Raises:
            ValidationError: If the limit or percent is out of range
        """
        self._budget = build_budget(monthly_limit_usd, alert_percent)
        logger.info(
            "budget_updated",
            monthly_limit_usd=self._budget.monthly_limit_usd,
            thresholds=[(t.percent, t.action) for t in self._budget.alert_thresholds],
        )
        return self._budget

    def budget_status(self) -> BudgetStatus:
        return self.ledger.status(self._budget)

    def status(self, detailed: bool = False) -> DispatcherStatus:
        model = None
        model_error = None
        try:
            model = self.current_model()
        except UnknownModelReferenceError as e:
            model_error = str(e)

        return DispatcherStatus(
            state=self.state,
            budget=self._budget,
            usage=self.budget_status(),
            tier_models=dict(self.config.defaults.tier_models.get(self.strategy, {})),
            error_count=self.policy.error_count(),
            model=model,
            model_error=model_error,
            memory=self.memory.summary() if detailed else None,
        )
