"""
Operations exposed to a calling tool layer.

Each operation returns a ToolResult with structured data and a
human-readable summary. Validation problems (bad tier, bad budget,
empty task) come back as failed results instead of exceptions.
Persistence failures propagate to the caller.
"""

import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog

from tier_router.core.budget import DEFAULT_ALERT_PERCENT, BudgetStatus
from tier_router.core.dispatcher import Dispatcher
from tier_router.core.errors import InvalidTierError, UnknownModelReferenceError, ValidationError

logger = structlog.get_logger()

DIVIDER = "-" * 40
TASK_SUMMARY_MAX_LENGTH = 100

# Failures reported to the caller as results rather than raised
RECOVERABLE_ERRORS: Tuple[type, ...] = (ValidationError, InvalidTierError, UnknownModelReferenceError)


@dataclass
class ToolResult:
    """Structured result plus a text summary."""
    ok: bool
    summary: str
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: Exception) -> "ToolResult":
        data: Dict[str, Any] = {"error_type": type(error).__name__}
        if isinstance(error, InvalidTierError):
            data["available_tiers"] = list(error.available)
        return cls(ok=False, summary=f"Error: {error}", data=data, error=str(error))


def _format_usd(amount: float) -> str:
    return f"${amount:,.2f}"


def _require_bool(value: Any, name: str) -> None:
    if not isinstance(value, bool):
        raise ValidationError(f"{name} must be a boolean, got {type(value).__name__}", field=name)


def _usage_lines(usage: BudgetStatus) -> List[str]:
    rounded = usage.rounded()
    lines = [
        f"Month:       {usage.period}",
        f"Spent:       {_format_usd(rounded['spent_usd'])} / {_format_usd(rounded['budget_usd'])}",
        f"Usage:       {rounded['percent_used']:.1f}%",
        f"Remaining:   {_format_usd(rounded['remaining_usd'])}",
    ]
    for alert in usage.triggered_alerts:
        lines.append(f"  {alert.percent:g}% threshold: {alert.action.replace('_', ' ')}")
    if usage.is_blocked:
        lines.append("HIGH-TIER BLOCKED: budget limit reached, only the lowest tier is available")
    return lines


class RouterTools:
    """Tool-call surface over a Dispatcher."""

    def __init__(self, dispatcher: Dispatcher):
        self.dispatcher = dispatcher
        self._handlers: Dict[str, Callable[..., ToolResult]] = {
            "switch_tier": self.switch_tier,
            "set_auto_mode": self.set_auto_mode,
            "orchestrate": self.orchestrate,
            "get_status": self.get_status,
            "set_budget": self.set_budget,
        }

    def tool_names(self) -> List[str]:
        return list(self._handlers)

    def call(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolResult:
        """Dispatch a tool call by name."""
        handler = self._handlers.get(name)
        if handler is None:
            return ToolResult(ok=False, summary=f"Unknown tool: {name}", error=f"Unknown tool: {name}")
        arguments = arguments or {}
        try:
            inspect.signature(handler).bind(**arguments)
        except TypeError as e:
            return ToolResult(ok=False, summary=f"Invalid arguments for {name}: {e}", error=str(e))
        return handler(**arguments)

    def switch_tier(self, tier: str, reason: Optional[str] = None) -> ToolResult:
        try:
            previous = self.dispatcher.switch_tier(tier, reason)
            model = self.dispatcher.current_model()
        except RECOVERABLE_ERRORS as e:
            logger.info("tool_call_rejected", tool="switch_tier", error=str(e))
            return ToolResult.failure(e)

        summary = f"Switched from {previous} to {tier}"
        if reason:
            summary += f" ({reason})"
        summary += f".\nActive model: {model.model_ref}"
        return ToolResult(
            ok=True,
            summary=summary,
            data={
                "previous_tier": previous,
                "current_tier": tier,
                "reason": reason,
                "model_ref": model.model_ref,
                "model_id": model.model_id,
            },
        )

    def set_auto_mode(self, enabled: bool, strategy: Optional[str] = None) -> ToolResult:
        previous_strategy = self.dispatcher.strategy
        strategy_changed = False
        try:
            _require_bool(enabled, "enabled")
            if strategy and strategy != previous_strategy.value:
                self.dispatcher.set_strategy(strategy)
                strategy_changed = True
        except RECOVERABLE_ERRORS as e:
            logger.info("tool_call_rejected", tool="set_auto_mode", error=str(e))
            return ToolResult.failure(e)

        previous_auto_mode = self.dispatcher.set_auto_mode(enabled)

        lines = []
        if previous_auto_mode != bool(enabled):
            lines.append(f"Auto mode {'enabled' if enabled else 'disabled'}")
        else:
            lines.append(f"Auto mode is already {'enabled' if enabled else 'disabled'}")
        if strategy_changed:
            lines.append(f"Strategy changed from {previous_strategy.value} to {self.dispatcher.strategy.value}")
            lines.append(f"Current tier reset to: {self.dispatcher.current_tier}")

        return ToolResult(
            ok=True,
            summary="\n".join(lines),
            data={
                "auto_mode": self.dispatcher.auto_mode,
                "strategy": self.dispatcher.strategy.value,
                "strategy_changed": strategy_changed,
                "current_tier": self.dispatcher.current_tier,
            },
        )

    def orchestrate(
        self,
        task: str,
        context: Optional[Dict[str, Any]] = None,
        force_tier: Optional[str] = None,
        auto_switch: bool = True,
    ) -> ToolResult:
        try:
            _require_bool(auto_switch, "auto_switch")
            result = self.dispatcher.orchestrate(
                task, force_tier=force_tier, auto_switch=auto_switch, context=context
            )
        except RECOVERABLE_ERRORS as e:
            logger.info("tool_call_rejected", tool="orchestrate", error=str(e))
            return ToolResult.failure(e)

        shown = task[:TASK_SUMMARY_MAX_LENGTH] + ("..." if len(task) > TASK_SUMMARY_MAX_LENGTH else "")
        lines = ["Task Classification", DIVIDER, f'Task: "{shown}"']
        if result.forced:
            lines.append(f"Forced tier: {result.blocked_tier or result.target_tier}")
        elif result.decision:
            lines.append(f"Rule: {result.decision.rule_name}")
            if result.decision.matched_pattern:
                lines.append(f'Pattern: "{result.decision.matched_pattern}"')
        lines.append(f"Reason: {result.reason}")
        if result.budget_blocked:
            lines.append(f'Budget blocked: "{result.blocked_tier}" unavailable, falling back to {result.target_tier}')

        if result.switched:
            lines.append(f"Switched to tier: {result.target_tier}")
        elif result.tier_changed and not self.dispatcher.auto_mode:
            lines.append(f"Recommended tier: {result.target_tier} (auto mode disabled, not switching)")
        elif result.tier_changed:
            lines.append(f"Recommended tier: {result.target_tier} (auto_switch=false, not switching)")
        else:
            lines.append(f"Staying on tier: {result.target_tier}")

        data: Dict[str, Any] = {
            "target_tier": result.target_tier,
            "previous_tier": result.previous_tier,
            "current_tier": self.dispatcher.current_tier,
            "switched": result.switched,
            "reason": result.reason,
            "rule_name": result.decision.rule_name if result.decision else None,
            "forced": result.forced,
            "budget_blocked": result.budget_blocked,
            "blocked_tier": result.blocked_tier,
        }
        try:
            model = self.dispatcher.current_model()
            data["model_ref"] = model.model_ref
            lines.extend(["", f"Provider: {model.provider}", f"Model:    {model.model} ({model.model_id})"])
        except UnknownModelReferenceError as e:
            data["model_error"] = str(e)
            lines.extend(["", f"Could not resolve model: {e}"])

        return ToolResult(ok=True, summary="\n".join(lines), data=data)

    def get_status(self, detailed: bool = False) -> ToolResult:
        status = self.dispatcher.status(detailed=detailed)
        state = status.state

        lines = [
            "TIER ROUTER STATUS",
            DIVIDER,
            f"Strategy:     {state.strategy.value}",
            f"Current Tier: {state.current_tier}",
            f"Auto Mode:    {'Enabled' if state.auto_mode else 'Disabled'}",
        ]
        if status.model:
            lines.append(f"Provider:     {status.model.provider}")
            lines.append(f"Model:        {status.model.model} ({status.model.model_id})")
        else:
            lines.append(f"Model:        unknown ({status.model_error})")
        lines.extend(["", "BUDGET & USAGE", DIVIDER])
        lines.extend(_usage_lines(status.usage))

        data: Dict[str, Any] = {
            "strategy": state.strategy.value,
            "current_tier": state.current_tier,
            "auto_mode": state.auto_mode,
            "model_ref": status.model.model_ref if status.model else None,
            "model_error": status.model_error,
            "error_count": status.error_count,
            "usage": status.usage.rounded(),
            "tier_models": status.tier_models,
        }

        if detailed:
            data["by_tier"] = {k: {"cost": v.cost, "tokens": v.tokens} for k, v in status.usage.by_tier.items()}
            data["by_model"] = {k: {"cost": v.cost, "tokens": v.tokens} for k, v in status.usage.by_model.items()}
            lines.extend(["", "USAGE BY TIER", DIVIDER])
            if not status.usage.by_tier:
                lines.append("No usage recorded yet")
            for tier, bucket in status.usage.by_tier.items():
                lines.append(f"{tier:<12} ${bucket.cost:.4f} ({bucket.tokens:,} tokens)")
            lines.extend(["", "USAGE BY MODEL", DIVIDER])
            if not status.usage.by_model:
                lines.append("No usage recorded yet")
            for model_key, bucket in status.usage.by_model.items():
                lines.append(f"{model_key:<20} ${bucket.cost:.4f} ({bucket.tokens:,} tokens)")

            memory = status.memory
            data["memory"] = {
                "session_id": memory.session_id,
                "entry_count": memory.entry_count,
                "success_rate": memory.success_rate,
                "pattern_counts": memory.pattern_counts,
                "tier_counts": memory.tier_counts,
            }
            lines.extend([
                "",
                "SESSION MEMORY",
                DIVIDER,
                f"Session:      {memory.session_id[:8]}...",
                f"Entries:      {memory.entry_count}",
                f"Success Rate: {memory.success_rate}%",
            ])
            for pattern, count in memory.pattern_counts.items():
                lines.append(f"  {pattern}: {count}")

        lines.extend(["", "AVAILABLE TIERS", DIVIDER])
        for tier, model_ref in status.tier_models.items():
            marker = ">" if tier == state.current_tier else " "
            lines.append(f"{marker} {tier:<10} {model_ref}")

        return ToolResult(ok=True, summary="\n".join(lines), data=data)

    def set_budget(
        self,
        monthly_limit_usd: float,
        alert_threshold_percent: float = DEFAULT_ALERT_PERCENT,
    ) -> ToolResult:
        try:
            budget = self.dispatcher.set_budget(monthly_limit_usd, alert_threshold_percent)
        except ValidationError as e:
            logger.info("tool_call_rejected", tool="set_budget", error=str(e))
            return ToolResult.failure(e)

        usage = self.dispatcher.budget_status()
        lines = ["Budget Configuration Updated", DIVIDER, f"Monthly Limit: {_format_usd(budget.monthly_limit_usd)}"]
        lines.append("Alert Thresholds:")
        for threshold in budget.alert_thresholds:
            lines.append(f"  - {threshold.percent:g}%: {threshold.action}")
        lines.extend(["", "Current Usage", DIVIDER])
        lines.extend(_usage_lines(usage))
        if usage.alert_triggered:
            lines.append("WARNING: Current usage exceeds alert threshold(s)!")

        return ToolResult(
            ok=True,
            summary="\n".join(lines),
            data={
                "monthly_limit_usd": budget.monthly_limit_usd,
                "alert_thresholds": [
                    {"percent": t.percent, "action": t.action} for t in budget.alert_thresholds
                ],
                "usage": usage.rounded(),
            },
        )
