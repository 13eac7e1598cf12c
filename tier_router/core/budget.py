"""
Budget thresholds and blocking.

Budget status is always derived from current spend at read time.
Nothing here is persisted, so raising the limit lifts a block
immediately without an explicit unblock step.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from tier_router.config.loader import BLOCK_HIGH_TIER, AlertThreshold, BudgetConfig
from tier_router.storage.models import PeriodTotals, UsageBucket

from .errors import ValidationError

DEFAULT_MONTHLY_LIMIT_USD = 100.0
DEFAULT_ALERT_PERCENT = 80.0

# Used when a budget has no thresholds configured at all
FALLBACK_THRESHOLDS: Tuple[AlertThreshold, ...] = (AlertThreshold(80, "notify_user"),)

# Thresholds installed by set_budget, before the caller's alert percent is added
STANDARD_THRESHOLDS: Tuple[AlertThreshold, ...] = (
    AlertThreshold(50, "log_warning"),
    AlertThreshold(95, "require_confirmation"),
    AlertThreshold(100, BLOCK_HIGH_TIER),
)


@dataclass
class BudgetStatus:
    """Spend against budget for one period.

    Figures are unrounded; use `rounded()` for display.
    """
    period: str
    spent_usd: float
    budget_usd: float
    remaining_usd: float
    percent_used: float
    triggered_alerts: List[AlertThreshold] = field(default_factory=list)
    is_blocked: bool = False
    by_tier: Dict[str, UsageBucket] = field(default_factory=dict)
    by_model: Dict[str, UsageBucket] = field(default_factory=dict)

    @property
    def alert_triggered(self) -> bool:
        return bool(self.triggered_alerts)

    def rounded(self) -> Dict[str, object]:
        """Presentation view: money to cents, percent to one decimal."""
        return {
            "period": self.period,
            "spent_usd": round(self.spent_usd, 2),
            "budget_usd": round(self.budget_usd, 2),
            "remaining_usd": round(self.remaining_usd, 2),
            "percent_used": round(self.percent_used, 1),
            "alert_triggered": self.alert_triggered,
            "triggered_alerts": [
                {"percent": alert.percent, "action": alert.action}
                for alert in self.triggered_alerts
            ],
            "is_blocked": self.is_blocked,
        }


def compute_budget_status(
    period: str,
    totals: Optional[PeriodTotals],
    budget: BudgetConfig,
) -> BudgetStatus:
    """Evaluate spend for a period against a budget.

    percent_used is spent / limit * 100, or 0 when the limit is not
    positive. Every threshold at or below percent_used is triggered and
    the list is returned highest percent first. The period is blocked
    when any triggered threshold carries the block action.

    Args:
        period: Period key ("YYYY-MM")
        totals: Ledger totals for the period, None if nothing was recorded
        budget: Budget configuration to evaluate against

    Returns:
        BudgetStatus for the period
    """
    spent = totals.total_cost if totals else 0.0
    limit = budget.monthly_limit_usd
    percent_used = (spent / limit) * 100 if limit > 0 else 0.0

    thresholds = budget.alert_thresholds or FALLBACK_THRESHOLDS
    triggered = sorted(
        (t for t in thresholds if t.percent <= percent_used),
        key=lambda t: t.percent,
        reverse=True,
    )
    is_blocked = any(t.action == BLOCK_HIGH_TIER for t in triggered)

    return BudgetStatus(
        period=period,
        spent_usd=spent,
        budget_usd=limit,
        remaining_usd=limit - spent,
        percent_used=percent_used,
        triggered_alerts=triggered,
        is_blocked=is_blocked,
        by_tier=dict(totals.by_tier) if totals else {},
        by_model=dict(totals.by_model) if totals else {},
    )


def build_budget(monthly_limit_usd: float, alert_percent: float = DEFAULT_ALERT_PERCENT) -> BudgetConfig:
    """Build a budget from a limit and a notify threshold.

    The standard thresholds (50% warn, 95% confirm, 100% block) are always
    installed; `alert_percent` adds a notify_user threshold unless one of the
    standard thresholds already sits at that percent.

    Raises:
        ValidationError: If the limit is not positive or the percent is out of range
    """
    if isinstance(monthly_limit_usd, bool) or not isinstance(monthly_limit_usd, (int, float)):
        raise ValidationError("monthly_limit_usd must be a number", field="monthly_limit_usd")
    if monthly_limit_usd <= 0:
        raise ValidationError("monthly_limit_usd must be greater than 0", field="monthly_limit_usd")
    if isinstance(alert_percent, bool) or not isinstance(alert_percent, (int, float)):
        raise ValidationError("alert_threshold_percent must be a number", field="alert_threshold_percent")
    if alert_percent < 0 or alert_percent > 100:
        raise ValidationError(
            "alert_threshold_percent must be between 0 and 100", field="alert_threshold_percent"
        )

    thresholds = list(STANDARD_THRESHOLDS)
    if not any(t.percent == alert_percent for t in thresholds):
        thresholds.append(AlertThreshold(alert_percent, "notify_user"))
    thresholds.sort(key=lambda t: t.percent)

    return BudgetConfig(monthly_limit_usd=float(monthly_limit_usd), alert_thresholds=tuple(thresholds))
