"""
Data models for storage layer.

Defines ledger and memory entities.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class UsageRecord:
    """Immutable record of one model invocation.

    Append-only: once written, records are never modified.
    """
    timestamp: datetime
    provider: str
    model: str
    tier: str
    input_tokens: int
    output_tokens: int
    cost_usd: float
    task_summary: Optional[str] = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def model_key(self) -> str:
        return f"{self.provider}:{self.model}"


@dataclass
class UsageBucket:
    """Accumulated cost and tokens for one tier or model."""
    cost: float = 0.0
    tokens: int = 0


@dataclass
class PeriodTotals:
    """Totals for one calendar month, broken down by tier and by model.

    The overall totals are derived from the per-tier breakdown, so they
    always agree with it.
    """
    period: str
    by_tier: Dict[str, UsageBucket] = field(default_factory=dict)
    by_model: Dict[str, UsageBucket] = field(default_factory=dict)

    @property
    def total_cost(self) -> float:
        return sum(bucket.cost for bucket in self.by_tier.values())

    @property
    def total_tokens(self) -> int:
        return sum(bucket.tokens for bucket in self.by_tier.values())


@dataclass(frozen=True)
class MemoryEntry:
    """Outcome of one task routed through the dispatcher."""
    timestamp: datetime
    task_pattern: str
    tier_used: str
    success: bool
    context: Optional[Dict[str, Any]] = None
