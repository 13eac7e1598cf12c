"""
Usage ledger.

Records cost/token events and reports spend for the current calendar
month against a budget.
"""

import threading
from datetime import datetime
from typing import Callable, List, Optional

import structlog

from tier_router.config.loader import BudgetConfig
from tier_router.storage.db import DEFAULT_DB_PATH
from tier_router.storage.models import PeriodTotals, UsageRecord
from tier_router.storage.repository import UsageRepository

from .budget import BudgetStatus, compute_budget_status
from .errors import ValidationError

logger = structlog.get_logger()


def period_key(moment: datetime) -> str:
    """Calendar month key in YYYY-MM format."""
    return f"{moment.year}-{moment.month:02d}"


class UsageLedger:
    """Append-only usage ledger with per-month totals.

    Writes are serialized with a lock so concurrent callers cannot
    interleave a record insert with another caller's totals update.
    """

    def __init__(
        self,
        db_path: str = DEFAULT_DB_PATH,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.repository = UsageRepository(db_path)
        self.repository.initialize()
        self._clock = clock
        self._lock = threading.Lock()

    @property
    def db_path(self) -> str:
        return self.repository.db_path

    def current_period(self) -> str:
        return period_key(self._clock())

    def record(
        self,
        provider: str,
        model: str,
        tier: str,
        input_tokens: int,
        output_tokens: int,
        cost_usd: float,
        task_summary: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> UsageRecord:
        """Append a usage record and update its month's totals atomically.

        Raises:
            ValidationError: If token counts or cost are negative
            PersistenceError: If the record could not be stored; totals
                are left untouched in that case
        """
        if input_tokens < 0 or output_tokens < 0:
            raise ValidationError("token counts cannot be negative", field="tokens")
        if cost_usd < 0:
            raise ValidationError("cost_usd cannot be negative", field="cost_usd")

        record = UsageRecord(
            timestamp=timestamp or self._clock(),
            provider=provider,
            model=model,
            tier=tier,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=cost_usd,
            task_summary=task_summary,
        )
        with self._lock:
            self.repository.insert_record(record, period_key(record.timestamp))

        logger.info(
            "usage_recorded",
            provider=provider,
            model=model,
            tier=tier,
            tokens=record.total_tokens,
            cost_usd=cost_usd,
        )
        return record

    def period_totals(self, period: Optional[str] = None) -> Optional[PeriodTotals]:
        """Totals for a period (default: current month), None if empty."""
        return self.repository.fetch_period_totals(period or self.current_period())

    def status(self, budget: BudgetConfig) -> BudgetStatus:
        """Current month's spend evaluated against `budget`."""
        period = self.current_period()
        with self._lock:
            totals = self.repository.fetch_period_totals(period)
        return compute_budget_status(period, totals, budget)

    def recent_records(self, limit: int = 10) -> List[UsageRecord]:
        return self.repository.fetch_recent_records(limit)

    def total_spend(self) -> float:
        """Spend across all recorded months."""
        return self.repository.total_spend()

    def clear(self) -> None:
        with self._lock:
            self.repository.clear()
        logger.info("usage_cleared", db_path=self.db_path)
