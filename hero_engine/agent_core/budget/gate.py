from __future__ import annotations

"""Budget gate.

``BudgetGate`` prices model usage and decides whether a user may start (or
continue) an execution.

Pricing
-------

Cost is linear in tokens: ``cost_per_1k_input`` per 1,000 prompt tokens plus
``cost_per_1k_output`` per 1,000 completion tokens, rounded to 4 decimals.

Limits
------

Daily and monthly ceilings come from ``BudgetSettingsRepository``; a missing
row or a ``None`` limit means unlimited. Usage is read from the per-day
ledger. Warning levels are computed against the tighter of the two limits:

======== ==============
level    used / limit
======== ==============
none     < 50%
low      >= 50%
medium   >= 75%
high     >= 90%
exceeded >= 100%
======== ==============

Only ``exceeded`` blocks.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Callable, List, Optional

from ..repos.interfaces import BudgetSettingsRepository, UsageLedgerRepository
from ..schemas.base import BaseSchema
from ..schemas.domain import BudgetSettings, Execution, UsageDaily

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PricingConfig:
    cost_per_1k_input: float = 0.0015
    cost_per_1k_output: float = 0.002
    currency: str = "USD"


class WarningLevel(str, Enum):
    none = "none"
    low = "low"
    medium = "medium"
    high = "high"
    exceeded = "exceeded"


class CostEstimate(BaseSchema):
    input_tokens: int
    output_tokens: int
    input_cost: float
    output_cost: float
    total_cost: float
    currency: str = "USD"

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class BudgetStatus(BaseSchema):
    daily_limit: Optional[float] = None
    monthly_limit: Optional[float] = None
    daily_used: float = 0.0
    monthly_used: float = 0.0
    daily_remaining: Optional[float] = None
    monthly_remaining: Optional[float] = None
    is_over_daily_limit: bool = False
    is_over_monthly_limit: bool = False
    warning_level: WarningLevel = WarningLevel.none


class BudgetCheck(BaseSchema):
    allowed: bool
    reason: Optional[str] = None
    status: Optional[BudgetStatus] = None


class UsagePeriod(BaseSchema):
    tokens: int = 0
    cost: float = 0.0
    executions: int = 0


class UsageSummary(BaseSchema):
    today: UsagePeriod
    this_week: UsagePeriod
    this_month: UsagePeriod
    all_time: UsagePeriod


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _money(value: float) -> float:
    return round(value, 4)


class BudgetGate:
    """Price usage, record it in the ledger and enforce budget ceilings.

    Args:
        usage: The per-user, per-day usage ledger.
        settings: Per-user budget ceilings.
        pricing: Token prices. Defaults to ``PricingConfig()``.
        today: Clock returning the current UTC day; injectable for tests.
    """

    def __init__(
        self,
        usage: UsageLedgerRepository,
        settings: BudgetSettingsRepository,
        *,
        pricing: Optional[PricingConfig] = None,
        today: Callable[[], date] = _utc_today,
    ) -> None:
        self._usage = usage
        self._settings = settings
        self._pricing = pricing or PricingConfig()
        self._today = today

    @property
    def pricing(self) -> PricingConfig:
        return self._pricing

    def calculate_cost(self, input_tokens: int, output_tokens: int) -> CostEstimate:
        """
        Price a token count.

        Raises:
            ValueError: Either token count is negative.
        """
        if input_tokens < 0:
            raise ValueError("Input tokens cannot be negative")
        if output_tokens < 0:
            raise ValueError("Output tokens cannot be negative")
        input_cost = input_tokens / 1000 * self._pricing.cost_per_1k_input
        output_cost = output_tokens / 1000 * self._pricing.cost_per_1k_output
        return CostEstimate(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            input_cost=_money(input_cost),
            output_cost=_money(output_cost),
            total_cost=_money(input_cost + output_cost),
            currency=self._pricing.currency,
        )

    async def record_usage(self, user_id: str, input_tokens: int, output_tokens: int) -> CostEstimate:
        """
        Price usage and add it to today's ledger row.

        The increment is atomic per (user, day) in every repository
        implementation, so concurrent calls never lose an update.

        Returns:
            The cost of the recorded usage.
        """
        cost = self.calculate_cost(input_tokens, output_tokens)
        if cost.total_tokens == 0:
            return cost
        await self._usage.increment(
            user_id=user_id,
            day=self._today().isoformat(),
            tokens=cost.total_tokens,
            cost=cost.total_cost,
        )
        logger.debug("Recorded usage user=%s tokens=%d cost=%.4f", user_id, cost.total_tokens, cost.total_cost)
        return cost

    async def record_execution(self, user_id: str) -> None:
        """Count a started execution on today's ledger row."""
        await self._usage.increment(user_id=user_id, day=self._today().isoformat(), tokens=0, cost=0.0, executions=1)

    async def get_settings(self, user_id: str) -> BudgetSettings:
        return await self._settings.get(user_id) or BudgetSettings(user_id=user_id)

    async def update_settings(
        self,
        user_id: str,
        *,
        daily_limit: Optional[float] = None,
        monthly_limit: Optional[float] = None,
    ) -> BudgetSettings:
        """Replace the user's ceilings; ``None`` means unlimited."""
        settings = BudgetSettings(user_id=user_id, daily_limit=daily_limit, monthly_limit=monthly_limit)
        await self._settings.upsert(settings)
        logger.info("Updated budget settings user=%s daily=%s monthly=%s", user_id, daily_limit, monthly_limit)
        return settings

    async def get_status(self, user_id: str) -> BudgetStatus:
        today = self._today()
        rows = await self._usage.list(user_id, since_day=today.replace(day=1).isoformat())
        daily_used = _money(sum(r.cost for r in rows if r.day == today.isoformat()))
        monthly_used = _money(sum(r.cost for r in rows))
        settings = await self.get_settings(user_id)

        status = BudgetStatus(
            daily_limit=settings.daily_limit,
            monthly_limit=settings.monthly_limit,
            daily_used=daily_used,
            monthly_used=monthly_used,
        )
        percents: List[float] = []
        if settings.daily_limit is not None:
            status.daily_remaining = _money(max(0.0, settings.daily_limit - daily_used))
            status.is_over_daily_limit = daily_used >= settings.daily_limit
            percents.append(daily_used / settings.daily_limit * 100 if settings.daily_limit else 100.0)
        if settings.monthly_limit is not None:
            status.monthly_remaining = _money(max(0.0, settings.monthly_limit - monthly_used))
            status.is_over_monthly_limit = monthly_used >= settings.monthly_limit
            percents.append(monthly_used / settings.monthly_limit * 100 if settings.monthly_limit else 100.0)

        if status.is_over_daily_limit or status.is_over_monthly_limit:
            status.warning_level = WarningLevel.exceeded
        elif percents:
            peak = max(percents)
            if peak >= 90:
                status.warning_level = WarningLevel.high
            elif peak >= 75:
                status.warning_level = WarningLevel.medium
            elif peak >= 50:
                status.warning_level = WarningLevel.low
        return status

    async def can_execute(self, user_id: str) -> BudgetCheck:
        """
        Decide whether the user is under their daily and monthly ceilings.

        Returns:
            BudgetCheck with ``allowed`` False and a human-readable reason
            when a ceiling is reached.
        """
        status = await self.get_status(user_id)
        if status.is_over_daily_limit:
            return BudgetCheck(
                allowed=False,
                reason=f"Daily budget limit (${status.daily_limit:.2f}) exceeded. Used: ${status.daily_used:.2f}",
                status=status,
            )
        if status.is_over_monthly_limit:
            return BudgetCheck(
                allowed=False,
                reason=f"Monthly budget limit (${status.monthly_limit:.2f}) exceeded. Used: ${status.monthly_used:.2f}",
                status=status,
            )
        return BudgetCheck(allowed=True, status=status)

    def check_execution_limit(self, execution: Execution) -> BudgetCheck:
        """Compare an execution's spend with its own ceiling, if it has one."""
        limit = execution.budget_limit
        if limit is not None and execution.cost_incurred >= limit:
            return BudgetCheck(
                allowed=False,
                reason=f"Execution budget limit (${limit:.2f}) exceeded. Used: ${execution.cost_incurred:.2f}",
            )
        return BudgetCheck(allowed=True)

    async def check(self, execution: Execution) -> BudgetCheck:
        """User ceilings first, then the execution's own ceiling."""
        verdict = await self.can_execute(execution.user_id)
        if not verdict.allowed:
            return verdict
        return self.check_execution_limit(execution)

    async def usage_summary(self, user_id: str) -> UsageSummary:
        today = self._today()
        week_start = (today - timedelta(days=7)).isoformat()
        month_start = today.replace(day=1).isoformat()
        summary = UsageSummary(
            today=UsagePeriod(), this_week=UsagePeriod(), this_month=UsagePeriod(), all_time=UsagePeriod()
        )
        for row in await self._usage.list(user_id):
            periods = [summary.all_time]
            if row.day >= month_start:
                periods.append(summary.this_month)
            if row.day >= week_start:
                periods.append(summary.this_week)
            if row.day == today.isoformat():
                periods.append(summary.today)
            for period in periods:
                period.tokens += row.tokens_used
                period.cost += row.cost
                period.executions += row.execution_count
        for period in (summary.today, summary.this_week, summary.this_month, summary.all_time):
            period.cost = round(period.cost, 2)
        return summary

    async def daily_history(self, user_id: str, days: int = 30) -> List[UsageDaily]:
        """Ledger rows for the last ``days`` days, oldest first."""
        since = (self._today() - timedelta(days=days)).isoformat()
        return await self._usage.list(user_id, since_day=since)
