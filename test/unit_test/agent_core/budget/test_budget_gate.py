from __future__ import annotations

import asyncio
from datetime import date

import pytest

from hero_engine.agent_core.budget.gate import BudgetGate, PricingConfig, WarningLevel
from hero_engine.agent_core.repos.memory import (
    InMemoryBudgetSettingsRepository,
    InMemoryUsageLedgerRepository,
)
from hero_engine.agent_core.schemas.domain import Execution

USER = "user-1"

# One dollar per thousand prompt tokens keeps the arithmetic readable.
DOLLAR_PER_1K = PricingConfig(cost_per_1k_input=1.0, cost_per_1k_output=0.0)


class Clock:
    def __init__(self, today: date) -> None:
        self.today = today

    def __call__(self) -> date:
        return self.today


@pytest.fixture
def clock() -> Clock:
    return Clock(date(2026, 3, 15))


@pytest.fixture
def gate(clock: Clock) -> BudgetGate:
    return BudgetGate(
        InMemoryUsageLedgerRepository(),
        InMemoryBudgetSettingsRepository(),
        pricing=DOLLAR_PER_1K,
        today=clock,
    )


class TestPricing:
    def test_default_prices(self) -> None:
        gate = BudgetGate(InMemoryUsageLedgerRepository(), InMemoryBudgetSettingsRepository())
        cost = gate.calculate_cost(2000, 1000)
        assert cost.input_cost == pytest.approx(0.003)
        assert cost.output_cost == pytest.approx(0.002)
        assert cost.total_cost == pytest.approx(0.005)
        assert cost.total_tokens == 3000
        assert cost.currency == "USD"

    def test_negative_tokens_are_rejected(self, gate: BudgetGate) -> None:
        with pytest.raises(ValueError, match="Input tokens"):
            gate.calculate_cost(-1, 0)
        with pytest.raises(ValueError, match="Output tokens"):
            gate.calculate_cost(0, -1)


class TestLedger:
    async def test_zero_usage_writes_nothing(self, gate: BudgetGate) -> None:
        await gate.record_usage(USER, 0, 0)
        assert await gate.daily_history(USER) == []

    async def test_concurrent_increments_are_not_lost(self, gate: BudgetGate) -> None:
        await asyncio.gather(*(gate.record_usage(USER, 100, 0) for _ in range(50)))
        (row,) = await gate.daily_history(USER)
        assert row.tokens_used == 5000
        assert row.cost == pytest.approx(5.0)

    async def test_record_execution_counts_starts(self, gate: BudgetGate) -> None:
        await gate.record_execution(USER)
        await gate.record_execution(USER)
        (row,) = await gate.daily_history(USER)
        assert row.execution_count == 2
        assert row.tokens_used == 0

    async def test_usage_summary_periods(self, gate: BudgetGate, clock: Clock) -> None:
        for day, tokens in ((date(2026, 2, 20), 4000), (date(2026, 3, 2), 3000), (date(2026, 3, 10), 2000)):
            clock.today = day
            await gate.record_usage(USER, tokens, 0)
        clock.today = date(2026, 3, 15)
        await gate.record_usage(USER, 1000, 0)
        await gate.record_execution(USER)

        summary = await gate.usage_summary(USER)
        assert (summary.today.tokens, summary.today.cost, summary.today.executions) == (1000, 1.0, 1)
        assert (summary.this_week.tokens, summary.this_week.cost) == (3000, 3.0)
        assert (summary.this_month.tokens, summary.this_month.cost) == (6000, 6.0)
        assert (summary.all_time.tokens, summary.all_time.cost) == (10000, 10.0)

        assert [r.day for r in await gate.daily_history(USER, days=10)] == ["2026-03-10", "2026-03-15"]
        assert len(await gate.daily_history(USER)) == 4


class TestLimits:
    async def test_unlimited_by_default(self, gate: BudgetGate) -> None:
        await gate.record_usage(USER, 100_000, 0)
        verdict = await gate.can_execute(USER)
        assert verdict.allowed
        assert verdict.status.warning_level == WarningLevel.none
        assert verdict.status.daily_remaining is None
        assert (await gate.get_settings(USER)).daily_limit is None

    @pytest.mark.parametrize(
        "tokens,level",
        [
            (4000, WarningLevel.none),
            (5000, WarningLevel.low),
            (7500, WarningLevel.medium),
            (9000, WarningLevel.high),
            (10000, WarningLevel.exceeded),
        ],
    )
    async def test_warning_levels(self, gate: BudgetGate, tokens: int, level: WarningLevel) -> None:
        await gate.update_settings(USER, daily_limit=10.0)
        await gate.record_usage(USER, tokens, 0)
        status = await gate.get_status(USER)
        assert status.warning_level == level
        assert status.daily_remaining == pytest.approx(max(0.0, 10.0 - tokens / 1000))

    async def test_daily_limit_blocks(self, gate: BudgetGate) -> None:
        await gate.update_settings(USER, daily_limit=10.0)
        await gate.record_usage(USER, 10000, 0)
        verdict = await gate.can_execute(USER)
        assert not verdict.allowed
        assert verdict.reason == "Daily budget limit ($10.00) exceeded. Used: $10.00"

    async def test_monthly_limit_counts_earlier_days(self, gate: BudgetGate, clock: Clock) -> None:
        await gate.update_settings(USER, daily_limit=10.0, monthly_limit=5.0)
        clock.today = date(2026, 3, 1)
        await gate.record_usage(USER, 6000, 0)
        clock.today = date(2026, 3, 15)

        status = await gate.get_status(USER)
        assert status.daily_used == 0.0
        assert status.monthly_used == pytest.approx(6.0)
        verdict = await gate.can_execute(USER)
        assert verdict.reason == "Monthly budget limit ($5.00) exceeded. Used: $6.00"

    async def test_last_month_does_not_count(self, gate: BudgetGate, clock: Clock) -> None:
        await gate.update_settings(USER, monthly_limit=5.0)
        clock.today = date(2026, 2, 28)
        await gate.record_usage(USER, 6000, 0)
        clock.today = date(2026, 3, 1)
        assert (await gate.can_execute(USER)).allowed

    async def test_daily_is_checked_before_monthly(self, gate: BudgetGate) -> None:
        await gate.update_settings(USER, daily_limit=1.0, monthly_limit=1.0)
        await gate.record_usage(USER, 2000, 0)
        assert (await gate.can_execute(USER)).reason.startswith("Daily budget limit")

    async def test_zero_limit_blocks_everything(self, gate: BudgetGate) -> None:
        await gate.update_settings(USER, daily_limit=0.0)
        assert not (await gate.can_execute(USER)).allowed


class TestExecutionLimit:
    def _execution(self, **fields) -> Execution:
        return Execution(user_id=USER, agent_id="a1", goal="g", **fields)

    def test_no_limit(self, gate: BudgetGate) -> None:
        assert gate.check_execution_limit(self._execution(cost_incurred=99.0)).allowed

    def test_limit_reached(self, gate: BudgetGate) -> None:
        verdict = gate.check_execution_limit(self._execution(budget_limit=1.0, cost_incurred=1.0))
        assert not verdict.allowed
        assert verdict.reason == "Execution budget limit ($1.00) exceeded. Used: $1.00"

    async def test_user_ceiling_is_checked_first(self, gate: BudgetGate) -> None:
        await gate.update_settings(USER, daily_limit=1.0)
        await gate.record_usage(USER, 1000, 0)
        verdict = await gate.check(self._execution(budget_limit=0.5, cost_incurred=1.0))
        assert verdict.reason.startswith("Daily budget limit")

    async def test_check_falls_through_to_execution_limit(self, gate: BudgetGate) -> None:
        verdict = await gate.check(self._execution(budget_limit=0.5, cost_incurred=0.75))
        assert verdict.reason == "Execution budget limit ($0.50) exceeded. Used: $0.75"
