"""
Budget Endpoints.

Spend status against the caller's daily and monthly ceilings, aggregated
usage, per-day history and ceiling updates.
"""

from typing import List

from fastapi import APIRouter, Query

from hero_engine.agent_core.budget.gate import BudgetStatus, UsageSummary
from hero_engine.agent_core.schemas.domain import BudgetSettings, UsageDaily
from hero_engine.server.schemas import BudgetUpdate
from hero_engine.server.services.deps import CurrentUser, ServiceDep

router = APIRouter()


@router.get("/status", response_model=BudgetStatus, summary="Get Budget Status")
async def budget_status(service: ServiceDep, user_id: CurrentUser):
    """Today's and this month's spend, remaining budget and warning level."""
    return await service.budget_status(user_id)


@router.get("/summary", response_model=UsageSummary, summary="Get Usage Summary")
async def usage_summary(service: ServiceDep, user_id: CurrentUser):
    """Tokens, cost and execution counts for today, the last week, this month and all time."""
    return await service.usage_summary(user_id)


@router.get("/history", response_model=List[UsageDaily], summary="Get Daily Usage History")
async def usage_history(service: ServiceDep, user_id: CurrentUser, days: int = Query(30, ge=1, le=366)):
    return await service.usage_history(user_id, days)


@router.put("/settings", response_model=BudgetSettings, summary="Update Budget Ceilings")
async def update_budget(body: BudgetUpdate, service: ServiceDep, user_id: CurrentUser):
    return await service.update_budget(user_id, daily_limit=body.daily_limit, monthly_limit=body.monthly_limit)
