"""Usage pricing and budget enforcement."""

from .gate import (
    BudgetCheck,
    BudgetGate,
    BudgetStatus,
    CostEstimate,
    PricingConfig,
    UsagePeriod,
    UsageSummary,
    WarningLevel,
)

__all__ = [
    "BudgetCheck",
    "BudgetGate",
    "BudgetStatus",
    "CostEstimate",
    "PricingConfig",
    "UsagePeriod",
    "UsageSummary",
    "WarningLevel",
]
