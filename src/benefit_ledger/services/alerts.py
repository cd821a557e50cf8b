"""Low-balance and overdraft alerts."""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from benefit_ledger.models import BenefitBudget, BenefitType, Employee, EmployeeBenefitBalance
from benefit_ledger.services.cache import BalanceCache, NullBalanceCache, alerts_key
from benefit_ledger.services.policies import OverdraftPolicy
from benefit_ledger.services.types import (
    AlertReport,
    BenefitTypeRef,
    EmployeeRef,
    LowBalanceAlert,
    OverdraftInfo,
    money,
)

logger = logging.getLogger(__name__)

DEFAULT_ALERT_TTL_SECONDS = 300

HUNDRED = Decimal("100")
PERCENT = Decimal("0.01")


def usage_percentage(allocation: Decimal, used: Decimal) -> Decimal:
    """Share of the allocation used, in percent. Zero for a zero allocation."""
    if allocation <= 0:
        return Decimal("0.00")
    return (used / allocation * HUNDRED).quantize(PERCENT)


def overdraft_info(current: Decimal, overdraft_limit: Decimal) -> OverdraftInfo:
    is_overdrawn = current < 0
    return OverdraftInfo(
        is_overdrawn=is_overdrawn,
        overdraft_amount=abs(current) if is_overdrawn else Decimal("0.00"),
        overdraft_limit=overdraft_limit,
        exceeds_overdraft_limit=current < overdraft_limit,
        available_overdraft=max(Decimal("0.00"), current - overdraft_limit),
    )


def alert_level(remaining_percentage: Decimal, info: OverdraftInfo) -> str:
    """Severity of a balance, most severe first."""
    if info.exceeds_overdraft_limit:
        return "critical_overdraft_exceeded"
    if info.is_overdrawn:
        return "critical_overdrawn"
    if remaining_percentage <= 5:
        return "critical"
    if remaining_percentage <= 10:
        return "high"
    return "warning"


class AlertEngine:
    """Scans a year's balances for low or overdrawn ones.

    Reports are cached per (threshold, year) for ttl seconds. The ledger
    drops a year's cached reports whenever it writes to that year.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        cache: BalanceCache | None = None,
        overdraft_policy: OverdraftPolicy | None = None,
        ttl: float = DEFAULT_ALERT_TTL_SECONDS,
    ):
        self.session = session
        self.cache = cache if cache is not None else NullBalanceCache()
        self.overdraft_policy = overdraft_policy or OverdraftPolicy()
        self.ttl = ttl

    async def get_low_balance_alerts(self, threshold_percent: float, year: int) -> AlertReport:
        """Balances at or below threshold_percent remaining, plus every overdrawn one.

        Args:
            threshold_percent: Remaining-percentage threshold (0-100)
            year: Budget year
        """
        if threshold_percent < 0 or threshold_percent > 100:
            raise ValueError("threshold_percent must be between 0 and 100")

        key = alerts_key(threshold_percent, year)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        report = await self._scan(threshold_percent, year)
        self.cache.put(key, report, self.ttl)
        logger.debug(
            "Alert scan for year %s threshold %s: %d alerts",
            year,
            threshold_percent,
            report.total_alerts,
        )
        return report

    async def _scan(self, threshold_percent: float, year: int) -> AlertReport:
        threshold = Decimal(str(threshold_percent))
        result = await self.session.execute(
            select(EmployeeBenefitBalance, BenefitBudget, Employee, BenefitType)
            .join(
                BenefitBudget,
                BenefitBudget.benefit_budget_id == EmployeeBenefitBalance.benefit_budget_id,
            )
            .join(Employee, Employee.employee_id == EmployeeBenefitBalance.employee_id)
            .join(BenefitType, BenefitType.benefit_type_id == BenefitBudget.benefit_type_id)
            .where(BenefitBudget.year == year)
            .order_by(Employee.nik, BenefitType.name)
        )

        alerts = []
        for balance, budget, employee, benefit_type in result.all():
            allocation = money(budget.budget)
            current = money(balance.current_balance)
            used = allocation - current
            usage = usage_percentage(allocation, used)
            remaining = HUNDRED - usage

            limit = self.overdraft_policy.limit_for(allocation, benefit_type.name)
            info = overdraft_info(current, limit)

            if remaining > threshold and not info.is_overdrawn:
                continue

            alerts.append(
                LowBalanceAlert(
                    employee=EmployeeRef(
                        id=employee.employee_id,
                        name=employee.name,
                        nik=employee.nik,
                        department=employee.department,
                    ),
                    benefit_type=BenefitTypeRef(id=benefit_type.benefit_type_id, name=benefit_type.name),
                    initial_balance=allocation,
                    current_balance=current,
                    used_amount=used,
                    usage_percentage=usage,
                    remaining_percentage=remaining,
                    alert_level=alert_level(remaining, info),
                    overdraft_info=info,
                )
            )

        return AlertReport(threshold_percentage=threshold_percent, year=year, alerts=alerts)
