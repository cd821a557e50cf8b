"""Bulk creation of yearly balances."""

from __future__ import annotations

import logging
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from benefit_ledger.models import BenefitBudget, EmployeeBenefitBalance
from benefit_ledger.services.eligibility import EligibilityResolver
from benefit_ledger.services.errors import NoBudgetsError, NoEmployeesError
from benefit_ledger.services.transaction_ledger import flush_session
from benefit_ledger.services.types import InitializationResult

logger = logging.getLogger(__name__)


class BalanceInitializer:
    """Creates one balance per (employee, eligible budget) at allocation.

    Key invariants:
    1. Existing balances are never touched, so reruns create nothing new
    2. Every row of a run is flushed together; a failure leaves none behind
       once the caller rolls back
    """

    def __init__(self, session: AsyncSession, resolver: EligibilityResolver | None = None):
        self.session = session
        self.resolver = resolver or EligibilityResolver(session)

    async def initialize(
        self,
        year: int,
        employee_ids: Sequence[UUID] | None = None,
    ) -> InitializationResult:
        """Initialize balances for a year.

        Args:
            year: Budget year
            employee_ids: Restrict to these employees; all employees when None

        Raises:
            NoBudgetsError: If the year has no budgets
            NoEmployeesError: If the employee selection is empty
            ConcurrencyConflict: If another run created a balance concurrently
        """
        result = await self.session.execute(
            select(BenefitBudget).where(BenefitBudget.year == year)
        )
        budgets = list(result.scalars().all())
        if not budgets:
            raise NoBudgetsError(year)

        profiles = await self.resolver.load_profiles(employee_ids)
        if not profiles:
            raise NoEmployeesError(list(employee_ids) if employee_ids else None)

        existing = await self._existing_pairs(
            [p.employee_id for p in profiles],
            [b.benefit_budget_id for b in budgets],
        )

        budgets_by_level: dict[UUID, list[BenefitBudget]] = {}
        for budget in budgets:
            budgets_by_level.setdefault(budget.level_employee_id, []).append(budget)

        initialized = 0
        for profile in profiles:
            level_budgets = budgets_by_level.get(profile.level_employee_id, [])
            for budget in await self.resolver.eligible_budgets(profile, level_budgets):
                if (profile.employee_id, budget.benefit_budget_id) in existing:
                    continue
                self.session.add(
                    EmployeeBenefitBalance(
                        employee_id=profile.employee_id,
                        benefit_budget_id=budget.benefit_budget_id,
                        current_balance=budget.budget,
                    )
                )
                initialized += 1

        await flush_session(self.session)

        logger.info(
            "Initialized %d balances for %d employees, year %s",
            initialized,
            len(profiles),
            year,
        )
        return InitializationResult(initialized_count=initialized, year=year)

    async def _existing_pairs(
        self, employee_ids: list[UUID], budget_ids: list[UUID]
    ) -> set[tuple[UUID, UUID]]:
        result = await self.session.execute(
            select(
                EmployeeBenefitBalance.employee_id,
                EmployeeBenefitBalance.benefit_budget_id,
            ).where(
                EmployeeBenefitBalance.employee_id.in_(employee_ids),
                EmployeeBenefitBalance.benefit_budget_id.in_(budget_ids),
            )
        )
        return {(row.employee_id, row.benefit_budget_id) for row in result.all()}
