"""Balance reconciliation.

Recomputes balances from the approved claims history and corrects drift.
Corrections are posted as 'reconciliation' transactions through the ledger,
sized against each balance's own history, so afterwards the history always
explains the stored balance even when the stored value had drifted from it.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from benefit_ledger.models import (
    BalanceTransaction,
    BenefitBudget,
    BenefitClaim,
    BenefitType,
    ClaimStatus,
    EmployeeBenefitBalance,
)
from benefit_ledger.services.cache import BalanceCache, NullBalanceCache, invalidate_balance_caches
from benefit_ledger.services.eligibility import EligibilityResolver
from benefit_ledger.services.transaction_ledger import TransactionLedger, flush_session
from benefit_ledger.services.types import Discrepancy, LedgerDrift, RecalculationResult, money

logger = logging.getLogger(__name__)

TOLERANCE = Decimal("0.01")


class ReconciliationEngine:
    """Recalculates balances and audits the ledger.

    Key invariants:
    1. expected = allocation - sum(approved claims dated in the year)
    2. Differences beyond TOLERANCE are reported as discrepancies
    3. Every stored balance ends equal to its expected value
    4. Every stored balance ends equal to allocation + credits - debits
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        ledger: TransactionLedger | None = None,
        resolver: EligibilityResolver | None = None,
        cache: BalanceCache | None = None,
    ):
        self.session = session
        self.cache = cache if cache is not None else NullBalanceCache()
        self.resolver = resolver or EligibilityResolver(session)
        self.ledger = ledger or TransactionLedger(session, resolver=self.resolver, cache=self.cache)

    async def recalculate(
        self,
        year: int,
        employee_ids: Sequence[UUID] | None = None,
        benefit_type_ids: Sequence[UUID] | None = None,
        actor_id: UUID | None = None,
    ) -> RecalculationResult:
        """Recalculate balances from approved claims.

        Args:
            year: Budget year
            employee_ids: Restrict to these employees; all when None
            benefit_type_ids: Restrict to these benefit types; all when None
            actor_id: Recorded as processed_by on correction transactions

        Returns:
            RecalculationResult with the discrepancies found and corrections posted
        """
        result = RecalculationResult(year=year, processed_at=datetime.now(timezone.utc))

        profiles = await self.resolver.load_profiles(employee_ids)
        if not profiles:
            return result

        budget_query = select(BenefitBudget).where(BenefitBudget.year == year)
        if benefit_type_ids:
            budget_query = budget_query.where(
                BenefitBudget.benefit_type_id.in_(list(benefit_type_ids))
            )
        budgets = list((await self.session.execute(budget_query)).scalars().all())

        benefit_types = await self._benefit_types({b.benefit_type_id for b in budgets})
        employee_ids_loaded = [p.employee_id for p in profiles]
        claimed = await self._approved_claim_totals(year, employee_ids_loaded)
        balances = await self._locked_balances(
            employee_ids_loaded, [b.benefit_budget_id for b in budgets]
        )

        for profile in profiles:
            level_budgets = [b for b in budgets if b.level_employee_id == profile.level_employee_id]
            for budget in await self.resolver.eligible_budgets(profile, level_budgets):
                allocation = money(budget.budget)
                calculated = allocation - claimed.get(
                    (profile.employee_id, budget.benefit_type_id), Decimal("0.00")
                )
                balance = balances.get((profile.employee_id, budget.benefit_budget_id))
                old = money(balance.current_balance) if balance is not None else allocation

                if abs(calculated - old) > TOLERANCE:
                    result.discrepancies.append(
                        Discrepancy(
                            employee_id=profile.employee_id,
                            benefit_type_id=budget.benefit_type_id,
                            old_balance=old,
                            calculated_balance=calculated,
                            difference=calculated - old,
                        )
                    )

                record = await self.ledger.correct_to_budget(
                    profile=profile,
                    benefit_type=benefit_types[budget.benefit_type_id],
                    budget=budget,
                    target_balance=calculated,
                    actor_id=actor_id,
                )
                if record is not None:
                    result.corrections.append(record)
                result.recalculated_balances += 1

            result.recalculated_employees += 1

        await flush_session(self.session)

        for profile in profiles:
            invalidate_balance_caches(self.cache, profile.employee_id, year)

        logger.info(
            "Recalculated %d balances for %d employees, year %s: %d discrepancies",
            result.recalculated_balances,
            result.recalculated_employees,
            year,
            result.discrepancies_found,
        )
        return result

    async def audit(
        self,
        year: int,
        employee_ids: Sequence[UUID] | None = None,
    ) -> list[LedgerDrift]:
        """Find balances that disagree with their own transaction history.

        Read-only. A balance is consistent when
        current_balance == allocation - debits + credits.
        """
        movements = (
            select(
                BalanceTransaction.balance_id.label("balance_id"),
                func.sum(BalanceTransaction.signed_amount).label("net"),
            )
            .group_by(BalanceTransaction.balance_id)
            .subquery()
        )

        query = (
            select(
                EmployeeBenefitBalance.balance_id,
                EmployeeBenefitBalance.employee_id,
                EmployeeBenefitBalance.current_balance,
                BenefitBudget.benefit_type_id,
                BenefitBudget.budget,
                movements.c.net,
            )
            .join(
                BenefitBudget,
                BenefitBudget.benefit_budget_id == EmployeeBenefitBalance.benefit_budget_id,
            )
            .outerjoin(movements, movements.c.balance_id == EmployeeBenefitBalance.balance_id)
            .where(BenefitBudget.year == year)
        )
        if employee_ids:
            query = query.where(EmployeeBenefitBalance.employee_id.in_(list(employee_ids)))

        drifts = []
        for row in (await self.session.execute(query)).all():
            stored = money(row.current_balance)
            expected = money(row.budget) + money(row.net)
            if stored != expected:
                drifts.append(
                    LedgerDrift(
                        balance_id=row.balance_id,
                        employee_id=row.employee_id,
                        benefit_type_id=row.benefit_type_id,
                        stored_balance=stored,
                        ledger_balance=expected,
                    )
                )

        if drifts:
            logger.warning("Ledger audit found %d drifted balances for year %s", len(drifts), year)
        return drifts

    async def _approved_claim_totals(
        self, year: int, employee_ids: list[UUID]
    ) -> dict[tuple[UUID, UUID], Decimal]:
        result = await self.session.execute(
            select(
                BenefitClaim.employee_id,
                BenefitClaim.benefit_type_id,
                func.sum(BenefitClaim.amount).label("total"),
            )
            .where(
                BenefitClaim.employee_id.in_(employee_ids),
                BenefitClaim.status == ClaimStatus.APPROVED.value,
                BenefitClaim.claim_date >= date(year, 1, 1),
                BenefitClaim.claim_date < date(year + 1, 1, 1),
            )
            .group_by(BenefitClaim.employee_id, BenefitClaim.benefit_type_id)
        )
        return {
            (row.employee_id, row.benefit_type_id): money(row.total) for row in result.all()
        }

    async def _locked_balances(
        self, employee_ids: list[UUID], budget_ids: list[UUID]
    ) -> dict[tuple[UUID, UUID], EmployeeBenefitBalance]:
        if not budget_ids:
            return {}
        result = await self.session.execute(
            select(EmployeeBenefitBalance)
            .where(
                EmployeeBenefitBalance.employee_id.in_(employee_ids),
                EmployeeBenefitBalance.benefit_budget_id.in_(budget_ids),
            )
            .with_for_update()
        )
        return {
            (balance.employee_id, balance.benefit_budget_id): balance
            for balance in result.scalars().all()
        }

    async def _benefit_types(self, benefit_type_ids: set[UUID]) -> dict[UUID, BenefitType]:
        if not benefit_type_ids:
            return {}
        result = await self.session.execute(
            select(BenefitType).where(BenefitType.benefit_type_id.in_(list(benefit_type_ids)))
        )
        return {bt.benefit_type_id: bt for bt in result.scalars().all()}
