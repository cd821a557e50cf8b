"""Read-side balance queries.

Nothing here writes: an employee without a balance row is reported at the
full allocation of the budget that applies to them.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
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
    TransactionType,
)
from benefit_ledger.services.alerts import overdraft_info, usage_percentage
from benefit_ledger.services.cache import BalanceCache, NullBalanceCache, summary_key
from benefit_ledger.services.eligibility import EligibilityResolver
from benefit_ledger.services.errors import NotFoundError
from benefit_ledger.services.policies import OverdraftPolicy
from benefit_ledger.services.transaction_ledger import employee_ref
from benefit_ledger.services.types import (
    BalanceCheck,
    BalanceStatus,
    BalanceSummary,
    BenefitBalanceLine,
    BenefitTypeRef,
    TransactionRecord,
    money,
)

DEFAULT_SUMMARY_TTL_SECONDS = 300
DEFAULT_HISTORY_LIMIT = 50

# Below this share of the allocation a positive balance is reported as low
LOW_BALANCE_RATIO = Decimal("0.2")


class BalanceQueryService:
    """Employee-facing balance views."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        resolver: EligibilityResolver | None = None,
        overdraft_policy: OverdraftPolicy | None = None,
        cache: BalanceCache | None = None,
        summary_ttl: float = DEFAULT_SUMMARY_TTL_SECONDS,
    ):
        self.session = session
        self.resolver = resolver or EligibilityResolver(session)
        self.overdraft_policy = overdraft_policy or OverdraftPolicy()
        self.cache = cache if cache is not None else NullBalanceCache()
        self.summary_ttl = summary_ttl

    async def get_employee_summary(self, employee_id: UUID, year: int) -> BalanceSummary:
        """Per-benefit balances and totals for one employee and year.

        Raises:
            NotFoundError: If the employee does not exist
        """
        key = summary_key(employee_id, year)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        profile = await self.resolver.load_profile(employee_id)
        budgets = await self.resolver.budgets_for_employee(profile, year)
        budget_ids = [b.benefit_budget_id for b in budgets]

        balances = {}
        benefit_types = {}
        if budgets:
            result = await self.session.execute(
                select(EmployeeBenefitBalance).where(
                    EmployeeBenefitBalance.employee_id == employee_id,
                    EmployeeBenefitBalance.benefit_budget_id.in_(budget_ids),
                )
            )
            balances = {b.benefit_budget_id: b for b in result.scalars().all()}
            result = await self.session.execute(
                select(BenefitType).where(
                    BenefitType.benefit_type_id.in_([b.benefit_type_id for b in budgets])
                )
            )
            benefit_types = {bt.benefit_type_id: bt for bt in result.scalars().all()}

        claim_stats = await self._approved_claim_stats(employee_id, year)

        lines = []
        total_initial = total_used = total_current = Decimal("0.00")
        for budget in sorted(budgets, key=lambda b: benefit_types[b.benefit_type_id].name):
            benefit_type = benefit_types[budget.benefit_type_id]
            allocation = money(budget.budget)
            balance = balances.get(budget.benefit_budget_id)
            current = money(balance.current_balance) if balance is not None else allocation
            used = allocation - current
            last_claim_date, total_claims = claim_stats.get(budget.benefit_type_id, (None, 0))

            lines.append(
                BenefitBalanceLine(
                    benefit_type=BenefitTypeRef(id=benefit_type.benefit_type_id, name=benefit_type.name),
                    initial_balance=allocation,
                    used_amount=used,
                    current_balance=current,
                    usage_percentage=usage_percentage(allocation, used),
                    last_claim_date=last_claim_date,
                    total_claims=total_claims,
                )
            )
            total_initial += allocation
            total_used += used
            total_current += current

        summary = BalanceSummary(
            employee=employee_ref(profile),
            year=year,
            balances=lines,
            total_initial_balance=total_initial,
            total_used_amount=total_used,
            total_current_balance=total_current,
            overall_usage_percentage=usage_percentage(total_initial, total_used),
        )
        self.cache.put(key, summary, self.summary_ttl)
        return summary

    async def check_available_balance(
        self,
        employee_id: UUID,
        benefit_type_id: UUID,
        amount: Decimal | int | float | str,
        year: int,
    ) -> BalanceCheck:
        """Whether amount fits in the current balance, ignoring overdraft.

        Raises:
            NotFoundError: If the employee or benefit type does not exist
            NoBudgetError: If no budget applies to the employee
        """
        requested = money(amount)
        if requested <= 0:
            raise ValueError("Amount must be positive")

        profile, benefit_type, budget, current = await self._current_balance(
            employee_id, benefit_type_id, year
        )
        sufficient = current >= requested
        return BalanceCheck(
            employee=employee_ref(profile),
            benefit_type=BenefitTypeRef(id=benefit_type.benefit_type_id, name=benefit_type.name),
            sufficient_balance=sufficient,
            current_balance=current,
            requested_amount=requested,
            remaining_after_claim=current - requested if sufficient else None,
            shortage_amount=None if sufficient else requested - current,
        )

    async def get_balance_status(
        self, employee_id: UUID, benefit_type_id: UUID, year: int
    ) -> BalanceStatus:
        """Balance state with overdraft headroom.

        Status is one of:
        - sufficient: at least 20% of the allocation left
        - low_balance: positive but under 20% of the allocation
        - overdraft_allowed: negative, within the overdraft limit
        - overdraft_exceeded: below the overdraft limit
        """
        profile, benefit_type, budget, current = await self._current_balance(
            employee_id, benefit_type_id, year
        )
        allocation = money(budget.budget)
        limit = self.overdraft_policy.limit_for(allocation, benefit_type.name)
        info = overdraft_info(current, limit)
        used = allocation - current

        if current < 0:
            status = "overdraft_allowed" if current >= limit else "overdraft_exceeded"
        elif current < allocation * LOW_BALANCE_RATIO:
            status = "low_balance"
        else:
            status = "sufficient"

        return BalanceStatus(
            employee=employee_ref(profile),
            benefit_type=BenefitTypeRef(id=benefit_type.benefit_type_id, name=benefit_type.name),
            year=year,
            initial_budget=allocation,
            current_balance=current,
            used_amount=used,
            overdraft_limit=limit,
            available_credit=max(Decimal("0.00"), current),
            available_overdraft=info.available_overdraft,
            status=status,
            is_overdrawn=info.is_overdrawn,
            overdraft_amount=info.overdraft_amount,
            usage_percentage=usage_percentage(allocation, used),
        )

    async def get_balance_history(
        self,
        employee_id: UUID,
        *,
        benefit_type_id: UUID | None = None,
        year: int | None = None,
        transaction_type: TransactionType | str | None = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[TransactionRecord]:
        """Ledger transactions for an employee, newest first."""
        if limit <= 0:
            raise ValueError("limit must be positive")

        profile = await self.resolver.load_profile(employee_id)
        query = (
            select(BalanceTransaction, BenefitType)
            .join(BenefitType, BenefitType.benefit_type_id == BalanceTransaction.benefit_type_id)
            .where(BalanceTransaction.employee_id == employee_id)
        )
        if benefit_type_id is not None:
            query = query.where(BalanceTransaction.benefit_type_id == benefit_type_id)
        if year is not None:
            query = query.where(BalanceTransaction.year == year)
        if transaction_type is not None:
            query = query.where(
                BalanceTransaction.transaction_type == TransactionType(transaction_type).value
            )
        query = query.order_by(
            BalanceTransaction.created_at.desc(),
            BalanceTransaction.transaction_id.desc(),
        ).limit(limit)

        employee = employee_ref(profile)
        return [
            TransactionRecord(
                transaction_id=txn.transaction_id,
                balance_id=txn.balance_id,
                employee=employee,
                benefit_type=BenefitTypeRef(id=benefit_type.benefit_type_id, name=benefit_type.name),
                year=txn.year,
                transaction_type=txn.transaction_type,
                amount=money(txn.amount),
                balance_before=money(txn.balance_before),
                balance_after=money(txn.balance_after),
                reference_type=txn.reference_type,
                reference_id=txn.reference_id,
                description=txn.description,
                processed_by=txn.processed_by,
                processed_at=txn.created_at,
            )
            for txn, benefit_type in (await self.session.execute(query)).all()
        ]

    async def _current_balance(
        self, employee_id: UUID, benefit_type_id: UUID, year: int
    ) -> tuple:
        profile = await self.resolver.load_profile(employee_id)
        benefit_type = await self.session.get(BenefitType, benefit_type_id)
        if benefit_type is None:
            raise NotFoundError(
                "benefit_type", benefit_type_id, f"Benefit type {benefit_type_id} not found"
            )
        budget: BenefitBudget = await self.resolver.resolve(profile, benefit_type_id, year)

        stored = await self.session.scalar(
            select(EmployeeBenefitBalance.current_balance).where(
                EmployeeBenefitBalance.employee_id == employee_id,
                EmployeeBenefitBalance.benefit_budget_id == budget.benefit_budget_id,
            )
        )
        current = money(stored) if stored is not None else money(budget.budget)
        return profile, benefit_type, budget, current

    async def _approved_claim_stats(
        self, employee_id: UUID, year: int
    ) -> dict[UUID, tuple[date | None, int]]:
        result = await self.session.execute(
            select(
                BenefitClaim.benefit_type_id,
                func.max(BenefitClaim.claim_date).label("last_claim_date"),
                func.count().label("total_claims"),
            )
            .where(
                BenefitClaim.employee_id == employee_id,
                BenefitClaim.status == ClaimStatus.APPROVED.value,
                BenefitClaim.claim_date >= date(year, 1, 1),
                BenefitClaim.claim_date < date(year + 1, 1, 1),
            )
            .group_by(BenefitClaim.benefit_type_id)
        )
        return {
            row.benefit_type_id: (row.last_claim_date, row.total_claims) for row in result.all()
        }
