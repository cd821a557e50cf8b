"""Transaction ledger - overdraft-aware debits and credits.

Every balance mutation goes through this service:
- Balance rows are read FOR UPDATE so concurrent debits serialize
- The balance update and its BalanceTransaction are flushed together
- Rejected debits write nothing
- Transaction ids are TXN-YYYYMMDD-NNN, sequential per day
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy import exists, func, select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from benefit_ledger.models import (
    BalanceTransaction,
    BenefitBudget,
    BenefitType,
    EmployeeBenefitBalance,
    ReferenceType,
    TransactionType,
)
from benefit_ledger.services.cache import BalanceCache, NullBalanceCache, invalidate_balance_caches
from benefit_ledger.services.eligibility import EligibilityResolver, EmployeeProfile
from benefit_ledger.services.errors import ConcurrencyConflict, NotFoundError, OverdraftExceededError
from benefit_ledger.services.policies import OverdraftPolicy
from benefit_ledger.services.types import BenefitTypeRef, EmployeeRef, TransactionRecord, money

logger = logging.getLogger(__name__)

# SQLSTATE codes for serialization failure and deadlock
_RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


async def flush_session(session: AsyncSession) -> None:
    """Flush pending writes, translating races into ConcurrencyConflict."""
    try:
        await session.flush()
    except IntegrityError as e:
        raise ConcurrencyConflict(
            "Balance or transaction id was written concurrently; retry the operation",
            cause=e,
        ) from e
    except DBAPIError as e:
        sqlstate = getattr(e.orig, "sqlstate", None) or getattr(e.orig, "pgcode", None)
        if sqlstate in _RETRYABLE_SQLSTATES:
            raise ConcurrencyConflict("Transaction serialization failure", cause=e) from e
        raise


def employee_ref(profile: EmployeeProfile) -> EmployeeRef:
    return EmployeeRef(
        id=profile.employee_id,
        name=profile.name,
        nik=profile.nik,
        department=profile.department,
    )


class TransactionLedger:
    """Append-only benefit balance ledger.

    Notes:
    - balance_transaction rows are never updated or deleted.
    - All amounts are positive; the direction is transaction_type.
    - The service flushes but never commits; the caller owns the
      transaction boundary (see database.get_session).
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        resolver: EligibilityResolver | None = None,
        overdraft_policy: OverdraftPolicy | None = None,
        cache: BalanceCache | None = None,
        today: Callable[[], date] = _utc_today,
    ):
        self.session = session
        self.resolver = resolver or EligibilityResolver(session)
        self.overdraft_policy = overdraft_policy or OverdraftPolicy()
        self.cache = cache if cache is not None else NullBalanceCache()
        self._today = today

    async def apply(
        self,
        *,
        employee_id: UUID,
        benefit_type_id: UUID,
        year: int,
        transaction_type: TransactionType | str,
        amount: Decimal | int | float | str,
        reference_type: ReferenceType | str,
        reference_id: UUID | None = None,
        description: str | None = None,
        actor_id: UUID | None = None,
        override_overdraft: bool = False,
        is_emergency: bool = False,
    ) -> TransactionRecord:
        """Apply a debit or credit to an employee's benefit balance.

        Args:
            employee_id: Employee whose balance changes
            benefit_type_id: Benefit type being claimed or restored
            year: Budget year
            transaction_type: 'debit' or 'credit'
            amount: Positive amount
            reference_type: What caused the transaction (claim, adjustment, ...)
            reference_id: Optional id of the causing record
            description: Optional free text
            actor_id: Optional user who processed the transaction
            override_overdraft: Allow a debit past the overdraft limit
            is_emergency: Emergency debits also bypass the overdraft limit

        Returns:
            TransactionRecord with before/after balances

        Raises:
            NotFoundError: If the employee or benefit type does not exist
            NoBudgetError: If no budget applies to the employee
            OverdraftExceededError: If the debit would pass the overdraft limit
            ConcurrencyConflict: If a concurrent writer won the race
        """
        txn_type = self._parse_transaction_type(transaction_type)
        value = money(amount)
        if value <= 0:
            raise ValueError("Amount must be positive")

        profile = await self.resolver.load_profile(employee_id)
        benefit_type = await self.get_benefit_type(benefit_type_id)
        budget = await self.resolver.resolve(profile, benefit_type_id, year)

        return await self.apply_to_budget(
            profile=profile,
            benefit_type=benefit_type,
            budget=budget,
            transaction_type=txn_type,
            amount=value,
            reference_type=reference_type,
            reference_id=reference_id,
            description=description,
            actor_id=actor_id,
            enforce_overdraft=not (override_overdraft or is_emergency),
        )

    async def adjust(
        self,
        *,
        employee_id: UUID,
        benefit_type_id: UUID,
        year: int,
        adjustment_type: str,
        amount: Decimal | int | float | str,
        reason: str,
        actor_id: UUID | None = None,
    ) -> TransactionRecord:
        """Manually increase or decrease a balance.

        An increase posts a credit, a decrease a debit; both are subject to
        the same overdraft policy as any other transaction.
        """
        if adjustment_type == "increase":
            txn_type = TransactionType.CREDIT
        elif adjustment_type == "decrease":
            txn_type = TransactionType.DEBIT
        else:
            raise ValueError(f"Invalid adjustment_type: {adjustment_type}")

        return await self.apply(
            employee_id=employee_id,
            benefit_type_id=benefit_type_id,
            year=year,
            transaction_type=txn_type,
            amount=amount,
            reference_type=ReferenceType.ADJUSTMENT,
            description=f"Manual adjustment: {reason}",
            actor_id=actor_id,
        )

    async def apply_to_budget(
        self,
        *,
        profile: EmployeeProfile,
        benefit_type: BenefitType,
        budget: BenefitBudget,
        transaction_type: TransactionType,
        amount: Decimal,
        reference_type: ReferenceType | str,
        reference_id: UUID | None = None,
        description: str | None = None,
        actor_id: UUID | None = None,
        enforce_overdraft: bool = True,
    ) -> TransactionRecord:
        """Post a transaction against an already-resolved budget."""
        ref_type = ReferenceType(reference_type).value

        balance = await self.lock_balance(profile.employee_id, budget.benefit_budget_id)
        is_new = balance is None
        if balance is None:
            balance = EmployeeBenefitBalance(
                balance_id=uuid4(),
                employee_id=profile.employee_id,
                benefit_budget_id=budget.benefit_budget_id,
                current_balance=budget.budget,
            )

        balance_before = Decimal(balance.current_balance)
        if transaction_type == TransactionType.DEBIT:
            balance_after = balance_before - amount
        else:
            balance_after = balance_before + amount

        if transaction_type == TransactionType.DEBIT and enforce_overdraft:
            overdraft_limit = self.overdraft_policy.limit_for(budget.budget, benefit_type.name)
            if balance_after < overdraft_limit:
                logger.warning(
                    "Rejected debit of %s for employee %s (%s): balance %s, limit %s",
                    amount,
                    profile.employee_id,
                    benefit_type.name,
                    balance_before,
                    overdraft_limit,
                )
                raise OverdraftExceededError(balance_before, balance_after, overdraft_limit)

        return await self._post(
            profile=profile,
            benefit_type=benefit_type,
            budget=budget,
            balance=balance,
            is_new=is_new,
            transaction_type=transaction_type,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            reference_type=ref_type,
            reference_id=reference_id,
            description=description,
            actor_id=actor_id,
        )

    async def correct_to_budget(
        self,
        *,
        profile: EmployeeProfile,
        benefit_type: BenefitType,
        budget: BenefitBudget,
        target_balance: Decimal,
        actor_id: UUID | None = None,
    ) -> TransactionRecord | None:
        """Set a balance to target_balance with a 'reconciliation' transaction.

        The transaction is sized against the balance's own history
        (allocation + credits - debits), not the stored value, so a stored
        balance that drifted from its history is brought back in line too.
        Before/after on the transaction record the stored value that was
        overwritten. Overdraft limits do not apply.

        Returns None when the history already yields target_balance.
        """
        target = money(target_balance)
        balance = await self.lock_balance(profile.employee_id, budget.benefit_budget_id)
        is_new = balance is None
        if balance is None:
            balance = EmployeeBenefitBalance(
                balance_id=uuid4(),
                employee_id=profile.employee_id,
                benefit_budget_id=budget.benefit_budget_id,
                current_balance=budget.budget,
            )

        balance_before = money(balance.current_balance)
        history = money(budget.budget)
        if not is_new:
            history += await self.history_net(balance.balance_id)
        correction = target - history

        if correction == 0:
            if is_new:
                self.session.add(balance)
            elif balance_before != target:
                logger.warning(
                    "Balance %s stored %s, history gives %s; restoring from history",
                    balance.balance_id,
                    balance_before,
                    target,
                )
                balance.current_balance = target
            else:
                return None
            await flush_session(self.session)
            invalidate_balance_caches(self.cache, profile.employee_id, budget.year)
            return None

        return await self._post(
            profile=profile,
            benefit_type=benefit_type,
            budget=budget,
            balance=balance,
            is_new=is_new,
            transaction_type=TransactionType.CREDIT if correction > 0 else TransactionType.DEBIT,
            amount=abs(correction),
            balance_before=balance_before,
            balance_after=target,
            reference_type=ReferenceType.RECONCILIATION.value,
            description=f"Reconciliation: balance {balance_before} recalculated to {target}",
            actor_id=actor_id,
        )

    async def history_net(self, balance_id: UUID) -> Decimal:
        """Credits minus debits posted against a balance."""
        net = await self.session.scalar(
            select(func.sum(BalanceTransaction.signed_amount)).where(
                BalanceTransaction.balance_id == balance_id
            )
        )
        return money(net)

    async def _post(
        self,
        *,
        profile: EmployeeProfile,
        benefit_type: BenefitType,
        budget: BenefitBudget,
        balance: EmployeeBenefitBalance,
        is_new: bool,
        transaction_type: TransactionType,
        amount: Decimal,
        balance_before: Decimal,
        balance_after: Decimal,
        reference_type: str,
        reference_id: UUID | None = None,
        description: str | None = None,
        actor_id: UUID | None = None,
    ) -> TransactionRecord:
        transaction = BalanceTransaction(
            balance_transaction_id=uuid4(),
            transaction_id=await self.next_transaction_id(),
            balance_id=balance.balance_id,
            employee_id=profile.employee_id,
            benefit_type_id=benefit_type.benefit_type_id,
            year=budget.year,
            transaction_type=transaction_type.value,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            reference_type=reference_type,
            reference_id=reference_id,
            description=description,
            processed_by=actor_id,
        )

        balance.current_balance = balance_after
        if is_new:
            self.session.add(balance)
        self.session.add(transaction)
        await flush_session(self.session)

        logger.info(
            "Posted %s %s (%s) for employee %s %s/%s: %s -> %s",
            transaction.transaction_id,
            transaction_type.value,
            amount,
            profile.employee_id,
            benefit_type.name,
            budget.year,
            balance_before,
            balance_after,
        )

        invalidate_balance_caches(self.cache, profile.employee_id, budget.year)

        return TransactionRecord(
            transaction_id=transaction.transaction_id,
            balance_id=balance.balance_id,
            employee=employee_ref(profile),
            benefit_type=BenefitTypeRef(id=benefit_type.benefit_type_id, name=benefit_type.name),
            year=budget.year,
            transaction_type=transaction_type.value,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            reference_type=reference_type,
            reference_id=reference_id,
            description=description,
            processed_by=actor_id,
            processed_at=transaction.created_at,
        )

    async def lock_balance(
        self, employee_id: UUID, benefit_budget_id: UUID
    ) -> EmployeeBenefitBalance | None:
        """Fetch a balance row with a row-level lock held until commit."""
        result = await self.session.execute(
            select(EmployeeBenefitBalance)
            .where(
                EmployeeBenefitBalance.employee_id == employee_id,
                EmployeeBenefitBalance.benefit_budget_id == benefit_budget_id,
            )
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def get_benefit_type(self, benefit_type_id: UUID) -> BenefitType:
        """Load a benefit type.

        Raises:
            NotFoundError: If the benefit type does not exist
        """
        benefit_type = await self.session.get(BenefitType, benefit_type_id)
        if benefit_type is None:
            raise NotFoundError(
                "benefit_type", benefit_type_id, f"Benefit type {benefit_type_id} not found"
            )
        return benefit_type

    async def next_transaction_id(self) -> str:
        """Next free TXN-YYYYMMDD-NNN id for today."""
        prefix = f"TXN-{self._today():%Y%m%d}-"

        latest = await self.session.scalar(
            select(BalanceTransaction.transaction_id)
            .where(BalanceTransaction.transaction_id.like(f"{prefix}%"))
            .order_by(
                func.length(BalanceTransaction.transaction_id).desc(),
                BalanceTransaction.transaction_id.desc(),
            )
            .limit(1)
        )

        sequence = 1
        if latest is not None:
            suffix = latest[len(prefix):]
            if suffix.isdigit():
                sequence = int(suffix) + 1

        candidate = f"{prefix}{sequence:03d}"
        while await self.session.scalar(
            select(exists().where(BalanceTransaction.transaction_id == candidate))
        ):
            sequence += 1
            candidate = f"{prefix}{sequence:03d}"
        return candidate

    @staticmethod
    def _parse_transaction_type(value: TransactionType | str) -> TransactionType:
        try:
            return TransactionType(value)
        except ValueError:
            raise ValueError(f"Invalid transaction_type: {value}") from None
