"""Tests for balance recalculation and ledger audits."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select, update

from benefit_ledger.models import (
    BalanceTransaction,
    BenefitBudget,
    BenefitType,
    EmployeeBenefitBalance,
)
from benefit_ledger.services.cache import alerts_key, summary_key
from benefit_ledger.services.reconciliation import ReconciliationEngine
from benefit_ledger.services.transaction_ledger import TransactionLedger
from tests.conftest import YEAR


async def _add_dental(session, data, allocation="900000"):
    """Dental budget for unmarried staff; female staff resolve to it."""
    dental = BenefitType(benefit_type_id=uuid4(), name="dental")
    session.add(dental)
    budget = BenefitBudget(
        benefit_budget_id=uuid4(),
        benefit_type_id=dental.benefit_type_id,
        level_employee_id=data.levels["Staff"],
        marriage_status_id=data.statuses["TK"],
        year=YEAR,
        budget=Decimal(allocation),
    )
    session.add(budget)
    await session.flush()
    data.benefit_types["dental"] = dental.benefit_type_id
    return budget


class TestRecalculate:
    """Recalculation from approved claims."""

    @pytest.mark.asyncio
    async def test_corrects_drifted_balance(self, session, data):
        """Allocation 900,000, approved claims 300,000, stored 700,000."""
        budget = await _add_dental(session, data)
        ani = data.employees["ani"]
        session.add(
            EmployeeBenefitBalance(
                employee_id=ani,
                benefit_budget_id=budget.benefit_budget_id,
                current_balance=Decimal("700000"),
            )
        )
        data.add_claim(session, "ani", "dental", "200000")
        data.add_claim(session, "ani", "dental", "100000", claim_date=date(YEAR, 11, 30))
        data.add_claim(session, "ani", "dental", "50000", status="pending")
        data.add_claim(session, "ani", "dental", "80000", claim_date=date(YEAR - 1, 12, 31))
        await session.flush()

        result = await ReconciliationEngine(session).recalculate(
            YEAR, employee_ids=[ani], benefit_type_ids=[data.benefit_types["dental"]]
        )

        assert result.recalculated_employees == 1
        assert result.recalculated_balances == 1
        assert result.discrepancies_found == 1
        discrepancy = result.discrepancies[0]
        assert discrepancy.employee_id == ani
        assert discrepancy.old_balance == Decimal("700000")
        assert discrepancy.calculated_balance == Decimal("600000")
        assert discrepancy.difference == Decimal("-100000")

        stored = await session.scalar(
            select(EmployeeBenefitBalance.current_balance).where(
                EmployeeBenefitBalance.employee_id == ani,
                EmployeeBenefitBalance.benefit_budget_id == budget.benefit_budget_id,
            )
        )
        assert stored == Decimal("600000")

    @pytest.mark.asyncio
    async def test_correction_is_recorded_as_transaction(self, session, data):
        budget = await _add_dental(session, data)
        ani = data.employees["ani"]
        session.add(
            EmployeeBenefitBalance(
                employee_id=ani,
                benefit_budget_id=budget.benefit_budget_id,
                current_balance=Decimal("700000"),
            )
        )
        data.add_claim(session, "ani", "dental", "300000")
        await session.flush()
        actor = uuid4()

        result = await ReconciliationEngine(session).recalculate(
            YEAR, employee_ids=[ani], benefit_type_ids=[data.benefit_types["dental"]], actor_id=actor
        )

        assert len(result.corrections) == 1
        txn = await session.scalar(
            select(BalanceTransaction).where(
                BalanceTransaction.transaction_id == result.corrections[0].transaction_id
            )
        )
        assert txn.reference_type == "reconciliation"
        assert txn.transaction_type == "debit"
        # Sized against the empty history (900,000), not the stored 700,000
        assert txn.amount == Decimal("300000")
        assert txn.balance_before == Decimal("700000")
        assert txn.balance_after == Decimal("600000")
        assert txn.processed_by == actor

    @pytest.mark.asyncio
    async def test_correction_bypasses_overdraft(self, session, data):
        """A claims history past the overdraft limit is still applied."""
        ani = data.employees["ani"]
        data.add_claim(session, "ani", "glasses", "1500000")
        await session.flush()

        result = await ReconciliationEngine(session).recalculate(
            YEAR, employee_ids=[ani], benefit_type_ids=[data.glasses]
        )

        assert result.discrepancies[0].calculated_balance == Decimal("-500000")
        assert result.corrections[0].balance_after == Decimal("-500000")

    @pytest.mark.asyncio
    async def test_missing_balance_compared_with_allocation(self, session, data):
        budi = data.employees["budi"]
        data.add_claim(session, "budi", "medical", "500000")
        await session.flush()

        result = await ReconciliationEngine(session).recalculate(YEAR, employee_ids=[budi])

        # medical and glasses budgets for K2 staff
        assert result.recalculated_balances == 2
        assert [(d.old_balance, d.calculated_balance) for d in result.discrepancies] == [
            (Decimal("2000000"), Decimal("1500000")),
        ]
        rows = (
            await session.execute(
                select(EmployeeBenefitBalance).where(EmployeeBenefitBalance.employee_id == budi)
            )
        ).scalars().all()
        assert sorted(r.current_balance for r in rows) == [Decimal("1200000"), Decimal("1500000")]

    @pytest.mark.asyncio
    async def test_consistent_balances_report_nothing(self, session, data):
        ledger = TransactionLedger(session)
        claim = data.add_claim(session, "eko", "medical", "400000")
        await session.flush()
        await ledger.apply(
            employee_id=data.employees["eko"],
            benefit_type_id=data.medical,
            year=YEAR,
            transaction_type="debit",
            amount=claim.amount,
            reference_type="claim",
            reference_id=claim.benefit_claim_id,
        )

        result = await ReconciliationEngine(session).recalculate(YEAR)

        assert result.discrepancies == []
        assert result.corrections == []
        assert result.recalculated_employees == 6
        assert result.recalculated_balances == 9

    @pytest.mark.asyncio
    async def test_sub_cent_tolerance(self, session, data):
        budget = await _add_dental(session, data)
        ani = data.employees["ani"]
        session.add(
            EmployeeBenefitBalance(
                employee_id=ani,
                benefit_budget_id=budget.benefit_budget_id,
                current_balance=Decimal("899999.99"),
            )
        )
        await session.flush()

        result = await ReconciliationEngine(session).recalculate(
            YEAR, employee_ids=[ani], benefit_type_ids=[data.benefit_types["dental"]]
        )

        assert result.discrepancies == []
        # The history already gives 900,000; the stored value is restored without a transaction
        assert result.corrections == []
        stored = await session.scalar(
            select(EmployeeBenefitBalance.current_balance).where(
                EmployeeBenefitBalance.benefit_budget_id == budget.benefit_budget_id
            )
        )
        assert stored == Decimal("900000")
        assert await ReconciliationEngine(session).audit(YEAR) == []

    @pytest.mark.asyncio
    async def test_invalidates_caches(self, session, data, cache):
        ani = data.employees["ani"]
        cache.put(summary_key(ani, YEAR), "summary", 300)
        cache.put(alerts_key(20, YEAR), "alerts", 300)

        await ReconciliationEngine(session, cache=cache).recalculate(YEAR, employee_ids=[ani])

        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_no_employees_is_empty_result(self, session, data):
        result = await ReconciliationEngine(session).recalculate(YEAR, employee_ids=[uuid4()])

        assert result.recalculated_employees == 0
        assert result.discrepancies == []


class TestAudit:
    """Stored balance versus transaction history."""

    @pytest.mark.asyncio
    async def test_detects_direct_overwrite(self, session, data):
        ledger = TransactionLedger(session)
        record = await ledger.apply(
            employee_id=data.employees["dewi"],
            benefit_type_id=data.medical,
            year=YEAR,
            transaction_type="debit",
            amount="1000000",
            reference_type="claim",
        )
        engine = ReconciliationEngine(session)
        assert await engine.audit(YEAR) == []

        await session.execute(
            update(EmployeeBenefitBalance)
            .where(EmployeeBenefitBalance.balance_id == record.balance_id)
            .values(current_balance=Decimal("2500000"))
        )

        drifts = await engine.audit(YEAR)

        assert len(drifts) == 1
        assert drifts[0].balance_id == record.balance_id
        assert drifts[0].stored_balance == Decimal("2500000")
        assert drifts[0].ledger_balance == Decimal("2000000")
        assert drifts[0].difference == Decimal("-500000")

    @pytest.mark.asyncio
    async def test_recalculation_keeps_ledger_consistent(self, session, data):
        budget = await _add_dental(session, data)
        ani = data.employees["ani"]
        session.add(
            EmployeeBenefitBalance(
                employee_id=ani,
                benefit_budget_id=budget.benefit_budget_id,
                current_balance=Decimal("900000"),
            )
        )
        data.add_claim(session, "ani", "dental", "250000")
        await session.flush()
        engine = ReconciliationEngine(session)

        await engine.recalculate(YEAR, employee_ids=[ani])

        assert await engine.audit(YEAR, employee_ids=[ani]) == []

    @pytest.mark.asyncio
    async def test_drifted_balance_without_history_is_consistent_after_recalculation(
        self, session, data
    ):
        """Allocation 900,000, approved claims 300,000, stored 700,000, no transactions."""
        budget = await _add_dental(session, data)
        ani = data.employees["ani"]
        session.add(
            EmployeeBenefitBalance(
                employee_id=ani,
                benefit_budget_id=budget.benefit_budget_id,
                current_balance=Decimal("700000"),
            )
        )
        data.add_claim(session, "ani", "dental", "300000")
        await session.flush()
        engine = ReconciliationEngine(session)
        assert len(await engine.audit(YEAR)) == 1

        await engine.recalculate(YEAR)

        assert await engine.audit(YEAR) == []
        again = await engine.recalculate(YEAR)
        assert again.discrepancies == []
        assert again.corrections == []

    @pytest.mark.asyncio
    async def test_overwritten_balance_restored_from_history(self, session, data):
        ledger = TransactionLedger(session)
        claim = data.add_claim(session, "budi", "medical", "100000")
        await session.flush()
        record = await ledger.apply(
            employee_id=data.employees["budi"],
            benefit_type_id=data.medical,
            year=YEAR,
            transaction_type="debit",
            amount=claim.amount,
            reference_type="claim",
            reference_id=claim.benefit_claim_id,
        )
        await session.execute(
            update(EmployeeBenefitBalance)
            .where(EmployeeBenefitBalance.balance_id == record.balance_id)
            .values(current_balance=Decimal("500000"))
        )
        engine = ReconciliationEngine(session)

        result = await engine.recalculate(YEAR, employee_ids=[data.employees["budi"]])

        assert [(d.old_balance, d.calculated_balance) for d in result.discrepancies] == [
            (Decimal("500000"), Decimal("1900000")),
        ]
        assert result.corrections == []
        assert await engine.audit(YEAR) == []
