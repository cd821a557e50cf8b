"""Tests for read-side balance queries."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from benefit_ledger.models import EmployeeBenefitBalance
from benefit_ledger.services.balance_queries import BalanceQueryService
from benefit_ledger.services.cache import InMemoryBalanceCache
from benefit_ledger.services.errors import NoBudgetError, NotFoundError
from benefit_ledger.services.transaction_ledger import TransactionLedger
from tests.conftest import YEAR


async def _post(ledger, data, employee, benefit, amount, kind="debit", **kwargs):
    return await ledger.apply(
        employee_id=data.employees[employee],
        benefit_type_id=data.benefit_types[benefit],
        year=YEAR,
        transaction_type=kind,
        amount=amount,
        reference_type="claim",
        **kwargs,
    )


class TestEmployeeSummary:
    """Yearly summary per employee."""

    @pytest.mark.asyncio
    async def test_summary_without_balance_rows(self, session, data):
        queries = BalanceQueryService(session)

        summary = await queries.get_employee_summary(data.employees["dewi"], YEAR)

        assert summary.employee.nik == "EMP004"
        assert [line.benefit_type.name for line in summary.balances] == ["glasses", "medical"]
        assert summary.total_initial_balance == Decimal("4500000")
        assert summary.total_current_balance == Decimal("4500000")
        assert summary.total_used_amount == Decimal("0")
        assert summary.overall_usage_percentage == Decimal("0")

        count = await session.scalar(select(func.count()).select_from(EmployeeBenefitBalance))
        assert count == 0

    @pytest.mark.asyncio
    async def test_summary_with_usage_and_claims(self, session, data):
        ledger = TransactionLedger(session)
        await _post(ledger, data, "ani", "medical", "250000")
        data.add_claim(session, "ani", "medical", "100000", claim_date=date(YEAR, 2, 1))
        data.add_claim(session, "ani", "medical", "150000", claim_date=date(YEAR, 6, 9))
        data.add_claim(session, "ani", "medical", "90000", status="rejected", claim_date=date(YEAR, 7, 1))
        await session.flush()

        summary = await BalanceQueryService(session).get_employee_summary(data.employees["ani"], YEAR)

        medical = next(line for line in summary.balances if line.benefit_type.name == "medical")
        assert medical.initial_balance == Decimal("1000000")
        assert medical.current_balance == Decimal("750000")
        assert medical.used_amount == Decimal("250000")
        assert medical.usage_percentage == Decimal("25")
        assert medical.total_claims == 2
        assert medical.last_claim_date == date(YEAR, 6, 9)

        glasses = next(line for line in summary.balances if line.benefit_type.name == "glasses")
        assert glasses.total_claims == 0
        assert glasses.last_claim_date is None

        assert summary.total_initial_balance == Decimal("2000000")
        assert summary.total_used_amount == Decimal("250000")
        assert summary.overall_usage_percentage == Decimal("12.5")

    @pytest.mark.asyncio
    async def test_summary_cached_and_invalidated_by_ledger(self, session, data):
        cache = InMemoryBalanceCache()
        queries = BalanceQueryService(session, cache=cache)
        ledger = TransactionLedger(session, cache=cache)
        employee_id = data.employees["ani"]

        first = await queries.get_employee_summary(employee_id, YEAR)
        assert await queries.get_employee_summary(employee_id, YEAR) is first

        await _post(ledger, data, "ani", "medical", "100000")

        refreshed = await queries.get_employee_summary(employee_id, YEAR)
        assert refreshed is not first
        assert refreshed.total_used_amount == Decimal("100000")

    @pytest.mark.asyncio
    async def test_summary_unknown_employee(self, session, data):
        with pytest.raises(NotFoundError):
            await BalanceQueryService(session).get_employee_summary(uuid4(), YEAR)


class TestCheckAvailableBalance:
    """Sufficiency checks ignore overdraft headroom."""

    @pytest.mark.asyncio
    async def test_sufficient(self, session, data):
        check = await BalanceQueryService(session).check_available_balance(
            data.employees["budi"], data.medical, "500000", YEAR
        )

        assert check.sufficient_balance is True
        assert check.current_balance == Decimal("2000000")
        assert check.remaining_after_claim == Decimal("1500000")
        assert check.shortage_amount is None

    @pytest.mark.asyncio
    async def test_insufficient(self, session, data):
        ledger = TransactionLedger(session)
        await _post(ledger, data, "budi", "glasses", "1000000")

        check = await BalanceQueryService(session).check_available_balance(
            data.employees["budi"], data.glasses, Decimal("300000"), YEAR
        )

        assert check.sufficient_balance is False
        assert check.current_balance == Decimal("200000")
        assert check.shortage_amount == Decimal("100000")
        assert check.remaining_after_claim is None

    @pytest.mark.asyncio
    async def test_exact_balance_is_sufficient(self, session, data):
        check = await BalanceQueryService(session).check_available_balance(
            data.employees["budi"], data.glasses, "1200000", YEAR
        )

        assert check.sufficient_balance is True
        assert check.remaining_after_claim == Decimal("0")

    @pytest.mark.asyncio
    async def test_no_budget(self, session, data):
        with pytest.raises(NoBudgetError):
            await BalanceQueryService(session).check_available_balance(
                data.employees["citra"], data.glasses, "1", YEAR
            )

    @pytest.mark.asyncio
    async def test_unknown_benefit_type(self, session, data):
        with pytest.raises(NotFoundError):
            await BalanceQueryService(session).check_available_balance(
                data.employees["citra"], uuid4(), "1", YEAR
            )


class TestBalanceStatus:
    """Status categories."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "debit,override,expected",
        [
            (None, False, "sufficient"),
            ("800000", False, "sufficient"),
            ("800000.01", False, "low_balance"),
            ("1000000", False, "low_balance"),
            ("1100000", False, "overdraft_allowed"),
            ("1200000", True, "overdraft_exceeded"),
        ],
    )
    async def test_status(self, session, data, debit, override, expected):
        ledger = TransactionLedger(session)
        if debit:
            await _post(ledger, data, "ani", "glasses", debit, override_overdraft=override)

        status = await BalanceQueryService(session).get_balance_status(
            data.employees["ani"], data.glasses, YEAR
        )

        assert status.status == expected

    @pytest.mark.asyncio
    async def test_status_breakdown(self, session, data):
        ledger = TransactionLedger(session)
        await _post(ledger, data, "ani", "glasses", "1040000")

        status = await BalanceQueryService(session).get_balance_status(
            data.employees["ani"], data.glasses, YEAR
        )

        assert status.initial_budget == Decimal("1000000")
        assert status.current_balance == Decimal("-40000")
        assert status.used_amount == Decimal("1040000")
        assert status.overdraft_limit == Decimal("-100000")
        assert status.available_credit == Decimal("0")
        assert status.available_overdraft == Decimal("60000")
        assert status.is_overdrawn is True
        assert status.overdraft_amount == Decimal("40000")
        assert status.usage_percentage == Decimal("104")


class TestBalanceHistory:
    """Transaction history."""

    @pytest.mark.asyncio
    async def test_newest_first_with_filters(self, session, data):
        ledger = TransactionLedger(session)
        first = await _post(ledger, data, "ani", "medical", "100")
        second = await _post(ledger, data, "ani", "glasses", "200")
        third = await _post(ledger, data, "ani", "medical", "50", kind="credit")
        await _post(ledger, data, "budi", "medical", "999")
        queries = BalanceQueryService(session)
        ani = data.employees["ani"]

        history = await queries.get_balance_history(ani)
        assert [r.transaction_id for r in history] == [
            third.transaction_id,
            second.transaction_id,
            first.transaction_id,
        ]

        medical = await queries.get_balance_history(ani, benefit_type_id=data.medical)
        assert [r.transaction_id for r in medical] == [third.transaction_id, first.transaction_id]

        debits = await queries.get_balance_history(ani, transaction_type="debit")
        assert {r.transaction_type for r in debits} == {"debit"}
        assert len(debits) == 2

        limited = await queries.get_balance_history(ani, limit=1)
        assert [r.transaction_id for r in limited] == [third.transaction_id]

        assert await queries.get_balance_history(ani, year=YEAR + 1) == []

    @pytest.mark.asyncio
    async def test_history_unknown_employee(self, session, data):
        with pytest.raises(NotFoundError):
            await BalanceQueryService(session).get_balance_history(uuid4())
