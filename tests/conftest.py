"""Pytest fixtures for benefit ledger tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from benefit_ledger.models import (
    Base,
    BenefitBudget,
    BenefitClaim,
    BenefitType,
    ClaimStatus,
    Employee,
    LevelEmployee,
    MarriageStatus,
)
from benefit_ledger.services.cache import InMemoryBalanceCache

# In-memory SQLite; one connection shared through StaticPool so every
# session in a test sees the same database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

YEAR = 2025


@dataclass
class LedgerData:
    """Reference data for ledger tests.

    Budgets for YEAR:

        level       status  medical    glasses
        Staff       TK      1,000,000  1,000,000
        Staff       K0      1,500,000  -
        Staff       K2      2,000,000  1,200,000
        Supervisor  *       3,000,000  1,500,000
        Supervisor  K2      3,500,000  -
        Manager     *       4,000,000  -
        Manager     K2      5,000,000  -

    Employees:

        ani    Staff K2 female  -> TK budgets
        budi   Staff K2 male    -> K2 budgets
        citra  Staff K0 no gender -> K0 medical, no glasses
        dewi   Supervisor K2    -> wildcard budgets
        eko    Manager K2       -> K2 medical
        fajar  Manager K0       -> wildcard medical
    """

    levels: dict[str, UUID] = field(default_factory=dict)
    statuses: dict[str, UUID] = field(default_factory=dict)
    benefit_types: dict[str, UUID] = field(default_factory=dict)
    employees: dict[str, UUID] = field(default_factory=dict)
    budgets: dict[tuple[str, str | None, str], UUID] = field(default_factory=dict)

    @property
    def medical(self) -> UUID:
        return self.benefit_types["medical"]

    @property
    def glasses(self) -> UUID:
        return self.benefit_types["glasses"]

    def budget(self, level: str, status: str | None, benefit: str) -> UUID:
        return self.budgets[(level, status, benefit)]

    def add_claim(
        self,
        session: AsyncSession,
        employee: str,
        benefit: str,
        amount: str,
        *,
        status: str = ClaimStatus.APPROVED.value,
        claim_date: date | None = None,
        is_emergency: bool = False,
        allow_overdraft: bool = False,
    ) -> BenefitClaim:
        claim = BenefitClaim(
            benefit_claim_id=uuid4(),
            claim_number=f"CLM-{uuid4().hex[:8]}",
            employee_id=self.employees[employee],
            benefit_type_id=self.benefit_types[benefit],
            amount=Decimal(amount),
            claim_date=claim_date or date(YEAR, 3, 15),
            status=status,
            is_emergency=is_emergency,
            allow_overdraft=allow_overdraft,
        )
        session.add(claim)
        return claim


BUDGET_TABLE = [
    ("Staff", "TK", "medical", "1000000"),
    ("Staff", "K0", "medical", "1500000"),
    ("Staff", "K2", "medical", "2000000"),
    ("Staff", "TK", "glasses", "1000000"),
    ("Staff", "K2", "glasses", "1200000"),
    ("Supervisor", None, "medical", "3000000"),
    ("Supervisor", "K2", "medical", "3500000"),
    ("Supervisor", None, "glasses", "1500000"),
    ("Manager", None, "medical", "4000000"),
    ("Manager", "K2", "medical", "5000000"),
]

EMPLOYEE_TABLE = [
    ("ani", "EMP001", "Staff", "K2", "Female"),
    ("budi", "EMP002", "Staff", "K2", "laki-laki"),
    ("citra", "EMP003", "Staff", "K0", None),
    ("dewi", "EMP004", "Supervisor", "K2", "perempuan"),
    ("eko", "EMP005", "Manager", "K2", "male"),
    ("fajar", "EMP006", "Manager", "K0", "male"),
]


async def seed_ledger_data(session: AsyncSession, year: int = YEAR) -> LedgerData:
    """Insert levels, statuses, benefit types, budgets and employees."""
    data = LedgerData()

    for name in ("Staff", "Supervisor", "Manager"):
        level = LevelEmployee(level_employee_id=uuid4(), name=name)
        session.add(level)
        data.levels[name] = level.level_employee_id

    for code in ("TK", "K0", "K2"):
        status = MarriageStatus(marriage_status_id=uuid4(), code=code)
        session.add(status)
        data.statuses[code] = status.marriage_status_id

    for name in ("medical", "glasses"):
        benefit_type = BenefitType(benefit_type_id=uuid4(), name=name)
        session.add(benefit_type)
        data.benefit_types[name] = benefit_type.benefit_type_id

    await session.flush()

    for level, status, benefit, amount in BUDGET_TABLE:
        budget = BenefitBudget(
            benefit_budget_id=uuid4(),
            benefit_type_id=data.benefit_types[benefit],
            level_employee_id=data.levels[level],
            marriage_status_id=data.statuses[status] if status else None,
            year=year,
            budget=Decimal(amount),
        )
        session.add(budget)
        data.budgets[(level, status, benefit)] = budget.benefit_budget_id

    for key, nik, level, status, gender in EMPLOYEE_TABLE:
        employee = Employee(
            employee_id=uuid4(),
            name=key.capitalize(),
            nik=nik,
            department="Operations",
            level_employee_id=data.levels[level],
            marriage_status_id=data.statuses[status],
            gender=gender,
        )
        session.add(employee)
        data.employees[key] = employee.employee_id

    await session.flush()
    return data


@pytest_asyncio.fixture
async def engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def data(session) -> LedgerData:
    """Seeded reference data."""
    return await seed_ledger_data(session)


@pytest.fixture
def cache() -> InMemoryBalanceCache:
    return InMemoryBalanceCache()
