"""Tests for the command line interface."""

import asyncio
import json
from contextlib import asynccontextmanager

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from benefit_ledger.cli import BenefitLedgerCli
from benefit_ledger.database import create_schema
from benefit_ledger.models import EmployeeBenefitBalance
from benefit_ledger.services.transaction_ledger import TransactionLedger
from tests.conftest import YEAR, seed_ledger_data


class _Database:
    """File-backed SQLite database driven from synchronous tests."""

    def __init__(self, path):
        self.engine = create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)
        self.factory = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

    @asynccontextmanager
    async def session_scope(self):
        async with self.factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_schema(self):
        await create_schema(self.engine)

    def run(self, coro_fn):
        async def _go():
            async with self.session_scope() as session:
                return await coro_fn(session)

        return asyncio.run(_go())


@pytest.fixture
def db(tmp_path):
    database = _Database(tmp_path / "ledger.db")
    asyncio.run(database.create_schema())
    return database


@pytest.fixture
def seeded(db):
    return db.run(seed_ledger_data)


@pytest.fixture
def cli(db):
    return BenefitLedgerCli(session_scope=db.session_scope, schema_creator=db.create_schema)


class TestCli:
    """CLI commands."""

    def test_no_command_prints_help(self, cli, capsys):
        assert cli.run([]) == 1
        assert "benefit-ledger" in capsys.readouterr().out

    def test_init_db(self, cli, capsys):
        assert cli.run(["init-db"]) == 0
        assert "Schema created" in capsys.readouterr().out

    def test_initialize(self, cli, seeded, capsys):
        assert cli.run(["initialize", "--year", str(YEAR)]) == 0
        assert f"Initialized 9 balances for {YEAR}" in capsys.readouterr().out

        assert cli.run(["initialize", "--year", str(YEAR)]) == 0
        assert f"Initialized 0 balances for {YEAR}" in capsys.readouterr().out

    def test_initialize_for_one_employee(self, cli, seeded, capsys):
        employee_id = str(seeded.employees["ani"])

        assert cli.run(["initialize", "--year", str(YEAR), "--employee-id", employee_id]) == 0
        assert f"Initialized 2 balances for {YEAR}" in capsys.readouterr().out

    def test_ledger_error_exits_nonzero(self, cli, seeded, capsys):
        assert cli.run(["initialize", "--year", str(YEAR + 9)]) == 1
        assert "Error:" in capsys.readouterr().err

    def test_recalculate(self, cli, seeded, db, capsys):
        async def add_claim(session):
            seeded.add_claim(session, "budi", "medical", "500000")

        db.run(add_claim)

        assert cli.run(["recalculate", "--year", str(YEAR)]) == 0
        out = capsys.readouterr().out
        assert "Discrepancies: 1" in out
        assert "2,000,000.00 -> 1,500,000.00" in out

    def test_alerts_json(self, cli, seeded, db, capsys):
        async def debit(session):
            await TransactionLedger(session).apply(
                employee_id=seeded.employees["ani"],
                benefit_type_id=seeded.medical,
                year=YEAR,
                transaction_type="debit",
                amount="900000",
                reference_type="claim",
            )

        db.run(debit)

        assert cli.run(["alerts", "--year", str(YEAR), "--format", "json"]) == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload["total_alerts"] == 1
        assert payload["alerts"][0]["alert_level"] == "high"
        assert payload["alerts"][0]["current_balance"] == "100000.00"

    def test_alerts_text(self, cli, seeded, capsys):
        assert cli.run(["alerts", "--year", str(YEAR)]) == 0
        assert "Total: 0" in capsys.readouterr().out

    def test_audit(self, cli, seeded, db, capsys):
        async def debit(session):
            return await TransactionLedger(session).apply(
                employee_id=seeded.employees["eko"],
                benefit_type_id=seeded.medical,
                year=YEAR,
                transaction_type="debit",
                amount="100000",
                reference_type="claim",
            )

        record = db.run(debit)

        assert cli.run(["audit", "--year", str(YEAR)]) == 0
        assert f"Ledger consistent for {YEAR}" in capsys.readouterr().out

        async def overwrite(session):
            await session.execute(
                update(EmployeeBenefitBalance)
                .where(EmployeeBenefitBalance.balance_id == record.balance_id)
                .values(current_balance=0)
            )

        db.run(overwrite)

        assert cli.run(["audit", "--year", str(YEAR)]) == 1
        assert "Ledger drift" in capsys.readouterr().out
