"""Ledger error taxonomy.

Callers branch on these types: not-found and precondition errors are
reported, overdraft rejections may be retried with an override flag, and
concurrency conflicts are safe to retry as a whole.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any


class LedgerError(Exception):
    """Base class for benefit ledger errors."""


class NotFoundError(LedgerError):
    """Raised when an employee, benefit type or budget does not exist."""

    def __init__(self, entity: str, identifier: Any, message: str | None = None):
        self.entity = entity
        self.identifier = identifier
        super().__init__(message or f"{entity} {identifier} not found")


class NoBudgetError(NotFoundError):
    """Raised when no budget applies to an employee for a benefit type/year.

    Means "no benefit entitlement", not a system fault.
    """

    def __init__(self, employee_id: Any, benefit_type_id: Any, year: int):
        self.employee_id = employee_id
        self.benefit_type_id = benefit_type_id
        self.year = year
        super().__init__(
            "benefit_budget",
            (employee_id, benefit_type_id, year),
            f"No benefit budget found for employee {employee_id}, "
            f"benefit type {benefit_type_id}, year {year}",
        )


class NoBudgetsError(LedgerError):
    """Raised when a year has no budgets to initialize from."""

    def __init__(self, year: int):
        self.year = year
        super().__init__(f"No benefit budgets found for year {year}")


class NoEmployeesError(LedgerError):
    """Raised when the employee selection for initialization is empty."""

    def __init__(self, employee_ids: list[Any] | None = None):
        self.employee_ids = employee_ids
        super().__init__("No employees found with the specified criteria")


class OverdraftExceededError(LedgerError):
    """Raised when a debit would take a balance below its overdraft limit."""

    def __init__(
        self,
        balance_before: Decimal,
        balance_after: Decimal,
        overdraft_limit: Decimal,
    ):
        self.balance_before = balance_before
        self.balance_after = balance_after
        self.overdraft_limit = overdraft_limit
        self.shortage = abs(overdraft_limit - balance_after)
        super().__init__(
            "Transaction would exceed overdraft limit. "
            f"Current balance: {balance_before:,.2f}, "
            f"Overdraft limit: {overdraft_limit:,.2f}, "
            f"Shortage: {self.shortage:,.2f}"
        )


class ConcurrencyConflict(LedgerError):
    """Raised when a concurrent writer won the race. Retry the whole operation."""

    def __init__(self, message: str, cause: Exception | None = None):
        self.cause = cause
        super().__init__(message)
