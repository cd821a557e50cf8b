"""Benefit ledger services."""

from benefit_ledger.services.alerts import AlertEngine
from benefit_ledger.services.balance_initializer import BalanceInitializer
from benefit_ledger.services.balance_queries import BalanceQueryService
from benefit_ledger.services.cache import BalanceCache, InMemoryBalanceCache, NullBalanceCache
from benefit_ledger.services.claim_sync import ClaimBalanceSync
from benefit_ledger.services.eligibility import EligibilityResolver, EmployeeProfile, select_budget
from benefit_ledger.services.errors import (
    ConcurrencyConflict,
    LedgerError,
    NoBudgetError,
    NoBudgetsError,
    NoEmployeesError,
    NotFoundError,
    OverdraftExceededError,
)
from benefit_ledger.services.policies import EligibilityPolicy, OverdraftPolicy
from benefit_ledger.services.reconciliation import ReconciliationEngine
from benefit_ledger.services.transaction_ledger import TransactionLedger

__all__ = [
    # Eligibility
    "EligibilityResolver",
    "EmployeeProfile",
    "select_budget",
    # Ledger
    "TransactionLedger",
    "ClaimBalanceSync",
    "BalanceInitializer",
    "ReconciliationEngine",
    # Read side
    "AlertEngine",
    "BalanceQueryService",
    # Cache
    "BalanceCache",
    "InMemoryBalanceCache",
    "NullBalanceCache",
    # Policy
    "OverdraftPolicy",
    "EligibilityPolicy",
    # Errors
    "LedgerError",
    "NotFoundError",
    "NoBudgetError",
    "NoBudgetsError",
    "NoEmployeesError",
    "OverdraftExceededError",
    "ConcurrencyConflict",
]
