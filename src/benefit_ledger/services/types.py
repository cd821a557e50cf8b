"""Result types returned by the ledger services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID


def money(value: Decimal | float | int | str | None) -> Decimal:
    """Normalize an amount (or None) to a 2dp Decimal."""
    return Decimal(str(value or 0)).quantize(Decimal("0.01"))


@dataclass(frozen=True)
class EmployeeRef:
    """Employee display data."""

    id: UUID
    name: str
    nik: str
    department: str | None = None


@dataclass(frozen=True)
class BenefitTypeRef:
    """Benefit type display data."""

    id: UUID
    name: str


@dataclass(frozen=True)
class TransactionRecord:
    """A posted ledger transaction with its before/after balances."""

    transaction_id: str
    balance_id: UUID
    employee: EmployeeRef
    benefit_type: BenefitTypeRef
    year: int
    transaction_type: str
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    reference_type: str
    reference_id: UUID | None
    description: str | None
    processed_by: UUID | None
    processed_at: datetime


@dataclass(frozen=True)
class InitializationResult:
    """Outcome of a balance initialization run."""

    initialized_count: int
    year: int


@dataclass(frozen=True)
class Discrepancy:
    """Stored balance that disagreed with the claims history."""

    employee_id: UUID
    benefit_type_id: UUID
    old_balance: Decimal
    calculated_balance: Decimal
    difference: Decimal  # calculated - old


@dataclass
class RecalculationResult:
    """Outcome of a reconciliation run."""

    year: int
    processed_at: datetime
    recalculated_employees: int = 0
    recalculated_balances: int = 0
    discrepancies: list[Discrepancy] = field(default_factory=list)
    corrections: list[TransactionRecord] = field(default_factory=list)

    @property
    def discrepancies_found(self) -> int:
        return len(self.discrepancies)


@dataclass(frozen=True)
class LedgerDrift:
    """Balance whose stored value differs from its own transaction history."""

    balance_id: UUID
    employee_id: UUID
    benefit_type_id: UUID
    stored_balance: Decimal
    ledger_balance: Decimal  # allocation - debits + credits

    @property
    def difference(self) -> Decimal:
        return self.ledger_balance - self.stored_balance


@dataclass(frozen=True)
class OverdraftInfo:
    """Overdraft breakdown for one balance."""

    is_overdrawn: bool
    overdraft_amount: Decimal
    overdraft_limit: Decimal
    exceeds_overdraft_limit: bool
    available_overdraft: Decimal


@dataclass(frozen=True)
class LowBalanceAlert:
    """One balance flagged by the alert scan."""

    employee: EmployeeRef
    benefit_type: BenefitTypeRef
    initial_balance: Decimal
    current_balance: Decimal
    used_amount: Decimal
    usage_percentage: Decimal
    remaining_percentage: Decimal
    alert_level: str
    overdraft_info: OverdraftInfo


@dataclass(frozen=True)
class AlertReport:
    """Alert scan result for a threshold and year."""

    threshold_percentage: float
    year: int
    alerts: list[LowBalanceAlert]

    @property
    def total_alerts(self) -> int:
        return len(self.alerts)


@dataclass(frozen=True)
class BenefitBalanceLine:
    """One benefit type in an employee summary."""

    benefit_type: BenefitTypeRef
    initial_balance: Decimal
    used_amount: Decimal
    current_balance: Decimal
    usage_percentage: Decimal
    last_claim_date: date | None
    total_claims: int


@dataclass(frozen=True)
class BalanceSummary:
    """Yearly balance summary for one employee."""

    employee: EmployeeRef
    year: int
    balances: list[BenefitBalanceLine]
    total_initial_balance: Decimal
    total_used_amount: Decimal
    total_current_balance: Decimal
    overall_usage_percentage: Decimal


@dataclass(frozen=True)
class BalanceCheck:
    """Whether a requested amount fits in the current balance."""

    employee: EmployeeRef
    benefit_type: BenefitTypeRef
    sufficient_balance: bool
    current_balance: Decimal
    requested_amount: Decimal
    remaining_after_claim: Decimal | None = None
    shortage_amount: Decimal | None = None


@dataclass(frozen=True)
class BalanceStatus:
    """Detailed balance state including overdraft headroom."""

    employee: EmployeeRef
    benefit_type: BenefitTypeRef
    year: int
    initial_budget: Decimal
    current_balance: Decimal
    used_amount: Decimal
    overdraft_limit: Decimal
    available_credit: Decimal
    available_overdraft: Decimal
    status: str
    is_overdrawn: bool
    overdraft_amount: Decimal
    usage_percentage: Decimal

