"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Shared
# ============================================================================


class EmployeeInfo(BaseModel):
    """Employee display data."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    nik: str
    department: str | None = None


class BenefitTypeInfo(BaseModel):
    """Benefit type display data."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
    context: dict[str, Any] | None = None


# ============================================================================
# Initialization / reconciliation
# ============================================================================


class InitializeRequest(BaseModel):
    """Schema for initializing a year's balances."""

    year: int = Field(ge=2000, le=2100)
    employee_ids: list[UUID] | None = None


class InitializeResponse(BaseModel):
    """Schema for initialization result."""

    model_config = ConfigDict(from_attributes=True)

    initialized_count: int
    year: int


class RecalculateRequest(BaseModel):
    """Schema for recalculating balances from claims."""

    year: int = Field(ge=2000, le=2100)
    employee_ids: list[UUID] | None = None
    benefit_type_ids: list[UUID] | None = None


class DiscrepancyResponse(BaseModel):
    """One corrected balance."""

    model_config = ConfigDict(from_attributes=True)

    employee_id: UUID
    benefit_type_id: UUID
    old_balance: Decimal
    calculated_balance: Decimal
    difference: Decimal


class RecalculateResponse(BaseModel):
    """Schema for recalculation result."""

    model_config = ConfigDict(from_attributes=True)

    year: int
    processed_at: datetime
    recalculated_employees: int
    recalculated_balances: int
    discrepancies_found: int
    discrepancies: list[DiscrepancyResponse]


# ============================================================================
# Transactions
# ============================================================================


class TransactionCreate(BaseModel):
    """Schema for posting a debit or credit."""

    employee_id: UUID
    benefit_type_id: UUID
    year: int = Field(ge=2000, le=2100)
    transaction_type: Literal["debit", "credit"]
    amount: Decimal = Field(gt=0)
    reference_type: Literal["claim", "adjustment", "reconciliation"]
    reference_id: UUID | None = None
    description: str | None = Field(default=None, max_length=500)
    actor_id: UUID | None = None
    override_overdraft: bool = False
    is_emergency: bool = False


class AdjustmentCreate(BaseModel):
    """Schema for a manual balance adjustment."""

    employee_id: UUID
    benefit_type_id: UUID
    year: int = Field(ge=2000, le=2100)
    adjustment_type: Literal["increase", "decrease"]
    amount: Decimal = Field(gt=0)
    reason: str = Field(min_length=1, max_length=500)
    actor_id: UUID | None = None


class TransactionResponse(BaseModel):
    """Schema for a posted ledger transaction."""

    model_config = ConfigDict(from_attributes=True)

    transaction_id: str
    balance_id: UUID
    employee: EmployeeInfo
    benefit_type: BenefitTypeInfo
    year: int
    transaction_type: str
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    reference_type: str
    reference_id: UUID | None = None
    description: str | None = None
    processed_by: UUID | None = None
    processed_at: datetime


# ============================================================================
# Alerts
# ============================================================================


class OverdraftInfoResponse(BaseModel):
    """Overdraft breakdown."""

    model_config = ConfigDict(from_attributes=True)

    is_overdrawn: bool
    overdraft_amount: Decimal
    overdraft_limit: Decimal
    exceeds_overdraft_limit: bool
    available_overdraft: Decimal


class LowBalanceAlertResponse(BaseModel):
    """One low or overdrawn balance."""

    model_config = ConfigDict(from_attributes=True)

    employee: EmployeeInfo
    benefit_type: BenefitTypeInfo
    initial_balance: Decimal
    current_balance: Decimal
    used_amount: Decimal
    usage_percentage: Decimal
    remaining_percentage: Decimal
    alert_level: str
    overdraft_info: OverdraftInfoResponse


class AlertReportResponse(BaseModel):
    """Schema for an alert scan."""

    model_config = ConfigDict(from_attributes=True)

    threshold_percentage: float
    year: int
    alerts: list[LowBalanceAlertResponse]
    total_alerts: int


# ============================================================================
# Balance views
# ============================================================================


class BenefitBalanceResponse(BaseModel):
    """One benefit in an employee summary."""

    model_config = ConfigDict(from_attributes=True)

    benefit_type: BenefitTypeInfo
    initial_balance: Decimal
    used_amount: Decimal
    current_balance: Decimal
    usage_percentage: Decimal
    last_claim_date: date | None = None
    total_claims: int


class BalanceSummaryResponse(BaseModel):
    """Schema for an employee's yearly summary."""

    model_config = ConfigDict(from_attributes=True)

    employee: EmployeeInfo
    year: int
    balances: list[BenefitBalanceResponse]
    total_initial_balance: Decimal
    total_used_amount: Decimal
    total_current_balance: Decimal
    overall_usage_percentage: Decimal


class BalanceCheckRequest(BaseModel):
    """Schema for an available-balance check."""

    employee_id: UUID
    benefit_type_id: UUID
    amount: Decimal = Field(gt=0)
    year: int = Field(ge=2000, le=2100)


class BalanceCheckResponse(BaseModel):
    """Schema for an available-balance check result."""

    model_config = ConfigDict(from_attributes=True)

    employee: EmployeeInfo
    benefit_type: BenefitTypeInfo
    sufficient_balance: bool
    current_balance: Decimal
    requested_amount: Decimal
    remaining_after_claim: Decimal | None = None
    shortage_amount: Decimal | None = None


class BalanceStatusResponse(BaseModel):
    """Schema for detailed balance status."""

    model_config = ConfigDict(from_attributes=True)

    employee: EmployeeInfo
    benefit_type: BenefitTypeInfo
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


class BalanceHistoryResponse(BaseModel):
    """Schema for an employee's transaction history."""

    items: list[TransactionResponse]
    total: int
