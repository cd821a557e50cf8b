"""ORM models for the benefit ledger."""

from benefit_ledger.models.balance import (
    BalanceTransaction,
    EmployeeBenefitBalance,
    ReferenceType,
    TransactionType,
)
from benefit_ledger.models.base import Base, TimestampMixin
from benefit_ledger.models.benefit import BenefitBudget, BenefitClaim, BenefitType, ClaimStatus
from benefit_ledger.models.employee import Employee, LevelEmployee, MarriageStatus

__all__ = [
    "Base",
    "TimestampMixin",
    "LevelEmployee",
    "MarriageStatus",
    "Employee",
    "BenefitType",
    "BenefitBudget",
    "BenefitClaim",
    "ClaimStatus",
    "EmployeeBenefitBalance",
    "BalanceTransaction",
    "TransactionType",
    "ReferenceType",
]
