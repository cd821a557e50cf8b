"""Balance and ledger transaction models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    case,
    Uuid,
    func,
)
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column, relationship

from benefit_ledger.models.base import Base, TimestampMixin, utcnow

if TYPE_CHECKING:
    from benefit_ledger.models.benefit import BenefitBudget
    from benefit_ledger.models.employee import Employee


class TransactionType(str, Enum):
    """Direction of a ledger transaction."""

    DEBIT = "debit"
    CREDIT = "credit"


class ReferenceType(str, Enum):
    """What caused a ledger transaction."""

    CLAIM = "claim"
    ADJUSTMENT = "adjustment"
    RECONCILIATION = "reconciliation"


class EmployeeBenefitBalance(Base, TimestampMixin):
    """Current balance of one employee against one budget."""

    __tablename__ = "employee_benefit_balance"

    balance_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    employee_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    benefit_budget_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("benefit_budget.benefit_budget_id", ondelete="RESTRICT"),
        nullable=False,
    )
    current_balance: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "employee_id",
            "benefit_budget_id",
            name="employee_benefit_balance_unique",
        ),
    )

    # Relationships
    employee: Mapped[Employee] = relationship(back_populates="balances")
    benefit_budget: Mapped[BenefitBudget] = relationship(back_populates="balances")
    transactions: Mapped[list[BalanceTransaction]] = relationship(back_populates="balance")


class BalanceTransaction(Base, TimestampMixin):
    """Immutable ledger entry.

    Linked to its balance row by balance_id; employee_id, benefit_type_id and
    year are denormalised copies kept for historical lookups. Corrections are
    new transactions, never edits.
    """

    __tablename__ = "balance_transaction"

    balance_transaction_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    transaction_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    balance_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employee_benefit_balance.balance_id", ondelete="RESTRICT"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    benefit_type_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("benefit_type.benefit_type_id", ondelete="CASCADE"),
        nullable=False,
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_type: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    reference_type: Mapped[str] = mapped_column(String, nullable=False)
    reference_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_by: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="balance_transaction_amount_positive"),
        CheckConstraint(
            "transaction_type IN ('debit', 'credit')",
            name="balance_transaction_type_check",
        ),
        CheckConstraint(
            "reference_type IN ('claim', 'adjustment', 'reconciliation')",
            name="balance_transaction_reference_type_check",
        ),
        Index("ix_balance_transaction_employee_type", "employee_id", "benefit_type_id"),
        Index("ix_balance_transaction_reference", "reference_type", "reference_id"),
        Index("ix_balance_transaction_year", "year"),
    )

    # Relationships
    balance: Mapped[EmployeeBenefitBalance] = relationship(back_populates="transactions")

    @hybrid_property
    def signed_amount(self) -> Decimal:
        """Amount with the sign it applies to the balance."""
        if self.transaction_type == TransactionType.DEBIT:
            return -self.amount
        return self.amount

    @signed_amount.expression
    def signed_amount(cls):
        return case(
            (cls.transaction_type == TransactionType.DEBIT.value, -cls.amount),
            else_=cls.amount,
        )
