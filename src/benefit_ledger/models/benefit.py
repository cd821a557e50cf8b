"""Benefit type, budget and claim models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from benefit_ledger.models.base import Base, TimestampMixin, utcnow

if TYPE_CHECKING:
    from benefit_ledger.models.balance import EmployeeBenefitBalance
    from benefit_ledger.models.employee import LevelEmployee, MarriageStatus


class BenefitType(Base, TimestampMixin):
    """Benefit type (medical, dental, maternity, glasses, ...)."""

    __tablename__ = "benefit_type"

    benefit_type_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    name: Mapped[str] = mapped_column(String, nullable=False, unique=True)


class BenefitBudget(Base, TimestampMixin):
    """Eligibility rule plus yearly allocation.

    A null marriage_status_id is a wildcard budget that applies regardless
    of marriage status.
    """

    __tablename__ = "benefit_budget"

    benefit_budget_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    benefit_type_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("benefit_type.benefit_type_id"),
        nullable=False,
    )
    level_employee_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("level_employee.level_employee_id"),
        nullable=False,
    )
    marriage_status_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("marriage_status.marriage_status_id"),
        nullable=True,
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    budget: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    __table_args__ = (
        CheckConstraint("budget >= 0", name="benefit_budget_non_negative"),
        Index("ix_benefit_budget_lookup", "year", "benefit_type_id", "level_employee_id"),
    )

    # Relationships
    benefit_type: Mapped[BenefitType] = relationship()
    level: Mapped[LevelEmployee] = relationship()
    marriage_status: Mapped[MarriageStatus | None] = relationship()
    balances: Mapped[list[EmployeeBenefitBalance]] = relationship(back_populates="benefit_budget")

    @property
    def is_wildcard(self) -> bool:
        """Whether the budget applies to every marriage status."""
        return self.marriage_status_id is None


class ClaimStatus(str, Enum):
    """Claim status values."""

    PENDING = "pending"
    PROCESSING = "processing"
    APPROVED = "approved"
    REJECTED = "rejected"


class BenefitClaim(Base, TimestampMixin):
    """Benefit claim submitted by an employee.

    Owned by the claim workflow. Only approved claims affect balances.
    """

    __tablename__ = "benefit_claim"

    benefit_claim_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    claim_number: Mapped[str] = mapped_column(String, nullable=False, unique=True)
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
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    claim_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default=ClaimStatus.PENDING)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_emergency: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    allow_overdraft: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="benefit_claim_amount_positive"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'approved', 'rejected')",
            name="benefit_claim_status_check",
        ),
        Index("ix_benefit_claim_employee_type", "employee_id", "benefit_type_id"),
        Index("ix_benefit_claim_date", "claim_date"),
    )

    @property
    def is_approved(self) -> bool:
        return self.status == ClaimStatus.APPROVED
