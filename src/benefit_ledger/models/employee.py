"""Employee directory models.

These rows are owned by the employee directory; the ledger only reads them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from benefit_ledger.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from benefit_ledger.models.balance import EmployeeBenefitBalance


class LevelEmployee(Base, TimestampMixin):
    """Employee level (Staff, Supervisor, Manager, ...)."""

    __tablename__ = "level_employee"

    level_employee_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    name: Mapped[str] = mapped_column(String, nullable=False, unique=True)


class MarriageStatus(Base, TimestampMixin):
    """Marriage status with its tax-style code (TK, K0, K1, ...)."""

    __tablename__ = "marriage_status"

    marriage_status_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    code: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(String, nullable=True)


class Employee(Base, TimestampMixin):
    """Employee record."""

    __tablename__ = "employee"

    employee_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    nik: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    department: Mapped[str | None] = mapped_column(String, nullable=True)
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
    gender: Mapped[str | None] = mapped_column(String, nullable=True)

    # Relationships
    level: Mapped[LevelEmployee] = relationship()
    marriage_status: Mapped[MarriageStatus | None] = relationship()
    balances: Mapped[list[EmployeeBenefitBalance]] = relationship(back_populates="employee")
