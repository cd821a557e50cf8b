"""Benefit budget eligibility resolution."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from benefit_ledger.models import BenefitBudget, Employee, LevelEmployee, MarriageStatus
from benefit_ledger.services.errors import NoBudgetError, NotFoundError
from benefit_ledger.services.policies import EligibilityPolicy

FEMALE_VALUES = frozenset({"female", "perempuan"})
MALE_VALUES = frozenset({"male", "laki-laki"})


@dataclass(frozen=True)
class EmployeeProfile:
    """The employee attributes eligibility depends on, plus display data."""

    employee_id: UUID
    name: str
    nik: str
    department: str | None
    level_employee_id: UUID
    level_name: str
    marriage_status_id: UUID | None
    gender: str | None

    @property
    def normalized_gender(self) -> str | None:
        return normalize_gender(self.gender)


def normalize_gender(gender: str | None) -> str | None:
    """Map recorded gender values to 'female', 'male' or None."""
    if not gender:
        return None
    value = gender.strip().lower()
    if value in FEMALE_VALUES:
        return "female"
    if value in MALE_VALUES:
        return "male"
    return None


def _match_status(
    candidates: Sequence[BenefitBudget], marriage_status_id: UUID | None
) -> BenefitBudget | None:
    for budget in candidates:
        if budget.marriage_status_id == marriage_status_id:
            return budget
    return None


def _match_status_or_wildcard(
    candidates: Sequence[BenefitBudget], marriage_status_id: UUID | None
) -> BenefitBudget | None:
    if marriage_status_id is not None:
        specific = _match_status(candidates, marriage_status_id)
        if specific is not None:
            return specific
    return _match_status(candidates, None)


def select_budget(
    profile: EmployeeProfile,
    candidates: Iterable[BenefitBudget],
    policy: EligibilityPolicy,
    unmarried_status_id: UUID | None,
) -> BenefitBudget | None:
    """Pick the single budget that applies to an employee.

    Candidates are budgets for one benefit type and year; budgets for other
    levels are ignored. Resolution order, first match wins:

    1. Supervisors get the wildcard budget regardless of marriage status.
    2. Female staff get the unmarried budget regardless of their actual
       status; male staff get the budget for their actual status.
    3. Everyone else (and staff with no recorded gender) gets the budget for
       their status, falling back to the wildcard budget.
    """
    same_level = [b for b in candidates if b.level_employee_id == profile.level_employee_id]
    if not same_level:
        return None

    if profile.level_name == policy.supervisor_level:
        return _match_status(same_level, None)

    if profile.level_name == policy.staff_level:
        gender = profile.normalized_gender
        if gender == "female":
            if unmarried_status_id is None:
                return None
            return _match_status(same_level, unmarried_status_id)
        if gender == "male":
            return _match_status(same_level, profile.marriage_status_id)

    return _match_status_or_wildcard(same_level, profile.marriage_status_id)


class EligibilityResolver:
    """Resolves which benefit budget applies to an employee.

    Every ledger call site goes through select_budget so the rules cannot
    drift between transaction processing, initialization and reconciliation.
    """

    def __init__(self, session: AsyncSession, policy: EligibilityPolicy | None = None):
        self.session = session
        self.policy = policy or EligibilityPolicy()
        self._unmarried_status_id: UUID | None = None
        self._unmarried_loaded = False

    async def load_profile(self, employee_id: UUID) -> EmployeeProfile:
        """Load one employee's eligibility profile.

        Raises:
            NotFoundError: If the employee does not exist
        """
        profiles = await self.load_profiles([employee_id])
        if not profiles:
            raise NotFoundError("employee", employee_id, f"Employee {employee_id} not found")
        return profiles[0]

    async def load_profiles(self, employee_ids: Sequence[UUID] | None = None) -> list[EmployeeProfile]:
        """Load profiles for the given employees, or for everyone when None."""
        query = select(Employee, LevelEmployee.name).join(
            LevelEmployee,
            LevelEmployee.level_employee_id == Employee.level_employee_id,
        )
        if employee_ids:
            query = query.where(Employee.employee_id.in_(list(employee_ids)))
        query = query.order_by(Employee.nik)

        result = await self.session.execute(query)
        return [
            EmployeeProfile(
                employee_id=employee.employee_id,
                name=employee.name,
                nik=employee.nik,
                department=employee.department,
                level_employee_id=employee.level_employee_id,
                level_name=level_name,
                marriage_status_id=employee.marriage_status_id,
                gender=employee.gender,
            )
            for employee, level_name in result.all()
        ]

    async def unmarried_status_id(self) -> UUID | None:
        """ID of the marriage status forced for female staff."""
        if not self._unmarried_loaded:
            self._unmarried_status_id = await self.session.scalar(
                select(MarriageStatus.marriage_status_id).where(
                    MarriageStatus.code == self.policy.unmarried_status_code
                )
            )
            self._unmarried_loaded = True
        return self._unmarried_status_id

    async def resolve(
        self,
        employee: EmployeeProfile | UUID,
        benefit_type_id: UUID,
        year: int,
    ) -> BenefitBudget:
        """Resolve the budget for an employee, benefit type and year.

        Raises:
            NotFoundError: If the employee does not exist
            NoBudgetError: If no budget applies (no entitlement)
        """
        profile = employee if isinstance(employee, EmployeeProfile) else await self.load_profile(employee)

        result = await self.session.execute(
            select(BenefitBudget).where(
                BenefitBudget.benefit_type_id == benefit_type_id,
                BenefitBudget.level_employee_id == profile.level_employee_id,
                BenefitBudget.year == year,
            )
        )
        candidates = list(result.scalars().all())

        budget = select_budget(profile, candidates, self.policy, await self.unmarried_status_id())
        if budget is None:
            raise NoBudgetError(profile.employee_id, benefit_type_id, year)
        return budget

    async def eligible_budgets(
        self,
        profile: EmployeeProfile,
        budgets: Iterable[BenefitBudget],
    ) -> list[BenefitBudget]:
        """Pick at most one budget per benefit type from a pool of budgets."""
        by_type: dict[UUID, list[BenefitBudget]] = defaultdict(list)
        for budget in budgets:
            by_type[budget.benefit_type_id].append(budget)

        unmarried_id = await self.unmarried_status_id()
        selected = []
        for candidates in by_type.values():
            budget = select_budget(profile, candidates, self.policy, unmarried_id)
            if budget is not None:
                selected.append(budget)
        return selected

    async def budgets_for_employee(
        self,
        profile: EmployeeProfile,
        year: int,
        benefit_type_ids: Sequence[UUID] | None = None,
    ) -> list[BenefitBudget]:
        """All budgets that apply to an employee in a year."""
        query = select(BenefitBudget).where(
            BenefitBudget.year == year,
            BenefitBudget.level_employee_id == profile.level_employee_id,
        )
        if benefit_type_ids:
            query = query.where(BenefitBudget.benefit_type_id.in_(list(benefit_type_ids)))

        result = await self.session.execute(query)
        return await self.eligible_budgets(profile, result.scalars().all())
