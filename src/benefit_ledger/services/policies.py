"""Ledger policy objects.

Explicit, immutable configuration injected into the services. No globals:
each deployment (or test) builds the policy it needs.

Pattern:
    ledger = TransactionLedger(
        session,
        overdraft_policy=OverdraftPolicy(rates={"medical": Decimal("0.50")}),
    )
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping

DEFAULT_OVERDRAFT_RATES: dict[str, Decimal] = {
    "medical": Decimal("0.50"),
    "dental": Decimal("0.20"),
    "maternity": Decimal("0.30"),
    "glasses": Decimal("0.10"),
}


@dataclass(frozen=True)
class OverdraftPolicy:
    """
    How far below zero a balance may go, per benefit type.

    Attributes:
        rates: Fraction of the allocation that may be overdrawn, keyed by
            benefit type name (case-insensitive).
        default_rate: Rate for benefit types not listed. Default 0.25.
    """

    rates: Mapping[str, Decimal] = field(default_factory=lambda: dict(DEFAULT_OVERDRAFT_RATES))
    default_rate: Decimal = Decimal("0.25")

    def __post_init__(self) -> None:
        """Validate configuration."""
        normalized = {name.lower(): Decimal(str(rate)) for name, rate in self.rates.items()}
        for name, rate in normalized.items():
            if rate < 0 or rate > 1:
                raise ValueError(f"overdraft rate for {name!r} must be between 0 and 1")
        default_rate = Decimal(str(self.default_rate))
        if default_rate < 0 or default_rate > 1:
            raise ValueError("default_rate must be between 0 and 1")
        object.__setattr__(self, "rates", normalized)
        object.__setattr__(self, "default_rate", default_rate)

    def rate_for(self, benefit_type_name: str) -> Decimal:
        """Overdraft rate for a benefit type."""
        return self.rates.get(benefit_type_name.lower(), self.default_rate)

    def limit_for(self, allocation: Decimal, benefit_type_name: str) -> Decimal:
        """Most negative balance allowed. Always <= 0."""
        limit = -(Decimal(allocation) * self.rate_for(benefit_type_name))
        return limit.quantize(Decimal("0.01"))


@dataclass(frozen=True)
class EligibilityPolicy:
    """
    Names the levels and marriage status the eligibility rules hinge on.

    Attributes:
        supervisor_level: Level name that always receives the wildcard budget.
        staff_level: Level name subject to the gender rules.
        unmarried_status_code: Marriage status code forced for female staff.
    """

    supervisor_level: str = "Supervisor"
    staff_level: str = "Staff"
    unmarried_status_code: str = "TK"

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not self.supervisor_level or not self.staff_level:
            raise ValueError("level names are required")
        if not self.unmarried_status_code:
            raise ValueError("unmarried_status_code is required")
