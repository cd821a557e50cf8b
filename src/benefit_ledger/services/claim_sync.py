"""Keeps balances in step with the claim workflow.

The claim workflow calls these hooks after it changes a claim. Only approved
claims move money:

    created   (approved)            -> debit amount
    updated   (approved, amount)    -> credit old amount, debit new amount
    updated   (not -> approved)     -> debit amount
    updated   (approved -> not)     -> credit old amount
    deleted   (approved)            -> credit amount

An amount change is always posted as a reversal plus a fresh debit so the
history shows both values.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from benefit_ledger.models import BenefitClaim, ClaimStatus, ReferenceType, TransactionType
from benefit_ledger.services.transaction_ledger import TransactionLedger
from benefit_ledger.services.types import TransactionRecord

logger = logging.getLogger(__name__)


class ClaimBalanceSync:
    """Translates claim lifecycle events into ledger transactions.

    Failures are logged with the claim context and re-raised; the caller's
    session rollback undoes any partial reversal.
    """

    def __init__(self, ledger: TransactionLedger):
        self.ledger = ledger

    async def on_created(self, claim: BenefitClaim) -> list[TransactionRecord]:
        """Debit a newly created approved claim."""
        if not _is_approved(claim.status):
            return []
        return await self._run("created", claim, self._debit_claim(claim, claim.amount))

    async def on_updated(
        self,
        claim: BenefitClaim,
        old_amount: Decimal | None = None,
        old_status: str | None = None,
    ) -> list[TransactionRecord]:
        """Re-post a claim after an update.

        Args:
            claim: The claim with its new values
            old_amount: Amount before the update (defaults to the new amount)
            old_status: Status before the update (defaults to the new status)
        """
        previous_amount = claim.amount if old_amount is None else old_amount
        previous_status = claim.status if old_status is None else old_status
        was_approved = _is_approved(previous_status)
        is_approved = _is_approved(claim.status)

        if not was_approved and is_approved:
            return await self._run("approved", claim, self._debit_claim(claim, claim.amount))

        if was_approved and not is_approved:
            return await self._run(
                "unapproved",
                claim,
                self._credit_claim(
                    claim,
                    previous_amount,
                    f"Claim {claim.claim_number} status changed to {claim.status}",
                ),
            )

        if not is_approved or Decimal(previous_amount) == Decimal(claim.amount):
            return []

        return await self._run("updated", claim, self._repost(claim, previous_amount))

    async def on_deleted(self, claim: BenefitClaim) -> list[TransactionRecord]:
        """Credit back a deleted approved claim."""
        if not _is_approved(claim.status):
            return []
        return await self._run(
            "deleted",
            claim,
            self._credit_claim(claim, claim.amount, f"Claim {claim.claim_number} deleted"),
        )

    async def _run(self, action: str, claim: BenefitClaim, operation) -> list[TransactionRecord]:
        try:
            return await operation
        except Exception:
            logger.error(
                "Failed to sync balance for claim %s (%s)",
                claim.benefit_claim_id,
                action,
                extra={
                    "claim_id": str(claim.benefit_claim_id),
                    "action": action,
                    "employee_id": str(claim.employee_id),
                    "amount": str(claim.amount),
                    "status": str(claim.status),
                },
                exc_info=True,
            )
            raise

    async def _repost(self, claim: BenefitClaim, old_amount: Decimal) -> list[TransactionRecord]:
        reversal = await self._credit_claim(
            claim, old_amount, f"Claim {claim.claim_number} amount updated (reversal)"
        )
        debit = await self._debit_claim(claim, claim.amount)
        return reversal + debit

    async def _debit_claim(self, claim: BenefitClaim, amount: Decimal) -> list[TransactionRecord]:
        record = await self.ledger.apply(
            employee_id=claim.employee_id,
            benefit_type_id=claim.benefit_type_id,
            year=claim.claim_date.year,
            transaction_type=TransactionType.DEBIT,
            amount=amount,
            reference_type=ReferenceType.CLAIM,
            reference_id=claim.benefit_claim_id,
            description=f"Claim {claim.claim_number}",
            actor_id=claim.created_by,
            override_overdraft=bool(claim.allow_overdraft),
            is_emergency=bool(claim.is_emergency),
        )
        return [record]

    async def _credit_claim(
        self, claim: BenefitClaim, amount: Decimal, description: str
    ) -> list[TransactionRecord]:
        record = await self.ledger.apply(
            employee_id=claim.employee_id,
            benefit_type_id=claim.benefit_type_id,
            year=claim.claim_date.year,
            transaction_type=TransactionType.CREDIT,
            amount=amount,
            reference_type=ReferenceType.CLAIM,
            reference_id=claim.benefit_claim_id,
            description=description,
            actor_id=claim.created_by,
        )
        return [record]


def _is_approved(status: str | None) -> bool:
    return status == ClaimStatus.APPROVED
