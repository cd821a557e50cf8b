"""Balance management API endpoints."""

from datetime import datetime, timezone
from typing import Annotated, Literal
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from benefit_ledger.api.dependencies import AppSettings, Cache, DbSession, Overdraft
from benefit_ledger.api.schemas import (
    AdjustmentCreate,
    AlertReportResponse,
    BalanceCheckRequest,
    BalanceCheckResponse,
    BalanceHistoryResponse,
    BalanceStatusResponse,
    BalanceSummaryResponse,
    ErrorResponse,
    InitializeRequest,
    InitializeResponse,
    RecalculateRequest,
    RecalculateResponse,
    TransactionCreate,
    TransactionResponse,
)
from benefit_ledger.services.alerts import AlertEngine
from benefit_ledger.services.balance_initializer import BalanceInitializer
from benefit_ledger.services.balance_queries import BalanceQueryService
from benefit_ledger.services.reconciliation import ReconciliationEngine
from benefit_ledger.services.transaction_ledger import TransactionLedger

router = APIRouter(prefix="/balances", tags=["balances"])


def _current_year() -> int:
    return datetime.now(timezone.utc).year


# ============================================================================
# Yearly maintenance
# ============================================================================


@router.post(
    "/initialize",
    response_model=InitializeResponse,
    responses={404: {"model": ErrorResponse}},
)
async def initialize_balances(db: DbSession, payload: InitializeRequest) -> InitializeResponse:
    """Create missing balances for a year at their allocation."""
    result = await BalanceInitializer(db).initialize(payload.year, payload.employee_ids)
    await db.commit()
    return InitializeResponse.model_validate(result)


@router.post(
    "/recalculate",
    response_model=RecalculateResponse,
    responses={409: {"model": ErrorResponse}},
)
async def recalculate_balances(
    db: DbSession,
    cache: Cache,
    payload: RecalculateRequest,
) -> RecalculateResponse:
    """Recalculate balances from approved claims and correct drift."""
    engine = ReconciliationEngine(db, cache=cache)
    result = await engine.recalculate(
        payload.year,
        employee_ids=payload.employee_ids,
        benefit_type_ids=payload.benefit_type_ids,
    )
    await db.commit()
    return RecalculateResponse.model_validate(result)


@router.get("/alerts", response_model=AlertReportResponse)
async def low_balance_alerts(
    db: DbSession,
    cache: Cache,
    overdraft: Overdraft,
    settings: AppSettings,
    threshold: Annotated[float, Query(ge=0, le=100)] = 20,
    year: int | None = None,
) -> AlertReportResponse:
    """Balances at or below the remaining-percentage threshold, plus overdrawn ones."""
    engine = AlertEngine(
        db,
        cache=cache,
        overdraft_policy=overdraft,
        ttl=settings.alert_cache_ttl_seconds,
    )
    report = await engine.get_low_balance_alerts(threshold, year or _current_year())
    return AlertReportResponse.model_validate(report)


# ============================================================================
# Ledger writes
# ============================================================================


@router.post(
    "/transactions",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
)
async def post_transaction(
    db: DbSession,
    cache: Cache,
    overdraft: Overdraft,
    payload: TransactionCreate,
) -> TransactionResponse:
    """Post a debit or credit against an employee's balance."""
    ledger = TransactionLedger(db, overdraft_policy=overdraft, cache=cache)
    record = await ledger.apply(
        employee_id=payload.employee_id,
        benefit_type_id=payload.benefit_type_id,
        year=payload.year,
        transaction_type=payload.transaction_type,
        amount=payload.amount,
        reference_type=payload.reference_type,
        reference_id=payload.reference_id,
        description=payload.description,
        actor_id=payload.actor_id,
        override_overdraft=payload.override_overdraft,
        is_emergency=payload.is_emergency,
    )
    await db.commit()
    return TransactionResponse.model_validate(record)


@router.post(
    "/adjustments",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def post_adjustment(
    db: DbSession,
    cache: Cache,
    overdraft: Overdraft,
    payload: AdjustmentCreate,
) -> TransactionResponse:
    """Manually increase or decrease a balance."""
    ledger = TransactionLedger(db, overdraft_policy=overdraft, cache=cache)
    record = await ledger.adjust(
        employee_id=payload.employee_id,
        benefit_type_id=payload.benefit_type_id,
        year=payload.year,
        adjustment_type=payload.adjustment_type,
        amount=payload.amount,
        reason=payload.reason,
        actor_id=payload.actor_id,
    )
    await db.commit()
    return TransactionResponse.model_validate(record)


# ============================================================================
# Balance views
# ============================================================================


@router.post(
    "/check",
    response_model=BalanceCheckResponse,
    responses={404: {"model": ErrorResponse}},
)
async def check_balance(
    db: DbSession,
    overdraft: Overdraft,
    payload: BalanceCheckRequest,
) -> BalanceCheckResponse:
    """Check whether an amount fits in the current balance."""
    queries = BalanceQueryService(db, overdraft_policy=overdraft)
    check = await queries.check_available_balance(
        payload.employee_id, payload.benefit_type_id, payload.amount, payload.year
    )
    return BalanceCheckResponse.model_validate(check)


@router.get(
    "/employees/{employee_id}/summary",
    response_model=BalanceSummaryResponse,
    responses={404: {"model": ErrorResponse}},
)
async def employee_summary(
    db: DbSession,
    cache: Cache,
    settings: AppSettings,
    employee_id: Annotated[UUID, Path()],
    year: int | None = None,
) -> BalanceSummaryResponse:
    """Per-benefit balances and totals for one employee."""
    queries = BalanceQueryService(db, cache=cache, summary_ttl=settings.summary_cache_ttl_seconds)
    summary = await queries.get_employee_summary(employee_id, year or _current_year())
    return BalanceSummaryResponse.model_validate(summary)


@router.get(
    "/employees/{employee_id}/status",
    response_model=BalanceStatusResponse,
    responses={404: {"model": ErrorResponse}},
)
async def employee_balance_status(
    db: DbSession,
    overdraft: Overdraft,
    employee_id: Annotated[UUID, Path()],
    benefit_type_id: UUID,
    year: int | None = None,
) -> BalanceStatusResponse:
    """Balance state and overdraft headroom for one benefit type."""
    queries = BalanceQueryService(db, overdraft_policy=overdraft)
    balance_status = await queries.get_balance_status(
        employee_id, benefit_type_id, year or _current_year()
    )
    return BalanceStatusResponse.model_validate(balance_status)


@router.get(
    "/employees/{employee_id}/history",
    response_model=BalanceHistoryResponse,
    responses={404: {"model": ErrorResponse}},
)
async def employee_balance_history(
    db: DbSession,
    employee_id: Annotated[UUID, Path()],
    benefit_type_id: UUID | None = None,
    year: int | None = None,
    transaction_type: Literal["debit", "credit"] | None = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> BalanceHistoryResponse:
    """Ledger transactions for an employee, newest first."""
    queries = BalanceQueryService(db)
    records = await queries.get_balance_history(
        employee_id,
        benefit_type_id=benefit_type_id,
        year=year,
        transaction_type=transaction_type,
        limit=limit,
    )
    return BalanceHistoryResponse(
        items=[TransactionResponse.model_validate(r) for r in records],
        total=len(records),
    )
