"""API routes."""

from benefit_ledger.api.routes.balances import router as balances_router
from benefit_ledger.api.routes.health import router as health_router

__all__ = ["balances_router", "health_router"]
