"""API routes."""

from insurance_engine.api.routes.applications import router as applications_router
from insurance_engine.api.routes.health import router as health_router
from insurance_engine.api.routes.rate_tables import router as rate_tables_router

__all__ = ["applications_router", "health_router", "rate_tables_router"]
