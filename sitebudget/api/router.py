"""Top-level API router."""

from fastapi import APIRouter

from sitebudget.api.routes.health import router as health_router
from sitebudget.api.routes.projects import router as projects_router
from sitebudget.api.routes.reallocations import router as reallocations_router
from sitebudget.api.routes.spend import router as spend_router

api_router = APIRouter()
api_router.include_router(health_router, tags=["health"])
api_router.include_router(projects_router)
api_router.include_router(spend_router)
api_router.include_router(reallocations_router)
