from fastapi import APIRouter

from tenantflow.api.routes import health, onboarding

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(onboarding.router, prefix="/tenants/onboarding", tags=["onboarding"])
