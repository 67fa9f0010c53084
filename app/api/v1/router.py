"""API V1 Router"""

from fastapi import APIRouter

# Import endpoint routers
from app.api.v1.endpoints import cron, organisations, payments, webhooks

# Create API v1 router
api_router = APIRouter()

# Include endpoint routers with prefixes and tags
api_router.include_router(cron.router, prefix="/cron", tags=["Billing Cron"])
api_router.include_router(organisations.router, prefix="/organisations", tags=["Organisation Status"])
api_router.include_router(payments.router, prefix="/organisations", tags=["Monthly Payments"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
