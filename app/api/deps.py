"""API Dependencies"""

from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.core.security import verify_shared_secret
from app.services.charge_processor import ChargeProcessor, StripeChargeProcessor

# Security scheme for bearer token; missing headers are reported as 401 below
security = HTTPBearer(auto_error=False)


def _bearer_token(credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    return credentials.credentials if credentials else None


async def require_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> None:
    """
    Only the scheduler may trigger billing runs.

    Raises:
        HTTPException: 401 if the bearer token does not match CRON_SECRET
    """
    if not verify_shared_secret(_bearer_token(credentials), settings.CRON_SECRET):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def require_platform_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> None:
    """
    Platform administration (status changes, billing settings, payments).

    Raises:
        HTTPException: 401 if the bearer token does not match ADMIN_API_KEY
    """
    if not verify_shared_secret(_bearer_token(credentials), settings.ADMIN_API_KEY):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_charge_processor(db: AsyncSession = Depends(get_db)) -> ChargeProcessor:
    return StripeChargeProcessor(db)
