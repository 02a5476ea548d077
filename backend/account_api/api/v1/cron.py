"""Scheduled-job endpoints — invoked by the platform scheduler, not by users."""

import logging
import secrets
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from account_api.api.deps import get_db
from account_api.config import settings
from account_api.schemas.billing import SweepResponse
from account_api.services.expiry_service import sweep_expired_subscriptions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/cron", tags=["cron"])

_cron_bearer = HTTPBearer(auto_error=False)


async def verify_cron_secret(
    credentials: HTTPAuthorizationCredentials | None = Depends(_cron_bearer),
) -> None:
    """Require ``Authorization: Bearer <CRON_SECRET>`` when a secret is configured."""
    if not settings.cron_secret:
        logger.warning("CRON_SECRET is not set; cron endpoint is unauthenticated")
        return

    if credentials is None or not secrets.compare_digest(
        credentials.credentials, settings.cron_secret
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


@router.get(
    "/expire-subscriptions",
    response_model=SweepResponse,
    dependencies=[Depends(verify_cron_secret)],
)
async def expire_subscriptions(db: AsyncSession = Depends(get_db)) -> SweepResponse:
    """Cancel lapsed trials and period-end cancellations in bulk."""
    result = await sweep_expired_subscriptions(db)
    await db.commit()
    return SweepResponse(**asdict(result))
