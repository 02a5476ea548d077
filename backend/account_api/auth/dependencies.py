"""FastAPI authentication and entitlement dependencies for route protection."""

import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from account_api.auth.identity import (
    AuthenticatedUser,
    IdentityVerifier,
    InvalidTokenError,
    get_identity_verifier,
)
from account_api.database import get_db
from account_api.services.subscription_service import check_subscription

logger = logging.getLogger(__name__)

# Missing credentials are reported as 401 by get_current_user, not 403 by the scheme
_bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
) -> AuthenticatedUser:
    """Verify the Bearer token and return the authenticated user.

    Raises:
        HTTPException 401: If the token is missing, invalid, or expired.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="not_authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        raise credentials_exception

    try:
        return verifier.verify(credentials.credentials)
    except InvalidTokenError as e:
        logger.info("Rejected bearer token: %s", e)
        raise credentials_exception from None


async def require_subscription(
    db: AsyncSession = Depends(get_db),
    user: AuthenticatedUser = Depends(get_current_user),
) -> AuthenticatedUser:
    """Return the user only if they hold an active, trialing, or academia entitlement.

    Raises:
        HTTPException 403: If the user is authenticated but not entitled.
    """
    if not await check_subscription(db, user):
        # Keep an expiry written by the check; the 403 below rolls back get_db
        await db.commit()
        logger.info("Subscription required for user %s", user.id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="subscription_required",
        )
    return user
