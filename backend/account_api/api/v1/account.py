"""Account info endpoint — identity, profile, and the displayed subscription."""

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from account_api.api.deps import get_current_user, get_db
from account_api.auth.identity import AuthenticatedUser
from account_api.billing.academia import apply_entitlement_overlay
from account_api.config import settings
from account_api.models.profile import Profile
from account_api.schemas.account import MeResponse, ProfileResponse, UserInfo
from account_api.services.expiry_service import expire_if_needed
from account_api.services.subscription_service import get_subscription

router = APIRouter(prefix="/api/v1", tags=["account"])


@router.get("/me", response_model=MeResponse)
async def read_me(
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> MeResponse:
    """Return the caller's identity, profile, and subscription.

    A lapsed subscription is canceled in storage before it is returned; the
    academia grant is applied to the response only.
    """
    subscription = await get_subscription(db, current_user.id)
    if subscription is not None and await expire_if_needed(db, subscription):
        subscription = await get_subscription(db, current_user.id)

    result = await db.execute(select(Profile).where(Profile.id == current_user.id))
    profile = result.scalar_one_or_none()

    return MeResponse(
        user=UserInfo(id=current_user.id, email=current_user.email),
        profile=ProfileResponse.model_validate(profile) if profile is not None else None,
        subscription=apply_entitlement_overlay(
            subscription, current_user, settings.normalized_academia_domains
        ),
    )
