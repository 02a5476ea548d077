"""Pydantic v2 response schemas for the account-info endpoint."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from account_api.schemas.billing import SubscriptionView


class UserInfo(BaseModel):
    """Identity as asserted by the verified access token."""

    id: str
    email: str


class ProfileResponse(BaseModel):
    """Profile row for the user, if one exists."""

    id: str
    display_name: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MeResponse(BaseModel):
    """``GET /api/v1/me`` payload."""

    user: UserInfo
    profile: ProfileResponse | None = None
    subscription: SubscriptionView | None = None
