"""SQLAlchemy models for the account API.

All models are imported here so that Alembic's autogenerate can discover
them via Base.metadata. If you add a new model, import it in this file.
"""

from account_api.models.plan import Plan
from account_api.models.profile import Profile
from account_api.models.project import Project
from account_api.models.subscription import Subscription, SubscriptionStatus

__all__ = [
    "Plan",
    "Profile",
    "Project",
    "Subscription",
    "SubscriptionStatus",
]
