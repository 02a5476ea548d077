"""Shared API dependencies — single import point for all routers.

Re-exports database session, authentication, and external-service
dependencies so that router modules can import everything they need from
one place::

    from account_api.api.deps import get_db, get_current_user
"""

from account_api.auth.dependencies import get_current_user, require_subscription
from account_api.auth.identity import get_identity_verifier
from account_api.billing.stripe_client import get_stripe_gateway
from account_api.database import get_db
from account_api.services.project_storage import get_project_storage

__all__ = [
    "get_db",
    "get_current_user",
    "get_identity_verifier",
    "get_project_storage",
    "get_stripe_gateway",
    "require_subscription",
]
