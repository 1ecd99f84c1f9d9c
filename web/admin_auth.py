"""
Admin Authentication - Shared-Token Gate for Admin API Routes

Implements:
- Admin identity from the X-Admin-Id request header
- Shared secret from the X-Admin-Token request header
- Environment-based configuration (ADMIN_IDS, ADMIN_TOKEN)

Security:
- Token compared in constant time
- No admins or no token configured rejects everyone
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Final, Optional

from fastapi import Depends, HTTPException, Request

from core.pipeline import PipelineServices, get_services
from utils.config import Config


# =============================================================================
# Configuration
# =============================================================================

ADMIN_ID_HEADER: Final[str] = "X-Admin-Id"
ADMIN_TOKEN_HEADER: Final[str] = "X-Admin-Token"


def get_app_services(request: Request) -> PipelineServices:
    """Services attached to the app, falling back to the process singleton."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        services = get_services()
        request.app.state.services = services
    return services


def is_admin_configured(config: Config) -> bool:
    """Check if admin authentication is properly configured."""
    return bool(config.admin_ids) and bool(config.admin_token)


# =============================================================================
# Authentication Functions
# =============================================================================


@dataclass(frozen=True)
class AdminIdentity:
    """An authenticated admin caller."""

    admin_id: str


def authenticate_admin(
    admin_id: Optional[str],
    token: Optional[str],
    config: Config,
) -> Optional[AdminIdentity]:
    """
    Authenticate an admin caller.

    Args:
        admin_id: Claimed admin id
        token: Shared admin token
        config: Configuration holding ADMIN_IDS and ADMIN_TOKEN

    Returns:
        AdminIdentity if authentication successful, None otherwise
    """
    if not is_admin_configured(config):
        return None

    if not admin_id or not token:
        return None

    admin_id = admin_id.strip()
    if admin_id not in config.admin_ids:
        return None

    if not hmac.compare_digest(token.encode("utf-8"), config.admin_token.encode("utf-8")):
        return None

    return AdminIdentity(admin_id=admin_id)


def get_current_admin(request: Request) -> Optional[AdminIdentity]:
    """
    Get the admin identity from request headers.

    Returns:
        AdminIdentity if the headers authenticate, None otherwise
    """
    services = get_app_services(request)
    return authenticate_admin(
        request.headers.get(ADMIN_ID_HEADER),
        request.headers.get(ADMIN_TOKEN_HEADER),
        services.config,
    )


def require_admin(admin: Optional[AdminIdentity] = Depends(get_current_admin)) -> AdminIdentity:
    """
    Dependency that requires valid admin headers.

    Raises HTTPException(403) if not authenticated.
    """
    if admin is None:
        raise HTTPException(
            status_code=403,
            detail="Admin authentication required",
        )
    return admin
