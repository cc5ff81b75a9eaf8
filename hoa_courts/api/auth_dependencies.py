"""
Authentication dependencies for FastAPI routes.
"""

import logging
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Any, Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from hoa_courts.services import auth_service, user_service
from hoa_courts.services.permissions import Permission, has_permission, is_super_admin
from hoa_courts.database.db import get_db_session
from hoa_courts.utils.datetime_utils import utcnow

security = HTTPBearer()

audit_logger = logging.getLogger("hoa_courts.audit")


async def get_current_user(
    session: AsyncSession = Depends(get_db_session),
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    Dependency to get the current authenticated user from JWT token.

    Args:
        session: Database session
        credentials: HTTP Bearer token credentials

    Returns:
        User dictionary

    Raises:
        HTTPException: If token is invalid or user not found
    """
    token = credentials.credentials

    # Verify token
    payload = auth_service.verify_token(token)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Get user_id from token
    user_id = payload.get("user_id")
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Get user from database
    user = await user_service.get_user_by_id(session, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user


async def get_current_profile(
    user: dict = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
) -> dict:
    """
    Require an authenticated user with an active HOA profile.

    Returns the profile dict (with email), which is the actor passed to services.
    """
    profile = await user_service.get_profile_by_user_id(session, user["id"])
    if profile is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Profile required")
    if not profile.get("is_active"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated")
    return {**profile, "email": user.get("email")}


def require_permission(permission: Permission):
    """Dependency factory requiring the caller to hold a permission."""

    async def _dep(profile: dict = Depends(get_current_profile)) -> dict:
        if not has_permission(profile, permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions"
            )
        return profile

    return _dep


async def require_super_admin(profile: dict = Depends(get_current_profile)) -> dict:
    """Require platform-wide admin."""
    if not is_super_admin(profile):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return profile


def log_admin_action(
    actor: Dict,
    action: str,
    target_type: str,
    target_id: Any = None,
    details: Optional[Dict] = None,
) -> None:
    """
    Write an audit record for an admin mutation.

    Args:
        actor: Profile dict of the admin
        action: What was done, e.g. "update_user"
        target_type: "user", "hoa" or "users"
        target_id: Id (or ids) of the target
        details: Extra context such as changed fields
    """
    audit_logger.info(
        f"{action} {target_type}={target_id} by user {actor.get('user_id')} "
        f"({actor.get('role')}, hoa {actor.get('hoa_id')})",
        extra={
            "audit": {
                "actor_user_id": actor.get("user_id"),
                "actor_role": actor.get("role"),
                "actor_hoa_id": actor.get("hoa_id"),
                "action": action,
                "target_type": target_type,
                "target_id": target_id,
                "details": details or {},
                "timestamp": utcnow().isoformat(),
            }
        },
    )
