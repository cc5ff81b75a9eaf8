"""Admin route handlers for member accounts."""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from hoa_courts.database.db import get_db_session
from hoa_courts.services import user_service, rate_limiting_service
from hoa_courts.services.exceptions import AppError
from hoa_courts.services.permissions import Permission
from hoa_courts.api.auth_dependencies import require_permission, log_admin_action
from hoa_courts.models.schemas import (
    ProfileResponse,
    AdminCreateUserRequest,
    AdminUpdateUserRequest,
    BulkUpdateUsersRequest,
    BulkUpdateUsersResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/admin/users", response_model=Dict[str, Any])
async def list_users(
    search: Optional[str] = None,
    role: Optional[str] = None,
    status: Optional[str] = None,
    hoa_id: Optional[int] = None,
    page: int = 1,
    limit: int = 20,
    profile: dict = Depends(require_permission(Permission.VIEW_HOA_MEMBERS)),
    session: AsyncSession = Depends(get_db_session),
):
    """Paginated member list, scoped to the caller's HOA unless they are a super admin."""
    return await user_service.list_profiles(
        session,
        profile,
        search=search,
        role=role,
        status=status,
        hoa_id=hoa_id,
        page=page,
        limit=limit,
    )


@router.post("/api/admin/users", response_model=ProfileResponse, status_code=201)
async def create_user(
    payload: AdminCreateUserRequest,
    profile: dict = Depends(require_permission(Permission.MANAGE_HOA_USERS)),
    session: AsyncSession = Depends(get_db_session),
):
    """Create a member account in the caller's HOA (or any HOA for super admins)."""
    try:
        await rate_limiting_service.enforce_rate_limit(profile["user_id"], "create_user")
        created = await user_service.admin_create_user(session, profile, **payload.model_dump())
        log_admin_action(
            profile,
            "create_user",
            "user",
            created["user_id"],
            {"role": created["role"], "hoa_id": created["hoa_id"]},
        )
        return created
    except (HTTPException, AppError):
        raise
    except Exception as e:
        logger.error(f"Error creating user: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error creating user")


@router.patch("/api/admin/users", response_model=BulkUpdateUsersResponse)
async def bulk_update_users(
    payload: BulkUpdateUsersRequest,
    profile: dict = Depends(require_permission(Permission.MANAGE_HOA_USERS)),
    session: AsyncSession = Depends(get_db_session),
):
    """Apply one action to several members; reports the outcome per member."""
    await rate_limiting_service.enforce_rate_limit(profile["user_id"], "bulk_update_users")
    results = await user_service.bulk_update_users(
        session, profile, payload.user_ids, payload.action, payload.data
    )
    succeeded = sum(1 for r in results if r["success"])
    log_admin_action(
        profile,
        f"bulk_{payload.action}",
        "users",
        payload.user_ids,
        {"succeeded": succeeded, "failed": len(results) - succeeded},
    )
    return {"results": results, "succeeded": succeeded, "failed": len(results) - succeeded}


@router.get("/api/admin/users/{user_id}", response_model=Dict[str, Any])
async def get_user(
    user_id: int,
    profile: dict = Depends(require_permission(Permission.VIEW_MEMBER_DETAILS)),
    session: AsyncSession = Depends(get_db_session),
):
    """Member profile with booking activity."""
    return await user_service.get_profile_details(session, profile, user_id)


@router.patch("/api/admin/users/{user_id}", response_model=ProfileResponse)
async def update_user(
    user_id: int,
    payload: AdminUpdateUserRequest,
    profile: dict = Depends(require_permission(Permission.MANAGE_HOA_USERS)),
    session: AsyncSession = Depends(get_db_session),
):
    await rate_limiting_service.enforce_rate_limit(profile["user_id"], "update_user")
    updates = payload.model_dump(exclude_unset=True)
    updated = await user_service.admin_update_user(session, profile, user_id, updates)
    log_admin_action(profile, "update_user", "user", user_id, {"fields": sorted(updates)})
    return updated


@router.delete("/api/admin/users/{user_id}", response_model=Dict[str, Any])
async def deactivate_user(
    user_id: int,
    profile: dict = Depends(require_permission(Permission.DEACTIVATE_MEMBERS)),
    session: AsyncSession = Depends(get_db_session),
):
    """Deactivate a member and cancel the pending bookings they organized."""
    await rate_limiting_service.enforce_rate_limit(profile["user_id"], "deactivate_user")
    result = await user_service.deactivate_user(session, profile, user_id)
    log_admin_action(
        profile,
        "deactivate_user",
        "user",
        user_id,
        {"cancelled_bookings": result["cancelled_bookings"]},
    )
    return result


@router.put("/api/admin/users/{user_id}/reactivate", response_model=ProfileResponse)
async def reactivate_user(
    user_id: int,
    profile: dict = Depends(require_permission(Permission.DEACTIVATE_MEMBERS)),
    session: AsyncSession = Depends(get_db_session),
):
    reactivated = await user_service.reactivate_user(session, profile, user_id)
    log_admin_action(profile, "reactivate_user", "user", user_id)
    return reactivated
