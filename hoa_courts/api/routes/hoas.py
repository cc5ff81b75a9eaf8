"""Admin route handlers for HOAs."""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from hoa_courts.database.db import get_db_session
from hoa_courts.services import hoa_service, user_service, rate_limiting_service
from hoa_courts.services.exceptions import AppError, Forbidden, NotFound
from hoa_courts.services.permissions import Permission, can_access_hoa
from hoa_courts.api.auth_dependencies import (
    require_permission,
    require_super_admin,
    log_admin_action,
)
from hoa_courts.models.schemas import CreateHOARequest, HOAUpdate

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/admin/hoas", response_model=List[Dict[str, Any]])
async def list_hoas(
    profile: dict = Depends(require_permission(Permission.MANAGE_HOA_SETTINGS)),
    session: AsyncSession = Depends(get_db_session),
):
    """All HOAs for super admins; the caller's own HOA for HOA admins."""
    return await hoa_service.list_hoas(session, profile)


@router.post("/api/admin/hoas", response_model=Dict[str, Any], status_code=201)
async def create_hoa(
    payload: CreateHOARequest,
    profile: dict = Depends(require_super_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Create an HOA together with its first HOA admin."""
    try:
        await rate_limiting_service.enforce_rate_limit(profile["user_id"], "create_hoa")
        fields = payload.model_dump(exclude_none=True)
        fields.setdefault("slug", None)
        result = await hoa_service.create_hoa(session, profile, **fields)
        log_admin_action(
            profile,
            "create_hoa",
            "hoa",
            result["hoa"]["id"],
            {"slug": result["hoa"]["slug"], "admin_user_id": result["admin_user_id"]},
        )
        return result
    except (HTTPException, AppError):
        raise
    except Exception as e:
        logger.error(f"Error creating HOA: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error creating HOA")


@router.get("/api/admin/hoas/{hoa_id}", response_model=Dict[str, Any])
async def get_hoa(
    hoa_id: int,
    profile: dict = Depends(require_permission(Permission.MANAGE_HOA_SETTINGS)),
    session: AsyncSession = Depends(get_db_session),
):
    """HOA settings with member and booking counts."""
    if not can_access_hoa(profile, hoa_id):
        raise Forbidden("You cannot view this HOA")
    hoa = await hoa_service.get_hoa_by_id(session, hoa_id)
    if hoa is None:
        raise NotFound("HOA not found")
    hoa["stats"] = await hoa_service.get_hoa_stats(session, hoa_id)
    return hoa


@router.patch("/api/admin/hoas/{hoa_id}", response_model=Dict[str, Any])
async def update_hoa(
    hoa_id: int,
    payload: HOAUpdate,
    profile: dict = Depends(require_permission(Permission.MANAGE_HOA_SETTINGS)),
    session: AsyncSession = Depends(get_db_session),
):
    """Update HOA settings. Slug and active status are super-admin only."""
    updates = payload.model_dump(exclude_unset=True)
    hoa = await hoa_service.update_hoa(session, profile, hoa_id, updates)
    log_admin_action(profile, "update_hoa", "hoa", hoa_id, {"fields": sorted(updates)})
    return hoa


@router.post("/api/admin/hoas/{hoa_id}/invitation-code", response_model=Dict[str, Any])
async def regenerate_invitation_code(
    hoa_id: int,
    profile: dict = Depends(require_permission(Permission.INVITE_MEMBERS)),
    session: AsyncSession = Depends(get_db_session),
):
    """Issue a new invitation code; the old one stops working."""
    hoa = await hoa_service.regenerate_invitation_code(session, profile, hoa_id)
    log_admin_action(profile, "regenerate_invitation_code", "hoa", hoa_id)
    return hoa


@router.post("/api/admin/hoas/{hoa_id}/reset-hours", response_model=Dict[str, Any])
async def reset_hoa_hours(
    hoa_id: int,
    profile: dict = Depends(require_permission(Permission.RESET_USER_HOURS)),
    session: AsyncSession = Depends(get_db_session),
):
    """Reset every active member of the HOA to the default hour quotas."""
    count = await user_service.reset_all_hours(session, profile, hoa_id)
    log_admin_action(profile, "reset_all_hours", "hoa", hoa_id, {"members_reset": count})
    return {"success": True, "members_reset": count}
