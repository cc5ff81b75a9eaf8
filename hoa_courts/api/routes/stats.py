"""Admin statistics route handlers."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from hoa_courts.database.db import get_db_session
from hoa_courts.services import hoa_service
from hoa_courts.services.exceptions import Forbidden
from hoa_courts.services.permissions import Permission, has_permission, can_access_hoa
from hoa_courts.api.auth_dependencies import require_permission

router = APIRouter()


@router.get("/api/admin/stats", response_model=Dict[str, Any])
async def get_stats(
    hoa_id: Optional[int] = None,
    profile: dict = Depends(require_permission(Permission.VIEW_HOA_REPORTS)),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Usage statistics.

    Super admins get system-wide counts unless they ask for one HOA; HOA
    admins always get their own HOA.
    """
    if hoa_id is None and has_permission(profile, Permission.VIEW_SYSTEM_REPORTS):
        return await hoa_service.get_system_stats(session)

    target_hoa_id = hoa_id if hoa_id is not None else profile["hoa_id"]
    if not can_access_hoa(profile, target_hoa_id):
        raise Forbidden("You cannot view reports for this HOA")
    return await hoa_service.get_hoa_stats(session, target_hoa_id)
