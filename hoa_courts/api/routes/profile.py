"""Route handlers for the caller's own profile."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from hoa_courts.database.db import get_db_session
from hoa_courts.services import user_service
from hoa_courts.services.exceptions import AppError
from hoa_courts.api.auth_dependencies import get_current_profile
from hoa_courts.models.schemas import (
    ProfileResponse,
    ProfileUpdate,
    ChangePasswordRequest,
    MessageResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/profile", response_model=ProfileResponse)
async def get_profile(profile: dict = Depends(get_current_profile)):
    """Get the caller's profile, including hour balances and the next quota reset."""
    return user_service.describe_profile(profile)


@router.patch("/api/profile", response_model=ProfileResponse)
async def update_profile(
    payload: ProfileUpdate,
    profile: dict = Depends(get_current_profile),
    session: AsyncSession = Depends(get_db_session),
):
    """Update name, phone number or household."""
    try:
        updated = await user_service.update_own_profile(
            session,
            profile["user_id"],
            full_name=payload.full_name,
            phone_number=payload.phone_number,
            household_id=payload.household_id,
        )
        return {**updated, "email": profile.get("email")}
    except (HTTPException, AppError):
        raise
    except Exception as e:
        logger.error(f"Error updating profile: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error updating profile")


@router.post("/api/profile/password", response_model=MessageResponse)
async def change_password(
    payload: ChangePasswordRequest,
    profile: dict = Depends(get_current_profile),
    session: AsyncSession = Depends(get_db_session),
):
    """Change the caller's password."""
    try:
        await user_service.change_password(
            session, profile["user_id"], payload.current_password, payload.new_password
        )
    except (HTTPException, AppError):
        raise
    except Exception as e:
        logger.error(f"Error changing password: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error changing password")
    return {"message": "Password updated"}
