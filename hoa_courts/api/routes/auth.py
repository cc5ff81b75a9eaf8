"""Authentication route handlers."""

import logging
import os

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from hoa_courts.api.routes import limiter, INVALID_CREDENTIALS_RESPONSE
from hoa_courts.database.db import get_db_session
from hoa_courts.services import (
    auth_service,
    user_service,
    password_reset_service,
    rate_limiting_service,
)
from hoa_courts.services.exceptions import AppError
from hoa_courts.api.auth_dependencies import get_current_user
from hoa_courts.models.schemas import (
    RegisterRequest,
    LoginRequest,
    AuthResponse,
    ProfileResponse,
    ResetPasswordRequest,
    ResetPasswordConfirmRequest,
    MessageResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter()

APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:3000")


def _auth_response(profile: dict) -> AuthResponse:
    access_token = auth_service.create_access_token(
        data={"user_id": profile["user_id"], "hoa_id": profile["hoa_id"], "role": profile["role"]}
    )
    return AuthResponse(
        access_token=access_token,
        token_type="bearer",
        user_id=profile["user_id"],
        hoa_id=profile["hoa_id"],
        role=profile["role"],
    )


@router.post("/api/auth/register", response_model=AuthResponse, status_code=201)
@limiter.limit("5/minute")
async def register(
    request: Request, payload: RegisterRequest, session: AsyncSession = Depends(get_db_session)
):
    """Join an HOA with its invitation code. Logs the new member in."""
    try:
        profile = await user_service.register_user(
            session,
            email=payload.email,
            password=payload.password,
            full_name=payload.full_name,
            phone_number=payload.phone_number,
            invitation_code=payload.invitation_code,
            household_id=payload.household_id,
        )
        return _auth_response(profile)
    except (HTTPException, AppError):
        raise
    except Exception as e:
        logger.error(f"Error during registration: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error during registration")


@router.post("/api/auth/login", response_model=AuthResponse)
@limiter.limit("10/minute")
async def login(
    request: Request, payload: LoginRequest, session: AsyncSession = Depends(get_db_session)
):
    """Login with email and password."""
    try:
        user = await user_service.authenticate_user(session, payload.email, payload.password)
        if not user:
            raise INVALID_CREDENTIALS_RESPONSE

        profile = await user_service.get_profile_by_user_id(session, user["id"])
        if profile is None:
            raise HTTPException(status_code=403, detail="No HOA membership found for this account")
        if not profile["is_active"]:
            raise HTTPException(status_code=403, detail="Account is deactivated")

        return _auth_response(profile)
    except (HTTPException, AppError):
        raise
    except Exception as e:
        logger.error(f"Error during login: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error during login")


@router.get("/api/auth/me", response_model=ProfileResponse)
async def get_me(
    user: dict = Depends(get_current_user), session: AsyncSession = Depends(get_db_session)
):
    """Get the authenticated user's profile."""
    profile = await user_service.get_profile_by_user_id(session, user["id"])
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return user_service.describe_profile({**profile, "email": user["email"]})


@router.post("/api/auth/reset-password", response_model=MessageResponse)
@limiter.limit("5/minute")
async def reset_password(
    request: Request,
    payload: ResetPasswordRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """Email a password reset link. The answer never reveals whether the account exists."""
    try:
        email = auth_service.normalize_email(payload.email)
        await rate_limiting_service.enforce_rate_limit(email, "password_reset_request")
        await password_reset_service.request_password_reset(session, email, APP_BASE_URL)
        return {"message": password_reset_service.GENERIC_RESET_MESSAGE}
    except (HTTPException, AppError):
        raise
    except Exception as e:
        logger.error(f"Error initiating password reset: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error initiating password reset")


@router.get("/api/auth/reset-password/validate")
async def validate_reset_token(token: str, session: AsyncSession = Depends(get_db_session)):
    """Check whether a reset token is still usable."""
    user_id = await password_reset_service.validate_reset_token(session, token)
    return {"valid": user_id is not None}


@router.post("/api/auth/reset-password/confirm", response_model=MessageResponse)
@limiter.limit("5/minute")
async def reset_password_confirm(
    request: Request,
    payload: ResetPasswordConfirmRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """Set a new password with a reset token."""
    try:
        await password_reset_service.reset_password(
            session, payload.token, payload.new_password, payload.confirm_password
        )
        return {"message": "Your password has been reset. You can now log in."}
    except (HTTPException, AppError):
        raise
    except Exception as e:
        logger.error(f"Error resetting password: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error resetting password")
