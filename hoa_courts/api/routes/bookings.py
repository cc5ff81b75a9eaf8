"""Booking route handlers."""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from hoa_courts.database.db import get_db_session
from hoa_courts.services import booking_service
from hoa_courts.services.exceptions import AppError
from hoa_courts.api.auth_dependencies import get_current_profile
from hoa_courts.models.schemas import (
    CreateBookingRequest,
    BookingResponse,
    BookingParticipantResponse,
    RespondToInvitationRequest,
    UpdateParticipantRequest,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/bookings", response_model=BookingResponse, status_code=201)
async def create_booking(
    payload: CreateBookingRequest,
    profile: dict = Depends(get_current_profile),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Create a group booking and invite players.

    The booking stays pending until confirmed and expires after 30 minutes.
    """
    try:
        return await booking_service.create_group_booking(
            session,
            organizer_id=profile["user_id"],
            start_time=payload.start_time,
            end_time=payload.end_time,
            courts=payload.courts,
            total_players=payload.total_players,
            guest_count=payload.guest_count,
            min_members=payload.min_members,
            invited_user_ids=payload.invited_user_ids,
        )
    except (HTTPException, AppError):
        raise
    except Exception as e:
        logger.error(f"Error creating booking: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error creating booking")


@router.get("/api/bookings/my", response_model=List[BookingResponse])
async def get_my_bookings(
    status: Optional[str] = None,
    limit: int = 10,
    profile: dict = Depends(get_current_profile),
    session: AsyncSession = Depends(get_db_session),
):
    """Bookings the caller organizes or is invited to, newest first."""
    return await booking_service.get_bookings_for_user(
        session, profile["user_id"], status=status, limit=min(max(limit, 1), 100)
    )


@router.get("/api/bookings/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    profile: dict = Depends(get_current_profile),
    session: AsyncSession = Depends(get_db_session),
):
    return await booking_service.get_booking_for_actor(session, profile, booking_id)


@router.post("/api/bookings/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: int,
    profile: dict = Depends(get_current_profile),
    session: AsyncSession = Depends(get_db_session),
):
    """Confirm a pending booking (organizer once enough members accepted, or an HOA admin)."""
    try:
        return await booking_service.update_booking_status(session, booking_id, "confirmed", profile)
    except (HTTPException, AppError):
        raise
    except Exception as e:
        logger.error(f"Error confirming booking {booking_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error confirming booking")


@router.post("/api/bookings/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: int,
    profile: dict = Depends(get_current_profile),
    session: AsyncSession = Depends(get_db_session),
):
    """Cancel a pending booking."""
    try:
        return await booking_service.update_booking_status(session, booking_id, "cancelled", profile)
    except (HTTPException, AppError):
        raise
    except Exception as e:
        logger.error(f"Error cancelling booking {booking_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error cancelling booking")


@router.post("/api/bookings/{booking_id}/respond", response_model=BookingParticipantResponse)
async def respond_to_invitation(
    booking_id: int,
    payload: RespondToInvitationRequest,
    profile: dict = Depends(get_current_profile),
    session: AsyncSession = Depends(get_db_session),
):
    """Accept or decline an invitation."""
    try:
        return await booking_service.respond_to_invitation(
            session, booking_id, profile["user_id"], payload.accept
        )
    except (HTTPException, AppError):
        raise
    except Exception as e:
        logger.error(f"Error responding to booking {booking_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error responding to invitation")


@router.patch("/api/bookings/participants/{participant_id}", response_model=BookingParticipantResponse)
async def update_participant(
    participant_id: int,
    payload: UpdateParticipantRequest,
    profile: dict = Depends(get_current_profile),
    session: AsyncSession = Depends(get_db_session),
):
    """Update a participant's response, or the hours charged on a confirmed booking."""
    try:
        return await booking_service.update_participant_status(
            session,
            participant_id,
            payload.status,
            hours_charged=payload.hours_charged,
            actor=profile,
        )
    except (HTTPException, AppError):
        raise
    except Exception as e:
        logger.error(f"Error updating participant {participant_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error updating participant")


@router.get("/api/hoas/{hoa_id}/bookings", response_model=List[BookingResponse])
async def list_hoa_bookings(
    hoa_id: int,
    status: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    profile: dict = Depends(get_current_profile),
    session: AsyncSession = Depends(get_db_session),
):
    """All bookings of an HOA (admins only)."""
    return await booking_service.list_hoa_bookings(
        session, profile, hoa_id, status=status, start=start, end=end
    )
