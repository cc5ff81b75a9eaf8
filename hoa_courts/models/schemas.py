"""
Pydantic models for API request/response validation.
"""

from datetime import datetime
from typing import Optional, List, Literal
from pydantic import BaseModel, Field, ConfigDict


# Authentication schemas


class RegisterRequest(BaseModel):
    """Request to join an HOA with its invitation code."""

    email: str
    password: str
    full_name: str
    phone_number: str
    invitation_code: str
    household_id: Optional[str] = None


class LoginRequest(BaseModel):
    """Request to login with email and password."""

    email: str
    password: str


class AuthResponse(BaseModel):
    """Authentication response with JWT token."""

    access_token: str
    token_type: str = "bearer"
    user_id: int
    hoa_id: int
    role: str


class ResetPasswordRequest(BaseModel):
    """Request to initiate password reset."""

    email: str


class ResetPasswordConfirmRequest(BaseModel):
    """Request to confirm password reset with token and new password."""

    token: str
    new_password: str
    confirm_password: str


class MessageResponse(BaseModel):
    """Plain message response."""

    message: str


# Profile schemas


class ProfileResponse(BaseModel):
    """Member profile."""

    id: int
    user_id: int
    hoa_id: Optional[int] = None
    full_name: str
    phone_number: str
    household_id: Optional[str] = None
    role: str
    prime_hours: float
    standard_hours: float
    last_reset: Optional[str] = None
    is_active: bool
    email: Optional[str] = None
    role_display_name: Optional[str] = None
    role_description: Optional[str] = None
    next_reset: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ProfileUpdate(BaseModel):
    """Request to update the caller's own profile."""

    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    household_id: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    """Request to change the caller's password."""

    current_password: str
    new_password: str


# Booking schemas


class CreateBookingRequest(BaseModel):
    """Request to create a group booking. Naive times are read in the HOA's timezone."""

    start_time: datetime
    end_time: datetime
    courts: List[int] = Field(min_length=1)
    total_players: int
    guest_count: int = 0
    min_members: int
    invited_user_ids: List[int] = Field(default_factory=list)


class BookingParticipantResponse(BaseModel):
    """One participant of a booking."""

    id: int
    booking_id: int
    user_id: int
    status: str
    hours_charged: Optional[float] = None
    responded_at: Optional[str] = None
    created_at: Optional[str] = None


class BookingResponse(BaseModel):
    """Booking with optional participants."""

    id: int
    hoa_id: int
    organizer_id: int
    start_time: str
    end_time: str
    courts: List[int]
    status: str
    total_players: int
    guest_count: int
    min_members: int
    is_prime_time: bool
    expires_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    participants: Optional[List[BookingParticipantResponse]] = None


class RespondToInvitationRequest(BaseModel):
    """Accept or decline a booking invitation."""

    accept: bool


class UpdateParticipantRequest(BaseModel):
    """Request to update a participant's status or charged hours."""

    status: Literal["invited", "accepted", "declined"]
    hours_charged: Optional[float] = Field(default=None, ge=0)


# HOA admin schemas


class HOASettings(BaseModel):
    """HOA settings that an HOA admin may change."""

    name: Optional[str] = None
    description: Optional[str] = None
    address: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    website_url: Optional[str] = None
    total_courts: Optional[int] = None
    court_names: Optional[List[str]] = None
    default_prime_hours: Optional[float] = None
    default_standard_hours: Optional[float] = None
    max_advance_booking_days: Optional[int] = None
    booking_window_hours: Optional[int] = None
    prime_time_start: Optional[str] = None
    prime_time_end: Optional[str] = None
    weekend_prime_time_start: Optional[str] = None
    weekend_prime_time_end: Optional[str] = None
    timezone: Optional[str] = None
    allow_guest_bookings: Optional[bool] = None
    max_guests_per_booking: Optional[int] = None


class HOAUpdate(HOASettings):
    """Request to update an HOA. slug and is_active are super-admin only."""

    slug: Optional[str] = None
    is_active: Optional[bool] = None


class CreateHOARequest(HOASettings):
    """Request to create an HOA with its first admin. slug defaults to one derived from name."""

    name: str
    slug: Optional[str] = None
    total_courts: int = 1
    admin_email: str
    admin_name: str
    admin_phone: str
    admin_password: Optional[str] = None


# User admin schemas


class AdminCreateUserRequest(BaseModel):
    """Request for an admin to create a member account."""

    email: str
    full_name: str
    phone_number: str
    password: Optional[str] = None
    household_id: Optional[str] = None
    role: str = "member"
    hoa_id: Optional[int] = None


class AdminUpdateUserRequest(BaseModel):
    """Admin changes to a member profile."""

    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    household_id: Optional[str] = None
    role: Optional[str] = None
    prime_hours: Optional[float] = Field(default=None, ge=0)
    standard_hours: Optional[float] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class BulkUpdateUsersRequest(BaseModel):
    """Apply one action to several users."""

    user_ids: List[int] = Field(min_length=1)
    action: Literal["activate", "deactivate", "update_role", "reset_hours"]
    data: Optional[dict] = None


class BulkUpdateResult(BaseModel):
    user_id: int
    success: bool
    error: Optional[str] = None


class BulkUpdateUsersResponse(BaseModel):
    """Per-user outcome of a bulk update."""

    results: List[BulkUpdateResult]
    succeeded: int
    failed: int


# Notification schemas
class NotificationResponse(BaseModel):
    """Notification response."""

    model_config = ConfigDict(from_attributes=True)
    id: int
    user_id: int
    type: str
    title: str
    message: str
    data: Optional[dict] = None
    actions: Optional[List[dict]] = None
    is_read: bool
    read_at: Optional[str] = None
    link_url: Optional[str] = None
    created_at: str


class NotificationListResponse(BaseModel):
    """Paginated notification list response."""

    notifications: List[NotificationResponse]
    total_count: int
    has_more: bool


class UnreadCountResponse(BaseModel):
    """Unread notification count response."""

    count: int
