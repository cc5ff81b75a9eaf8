"""
SQLAlchemy ORM models for the HOA court reservation system.
"""

import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    Float,
    DateTime,
    Enum,
    ForeignKey,
    JSON,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import relationship
from hoa_courts.database.db import Base
from hoa_courts.utils.datetime_utils import utcnow


class UserRole(str, enum.Enum):
    """Profile role enum, in ascending order of privilege."""

    MEMBER = "member"
    HOA_ADMIN = "hoa_admin"
    SUPER_ADMIN = "super_admin"


class BookingStatus(str, enum.Enum):
    """Booking lifecycle status enum."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class ParticipantStatus(str, enum.Enum):
    """Booking participant invitation status enum."""

    INVITED = "invited"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class NotificationType(str, enum.Enum):
    """Notification type enum."""

    BOOKING_INVITATION = "booking_invitation"
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_REMINDER = "booking_reminder"
    ACCOUNT_DEACTIVATED = "account_deactivated"


class User(Base):
    """Login identity (email + password). Membership details live on Profile."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, nullable=False, unique=True)
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    profile = relationship("Profile", back_populates="user", uselist=False)
    password_reset_tokens = relationship(
        "PasswordResetToken", back_populates="user", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("idx_users_email", "email"),)


class HOA(Base):
    """Homeowners association: the tenant boundary for members, courts and bookings."""

    __tablename__ = "hoas"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    slug = Column(String(50), nullable=False, unique=True)
    invitation_code = Column(String(16), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    address = Column(Text, nullable=True)
    contact_email = Column(String, nullable=True)
    contact_phone = Column(String, nullable=True)
    website_url = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Courts
    total_courts = Column(Integer, default=1, nullable=False)
    court_names = Column(JSON, nullable=True)  # ["Court 1", "Court 2", ...]

    # Booking policy
    default_prime_hours = Column(Float, default=4, nullable=False)
    default_standard_hours = Column(Float, default=8, nullable=False)
    max_advance_booking_days = Column(Integer, default=14, nullable=False)
    booking_window_hours = Column(Integer, default=2, nullable=False)
    prime_time_start = Column(String(5), default="17:00", nullable=False)  # weekdays, HH:MM
    prime_time_end = Column(String(5), default="21:00", nullable=False)
    weekend_prime_time_start = Column(String(5), default="08:00", nullable=False)
    weekend_prime_time_end = Column(String(5), default="20:00", nullable=False)
    timezone = Column(String(64), default="America/Los_Angeles", nullable=False)
    allow_guest_bookings = Column(Boolean, default=False, nullable=False)
    max_guests_per_booking = Column(Integer, default=2, nullable=False)

    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    profiles = relationship("Profile", back_populates="hoa")
    bookings = relationship("Booking", back_populates="hoa")

    __table_args__ = (
        CheckConstraint("total_courts >= 1 AND total_courts <= 20", name="ck_hoas_total_courts"),
        Index("idx_hoas_slug", "slug"),
        Index("idx_hoas_invitation_code", "invitation_code"),
    )


class Profile(Base):
    """A person's membership in exactly one HOA, with role and hour quotas."""

    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    hoa_id = Column(Integer, ForeignKey("hoas.id"), nullable=False)
    full_name = Column(String, nullable=False)
    phone_number = Column(String, nullable=False)  # +1XXXXXXXXXX
    household_id = Column(String, nullable=True)
    role = Column(Enum(UserRole), default=UserRole.MEMBER, nullable=False)
    prime_hours = Column(Float, default=4, nullable=False)
    standard_hours = Column(Float, default=8, nullable=False)
    last_reset = Column(DateTime(timezone=True), default=utcnow)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    user = relationship("User", back_populates="profile")
    hoa = relationship("HOA", back_populates="profiles")

    __table_args__ = (
        UniqueConstraint("hoa_id", "phone_number", name="uq_profiles_hoa_phone"),
        Index("idx_profiles_hoa", "hoa_id"),
        Index("idx_profiles_hoa_role", "hoa_id", "role"),
    )


class Booking(Base):
    """Court reservation request. Pending bookings expire 30 minutes after creation."""

    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    hoa_id = Column(Integer, ForeignKey("hoas.id"), nullable=False)
    organizer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    courts = Column(JSON, nullable=False)  # list of court numbers
    status = Column(Enum(BookingStatus), default=BookingStatus.PENDING, nullable=False)
    total_players = Column(Integer, nullable=False)
    guest_count = Column(Integer, default=0, nullable=False)
    min_members = Column(Integer, nullable=False)
    is_prime_time = Column(Boolean, default=False, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    reminders_sent = Column(JSON, default=list, nullable=False)  # reminder types already delivered
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    hoa = relationship("HOA", back_populates="bookings")
    organizer = relationship("User", foreign_keys=[organizer_id])
    participants = relationship(
        "BookingParticipant",
        back_populates="booking",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_bookings_time_range"),
        Index("idx_bookings_hoa_start", "hoa_id", "start_time"),
        Index("idx_bookings_organizer", "organizer_id"),
        Index("idx_bookings_status_expires", "status", "expires_at"),
    )


class BookingParticipant(Base):
    """One invited player's response to a booking."""

    __tablename__ = "booking_participants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(Enum(ParticipantStatus), default=ParticipantStatus.INVITED, nullable=False)
    hours_charged = Column(Float, nullable=True)  # set only once the booking is confirmed
    responded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    booking = relationship("Booking", back_populates="participants")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("booking_id", "user_id", name="uq_booking_participants_booking_user"),
        Index("idx_booking_participants_booking", "booking_id"),
        Index("idx_booking_participants_user", "user_id"),
    )


class Notification(Base):
    """User notifications for in-app messaging."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type = Column(String, nullable=False)  # NotificationType enum value
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(Text, nullable=True)  # JSON string (booking_id, reminder type, etc.)
    actions = Column(Text, nullable=True)  # JSON list of {"action", "title"}
    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    link_url = Column(String(500), nullable=True)  # Navigation target
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_notifications_user_unread", "user_id", "is_read", "created_at"),
        Index("idx_notifications_user_created", "user_id", "created_at"),
    )


class PasswordResetToken(Base):
    """Single-use password reset tokens."""

    __tablename__ = "password_reset_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token = Column(String, nullable=False, unique=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    # Relationships
    user = relationship("User", back_populates="password_reset_tokens")

    __table_args__ = (
        Index("idx_password_reset_tokens_user", "user_id"),
        Index("idx_password_reset_tokens_expires", "expires_at"),
    )
