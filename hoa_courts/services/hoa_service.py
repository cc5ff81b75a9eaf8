"""
HOA (tenant) service: creation, lookup, settings and statistics.
"""

import logging
import secrets
from typing import Any, Dict, List, Optional

import pytz
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hoa_courts.database.models import HOA, User, Profile, Booking, BookingStatus, UserRole
from hoa_courts.services import auth_service
from hoa_courts.services.exceptions import Conflict, Forbidden, InvalidInput, NotFound, UpstreamFailure
from hoa_courts.services.permissions import Permission, has_permission, can_access_hoa, is_super_admin
from hoa_courts.utils.datetime_utils import isoformat_or_none
from hoa_courts.utils.phone import normalize_phone_number
from hoa_courts.utils.slugify import (
    is_valid_hoa_slug,
    generate_hoa_slug,
    generate_invitation_code,
    format_hoa_display_name,
)
from hoa_courts.utils.time_utils import parse_clock_time

logger = logging.getLogger(__name__)

MIN_COURTS = 1
MAX_COURTS = 20
INVITATION_CODE_ATTEMPTS = 10

# Fields an HOA admin may change through update_hoa
HOA_SETTING_FIELDS = (
    "name",
    "description",
    "address",
    "contact_email",
    "contact_phone",
    "website_url",
    "total_courts",
    "court_names",
    "default_prime_hours",
    "default_standard_hours",
    "max_advance_booking_days",
    "booking_window_hours",
    "prime_time_start",
    "prime_time_end",
    "weekend_prime_time_start",
    "weekend_prime_time_end",
    "timezone",
    "allow_guest_bookings",
    "max_guests_per_booking",
)

# Fields only a super admin may change
SYSTEM_ONLY_FIELDS = ("slug", "is_active")

_CLOCK_FIELDS = (
    "prime_time_start",
    "prime_time_end",
    "weekend_prime_time_start",
    "weekend_prime_time_end",
)


def _hoa_to_dict(hoa: HOA) -> Dict:
    return {
        "id": hoa.id,
        "name": hoa.name,
        "slug": hoa.slug,
        "invitation_code": hoa.invitation_code,
        "description": hoa.description,
        "address": hoa.address,
        "contact_email": hoa.contact_email,
        "contact_phone": hoa.contact_phone,
        "website_url": hoa.website_url,
        "is_active": hoa.is_active,
        "total_courts": hoa.total_courts,
        "court_names": list(hoa.court_names or []),
        "default_prime_hours": hoa.default_prime_hours,
        "default_standard_hours": hoa.default_standard_hours,
        "max_advance_booking_days": hoa.max_advance_booking_days,
        "booking_window_hours": hoa.booking_window_hours,
        "prime_time_start": hoa.prime_time_start,
        "prime_time_end": hoa.prime_time_end,
        "weekend_prime_time_start": hoa.weekend_prime_time_start,
        "weekend_prime_time_end": hoa.weekend_prime_time_end,
        "timezone": hoa.timezone,
        "allow_guest_bookings": hoa.allow_guest_bookings,
        "max_guests_per_booking": hoa.max_guests_per_booking,
        "created_by": hoa.created_by,
        "created_at": isoformat_or_none(hoa.created_at),
        "updated_at": isoformat_or_none(hoa.updated_at),
    }


def default_court_names(total_courts: int) -> List[str]:
    return [f"Court {n}" for n in range(1, total_courts + 1)]


def _validate_total_courts(total_courts: Any) -> int:
    if not isinstance(total_courts, int) or isinstance(total_courts, bool):
        raise InvalidInput("Total courts must be a whole number")
    if not MIN_COURTS <= total_courts <= MAX_COURTS:
        raise InvalidInput(f"Total courts must be between {MIN_COURTS} and {MAX_COURTS}")
    return total_courts


def _validate_settings(settings: Dict) -> None:
    for field in _CLOCK_FIELDS:
        if field not in settings:
            continue
        if settings[field] is None:
            raise InvalidInput(f"{field} is required")
        try:
            parse_clock_time(settings[field])
        except ValueError:
            raise InvalidInput(f"{field} must be a HH:MM time")
    if "timezone" in settings and settings["timezone"] not in pytz.all_timezones_set:
        raise InvalidInput("timezone must be an IANA timezone")
    for field in ("default_prime_hours", "default_standard_hours", "max_guests_per_booking"):
        value = settings.get(field)
        if value is not None and value < 0:
            raise InvalidInput(f"{field} cannot be negative")
    for field in ("max_advance_booking_days", "booking_window_hours"):
        value = settings.get(field)
        if value is not None and value < 1:
            raise InvalidInput(f"{field} must be at least 1")


async def _slug_taken(session: AsyncSession, slug: str) -> bool:
    return await get_hoa_by_slug(session, slug) is not None


async def _unique_invitation_code(session: AsyncSession) -> str:
    for _ in range(INVITATION_CODE_ATTEMPTS):
        code = generate_invitation_code()
        result = await session.execute(select(HOA.id).where(HOA.invitation_code == code))
        if result.scalar_one_or_none() is None:
            return code
    raise Conflict("Could not generate a unique invitation code")


async def create_hoa(
    session: AsyncSession,
    actor: Dict,
    name: str,
    slug: Optional[str],
    admin_email: str,
    admin_name: str,
    admin_phone: str,
    total_courts: int = 1,
    admin_password: Optional[str] = None,
    court_names: Optional[List[str]] = None,
    **settings,
) -> Dict:
    """
    Create an HOA together with its first hoa_admin account.

    Args:
        session: Database session
        actor: Profile dict of the caller (must be a super admin)
        name: HOA display name
        slug: URL slug, unique across HOAs; derived from name when empty
        admin_email: Login email for the initial admin
        admin_name: Initial admin's full name
        admin_phone: Initial admin's phone number
        total_courts: Number of courts (1-20)
        admin_password: Initial password; a random one is set if omitted
            (the admin then uses password reset)
        court_names: Optional court names; defaults to "Court N"
        **settings: Any of HOA_SETTING_FIELDS

    Returns:
        Dict with "hoa" and "admin_user_id"

    Raises:
        Forbidden: If the actor cannot manage HOAs
        InvalidInput: On missing or malformed fields
        Conflict: If the slug or admin email is already taken
    """
    if not has_permission(actor, Permission.MANAGE_HOAS):
        raise Forbidden("Only super admins can create HOAs")

    if not name or not name.strip():
        raise InvalidInput("HOA name is required")
    name = format_hoa_display_name(name)
    slug = slug or generate_hoa_slug(name)
    if not admin_email or not admin_name or not admin_phone:
        raise InvalidInput("Admin name, email and phone are required")
    if not is_valid_hoa_slug(slug):
        raise InvalidInput(
            "Slug must be 3-50 characters and contain only lowercase letters, numbers and hyphens"
        )
    total_courts = _validate_total_courts(total_courts)
    if court_names is not None and len(court_names) != total_courts:
        raise InvalidInput("Provide one court name per court")

    unknown = set(settings) - set(HOA_SETTING_FIELDS)
    if unknown:
        raise InvalidInput(f"Unknown HOA settings: {', '.join(sorted(unknown))}")
    _validate_settings(settings)

    email = auth_service.normalize_email(admin_email)
    if not auth_service.validate_email(email):
        raise InvalidInput("Invalid admin email address")
    try:
        phone = normalize_phone_number(admin_phone)
    except ValueError as e:
        raise InvalidInput(str(e))
    if admin_password is not None:
        password_error = auth_service.validate_password(admin_password)
        if password_error:
            raise InvalidInput(password_error)

    if await _slug_taken(session, slug):
        raise Conflict("This slug is already taken")
    existing = await session.execute(select(User.id).where(User.email == email))
    if existing.scalar_one_or_none() is not None:
        raise Conflict("An account with this email already exists")

    hoa = HOA(
        name=name,
        slug=slug,
        invitation_code=await _unique_invitation_code(session),
        total_courts=total_courts,
        court_names=court_names or default_court_names(total_courts),
        is_active=True,
        created_by=actor.get("user_id"),
        **settings,
    )
    try:
        session.add(hoa)
        await session.flush()

        user = User(
            email=email,
            password_hash=auth_service.hash_password(admin_password or secrets.token_urlsafe(32)),
        )
        session.add(user)
        await session.flush()

        session.add(
            Profile(
                user_id=user.id,
                hoa_id=hoa.id,
                full_name=admin_name.strip(),
                phone_number=phone,
                role=UserRole.HOA_ADMIN,
                prime_hours=hoa.default_prime_hours,
                standard_hours=hoa.default_standard_hours,
                is_active=True,
            )
        )
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        logger.warning(f"Integrity error creating HOA {slug!r}: {e}")
        raise Conflict("An HOA with this slug or an account with this admin email already exists")
    except Exception as e:
        await session.rollback()
        logger.error(f"Failed to create HOA {slug!r}: {e}", exc_info=True)
        raise UpstreamFailure("Failed to create HOA")

    logger.info(f"Created HOA {hoa.id} ({slug}) with admin user {user.id}")
    return {"hoa": _hoa_to_dict(hoa), "admin_user_id": user.id}


async def get_hoa_model(session: AsyncSession, hoa_id: int) -> Optional[HOA]:
    result = await session.execute(select(HOA).where(HOA.id == hoa_id))
    return result.scalar_one_or_none()


async def get_hoa_by_id(session: AsyncSession, hoa_id: int) -> Optional[Dict]:
    hoa = await get_hoa_model(session, hoa_id)
    return _hoa_to_dict(hoa) if hoa else None


async def get_hoa_by_slug(session: AsyncSession, slug: str) -> Optional[Dict]:
    result = await session.execute(select(HOA).where(HOA.slug == slug))
    hoa = result.scalar_one_or_none()
    return _hoa_to_dict(hoa) if hoa else None


async def get_hoa_by_invitation_code(session: AsyncSession, code: str) -> Optional[HOA]:
    """Look up an HOA by invitation code (case-insensitive). Returns the ORM row."""
    if not code:
        return None
    result = await session.execute(
        select(HOA).where(HOA.invitation_code == code.strip().upper())
    )
    return result.scalar_one_or_none()


async def list_hoas(session: AsyncSession, actor: Dict) -> List[Dict]:
    """All HOAs for super admins; the actor's own HOA otherwise."""
    query = select(HOA).order_by(HOA.name)
    if not has_permission(actor, Permission.VIEW_ALL_HOAS):
        if not actor or actor.get("hoa_id") is None or not can_access_hoa(actor, actor["hoa_id"]):
            return []
        query = query.where(HOA.id == actor["hoa_id"])
    result = await session.execute(query)
    return [_hoa_to_dict(h) for h in result.scalars().all()]


async def update_hoa(session: AsyncSession, actor: Dict, hoa_id: int, updates: Dict) -> Dict:
    """
    Update HOA settings.

    Raises:
        NotFound: If the HOA does not exist
        Forbidden: If the actor cannot manage this HOA or touches a system-only field
        InvalidInput: On unknown or malformed fields
        Conflict: If a new slug is taken
    """
    hoa = await get_hoa_model(session, hoa_id)
    if hoa is None:
        raise NotFound("HOA not found")

    if not (
        has_permission(actor, Permission.MANAGE_HOAS)
        or (has_permission(actor, Permission.MANAGE_HOA_SETTINGS) and can_access_hoa(actor, hoa_id))
    ):
        raise Forbidden("You cannot manage this HOA")

    unknown = set(updates) - set(HOA_SETTING_FIELDS) - set(SYSTEM_ONLY_FIELDS)
    if unknown:
        raise InvalidInput(f"Unknown HOA fields: {', '.join(sorted(unknown))}")
    if any(f in updates for f in SYSTEM_ONLY_FIELDS) and not is_super_admin(actor):
        raise Forbidden("Only super admins can change the slug or active status")

    _validate_settings(updates)
    if "total_courts" in updates:
        _validate_total_courts(updates["total_courts"])
    if "slug" in updates and updates["slug"] != hoa.slug:
        if not is_valid_hoa_slug(updates["slug"]):
            raise InvalidInput(
                "Slug must be 3-50 characters and contain only lowercase letters, numbers and hyphens"
            )
        if await _slug_taken(session, updates["slug"]):
            raise Conflict("This slug is already taken")
    if "name" in updates and not (updates["name"] or "").strip():
        raise InvalidInput("HOA name is required")

    for field, value in updates.items():
        setattr(hoa, field, value)

    # Keep court names in step with the court count
    total = hoa.total_courts
    names = list(hoa.court_names or [])
    if "court_names" in updates and len(names) != total:
        raise InvalidInput("Provide one court name per court")
    if len(names) != total:
        hoa.court_names = (names + default_court_names(total)[len(names):])[:total]

    await session.commit()
    logger.info(f"Updated HOA {hoa_id}: {sorted(updates)}")
    return _hoa_to_dict(hoa)


async def regenerate_invitation_code(session: AsyncSession, actor: Dict, hoa_id: int) -> Dict:
    hoa = await get_hoa_model(session, hoa_id)
    if hoa is None:
        raise NotFound("HOA not found")
    if not (
        has_permission(actor, Permission.INVITE_MEMBERS) and can_access_hoa(actor, hoa_id)
    ):
        raise Forbidden("You cannot manage invitations for this HOA")

    hoa.invitation_code = await _unique_invitation_code(session)
    await session.commit()
    return _hoa_to_dict(hoa)


async def get_hoa_stats(session: AsyncSession, hoa_id: int) -> Dict:
    """Member and booking counts for one HOA."""
    member_rows = await session.execute(
        select(Profile.role, Profile.is_active, func.count())
        .where(Profile.hoa_id == hoa_id)
        .group_by(Profile.role, Profile.is_active)
    )
    total_members = active_members = admins = 0
    for role, is_active, count in member_rows.all():
        total_members += count
        if is_active:
            active_members += count
            if role in (UserRole.HOA_ADMIN, UserRole.SUPER_ADMIN):
                admins += count

    booking_rows = await session.execute(
        select(Booking.status, func.count()).where(Booking.hoa_id == hoa_id).group_by(Booking.status)
    )
    bookings_by_status = {s.value: 0 for s in BookingStatus}
    for status, count in booking_rows.all():
        bookings_by_status[BookingStatus(status).value] = count

    prime_result = await session.execute(
        select(func.count())
        .select_from(Booking)
        .where(Booking.hoa_id == hoa_id, Booking.is_prime_time == True)  # noqa: E712
    )

    return {
        "hoa_id": hoa_id,
        "total_members": total_members,
        "active_members": active_members,
        "admins": admins,
        "total_bookings": sum(bookings_by_status.values()),
        "bookings_by_status": bookings_by_status,
        "prime_time_bookings": prime_result.scalar_one() or 0,
    }


async def get_system_stats(session: AsyncSession) -> Dict:
    """System-wide counts for super admins."""
    hoa_total = (await session.execute(select(func.count()).select_from(HOA))).scalar_one()
    hoa_active = (
        await session.execute(
            select(func.count()).select_from(HOA).where(HOA.is_active == True)  # noqa: E712
        )
    ).scalar_one()
    user_total = (await session.execute(select(func.count()).select_from(User))).scalar_one()

    role_rows = await session.execute(select(Profile.role, func.count()).group_by(Profile.role))
    profiles_by_role = {r.value: 0 for r in UserRole}
    for role, count in role_rows.all():
        profiles_by_role[UserRole(role).value] = count

    booking_rows = await session.execute(select(Booking.status, func.count()).group_by(Booking.status))
    bookings_by_status = {s.value: 0 for s in BookingStatus}
    for status, count in booking_rows.all():
        bookings_by_status[BookingStatus(status).value] = count

    return {
        "total_hoas": hoa_total,
        "active_hoas": hoa_active,
        "total_users": user_total,
        "profiles_by_role": profiles_by_role,
        "total_bookings": sum(bookings_by_status.values()),
        "bookings_by_status": bookings_by_status,
    }
