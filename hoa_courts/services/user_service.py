"""
User service layer: accounts, HOA profiles and admin member management.

Admin operations take the acting profile dict and check it against the
permission rules before touching anything.
"""

import logging
import math
import secrets
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hoa_courts.database.models import (
    User,
    Profile,
    HOA,
    Booking,
    BookingParticipant,
    BookingStatus,
    ParticipantStatus,
    UserRole,
)
from hoa_courts.services import auth_service
from hoa_courts.services.exceptions import (
    AppError,
    Conflict,
    Forbidden,
    InvalidInput,
    NotFound,
    UpstreamFailure,
)
from hoa_courts.services.permissions import (
    Permission,
    has_permission,
    can_manage_user,
    can_access_hoa,
    can_assign_role,
    is_super_admin,
    get_role_display_name,
    get_role_description,
)
from hoa_courts.utils.datetime_utils import utcnow, isoformat_or_none
from hoa_courts.utils.phone import normalize_phone_number
from hoa_courts.utils.time_utils import get_next_reset_date

logger = logging.getLogger(__name__)

PHONE_TAKEN_MESSAGE = "This phone number is already registered in this HOA"
EMAIL_TAKEN_MESSAGE = "An account with this email already exists"

# Fields admins may edit through admin_update_user
ADMIN_EDITABLE_FIELDS = (
    "full_name",
    "phone_number",
    "household_id",
    "role",
    "prime_hours",
    "standard_hours",
    "is_active",
)

BULK_ACTIONS = ("activate", "deactivate", "update_role", "reset_hours")

MAX_PAGE_SIZE = 100


def _user_to_dict(user: User) -> Dict:
    """
    Convert a User ORM instance to a dictionary.

    Args:
        user: User ORM instance

    Returns:
        User dictionary (without the password hash)
    """
    return {
        "id": user.id,
        "email": user.email,
        "created_at": isoformat_or_none(user.created_at),
        "updated_at": isoformat_or_none(user.updated_at),
    }


def _profile_to_dict(profile: Profile, email: Optional[str] = None) -> Dict:
    """Profile dict in the shape the permission rules expect."""
    data = {
        "id": profile.id,
        "user_id": profile.user_id,
        "hoa_id": profile.hoa_id,
        "full_name": profile.full_name,
        "phone_number": profile.phone_number,
        "household_id": profile.household_id,
        "role": UserRole(profile.role).value,
        "prime_hours": profile.prime_hours,
        "standard_hours": profile.standard_hours,
        "last_reset": isoformat_or_none(profile.last_reset),
        "is_active": profile.is_active,
        "created_at": isoformat_or_none(profile.created_at),
        "updated_at": isoformat_or_none(profile.updated_at),
    }
    if email is not None:
        data["email"] = email
    return data


def describe_profile(profile: Dict, now: Optional[datetime] = None) -> Dict:
    """Profile dict plus the role labels and the next quota reset, for display."""
    now = now or utcnow()
    return {
        **profile,
        "role_display_name": get_role_display_name(profile.get("role")),
        "role_description": get_role_description(profile.get("role")),
        "next_reset": get_next_reset_date(now).isoformat(),
    }


def _require(actor: Optional[Dict], permission: Permission, message: Optional[str] = None) -> None:
    if not has_permission(actor, permission):
        raise Forbidden(message or "Insufficient permissions")


def _normalize_phone(phone_number: str) -> str:
    try:
        return normalize_phone_number(phone_number)
    except ValueError as e:
        raise InvalidInput(str(e))


def _parse_role(role: Any) -> UserRole:
    try:
        return UserRole(role)
    except ValueError:
        raise InvalidInput(f"Invalid role: {role}")


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def get_user_by_id(session: AsyncSession, user_id: int) -> Optional[Dict]:
    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    return _user_to_dict(user) if user else None


async def get_user_by_email(session: AsyncSession, email: str) -> Optional[Dict]:
    result = await session.execute(
        select(User).where(User.email == auth_service.normalize_email(email))
    )
    user = result.scalar_one_or_none()
    return _user_to_dict(user) if user else None


async def authenticate_user(session: AsyncSession, email: str, password: str) -> Optional[Dict]:
    """
    Check login credentials.

    Returns:
        User dict if the email exists and the password matches, else None
    """
    result = await session.execute(
        select(User).where(User.email == auth_service.normalize_email(email))
    )
    user = result.scalar_one_or_none()
    if user is None or not auth_service.verify_password(password, user.password_hash):
        return None
    return _user_to_dict(user)


async def _get_profile_model(session: AsyncSession, user_id: int) -> Optional[Profile]:
    result = await session.execute(select(Profile).where(Profile.user_id == user_id))
    return result.scalar_one_or_none()


async def get_profile_by_user_id(session: AsyncSession, user_id: int) -> Optional[Dict]:
    profile = await _get_profile_model(session, user_id)
    return _profile_to_dict(profile) if profile else None


async def get_active_profiles(
    session: AsyncSession, user_ids: List[int]
) -> Dict[int, Dict]:
    """Active profiles for the given users, keyed by user_id."""
    if not user_ids:
        return {}
    result = await session.execute(
        select(Profile).where(Profile.user_id.in_(user_ids), Profile.is_active == True)  # noqa: E712
    )
    return {p.user_id: _profile_to_dict(p) for p in result.scalars().all()}


async def _phone_taken(
    session: AsyncSession, hoa_id: int, phone_number: str, exclude_user_id: Optional[int] = None
) -> bool:
    query = select(Profile.id).where(Profile.hoa_id == hoa_id, Profile.phone_number == phone_number)
    if exclude_user_id is not None:
        query = query.where(Profile.user_id != exclude_user_id)
    result = await session.execute(query)
    return result.first() is not None


async def _email_taken(session: AsyncSession, email: str) -> bool:
    result = await session.execute(select(User.id).where(User.email == email))
    return result.scalar_one_or_none() is not None


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


async def _create_account(
    session: AsyncSession,
    hoa: HOA,
    email: str,
    password: str,
    full_name: str,
    phone_number: str,
    household_id: Optional[str],
    role: UserRole,
) -> Dict:
    """Create a User and its Profile in one transaction."""
    email = auth_service.normalize_email(email)
    if not auth_service.validate_email(email):
        raise InvalidInput("Invalid email address")
    if not full_name or not full_name.strip():
        raise InvalidInput("Full name is required")
    password_error = auth_service.validate_password(password)
    if password_error:
        raise InvalidInput(password_error)
    phone = _normalize_phone(phone_number)

    if await _email_taken(session, email):
        raise Conflict(EMAIL_TAKEN_MESSAGE)
    if await _phone_taken(session, hoa.id, phone):
        raise Conflict(PHONE_TAKEN_MESSAGE)

    try:
        user = User(email=email, password_hash=auth_service.hash_password(password))
        session.add(user)
        await session.flush()

        profile = Profile(
            user_id=user.id,
            hoa_id=hoa.id,
            full_name=full_name.strip(),
            phone_number=phone,
            household_id=household_id.strip() if household_id else None,
            role=role,
            prime_hours=hoa.default_prime_hours,
            standard_hours=hoa.default_standard_hours,
            last_reset=utcnow(),
            is_active=True,
        )
        session.add(profile)
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        logger.warning(f"Integrity error creating account in HOA {hoa.id}: {e}")
        if "phone" in str(e.orig).lower():
            raise Conflict(PHONE_TAKEN_MESSAGE)
        raise Conflict(EMAIL_TAKEN_MESSAGE)

    logger.info(f"Created user {user.id} ({role.value}) in HOA {hoa.id}")
    return _profile_to_dict(profile, email=user.email)


async def register_user(
    session: AsyncSession,
    email: str,
    password: str,
    full_name: str,
    phone_number: str,
    invitation_code: str,
    household_id: Optional[str] = None,
) -> Dict:
    """
    Self-registration into the HOA identified by an invitation code.

    Returns:
        The new member's profile dict (including email)

    Raises:
        NotFound: If the invitation code is unknown
        InvalidInput: If the HOA is inactive or a field is invalid
        Conflict: If the email is registered, or the phone is already used in this HOA
    """
    from hoa_courts.services.hoa_service import get_hoa_by_invitation_code

    hoa = await get_hoa_by_invitation_code(session, invitation_code)
    if hoa is None:
        raise NotFound("Invalid invitation code")
    if not hoa.is_active:
        raise InvalidInput("This HOA is not accepting new registrations")

    return await _create_account(
        session,
        hoa,
        email=email,
        password=password,
        full_name=full_name,
        phone_number=phone_number,
        household_id=household_id,
        role=UserRole.MEMBER,
    )


# ---------------------------------------------------------------------------
# Self-service
# ---------------------------------------------------------------------------


async def update_own_profile(
    session: AsyncSession,
    user_id: int,
    full_name: Optional[str] = None,
    phone_number: Optional[str] = None,
    household_id: Optional[str] = None,
) -> Dict:
    """
    Update the caller's own name, phone and household.

    Raises:
        NotFound: If the user has no profile
        Forbidden: If the profile is deactivated
        InvalidInput / Conflict: On invalid or duplicate phone
    """
    profile = await _get_profile_model(session, user_id)
    if profile is None:
        raise NotFound("Profile not found")
    _require(_profile_to_dict(profile), Permission.MANAGE_OWN_PROFILE, "Account is deactivated")

    if full_name is not None:
        if not full_name.strip():
            raise InvalidInput("Full name is required")
        profile.full_name = full_name.strip()
    if phone_number is not None:
        phone = _normalize_phone(phone_number)
        if await _phone_taken(session, profile.hoa_id, phone, exclude_user_id=user_id):
            raise Conflict(PHONE_TAKEN_MESSAGE)
        profile.phone_number = phone
    if household_id is not None:
        if not household_id.strip():
            raise InvalidInput("Household ID is required")
        profile.household_id = household_id.strip()

    await session.commit()
    return _profile_to_dict(profile)


async def change_password(
    session: AsyncSession, user_id: int, current_password: str, new_password: str
) -> bool:
    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound("User not found")
    if not auth_service.verify_password(current_password, user.password_hash):
        raise InvalidInput("Current password is incorrect")
    password_error = auth_service.validate_password(new_password)
    if password_error:
        raise InvalidInput(password_error)

    user.password_hash = auth_service.hash_password(new_password)
    await session.commit()
    logger.info(f"Password changed for user {user_id}")
    return True


async def update_user_password(session: AsyncSession, user_id: int, password_hash: str) -> bool:
    result = await session.execute(
        update(User).where(User.id == user_id).values(password_hash=password_hash, updated_at=utcnow())
    )
    await session.commit()
    return (result.rowcount or 0) > 0


# ---------------------------------------------------------------------------
# Admin member management
# ---------------------------------------------------------------------------


async def _get_target(session: AsyncSession, user_id: int) -> Profile:
    profile = await _get_profile_model(session, user_id)
    if profile is None:
        raise NotFound("User not found")
    return profile


def _require_manageable(actor: Dict, target: Profile) -> None:
    if not can_manage_user(actor, _profile_to_dict(target)):
        raise Forbidden("You cannot manage this user")


async def list_profiles(
    session: AsyncSession,
    actor: Dict,
    search: Optional[str] = None,
    role: Optional[str] = None,
    status: Optional[str] = None,
    hoa_id: Optional[int] = None,
    page: int = 1,
    limit: int = 20,
) -> Dict:
    """
    Paginated member listing, scoped to the actor's HOA unless they are a super admin.

    Args:
        search: Matches name, phone, household or email
        role: Filter by role value
        status: "active" or "inactive"
        hoa_id: HOA filter (super admins only for other HOAs)

    Returns:
        {"users": [...], "pagination": {"page", "limit", "total", "total_pages"}}
    """
    _require(actor, Permission.VIEW_HOA_MEMBERS)

    if is_super_admin(actor):
        scope_hoa = hoa_id
    else:
        if hoa_id is not None and not can_access_hoa(actor, hoa_id):
            raise Forbidden("You cannot view members of this HOA")
        scope_hoa = actor["hoa_id"]

    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)

    query = select(Profile, User.email).join(User, User.id == Profile.user_id)
    if scope_hoa is not None:
        query = query.where(Profile.hoa_id == scope_hoa)
    if role:
        query = query.where(Profile.role == _parse_role(role))
    if status == "active":
        query = query.where(Profile.is_active == True)  # noqa: E712
    elif status == "inactive":
        query = query.where(Profile.is_active == False)  # noqa: E712
    elif status not in (None, "", "all"):
        raise InvalidInput(f"Invalid status filter: {status}")
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(
            or_(
                Profile.full_name.ilike(pattern),
                Profile.phone_number.ilike(pattern),
                Profile.household_id.ilike(pattern),
                User.email.ilike(pattern),
            )
        )

    total = (await session.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
    result = await session.execute(
        query.order_by(Profile.full_name, Profile.id).limit(limit).offset((page - 1) * limit)
    )
    users = [_profile_to_dict(profile, email=email) for profile, email in result.all()]

    return {
        "users": users,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": math.ceil(total / limit) if total else 0,
        },
    }


async def get_profile_details(session: AsyncSession, actor: Dict, user_id: int) -> Dict:
    """Profile plus booking activity stats."""
    _require(actor, Permission.VIEW_MEMBER_DETAILS)
    target = await _get_target(session, user_id)
    _require_manageable(actor, target)

    email_result = await session.execute(select(User.email).where(User.id == user_id))
    organized_rows = await session.execute(
        select(Booking.status, func.count())
        .where(Booking.organizer_id == user_id)
        .group_by(Booking.status)
    )
    organized = {s.value: 0 for s in BookingStatus}
    for status, count in organized_rows.all():
        organized[BookingStatus(status).value] = count

    participation_rows = await session.execute(
        select(BookingParticipant.status, func.count())
        .where(BookingParticipant.user_id == user_id)
        .group_by(BookingParticipant.status)
    )
    participations = {s.value: 0 for s in ParticipantStatus}
    for status, count in participation_rows.all():
        participations[ParticipantStatus(status).value] = count

    details = _profile_to_dict(target, email=email_result.scalar_one_or_none())
    details["stats"] = {
        "bookings_organized": sum(organized.values()),
        "bookings_by_status": organized,
        "participations_by_status": participations,
    }
    return details


async def admin_create_user(
    session: AsyncSession,
    actor: Dict,
    email: str,
    full_name: str,
    phone_number: str,
    password: Optional[str] = None,
    household_id: Optional[str] = None,
    role: str = UserRole.MEMBER.value,
    hoa_id: Optional[int] = None,
) -> Dict:
    """
    Create a member account on behalf of an HOA.

    HOA admins create users in their own HOA; super admins may target any HOA.
    Without a password, a random one is set and the user resets it by email.

    Raises:
        Forbidden: If the actor cannot invite members to the target HOA
        InvalidInput: If the role is not assignable by the actor
        NotFound: If the target HOA does not exist
    """
    _require(actor, Permission.INVITE_MEMBERS)
    target_hoa_id = hoa_id if hoa_id is not None else actor.get("hoa_id")
    if not can_access_hoa(actor, target_hoa_id):
        raise Forbidden("You cannot add users to this HOA")

    new_role = _parse_role(role)
    if not can_assign_role(actor, new_role):
        raise InvalidInput(f"You cannot assign the role {new_role.value}")

    result = await session.execute(select(HOA).where(HOA.id == target_hoa_id))
    hoa = result.scalar_one_or_none()
    if hoa is None:
        raise NotFound("HOA not found")

    return await _create_account(
        session,
        hoa,
        email=email,
        password=password or secrets.token_urlsafe(16),
        full_name=full_name,
        phone_number=phone_number,
        household_id=household_id,
        role=new_role,
    )


def _check_deactivation(actor: Dict, target: Profile) -> None:
    if UserRole(target.role) == UserRole.SUPER_ADMIN and not is_super_admin(actor):
        raise Forbidden("Only super admins can deactivate super admins")
    if target.user_id == actor.get("user_id"):
        raise InvalidInput("You cannot deactivate your own account")


async def _cancel_pending_bookings(session: AsyncSession, organizer_id: int) -> int:
    """Cancel the pending bookings a user organized; the caller commits."""
    result = await session.execute(
        update(Booking)
        .where(Booking.organizer_id == organizer_id, Booking.status == BookingStatus.PENDING)
        .values(status=BookingStatus.CANCELLED, updated_at=utcnow())
    )
    return result.rowcount or 0


async def admin_update_user(
    session: AsyncSession, actor: Dict, user_id: int, updates: Dict
) -> Dict:
    """
    Apply whitelisted profile edits.

    Role changes need assign_user_roles and a role the actor may assign;
    quota edits need manage_hoa_hours; activation changes need deactivate_members.
    """
    _require(actor, Permission.MANAGE_HOA_USERS)
    target = await _get_target(session, user_id)
    _require_manageable(actor, target)

    unknown = set(updates) - set(ADMIN_EDITABLE_FIELDS)
    if unknown:
        raise InvalidInput(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
    if not updates:
        raise InvalidInput("No fields to update")

    if "role" in updates:
        _require(actor, Permission.ASSIGN_USER_ROLES)
        new_role = _parse_role(updates["role"])
        if not can_assign_role(actor, new_role):
            raise InvalidInput(f"You cannot assign the role {new_role.value}")
        target.role = new_role

    for field in ("prime_hours", "standard_hours"):
        if field in updates:
            _require(actor, Permission.MANAGE_HOA_HOURS)
            value = updates[field]
            if value is None or value < 0:
                raise InvalidInput(f"{field} must be zero or more")
            setattr(target, field, value)

    cancelled = 0
    if "is_active" in updates:
        _require(actor, Permission.DEACTIVATE_MEMBERS)
        if updates["is_active"]:
            target.is_active = True
        elif target.is_active:
            _check_deactivation(actor, target)
            target.is_active = False
            cancelled = await _cancel_pending_bookings(session, user_id)

    if "full_name" in updates:
        if not (updates["full_name"] or "").strip():
            raise InvalidInput("Full name is required")
        target.full_name = updates["full_name"].strip()

    if "phone_number" in updates:
        phone = _normalize_phone(updates["phone_number"])
        if await _phone_taken(session, target.hoa_id, phone, exclude_user_id=user_id):
            raise Conflict(PHONE_TAKEN_MESSAGE)
        target.phone_number = phone

    if "household_id" in updates:
        target.household_id = (updates["household_id"] or "").strip() or None

    await session.commit()
    logger.info(f"User {actor.get('user_id')} updated user {user_id}: {sorted(updates)}")
    if cancelled:
        logger.info(f"Cancelled {cancelled} pending booking(s) organized by user {user_id}")
    return _profile_to_dict(target)


async def deactivate_user(session: AsyncSession, actor: Dict, user_id: int) -> Dict:
    """
    Soft-deactivate a member and cancel the pending bookings they organized.

    Returns:
        {"user": profile dict, "cancelled_bookings": count}

    Raises:
        Forbidden: If the actor lacks deactivate_members or cannot manage the target
            (only super admins may deactivate super admins)
        InvalidInput: If the actor targets themself
    """
    _require(actor, Permission.DEACTIVATE_MEMBERS)
    target = await _get_target(session, user_id)
    _check_deactivation(actor, target)
    _require_manageable(actor, target)

    target.is_active = False
    cancelled = await _cancel_pending_bookings(session, user_id)
    await session.commit()

    logger.info(
        f"User {actor.get('user_id')} deactivated user {user_id}; "
        f"cancelled {cancelled} pending booking(s)"
    )
    return {"user": _profile_to_dict(target), "cancelled_bookings": cancelled}


async def reactivate_user(session: AsyncSession, actor: Dict, user_id: int) -> Dict:
    _require(actor, Permission.DEACTIVATE_MEMBERS)
    target = await _get_target(session, user_id)
    _require_manageable(actor, target)

    target.is_active = True
    await session.commit()
    logger.info(f"User {actor.get('user_id')} reactivated user {user_id}")
    return _profile_to_dict(target)


async def reset_user_hours(session: AsyncSession, actor: Dict, user_id: int) -> Dict:
    """Restore a member's quotas to their HOA's defaults."""
    _require(actor, Permission.RESET_USER_HOURS)
    target = await _get_target(session, user_id)
    _require_manageable(actor, target)

    hoa = (await session.execute(select(HOA).where(HOA.id == target.hoa_id))).scalar_one()
    target.prime_hours = hoa.default_prime_hours
    target.standard_hours = hoa.default_standard_hours
    target.last_reset = utcnow()
    await session.commit()
    return _profile_to_dict(target)


async def reset_all_hours(session: AsyncSession, actor: Dict, hoa_id: int) -> int:
    """Reset every active member of an HOA to the default quotas; returns the count."""
    _require(actor, Permission.RESET_USER_HOURS)
    if not can_access_hoa(actor, hoa_id):
        raise Forbidden("You cannot manage this HOA")

    hoa = (await session.execute(select(HOA).where(HOA.id == hoa_id))).scalar_one_or_none()
    if hoa is None:
        raise NotFound("HOA not found")

    result = await session.execute(
        update(Profile)
        .where(Profile.hoa_id == hoa_id, Profile.is_active == True)  # noqa: E712
        .values(
            prime_hours=hoa.default_prime_hours,
            standard_hours=hoa.default_standard_hours,
            last_reset=utcnow(),
        )
    )
    await session.commit()
    count = result.rowcount or 0
    logger.info(f"Reset hours for {count} member(s) of HOA {hoa_id}")
    return count


async def bulk_update_users(
    session: AsyncSession,
    actor: Dict,
    user_ids: List[int],
    action: str,
    data: Optional[Dict] = None,
) -> List[Dict]:
    """
    Apply one action to several users, reporting the outcome per user.

    Args:
        action: "activate", "deactivate", "update_role" or "reset_hours"
        data: {"role": ...} for update_role

    Returns:
        List of {"user_id", "success", "error"} in input order
    """
    if action not in BULK_ACTIONS:
        raise InvalidInput(f"Invalid action: {action}")
    if not user_ids:
        raise InvalidInput("No users selected")
    if action == "update_role" and not (data or {}).get("role"):
        raise InvalidInput("Role is required for update_role")

    results = []
    for user_id in user_ids:
        try:
            if action == "activate":
                await reactivate_user(session, actor, user_id)
            elif action == "deactivate":
                await deactivate_user(session, actor, user_id)
            elif action == "update_role":
                await admin_update_user(session, actor, user_id, {"role": data["role"]})
            else:
                await reset_user_hours(session, actor, user_id)
            results.append({"user_id": user_id, "success": True, "error": None})
        except AppError as e:
            await session.rollback()
            results.append({"user_id": user_id, "success": False, "error": e.detail})
        except Exception as e:
            await session.rollback()
            logger.error(f"Bulk {action} failed for user {user_id}: {e}", exc_info=True)
            results.append(
                {"user_id": user_id, "success": False, "error": UpstreamFailure.default_detail}
            )
    return results
