"""
Booking lifecycle: group booking creation, participant responses, status
transitions and expiry of stale pending bookings.

A booking starts ``pending`` and moves once to ``confirmed`` or
``cancelled``. Pending bookings expire 30 minutes after creation and are
removed by the cleanup worker.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import select, delete, or_
from sqlalchemy.ext.asyncio import AsyncSession

from hoa_courts.database.models import (
    Booking,
    BookingParticipant,
    BookingStatus,
    HOA,
    ParticipantStatus,
)
from hoa_courts.services import notification_service, user_service
from hoa_courts.services.exceptions import (
    AppError,
    Forbidden,
    InvalidInput,
    InvalidTimeRange,
    NotFound,
    UpstreamFailure,
)
from hoa_courts.services.permissions import Permission, has_permission, can_access_hoa
from hoa_courts.utils.datetime_utils import utcnow, ensure_utc, localize, isoformat_or_none
from hoa_courts.utils.time_utils import (
    PrimeTimeWindow,
    calculate_expiration_time,
    format_time_range,
    is_booking_expired,
    is_last_minute_booking,
    is_prime_time,
)

logger = logging.getLogger(__name__)

# Status transitions out of pending; confirmed and cancelled are terminal
ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING: (BookingStatus.CONFIRMED, BookingStatus.CANCELLED),
    BookingStatus.CONFIRMED: (),
    BookingStatus.CANCELLED: (),
}

PARTICIPANT_RESPONSES = (ParticipantStatus.ACCEPTED, ParticipantStatus.DECLINED)

# Reminder lead times, nearest first
REMINDER_LEADS = (
    ("2h", timedelta(hours=2)),
    ("24h", timedelta(hours=24)),
    ("48h", timedelta(hours=48)),
)


def _participant_to_dict(participant: BookingParticipant) -> Dict:
    return {
        "id": participant.id,
        "booking_id": participant.booking_id,
        "user_id": participant.user_id,
        "status": ParticipantStatus(participant.status).value,
        "hours_charged": participant.hours_charged,
        "responded_at": isoformat_or_none(participant.responded_at),
        "created_at": isoformat_or_none(participant.created_at),
    }


def _booking_to_dict(booking: Booking, participants: Optional[List[BookingParticipant]] = None) -> Dict:
    data = {
        "id": booking.id,
        "hoa_id": booking.hoa_id,
        "organizer_id": booking.organizer_id,
        "start_time": isoformat_or_none(ensure_utc(booking.start_time)),
        "end_time": isoformat_or_none(ensure_utc(booking.end_time)),
        "courts": list(booking.courts or []),
        "status": BookingStatus(booking.status).value,
        "total_players": booking.total_players,
        "guest_count": booking.guest_count,
        "min_members": booking.min_members,
        "is_prime_time": booking.is_prime_time,
        "expires_at": isoformat_or_none(ensure_utc(booking.expires_at)),
        "created_at": isoformat_or_none(ensure_utc(booking.created_at)),
        "updated_at": isoformat_or_none(ensure_utc(booking.updated_at)),
    }
    if participants is not None:
        data["participants"] = [_participant_to_dict(p) for p in participants]
    return data


async def _get_participants(session: AsyncSession, booking_id: int) -> List[BookingParticipant]:
    result = await session.execute(
        select(BookingParticipant)
        .where(BookingParticipant.booking_id == booking_id)
        .order_by(BookingParticipant.id)
    )
    return list(result.scalars().all())


async def _get_booking_model(session: AsyncSession, booking_id: int) -> Booking:
    result = await session.execute(select(Booking).where(Booking.id == booking_id))
    booking = result.scalar_one_or_none()
    if booking is None:
        raise NotFound("Booking not found")
    return booking


def _validate_booking_request(
    hoa: HOA,
    organizer_id: int,
    start_time: datetime,
    end_time: datetime,
    courts: List[int],
    total_players: int,
    guest_count: int,
    min_members: int,
    invited_user_ids: List[int],
    now: datetime,
) -> None:
    if not start_time < end_time:
        raise InvalidTimeRange()
    if not courts:
        raise InvalidInput("At least one court is required")
    if len(set(courts)) != len(courts):
        raise InvalidInput("Courts must not repeat")
    for court in courts:
        if not isinstance(court, int) or isinstance(court, bool) or not 1 <= court <= hoa.total_courts:
            raise InvalidInput(f"Court {court} does not exist")
    if min_members < 1:
        raise InvalidInput("Minimum members must be at least 1")
    if total_players < min_members:
        raise InvalidInput("Total players must be at least the minimum members")
    if organizer_id in invited_user_ids:
        raise InvalidInput("The organizer is added automatically and cannot be invited")
    if len(set(invited_user_ids)) != len(invited_user_ids):
        raise InvalidInput("Each player can only be invited once")
    if guest_count < 0:
        raise InvalidInput("Guest count cannot be negative")
    if guest_count > 0:
        if not hoa.allow_guest_bookings:
            raise InvalidInput("This HOA does not allow guests")
        if guest_count > hoa.max_guests_per_booking:
            raise InvalidInput(f"At most {hoa.max_guests_per_booking} guests are allowed per booking")
    if start_time < now:
        raise InvalidInput("Bookings cannot start in the past")
    if start_time > now + timedelta(days=hoa.max_advance_booking_days):
        raise InvalidInput(
            f"Bookings can be made at most {hoa.max_advance_booking_days} days in advance"
        )


async def create_group_booking(
    session: AsyncSession,
    organizer_id: int,
    start_time: datetime,
    end_time: datetime,
    courts: List[int],
    total_players: int,
    guest_count: int,
    min_members: int,
    invited_user_ids: List[int],
    now: Optional[datetime] = None,
) -> Dict:
    """
    Create a pending booking with its organizer and invitees.

    The booking row and every participant row are written in one transaction.
    Invitations are sent after the commit; delivery failures are logged and
    never undo the booking.

    Args:
        session: Database session
        organizer_id: User id of the organizer
        start_time: Start; naive values are read in the HOA's timezone
        end_time: End; naive values are read in the HOA's timezone
        courts: Court numbers (1-based)
        total_players: Expected players including guests
        guest_count: Non-member guests
        min_members: Accepted members needed to confirm
        invited_user_ids: Members to invite (excluding the organizer)
        now: Creation time; defaults to the current UTC time

    Returns:
        Booking dict including its participants

    Raises:
        NotFound: If the organizer has no profile
        Forbidden: If the organizer may not create bookings
        InvalidTimeRange: If start_time is not before end_time
        InvalidInput: On any other invalid field or invitee
        UpstreamFailure: If the store write fails
    """
    now = ensure_utc(now) if now else utcnow()
    invited_user_ids = list(invited_user_ids or [])
    courts = list(courts or [])

    organizer = await user_service.get_profile_by_user_id(session, organizer_id)
    if organizer is None:
        raise NotFound("Organizer profile not found")
    if not has_permission(organizer, Permission.CREATE_BOOKINGS):
        raise Forbidden("You cannot create bookings")

    hoa = (await session.execute(select(HOA).where(HOA.id == organizer["hoa_id"]))).scalar_one()
    if not hoa.is_active:
        raise Forbidden("This HOA is not active")

    try:
        start_utc = ensure_utc(localize(start_time, hoa.timezone))
        end_utc = ensure_utc(localize(end_time, hoa.timezone))
    except ValueError as e:
        raise InvalidInput(str(e))

    _validate_booking_request(
        hoa,
        organizer_id,
        start_utc,
        end_utc,
        courts,
        total_players,
        guest_count,
        min_members,
        invited_user_ids,
        now,
    )

    invitees = await user_service.get_active_profiles(session, invited_user_ids)
    for user_id in invited_user_ids:
        invitee = invitees.get(user_id)
        if invitee is None or invitee["hoa_id"] != hoa.id:
            raise InvalidInput(f"User {user_id} is not an active member of this HOA")

    booking = Booking(
        hoa_id=hoa.id,
        organizer_id=organizer_id,
        start_time=start_utc,
        end_time=end_utc,
        courts=courts,
        status=BookingStatus.PENDING,
        total_players=total_players,
        guest_count=guest_count,
        min_members=min_members,
        is_prime_time=is_prime_time(start_utc, PrimeTimeWindow.from_hoa(hoa), tz=hoa.timezone),
        expires_at=calculate_expiration_time(now),
        created_at=now,
    )

    try:
        session.add(booking)
        await session.flush()

        participants = [
            BookingParticipant(
                booking_id=booking.id,
                user_id=organizer_id,
                status=ParticipantStatus.ACCEPTED,
                hours_charged=None,
                responded_at=now,
                created_at=now,
            )
        ]
        participants.extend(
            BookingParticipant(
                booking_id=booking.id,
                user_id=user_id,
                status=ParticipantStatus.INVITED,
                hours_charged=None,
                responded_at=None,
                created_at=now,
            )
            for user_id in invited_user_ids
        )
        session.add_all(participants)
        await session.commit()
    except Exception as e:
        await session.rollback()
        logger.error(f"Failed to create booking for organizer {organizer_id}: {e}", exc_info=True)
        raise UpstreamFailure("Failed to save booking")

    booking_dict = _booking_to_dict(booking, participants)
    logger.info(
        f"Created booking {booking.id} in HOA {hoa.id} "
        f"(courts {courts}, prime_time={booking.is_prime_time}, {len(invited_user_ids)} invitee(s))"
    )

    if invited_user_ids:
        await notification_service.send_booking_invitation(
            booking_dict, organizer["full_name"], invited_user_ids
        )

    return booking_dict


async def get_booking(session: AsyncSession, booking_id: int) -> Dict:
    """
    Fetch a booking with its participants.

    Raises:
        NotFound: If the booking does not exist
    """
    booking = await _get_booking_model(session, booking_id)
    return _booking_to_dict(booking, await _get_participants(session, booking_id))


async def get_booking_for_actor(session: AsyncSession, actor: Dict, booking_id: int) -> Dict:
    """Booking visible to its organizer, its participants and HOA admins."""
    booking = await get_booking(session, booking_id)
    user_id = actor.get("user_id") if actor else None
    involved = booking["organizer_id"] == user_id or any(
        p["user_id"] == user_id for p in booking["participants"]
    )
    if involved and has_permission(actor, Permission.MANAGE_OWN_BOOKINGS):
        return booking
    if has_permission(actor, Permission.VIEW_ALL_BOOKINGS) and can_access_hoa(actor, booking["hoa_id"]):
        return booking
    raise Forbidden("You cannot view this booking")


async def get_bookings_for_user(
    session: AsyncSession, user_id: int, status: Optional[str] = None, limit: int = 10
) -> List[Dict]:
    """Bookings the user organizes or is invited to, newest first."""
    participant_ids = select(BookingParticipant.booking_id).where(BookingParticipant.user_id == user_id)
    query = select(Booking).where(
        or_(Booking.organizer_id == user_id, Booking.id.in_(participant_ids))
    )
    if status and status != "all":
        try:
            query = query.where(Booking.status == BookingStatus(status))
        except ValueError:
            raise InvalidInput(f"Invalid status: {status}")
    query = query.order_by(Booking.created_at.desc(), Booking.id.desc()).limit(limit)

    result = await session.execute(query)
    bookings = result.scalars().all()
    return [_booking_to_dict(b, await _get_participants(session, b.id)) for b in bookings]


async def list_hoa_bookings(
    session: AsyncSession,
    actor: Dict,
    hoa_id: int,
    status: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[Dict]:
    """All bookings of an HOA, optionally filtered by status and start-time range."""
    if not (has_permission(actor, Permission.VIEW_ALL_BOOKINGS) and can_access_hoa(actor, hoa_id)):
        raise Forbidden("You cannot view bookings for this HOA")

    query = select(Booking).where(Booking.hoa_id == hoa_id)
    if status:
        try:
            query = query.where(Booking.status == BookingStatus(status))
        except ValueError:
            raise InvalidInput(f"Invalid status: {status}")
    if start is not None:
        query = query.where(Booking.start_time >= ensure_utc(start))
    if end is not None:
        query = query.where(Booking.start_time < ensure_utc(end))

    result = await session.execute(query.order_by(Booking.start_time, Booking.id))
    return [_booking_to_dict(b) for b in result.scalars().all()]


async def update_participant_status(
    session: AsyncSession,
    participant_id: int,
    status: str,
    hours_charged: Optional[float] = None,
    actor: Optional[Dict] = None,
    now: Optional[datetime] = None,
) -> Dict:
    """
    Record an invitee's response, or the hours charged once confirmed.

    Allowed moves are invited -> accepted and invited -> declined, while the
    booking is pending and not yet expired; repeating the current status is a
    no-op. hours_charged may only be set on an accepted participant of a
    confirmed booking.

    Args:
        actor: When given, must be the participant or an admin of the booking's HOA

    Raises:
        NotFound: If the participant does not exist
        Forbidden: If the actor may not update this participant
        InvalidInput: On a disallowed transition or hours_charged misuse
    """
    now = ensure_utc(now) if now else utcnow()
    result = await session.execute(
        select(BookingParticipant).where(BookingParticipant.id == participant_id)
    )
    participant = result.scalar_one_or_none()
    if participant is None:
        raise NotFound("Participant not found")
    booking = await _get_booking_model(session, participant.booking_id)

    if actor is not None:
        is_self = actor.get("user_id") == participant.user_id and has_permission(
            actor, Permission.MANAGE_OWN_BOOKINGS
        )
        is_admin = has_permission(actor, Permission.MANAGE_ALL_BOOKINGS) and can_access_hoa(
            actor, booking.hoa_id
        )
        if not (is_self or is_admin):
            raise Forbidden("You cannot update this participant")

    try:
        new_status = ParticipantStatus(status)
    except ValueError:
        raise InvalidInput(f"Invalid participant status: {status}")

    current = ParticipantStatus(participant.status)
    if new_status != current:
        if current != ParticipantStatus.INVITED or new_status not in PARTICIPANT_RESPONSES:
            raise InvalidInput(f"Cannot change participant status from {current.value} to {new_status.value}")
        if BookingStatus(booking.status) != BookingStatus.PENDING:
            raise InvalidInput("This booking is no longer accepting responses")
        if is_booking_expired(ensure_utc(booking.expires_at), now):
            raise InvalidInput("This booking has expired")
        participant.status = new_status
        participant.responded_at = now

    if hours_charged is not None:
        if BookingStatus(booking.status) != BookingStatus.CONFIRMED:
            raise InvalidInput("Hours can only be charged once the booking is confirmed")
        if new_status != ParticipantStatus.ACCEPTED:
            raise InvalidInput("Hours can only be charged to accepted participants")
        if hours_charged < 0:
            raise InvalidInput("Hours charged cannot be negative")
        participant.hours_charged = hours_charged

    await session.commit()
    return _participant_to_dict(participant)


async def respond_to_invitation(
    session: AsyncSession, booking_id: int, user_id: int, accept: bool, now: Optional[datetime] = None
) -> Dict:
    """Accept or decline the caller's own invitation to a booking."""
    result = await session.execute(
        select(BookingParticipant).where(
            BookingParticipant.booking_id == booking_id, BookingParticipant.user_id == user_id
        )
    )
    participant = result.scalar_one_or_none()
    if participant is None:
        raise NotFound("Invitation not found")
    status = ParticipantStatus.ACCEPTED if accept else ParticipantStatus.DECLINED
    return await update_participant_status(session, participant.id, status.value, now=now)


async def update_booking_status(
    session: AsyncSession,
    booking_id: int,
    status: str,
    actor: Dict,
    now: Optional[datetime] = None,
) -> Dict:
    """
    Confirm or cancel a pending booking.

    Organizers may cancel their own bookings, and confirm them once enough
    members have accepted. HOA admins may approve or cancel any booking in
    their HOA. Expired pending bookings cannot be confirmed.

    Raises:
        NotFound: If the booking does not exist
        Forbidden: If the actor may not make this change
        InvalidInput: On a disallowed transition
    """
    now = ensure_utc(now) if now else utcnow()
    booking = await _get_booking_model(session, booking_id)

    try:
        new_status = BookingStatus(status)
    except ValueError:
        raise InvalidInput(f"Invalid booking status: {status}")

    current = BookingStatus(booking.status)
    if new_status not in ALLOWED_TRANSITIONS[current]:
        raise InvalidInput(f"Cannot change booking from {current.value} to {new_status.value}")

    participants = await _get_participants(session, booking_id)
    is_organizer = actor.get("user_id") == booking.organizer_id and has_permission(
        actor, Permission.MANAGE_OWN_BOOKINGS
    )
    in_hoa = can_access_hoa(actor, booking.hoa_id)

    if new_status == BookingStatus.CONFIRMED:
        if is_booking_expired(ensure_utc(booking.expires_at), now):
            raise InvalidInput("This booking has expired")
        if has_permission(actor, Permission.APPROVE_BOOKINGS) and in_hoa:
            pass
        elif is_organizer:
            accepted = sum(1 for p in participants if ParticipantStatus(p.status) == ParticipantStatus.ACCEPTED)
            if accepted < booking.min_members:
                raise InvalidInput(
                    f"At least {booking.min_members} members must accept before confirming"
                )
        else:
            raise Forbidden("You cannot confirm this booking")
    else:
        if not (is_organizer or (has_permission(actor, Permission.MANAGE_ALL_BOOKINGS) and in_hoa)):
            raise Forbidden("You cannot cancel this booking")

    booking.status = new_status
    booking.updated_at = now
    await session.commit()

    booking_dict = _booking_to_dict(booking, participants)
    logger.info(f"Booking {booking_id} {new_status.value} by user {actor.get('user_id')}")

    if new_status == BookingStatus.CONFIRMED:
        recipients = [
            p.user_id for p in participants if ParticipantStatus(p.status) == ParticipantStatus.ACCEPTED
        ]
        hoa_tz = (
            await session.execute(select(HOA.timezone).where(HOA.id == booking.hoa_id))
        ).scalar_one()
        when = format_time_range(ensure_utc(booking.start_time), ensure_utc(booking.end_time), tz=hoa_tz)
        await notification_service.send_booking_confirmation(booking_dict, recipients, when=when)
    else:
        recipients = [
            p.user_id
            for p in participants
            if ParticipantStatus(p.status) != ParticipantStatus.DECLINED
            and p.user_id != actor.get("user_id")
        ]
        await notification_service.send_booking_cancellation(booking_dict, recipients)

    return booking_dict


def is_eligible_for_expiry(booking, now: datetime) -> bool:
    """
    Whether the expiry sweep may delete a booking: still pending and past expires_at.

    Args:
        booking: Booking row or booking dict
        now: Aware current time
    """
    if isinstance(booking, dict):
        status = booking.get("status")
        expires_at = booking.get("expires_at")
        if isinstance(expires_at, str):
            expires_at = datetime.fromisoformat(expires_at)
    else:
        status = booking.status
        expires_at = booking.expires_at
    try:
        status = BookingStatus(status)
    except ValueError:
        return False
    return status == BookingStatus.PENDING and is_booking_expired(ensure_utc(expires_at), ensure_utc(now))


async def delete_expired_bookings(session: AsyncSession, now: Optional[datetime] = None) -> int:
    """
    Delete pending bookings whose expiry has passed, with their participants.

    Returns:
        Number of bookings deleted
    """
    now = ensure_utc(now) if now else utcnow()
    result = await session.execute(
        select(Booking.id).where(
            Booking.status == BookingStatus.PENDING,
            Booking.expires_at < now,
        )
    )
    expired_ids = list(result.scalars().all())
    if not expired_ids:
        return 0

    try:
        await session.execute(
            delete(BookingParticipant).where(BookingParticipant.booking_id.in_(expired_ids))
        )
        await session.execute(delete(Booking).where(Booking.id.in_(expired_ids)))
        await session.commit()
    except AppError:
        raise
    except Exception as e:
        await session.rollback()
        logger.error(f"Failed to delete expired bookings: {e}", exc_info=True)
        raise UpstreamFailure("Failed to delete expired bookings")

    logger.info(f"Deleted {len(expired_ids)} expired pending booking(s)")
    return len(expired_ids)


def due_reminder_type(start_time: datetime, now: datetime) -> Optional[str]:
    """
    Nearest reminder lead the booking has entered, or None.

    Bookings starting later the same day skip the "24h" ("tomorrow") reminder
    and only get the "2h" one.
    """
    until_start = start_time - now
    if until_start <= timedelta(0):
        return None
    for reminder_type, lead in REMINDER_LEADS:
        if until_start <= lead:
            if reminder_type == "24h" and is_last_minute_booking(start_time, now):
                return None
            return reminder_type
    return None


async def claim_due_reminders(session: AsyncSession, now: Optional[datetime] = None) -> List[Dict]:
    """
    Mark the reminders that are due for upcoming confirmed bookings.

    Each reminder type is claimed at most once per booking. Delivery is left
    to dispatch_reminders so callers can release the session first.

    Returns:
        List of {"booking", "user_ids", "reminder_type"} dicts
    """
    now = ensure_utc(now) if now else utcnow()
    horizon = now + REMINDER_LEADS[-1][1]
    result = await session.execute(
        select(Booking)
        .where(
            Booking.status == BookingStatus.CONFIRMED,
            Booking.start_time > now,
            Booking.start_time <= horizon,
        )
        .order_by(Booking.start_time, Booking.id)
    )

    due = []
    for booking in result.scalars().all():
        reminder_type = due_reminder_type(ensure_utc(booking.start_time), now)
        already_sent = list(booking.reminders_sent or [])
        if reminder_type is None or reminder_type in already_sent:
            continue
        participants = await _get_participants(session, booking.id)
        booking.reminders_sent = already_sent + [reminder_type]
        due.append(
            {
                "booking": _booking_to_dict(booking),
                "user_ids": [
                    p.user_id
                    for p in participants
                    if ParticipantStatus(p.status) == ParticipantStatus.ACCEPTED
                ],
                "reminder_type": reminder_type,
            }
        )

    if due:
        await session.commit()
    return due


async def dispatch_reminders(reminders: List[Dict]) -> int:
    """Deliver claimed reminders. Returns how many bookings were reminded."""
    for reminder in reminders:
        await notification_service.send_booking_reminder(
            reminder["booking"], reminder["user_ids"], reminder["reminder_type"]
        )
    if reminders:
        logger.info(f"Sent reminders for {len(reminders)} booking(s)")
    return len(reminders)
