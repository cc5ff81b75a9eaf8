"""
Notification service for booking notifications.

Notifications are stored per user and pushed to any open WebSocket. Fan-out
to several recipients runs concurrently, each delivery in its own database
session, so one recipient's failure never affects the others or the caller.
"""

import asyncio
import json
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, update, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from hoa_courts.database import db
from hoa_courts.database.models import Notification, NotificationType
from hoa_courts.services.exceptions import InvalidInput, NotFound
from hoa_courts.services.websocket_manager import get_websocket_manager
from hoa_courts.utils.datetime_utils import utcnow, isoformat_or_none

logger = logging.getLogger(__name__)

REMINDER_TYPES = ("48h", "24h", "2h")

INVITATION_ACTIONS = [
    {"action": "accept", "title": "Accept"},
    {"action": "decline", "title": "Decline"},
]


def _notification_to_dict(notif: Notification) -> Dict:
    return {
        "id": notif.id,
        "user_id": notif.user_id,
        "type": notif.type,
        "title": notif.title,
        "message": notif.message,
        "data": json.loads(notif.data) if notif.data else None,
        "actions": json.loads(notif.actions) if notif.actions else None,
        "is_read": notif.is_read,
        "read_at": isoformat_or_none(notif.read_at),
        "link_url": notif.link_url,
        "created_at": isoformat_or_none(notif.created_at),
    }


async def create_notification(
    session: AsyncSession,
    user_id: int,
    type: str,
    title: str,
    message: str,
    data: Optional[Dict] = None,
    actions: Optional[List[Dict]] = None,
    link_url: Optional[str] = None,
) -> Dict:
    """
    Store a notification for a user and push it over WebSocket.

    The row is flushed, not committed; the caller owns the transaction.

    Args:
        session: Database session
        user_id: Recipient user id
        type: NotificationType value
        title: Notification title
        message: Notification body text
        data: Optional structured payload
        actions: Optional list of {"action", "title"} buttons
        link_url: Optional navigation target

    Returns:
        Dict containing the created notification

    Raises:
        InvalidInput: If a required field is missing
    """
    if not user_id:
        raise InvalidInput("user_id is required")
    if not type:
        raise InvalidInput("type is required")
    if not title:
        raise InvalidInput("title is required")
    if not message:
        raise InvalidInput("message is required")

    notification = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        data=json.dumps(data) if data is not None else None,
        actions=json.dumps(actions) if actions else None,
        link_url=link_url,
        is_read=False,
    )
    session.add(notification)
    await session.flush()

    notification_dict = _notification_to_dict(notification)

    # Broadcast failures must not fail notification creation
    try:
        manager = get_websocket_manager()
        await manager.send_to_user(user_id, {"type": "notification", "notification": notification_dict})
    except Exception as e:
        logger.warning(f"Failed to broadcast notification via WebSocket for user {user_id}: {e}")

    return notification_dict


async def _deliver(user_id: int, **fields) -> Dict:
    """Deliver one notification in its own session and commit it."""
    async with db.AsyncSessionLocal() as session:
        result = await create_notification(session, user_id=user_id, **fields)
        await session.commit()
        return result


async def send_notification_to_users(
    user_ids: Iterable[int],
    type: str,
    title: str,
    message: str,
    data: Optional[Dict] = None,
    actions: Optional[List[Dict]] = None,
    link_url: Optional[str] = None,
) -> Dict[str, int]:
    """
    Deliver the same notification to several users concurrently.

    Failures are logged per recipient and never raised.

    Returns:
        {"sent": <count>, "failed": <count>}
    """
    recipients = list(dict.fromkeys(user_ids))
    if not recipients:
        return {"sent": 0, "failed": 0}

    results = await asyncio.gather(
        *(
            _deliver(
                user_id,
                type=type,
                title=title,
                message=message,
                data=data,
                actions=actions,
                link_url=link_url,
            )
            for user_id in recipients
        ),
        return_exceptions=True,
    )

    failed = 0
    for user_id, result in zip(recipients, results):
        if isinstance(result, BaseException):
            failed += 1
            logger.error(f"Failed to deliver {type} notification to user {user_id}: {result}")

    sent = len(recipients) - failed
    logger.info(f"Delivered {type} notification to {sent}/{len(recipients)} user(s)")
    return {"sent": sent, "failed": failed}


def _court_list(booking: Dict) -> str:
    return ", ".join(str(c) for c in booking.get("courts") or [])


async def send_booking_invitation(
    booking: Dict, organizer_name: str, invitee_ids: Iterable[int]
) -> Dict[str, int]:
    """Invite players to a newly created booking."""
    return await send_notification_to_users(
        invitee_ids,
        type=NotificationType.BOOKING_INVITATION.value,
        title="Court Booking Invitation",
        message=f"{organizer_name} invited you to play on court {_court_list(booking)}",
        data={"booking_id": booking["id"], "type": "booking_invitation"},
        actions=INVITATION_ACTIONS,
        link_url=f"/bookings/{booking['id']}",
    )


async def send_booking_confirmation(
    booking: Dict, user_ids: Iterable[int], when: Optional[str] = None
) -> Dict[str, int]:
    message = f"Your booking on court {_court_list(booking)} is confirmed"
    if when:
        message = f"Your booking on court {_court_list(booking)} for {when} is confirmed"
    return await send_notification_to_users(
        user_ids,
        type=NotificationType.BOOKING_CONFIRMED.value,
        title="Booking Confirmed",
        message=message,
        data={"booking_id": booking["id"], "type": "booking_confirmation"},
        link_url=f"/bookings/{booking['id']}",
    )


async def send_booking_cancellation(booking: Dict, user_ids: Iterable[int]) -> Dict[str, int]:
    return await send_notification_to_users(
        user_ids,
        type=NotificationType.BOOKING_CANCELLED.value,
        title="Booking Cancelled",
        message=f"The booking on court {_court_list(booking)} was cancelled",
        data={"booking_id": booking["id"], "type": "booking_cancellation"},
        link_url=f"/bookings/{booking['id']}",
    )


async def send_booking_reminder(
    booking: Dict, user_ids: Iterable[int], reminder_type: str
) -> Dict[str, int]:
    """
    Remind participants of an upcoming booking.

    Args:
        booking: Booking dict
        user_ids: Recipients
        reminder_type: One of "48h", "24h", "2h"
    """
    if reminder_type not in REMINDER_TYPES:
        raise InvalidInput(f"Invalid reminder type: {reminder_type}")
    lead = {"48h": "in 2 days", "24h": "tomorrow", "2h": "in 2 hours"}[reminder_type]
    return await send_notification_to_users(
        user_ids,
        type=NotificationType.BOOKING_REMINDER.value,
        title="Upcoming Court Booking",
        message=f"Your game on court {_court_list(booking)} starts {lead}",
        data={"booking_id": booking["id"], "type": "booking_reminder", "reminder_type": reminder_type},
        link_url=f"/bookings/{booking['id']}",
    )


async def get_user_notifications(
    session: AsyncSession,
    user_id: int,
    limit: int = 50,
    offset: int = 0,
    unread_only: bool = False
) -> Dict:
    """
    Fetch user notifications with pagination.

    Returns:
        Dict containing:
            - notifications: List of notification dicts (newest first)
            - total_count: Total number of notifications matching the criteria
            - has_more: Whether more notifications remain after this page
    """
    query = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        query = query.where(Notification.is_read == False)  # noqa: E712

    total_result = await session.execute(select(func.count()).select_from(query.subquery()))
    total_count = total_result.scalar_one() or 0

    query = query.order_by(Notification.created_at.desc(), Notification.id.desc())
    result = await session.execute(query.limit(limit).offset(offset))
    notification_dicts = [_notification_to_dict(n) for n in result.scalars().all()]

    return {
        "notifications": notification_dicts,
        "total_count": total_count,
        "has_more": (offset + len(notification_dicts)) < total_count,
    }


async def get_unread_count(session: AsyncSession, user_id: int) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(Notification)
        .where(and_(Notification.user_id == user_id, Notification.is_read == False))  # noqa: E712
    )
    return result.scalar_one() or 0


async def mark_as_read(session: AsyncSession, notification_id: int, user_id: int) -> Dict:
    """
    Mark a single notification as read.

    Raises:
        NotFound: If the notification does not exist or belongs to another user
    """
    result = await session.execute(
        select(Notification).where(
            and_(Notification.id == notification_id, Notification.user_id == user_id)
        )
    )
    notification = result.scalar_one_or_none()
    if notification is None:
        raise NotFound("Notification not found")

    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
        await session.flush()
    return _notification_to_dict(notification)


async def mark_all_as_read(session: AsyncSession, user_id: int) -> int:
    """Mark all of a user's unread notifications as read; returns the number updated."""
    result = await session.execute(
        update(Notification)
        .where(and_(Notification.user_id == user_id, Notification.is_read == False))  # noqa: E712
        .values(is_read=True, read_at=utcnow())
    )
    await session.flush()
    return result.rowcount or 0
