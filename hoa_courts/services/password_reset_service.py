"""
Password reset via emailed single-use tokens.

Requests never reveal whether an account exists; callers always answer with
the same message.
"""

import logging
import secrets
from datetime import timedelta
from typing import Optional

from sqlalchemy import select, delete, or_
from sqlalchemy.ext.asyncio import AsyncSession

from hoa_courts.database.models import PasswordResetToken, Profile
from hoa_courts.services import auth_service, email_service, user_service
from hoa_courts.services.exceptions import InvalidInput
from hoa_courts.utils.datetime_utils import utcnow, ensure_utc

logger = logging.getLogger(__name__)

RESET_TOKEN_EXPIRE_HOURS = 1
RESET_TOKEN_BYTES = 32

GENERIC_RESET_MESSAGE = "If an account exists for this email, a password reset link has been sent."


def generate_reset_token() -> str:
    return secrets.token_hex(RESET_TOKEN_BYTES)


def build_reset_link(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/auth/reset-password/confirm?token={token}"


async def request_password_reset(session: AsyncSession, email: str, base_url: str) -> bool:
    """
    Issue a reset token for the account behind an email and send the link.

    Args:
        session: Database session
        email: Address the user typed
        base_url: Frontend base URL for the reset link

    Returns:
        True if a reset email was sent, False if the email is unknown or sending failed
    """
    user = await user_service.get_user_by_email(session, email)
    if user is None:
        logger.info("Password reset requested for unknown email")
        return False

    token = generate_reset_token()
    expires_at = utcnow() + timedelta(hours=RESET_TOKEN_EXPIRE_HOURS)

    # Earlier unused tokens stop working once a new one is issued
    await session.execute(
        delete(PasswordResetToken).where(
            PasswordResetToken.user_id == user["id"], PasswordResetToken.used.is_(False)
        )
    )
    session.add(PasswordResetToken(user_id=user["id"], token=token, expires_at=expires_at))
    await session.commit()

    name_result = await session.execute(select(Profile.full_name).where(Profile.user_id == user["id"]))
    user_name = name_result.scalar_one_or_none()

    sent = await email_service.send_password_reset_email(
        to_email=user["email"],
        reset_link=build_reset_link(base_url, token),
        user_name=user_name,
    )
    if not sent:
        logger.warning(f"Password reset email could not be sent for user {user['id']}")
    return sent


async def _get_valid_token(session: AsyncSession, token: str) -> Optional[PasswordResetToken]:
    if not token:
        return None
    result = await session.execute(select(PasswordResetToken).where(PasswordResetToken.token == token))
    reset_token = result.scalar_one_or_none()
    if reset_token is None or reset_token.used:
        return None
    if ensure_utc(reset_token.expires_at) <= utcnow():
        return None
    return reset_token


async def validate_reset_token(session: AsyncSession, token: str) -> Optional[int]:
    """Return the user id a reset token belongs to, or None if it is unknown, used or expired."""
    reset_token = await _get_valid_token(session, token)
    return reset_token.user_id if reset_token else None


async def reset_password(
    session: AsyncSession, token: str, new_password: str, confirm_password: str
) -> int:
    """
    Set a new password using a reset token, then mark the token used.

    Returns:
        The user id whose password was changed

    Raises:
        InvalidInput: If the passwords differ, the password is too weak, or the token is invalid
    """
    if new_password != confirm_password:
        raise InvalidInput("Passwords do not match")
    error = auth_service.validate_password(new_password)
    if error:
        raise InvalidInput(error)

    reset_token = await _get_valid_token(session, token)
    if reset_token is None:
        raise InvalidInput("Invalid or expired reset token")

    user_id = reset_token.user_id
    reset_token.used = True
    await user_service.update_user_password(session, user_id, auth_service.hash_password(new_password))
    logger.info(f"Password reset completed for user {user_id}")
    return user_id


async def cleanup_expired_tokens(session: AsyncSession) -> int:
    """Delete reset tokens that are used or past their expiry; returns the number removed."""
    result = await session.execute(
        delete(PasswordResetToken).where(
            or_(PasswordResetToken.used.is_(True), PasswordResetToken.expires_at < utcnow())
        )
    )
    await session.commit()
    return result.rowcount or 0
