"""
Email service using SendGrid for password reset emails.
"""

import os
import logging
from typing import Optional
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail, Email, To, Content
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


def get_bool_env(key: str, default: bool = True) -> bool:
    """
    Parse a boolean environment variable from a string value.

    .env files store all values as strings, so this function converts string
    values like "true", "True", "TRUE", "1", "yes" to True, and everything
    else (including "false", "False", "0", "no", empty string) to False.

    Args:
        key: Environment variable name
        default: Default value if the variable is not set

    Returns:
        bool: Parsed boolean value
    """
    value = os.getenv(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes")


# SendGrid Configuration
SENDGRID_API_KEY = os.getenv("SENDGRID_API_KEY")
SENDGRID_FROM_EMAIL = os.getenv("SENDGRID_FROM_EMAIL", "noreply@hoacourts.app")
ENABLE_EMAIL = get_bool_env("ENABLE_EMAIL", default=True)

PASSWORD_RESET_SUBJECT = "Reset Your HOA Court Reservations Password"


def _password_reset_bodies(reset_link: str, user_name: Optional[str]) -> tuple:
    greeting = f"Hi {user_name}," if user_name else "Hi,"
    text_body = "\n".join(
        [
            greeting,
            "",
            "We received a request to reset the password for your HOA Court Reservations account.",
            "Use the link below to choose a new password. The link expires in 1 hour.",
            "",
            reset_link,
            "",
            "If you did not request a password reset, you can ignore this email.",
        ]
    )
    html_body = (
        f"<p>{greeting}</p>"
        "<p>We received a request to reset the password for your HOA Court Reservations account.</p>"
        f'<p><a href="{reset_link}">Reset your password</a></p>'
        "<p>This link expires in 1 hour. If you did not request a password reset, "
        "you can ignore this email.</p>"
    )
    return text_body, html_body


async def send_password_reset_email(
    to_email: str,
    reset_link: str,
    user_name: Optional[str] = None,
) -> bool:
    """
    Send a password reset link via SendGrid.

    Args:
        to_email: Recipient address
        reset_link: Full reset URL including the token
        user_name: Optional name for the greeting

    Returns:
        bool: True if the email was sent (or sending is disabled), False on failure
    """
    if not ENABLE_EMAIL:
        logger.info("Email sending is disabled. Password reset email skipped.")
        return True

    if not SENDGRID_API_KEY:
        logger.warning("SENDGRID_API_KEY not configured. Password reset email skipped.")
        return True

    try:
        text_body, html_body = _password_reset_bodies(reset_link, user_name)
        message = Mail(
            from_email=Email(SENDGRID_FROM_EMAIL),
            to_emails=To(to_email),
            subject=PASSWORD_RESET_SUBJECT,
            plain_text_content=Content("text/plain", text_body),
            html_content=Content("text/html", html_body),
        )

        sg = SendGridAPIClient(SENDGRID_API_KEY)
        response = sg.send(message)

        if 200 <= response.status_code < 300:
            logger.info(f"Password reset email sent to {to_email}")
            return True
        logger.error(f"SendGrid returned status {response.status_code}: {response.body}")
        return False

    except Exception as e:
        logger.error(f"Failed to send password reset email: {str(e)}")
        return False
