"""URL-safe slug, HOA slug and invitation code utilities."""

import re
import secrets
import string
import unicodedata

HOA_SLUG_PATTERN = re.compile(r"^[a-z0-9-]+$")
HOA_SLUG_MIN_LENGTH = 3
HOA_SLUG_MAX_LENGTH = 50

INVITATION_CODE_ALPHABET = string.ascii_uppercase + string.digits
INVITATION_CODE_LENGTH = 8


def slugify(text: str) -> str:
    """Convert text to a URL-safe slug (lowercase, hyphens, no special chars).

    Args:
        text: Text to slugify (e.g. "Test Valley HOA").

    Returns:
        Slugified text (e.g. "test-valley-hoa").
    """
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    text = text.lower().strip()
    text = re.sub(r"[^\w\s-]", "", text)
    text = re.sub(r"[\s_]+", "-", text)
    text = re.sub(r"-+", "-", text)
    return text.strip("-")


def is_valid_hoa_slug(slug: str) -> bool:
    """Lowercase letters, digits and hyphens only, 3-50 characters."""
    if not isinstance(slug, str):
        return False
    return (
        HOA_SLUG_MIN_LENGTH <= len(slug) <= HOA_SLUG_MAX_LENGTH
        and HOA_SLUG_PATTERN.match(slug) is not None
    )


def generate_hoa_slug(name: str) -> str:
    """Derive an HOA slug from its display name, truncated to the max slug length."""
    return slugify(name)[:HOA_SLUG_MAX_LENGTH].strip("-")


def generate_invitation_code(length: int = INVITATION_CODE_LENGTH) -> str:
    """Random uppercase alphanumeric invitation code."""
    return "".join(secrets.choice(INVITATION_CODE_ALPHABET) for _ in range(length))


def format_hoa_display_name(name: str) -> str:
    """Title-case an HOA name, keeping the "HOA" acronym uppercase."""
    words = [w for w in (name or "").strip().split() if w]
    return " ".join("HOA" if w.upper() == "HOA" else w[:1].upper() + w[1:] for w in words)
