"""Token generation for invitations and join links."""

import uuid
from datetime import UTC, datetime, timedelta


def generate_invitation_token() -> str:
    """Generate an unguessable invitation or join-link token.

    Returns:
        32 character hex string (122 bits of randomness from uuid4).
    """
    return uuid.uuid4().hex


def get_expiry(days: int, now: datetime | None = None) -> datetime:
    """Calculate an expiry timestamp.

    Args:
        days: Number of days until expiry.
        now: Reference time, defaults to the current UTC time.

    Returns:
        UTC datetime when the token expires.
    """
    return (now or datetime.now(UTC)) + timedelta(days=days)
