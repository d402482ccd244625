"""
Timezone-safe datetime utilities.

All timestamps are stored in UTC. Provider payloads are parsed into
timezone-aware UTC datetimes before they reach the store.
"""

from datetime import datetime, date, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Return current UTC datetime with timezone info attached.

    Example:
        >>> utc_now().tzinfo
        datetime.timezone.utc
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Convert any datetime to UTC.

    If the datetime is naive (no timezone info), it's assumed to be UTC.
    SQLite returns naive values for timezone-aware columns, so every value
    read back from the store passes through here before comparison.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def is_token_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """
    Return True when a stored access token must be treated as expired.

    A missing expiry is always treated as expired.
    """
    if expires_at is None:
        return True
    now = now or utc_now()
    return now > ensure_utc(expires_at)


def compute_expires_at(
    expires_in: Optional[int],
    margin_seconds: int = 0,
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """
    Turn a provider-reported lifetime into an absolute expiry.

    The safety margin is subtracted so tokens are refreshed before the
    provider starts rejecting them. Returns None when no lifetime was reported.
    """
    if expires_in is None:
        return None
    now = now or utc_now()
    return now + timedelta(seconds=int(expires_in) - margin_seconds)


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp from a provider payload.

    Accepts a trailing ``Z``, fractional seconds of any precision and
    date-only strings. Returns None for empty or unparseable input.
    """
    if not value:
        return None

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    # Python only accepts up to microsecond precision (Microsoft Graph sends 7 digits)
    if "." in text:
        head, _, tail = text.partition(".")
        digits = ""
        rest = ""
        for index, char in enumerate(tail):
            if not char.isdigit():
                rest = tail[index:]
                break
            digits += char
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest}"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        try:
            parsed_date = date.fromisoformat(text[:10])
        except ValueError:
            return None
        parsed = datetime(parsed_date.year, parsed_date.month, parsed_date.day)

    return ensure_utc(parsed)


def parse_graph_datetime(value: Optional[dict]) -> Optional[datetime]:
    """
    Parse a Microsoft Graph ``dateTimeTimeZone`` object.

    Requests send ``Prefer: outlook.timezone="UTC"`` so the naive
    ``dateTime`` value is UTC.
    """
    if not value or not value.get("dateTime"):
        return None
    return parse_datetime(value["dateTime"])


def from_epoch_millis(value) -> Optional[datetime]:
    """Parse a millisecond Unix timestamp (number or numeric string)."""
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None
