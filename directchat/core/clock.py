from datetime import datetime, timedelta, timezone

_last_issued: datetime | None = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_message_timestamp() -> datetime:
    """Returns a UTC timestamp strictly greater than any previously issued one.

    Two sends in the same microsecond (or a wall clock stepping backwards)
    still get distinct, ordered created_at values within this process.
    """
    global _last_issued
    now = utcnow()
    if _last_issued is not None and now <= _last_issued:
        now = _last_issued + timedelta(microseconds=1)
    _last_issued = now
    return now


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; every stored timestamp is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
