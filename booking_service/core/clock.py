from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current instant as a naive UTC datetime, the form every stored timestamp takes."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_rfc3339(value: str) -> datetime:
    # fromisoformat() only accepts a trailing "Z" from Python 3.11 onwards.
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    return to_utc_naive(datetime.fromisoformat(value))


def format_rfc3339(value: datetime) -> str:
    return to_utc_naive(value).replace(microsecond=0).isoformat() + 'Z'
