from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp; all persisted datetimes use this convention."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
