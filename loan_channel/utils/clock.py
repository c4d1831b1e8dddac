from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC now truncated to milliseconds, the precision BSON dates keep."""
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)
