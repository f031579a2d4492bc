from datetime import datetime, timezone


def utcnow() -> datetime:
    """
    Naive UTC "now", matching the naive DateTime columns in models/.
    Every time-based decision goes through this function.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)
