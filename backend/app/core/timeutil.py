from datetime import datetime, timezone


def utcnow() -> datetime:
    # Naive UTC, matching how timestamps are stored in the database
    return datetime.now(timezone.utc).replace(tzinfo=None)
