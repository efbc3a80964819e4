from datetime import date, datetime, timezone


def utc_now() -> datetime:
    """Current time as a naive UTC datetime, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utc_today() -> date:
    """Calendar day used to key daily skip quotas."""
    return datetime.now(timezone.utc).date()
