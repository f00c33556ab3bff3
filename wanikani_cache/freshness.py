import datetime
from typing import Dict, Optional

# Maximum age per cache kind. None means the record never goes stale on its
# own and is only refreshed by an explicit force.
MAX_AGE: Dict[str, Optional[datetime.timedelta]] = {
    "profile": datetime.timedelta(minutes=5),
    "reviews": datetime.timedelta(minutes=1),
    "subjects": datetime.timedelta(hours=1),
    "subject_details": None,
}


def _as_utc(value: datetime.datetime) -> datetime.datetime:
    # SQLite hands back naive datetimes; everything we store is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def is_fresh(
    kind: str,
    fetched_at: Optional[datetime.datetime],
    now: Optional[datetime.datetime] = None,
) -> bool:
    """
    Decide whether a cached record of ``kind`` can be served without asking upstream.

    A record without a fetch timestamp was never cached (or was invalidated)
    and is never fresh. Otherwise it is fresh while ``now - fetched_at`` does
    not exceed the kind's maximum age.

    Raises:
        KeyError: for an unknown kind.
    """
    max_age = MAX_AGE[kind]
    if fetched_at is None:
        return False
    if max_age is None:
        return True
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)
    return _as_utc(now) - _as_utc(fetched_at) <= max_age
