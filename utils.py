import re
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Optional

from errors import ForbiddenError, ValidationError
from models import Role

DATE_TOKENS = {"today": 0, "tomorrow": 1, "nextweek": 7}
ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
RFC3339 = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d{1,6})?(Z|[+-]\d{2}:\d{2})$")
END_OF_DAY = time(23, 59, 59)


def parse_timestamp(value: str, field: str = "startTime") -> datetime:
    """Parse an RFC3339 timestamp: 'T' separator, seconds and offset are mandatory."""
    if not isinstance(value, str) or not RFC3339.match(value):
        raise ValidationError(f"invalid {field}, use RFC3339")
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"invalid {field}, use RFC3339")


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def at_local(day: date, moment: time = time(), tz: Optional[tzinfo] = None) -> datetime:
    """Wall-clock ``moment`` on ``day`` in ``tz``, or in the server's local zone.

    Local times go through the platform's zone rules, so the offset is the
    one in force on that day, not today's.
    """
    if tz is None:
        return datetime.combine(day, moment).astimezone()
    return datetime.combine(day, moment, tzinfo=tz)


def search_day(value: str, now: Optional[datetime] = None) -> date:
    """Resolve 'today', 'tomorrow', 'nextweek' or YYYY-MM-DD to a calendar day."""
    today = now.date() if now is not None else date.today()
    offset = DATE_TOKENS.get(value.lower())
    if offset is not None:
        return today + timedelta(days=offset)
    if not ISO_DATE.match(value):
        raise ValueError(f"not a calendar date: {value!r}")
    return date.fromisoformat(value)


def parse_search_date(value: str, now: Optional[datetime] = None) -> datetime:
    """Start of the day named by ``value``, in ``now``'s zone or the local one."""
    return at_local(search_day(value, now), tz=now.tzinfo if now is not None else None)


def parse_date_bound(value: Optional[str], name: str, now: Optional[datetime] = None,
                     inclusive_end: bool = False) -> Optional[datetime]:
    if not value:
        return None
    try:
        day = search_day(value, now)
    except ValueError:
        raise ValidationError(f"invalid '{name}' date format, use YYYY-MM-DD or 'today'")
    moment = END_OF_DAY if inclusive_end else time()
    return at_local(day, moment, now.tzinfo if now is not None else None)


def parse_role(value: Optional[str]) -> Optional[Role]:
    if not value:
        return None
    try:
        return Role(value)
    except ValueError:
        raise ValidationError("invalid role, must be 'organizer', 'attendee', or 'collaborator'")


def is_organizer(db, event_id: int, user_id: int) -> bool:
    """True iff the user holds the organizer role on the event."""
    return db.get_participant_role(event_id, user_id) is Role.ORGANIZER


def check_event_permission(db, event_id: int, user_id: int, action: str):
    """Raise ForbiddenError unless the user organizes the event."""
    if not is_organizer(db, event_id, user_id):
        raise ForbiddenError(f"only organizers can {action}", {"event_id": event_id})
