"""
Search over events and tasks.

Optional criteria (free text, a date range, a participant role and the
acting user) are turned into one parameterized SELECT per result set. Every
criterion contributes a fixed SQL fragment plus the values bound to its
placeholders; the fragments are AND-ed together in the order they were
added, which is also the order of the bound values. User input only ever
travels as a bound value.

The module also derives the presentation metadata returned alongside the
matched rows: whether an event is upcoming, a coarse "time until" label, and
a status for each task.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from models import Event, Role, Task
from utils import parse_date_bound, parse_role, start_of_day

ANONYMOUS = 0

EVENT_COLUMNS = (
    "e.id, e.title, e.description, e.location, e.start_ts, e.organizer_id, "
    "e.created_at, e.updated_at"
)
TASK_COLUMNS = (
    "t.id, t.event_id, t.title, t.description, t.due_ts, t.assignee_id, "
    "t.created_at, t.updated_at"
)
PARTICIPANT_JOIN = "JOIN event_participants p ON p.event_id = e.id"


@dataclass
class SearchCriteria:
    query: str = ""
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    role: Optional[Role] = None
    user_id: int = ANONYMOUS

    @property
    def scoped_role(self) -> Optional[Role]:
        """Role filter that actually applies: only for an identified user."""
        if self.user_id != ANONYMOUS and self.role is not None:
            return self.role
        return None


@dataclass
class SearchResult:
    events: list = field(default_factory=list)
    tasks: list = field(default_factory=list)


def _prefer(new: Optional[str], legacy: Optional[str]) -> Optional[str]:
    return new if new is not None else legacy


def resolve_criteria(query=None, q=None, start=None, from_=None, end=None, to=None,
                     user_role=None, role=None, user_id: int = ANONYMOUS,
                     now: Optional[datetime] = None) -> SearchCriteria:
    """Build criteria from raw request parameters.

    Each dimension accepts a current and a legacy name (query/q, start/from,
    end/to, userRole/role); the current name wins when both are given. The
    end bound is moved to 23:59:59 of its day so a single-day range is
    inclusive. Days are resolved in ``now``'s zone, or in the server's local
    zone when ``now`` is omitted.
    """
    return SearchCriteria(
        query=(_prefer(query, q) or "").strip(),
        start=parse_date_bound(_prefer(start, from_), "start", now),
        end=parse_date_bound(_prefer(end, to), "end", now, inclusive_end=True),
        role=parse_role(_prefer(user_role, role)),
        user_id=user_id,
    )


class FilterBuilder:
    """Accumulates (condition, parameters) pairs for a single SELECT."""

    def __init__(self, select: str, order_by: str):
        self.select = select
        self.order_by = order_by
        self.joins: list[str] = []
        self.conditions: list[str] = []
        self.params: list = []

    def join(self, clause: str) -> "FilterBuilder":
        if clause not in self.joins:
            self.joins.append(clause)
        return self

    def where(self, condition: str, *params) -> "FilterBuilder":
        if condition.count("?") != len(params):
            raise ValueError(f"placeholder/parameter mismatch in {condition!r}")
        self.conditions.append(condition)
        self.params.extend(params)
        return self

    def build(self) -> tuple[str, list]:
        parts = [self.select, *self.joins]
        if self.conditions:
            parts.append("WHERE " + " AND ".join(self.conditions))
        parts.append("ORDER BY " + self.order_by)
        return " ".join(parts), list(self.params)


def like_pattern(text: str) -> str:
    """Case-folded pattern for ``casefold(column) LIKE ? ESCAPE '\\'``."""
    escaped = text.casefold().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def text_condition(columns: list[str]) -> str:
    # casefold() is registered on every pooled connection.
    return "(" + " OR ".join(f"casefold({c}) LIKE ? ESCAPE '\\'" for c in columns) + ")"


def _apply_role(builder: FilterBuilder, criteria: SearchCriteria):
    role = criteria.scoped_role
    if role is None:
        return
    if role is Role.ORGANIZER:
        builder.where("e.organizer_id = ?", criteria.user_id)
    else:
        builder.join(PARTICIPANT_JOIN)
        builder.where("p.user_id = ? AND p.role = ?", criteria.user_id, role.value)


def build_event_query(criteria: SearchCriteria) -> tuple[str, list]:
    builder = FilterBuilder(
        f"SELECT {EVENT_COLUMNS} FROM events e",
        "e.start_ts ASC, e.id ASC",
    )
    _apply_role(builder, criteria)
    if criteria.query:
        pattern = like_pattern(criteria.query)
        builder.where(
            text_condition(["e.title", "e.description", "e.location"]),
            pattern, pattern, pattern,
        )
    if criteria.start is not None:
        builder.where("e.start_ts >= ?", criteria.start.timestamp())
    if criteria.end is not None:
        builder.where("e.start_ts <= ?", criteria.end.timestamp())
    return builder.build()


def build_task_query(criteria: SearchCriteria) -> tuple[str, list]:
    # Tasks with no due date satisfy any date bound.
    builder = FilterBuilder(
        f"SELECT {TASK_COLUMNS} FROM tasks t JOIN events e ON e.id = t.event_id",
        "t.due_ts IS NULL, t.due_ts ASC, t.id ASC",
    )
    _apply_role(builder, criteria)
    if criteria.query:
        pattern = like_pattern(criteria.query)
        builder.where(text_condition(["t.title", "t.description"]), pattern, pattern)
    if criteria.start is not None:
        builder.where("(t.due_ts IS NULL OR t.due_ts >= ?)", criteria.start.timestamp())
    if criteria.end is not None:
        builder.where("(t.due_ts IS NULL OR t.due_ts <= ?)", criteria.end.timestamp())
    return builder.build()


def time_until(start: datetime, now: datetime) -> str:
    hours = int((start - now).total_seconds() // 3600)
    days = hours // 24
    if days > 30:
        return "in more than a month"
    if days > 1:
        return f"in {days} days"
    if hours >= 1:
        return f"in {hours} hours"
    return "very soon"


def task_status(due_date: Optional[datetime], now: datetime) -> str:
    if due_date is None:
        return "no-due-date"
    today = start_of_day(now)
    if due_date < today:
        return "overdue"
    if due_date < today + timedelta(days=1):
        return "today"
    return "upcoming"


def describe_event(event: Event, now: datetime) -> dict:
    data = {
        "id": event.id,
        "title": event.title,
        "description": event.description,
        "location": event.location,
        "startTime": event.start_time.isoformat(),
        "organizerId": event.organizer_id,
        "isUpcoming": event.start_time > now,
    }
    if data["isUpcoming"]:
        data["timeUntil"] = time_until(event.start_time, now)
    return data


def describe_task(task: Task, now: datetime) -> dict:
    return {
        "id": task.id,
        "eventId": task.event_id,
        "title": task.title,
        "description": task.description,
        "dueDate": task.due_date.isoformat() if task.due_date else None,
        "assigneeId": task.assignee_id,
        "status": task_status(task.due_date, now),
    }


def present(result: SearchResult, criteria: SearchCriteria, now: datetime) -> dict:
    """Response body for a search: enriched events and tasks plus a summary."""
    return {
        "meta": {
            "query": criteria.query,
            "role": criteria.role.value if criteria.role else "",
            "dateRange": {
                "from": criteria.start.isoformat() if criteria.start else None,
                "to": criteria.end.isoformat() if criteria.end else None,
            },
            "resultCount": len(result.events) + len(result.tasks),
        },
        "events": [describe_event(e, now) for e in result.events],
        "tasks": [describe_task(t, now) for t in result.tasks],
    }
