from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class Role(str, Enum):
    ORGANIZER = "organizer"
    ATTENDEE = "attendee"
    COLLABORATOR = "collaborator"


class Attendance(str, Enum):
    GOING = "going"
    MAYBE = "maybe"
    NOT_GOING = "not_going"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class User:
    id: int
    name: str
    email: str
    password_hash: str = field(repr=False)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def summary(self) -> dict:
        """Public view of the user; the password hash is never included."""
        return {"id": self.id, "name": self.name, "email": self.email}


@dataclass
class Event:
    id: int
    title: str
    description: str
    location: str
    start_time: datetime
    organizer_id: int  # user_id of organizer
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "location": self.location,
            "startTime": _iso(self.start_time),
            "organizerId": self.organizer_id,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass
class Participant:
    event_id: int
    user_id: int
    user_name: str
    user_email: str
    role: Role
    attendance: Optional[Attendance] = None
    invited_by: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "eventId": self.event_id,
            "userId": self.user_id,
            "userName": self.user_name,
            "userEmail": self.user_email,
            "role": self.role.value,
            "attendance": self.attendance.value if self.attendance else None,
        }


@dataclass
class Task:
    id: int
    event_id: int
    title: str
    description: str
    due_date: Optional[datetime] = None
    assignee_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "eventId": self.event_id,
            "title": self.title,
            "description": self.description,
            "dueDate": _iso(self.due_date),
            "assigneeId": self.assignee_id,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
