import logging
from datetime import datetime
from typing import Optional

from auth import hash_password, verify_password
from database import Database
from errors import ForbiddenError, InvalidCredentialsError, UserExistsError, ValidationError
from models import Attendance, Event, Participant, Role, Task, User
from search import SearchCriteria, SearchResult
from utils import check_event_permission

logger = logging.getLogger(__name__)


class UserManager:
    def __init__(self, db: Database):
        """Initialize UserManager with database."""
        self.db = db
        # Compared against when the email is unknown so both login failures cost the same.
        self._dummy_hash = hash_password("placeholder-password")

    def signup(self, name: str, email: str, password: str) -> User:
        """Register a new user; the email must not be taken."""
        if self.db.get_user_by_email(email):
            raise UserExistsError(email)
        user = self.db.add_user(name, email, hash_password(password))
        logger.info(f"User {user.id} signed up")
        return user

    def login(self, email: str, password: str) -> User:
        """Check credentials. Unknown email and wrong password fail identically."""
        user = self.db.get_user_by_email(email)
        if user is None:
            verify_password(password, self._dummy_hash)
            raise InvalidCredentialsError()
        if not verify_password(password, user.password_hash):
            raise InvalidCredentialsError()
        logger.info(f"User {user.id} logged in")
        return user


class EventManager:
    def __init__(self, db: Database):
        """Initialize EventManager with database."""
        self.db = db

    def create_event(self, organizer_id: int, title: str, start_time: datetime,
                     description: str = "", location: str = "") -> Event:
        """Create an event; the creator becomes its organizer."""
        event = self.db.create_event(title, description, location, start_time, organizer_id)
        logger.info(f"Event {event.id} created by {organizer_id}")
        return event

    def list_organized(self, user_id: int) -> list[Event]:
        return self.db.list_events_by_role(user_id, Role.ORGANIZER)

    def list_invited(self, user_id: int) -> list[Event]:
        return self.db.list_events_by_role(user_id, Role.ATTENDEE)

    def delete_event(self, event_id: int, user_id: int):
        self.db.delete_event_if_organizer(event_id, user_id)
        logger.info(f"Event {event_id} deleted by {user_id}")

    def invite(self, event_id: int, inviter_id: int, invitee_id: int, role: Role):
        if inviter_id == invitee_id:
            raise ValidationError("cannot invite yourself")
        self.db.upsert_invite(event_id, inviter_id, invitee_id, role)
        logger.info(f"User {invitee_id} invited to event {event_id} as {role.value} by {inviter_id}")

    def participants(self, event_id: int, requester_id: int) -> list[Participant]:
        check_event_permission(self.db, event_id, requester_id, "view attendees")
        return self.db.list_participants(event_id)

    def set_attendance(self, event_id: int, requester_id: int, status: Attendance,
                       target_user_id: Optional[int] = None):
        """Record the requester's RSVP. Nobody may answer for another user."""
        target_user_id = target_user_id or requester_id
        if target_user_id != requester_id:
            raise ForbiddenError("you can only update your own attendance")
        self.db.upsert_attendance(event_id, target_user_id, status)
        logger.info(f"User {target_user_id} set attendance {status.value} for event {event_id}")

    def accept(self, event_id: int, user_id: int):
        # Does not require a pending invitation.
        self.set_attendance(event_id, user_id, Attendance.GOING)

    def create_task(self, event_id: int, user_id: int, title: str, description: str = "",
                    due_date: Optional[datetime] = None, assignee_id: Optional[int] = None) -> Task:
        """Add a task to an event (organizers only)."""
        check_event_permission(self.db, event_id, user_id, "create tasks")
        if not title or not title.strip():
            raise ValidationError("task title is required")
        task = self.db.create_task(event_id, title.strip(), description, due_date, assignee_id)
        logger.info(f"Task {task.id} created for event {event_id} by {user_id}")
        return task


class SearchService:
    def __init__(self, db: Database):
        self.db = db

    def search(self, criteria: SearchCriteria) -> SearchResult:
        logger.info(
            f"Search query={criteria.query!r} start={criteria.start} end={criteria.end} "
            f"role={criteria.role.value if criteria.role else ''} user={criteria.user_id}"
        )
        return self.db.search(criteria)
