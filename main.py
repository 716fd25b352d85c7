from fastapi import FastAPI, Depends, Path, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi import status
from pydantic import BaseModel, Field
from typing import Annotated, Optional
from datetime import datetime
from models import Attendance, Role
from manager import EventManager, SearchService, UserManager
from database import Database
from auth import PLACEHOLDER_TOKEN, get_current_user_id
from errors import EventPlannerError
from search import ANONYMOUS, present, resolve_criteria
from utils import parse_timestamp
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
import os

load_dotenv()  # Load variables from .env file
DATABASE_PATH = os.getenv("DATABASE_PATH", "events.db")
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
DB_TIMEOUT_SECONDS = float(os.getenv("DB_TIMEOUT_SECONDS", "5"))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8080"))

# Logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# FastAPI App
@asynccontextmanager
async def lifespan(app: FastAPI):
    db = Database(DATABASE_PATH, pool_size=DB_POOL_SIZE, timeout=DB_TIMEOUT_SECONDS)
    app.state.db = db
    app.state.users = UserManager(db)
    app.state.events = EventManager(db)
    app.state.search = SearchService(db)
    logger.info(f"Database ready at {DATABASE_PATH}")
    yield
    logger.info("Closing database connection")
    db.close()

app = FastAPI(title="Event Planner API", lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Origin", "Content-Type", "Authorization", "X-User-ID"],
    expose_headers=["Content-Length"],
    max_age=12 * 60 * 60,
)


def get_user_manager(request: Request) -> UserManager:
    return request.app.state.users


def get_event_manager(request: Request) -> EventManager:
    return request.app.state.events


def get_search_service(request: Request) -> SearchService:
    return request.app.state.search


# -------------------------------
# Error handlers
# -------------------------------
@app.exception_handler(EventPlannerError)
async def event_planner_error_handler(request: Request, exc: EventPlannerError):
    return JSONResponse({"detail": exc.message}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed input is a 400, not FastAPI's default 422."""
    return JSONResponse({"detail": jsonable_encoder(exc.errors())}, status_code=status.HTTP_400_BAD_REQUEST)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error while processing {request.method} {request.url.path}")
    return JSONResponse({"detail": "Internal server error"}, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


# -------------------------------
# Schemas
# -------------------------------
class SignupRequest(BaseModel):
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    password: str = Field(min_length=6)


class LoginRequest(BaseModel):
    email: str
    password: str


class EventCreate(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = ""
    location: Optional[str] = ""
    start_time: str = Field(alias="startTime")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "title": "Python Workshop",
                "description": "Hands-on session",
                "location": "Room 4",
                "startTime": "2030-01-01T10:00:00Z",
            }
        }


class InviteRequest(BaseModel):
    user_id: int = Field(alias="userId", gt=0)
    role: Role

    class Config:
        populate_by_name = True


class AttendanceRequest(BaseModel):
    user_id: Optional[int] = Field(default=None, alias="userId")
    status: Attendance

    class Config:
        populate_by_name = True


class TaskCreate(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = ""
    due_date: Optional[str] = Field(default=None, alias="dueDate")
    assignee_id: Optional[int] = Field(default=None, alias="assigneeId")

    class Config:
        populate_by_name = True


EventId = Annotated[int, Path(gt=0, description="Event ID")]

# -------------------------------
# Auth Routes
# -------------------------------
@app.get("/", response_model=dict, summary="API root endpoint")
def root():
    """Welcome message for the Event Planner API."""
    return {"message": "Welcome to Event Planner API"}


@app.get("/health", response_model=dict, summary="Liveness check")
def health():
    return {"status": "ok"}


@app.post("/signup", response_model=dict, summary="Register a new user")
def signup(user: SignupRequest, users: UserManager = Depends(get_user_manager)):
    """Register a new user; 409 if the email is taken."""
    created = users.signup(user.name, user.email, user.password)
    return {"message": "User created successfully", "user": created.summary()}


@app.post("/login", response_model=dict, summary="Login with email and password")
def login(credentials: LoginRequest, users: UserManager = Depends(get_user_manager)):
    """Check credentials and return the caller's identity with a placeholder token."""
    user = users.login(credentials.email, credentials.password)
    return {"token": PLACEHOLDER_TOKEN, **user.summary()}


# -------------------------------
# Event Routes
# -------------------------------
@app.post("/events", response_model=dict, summary="Create a new event")
def create_event(event: EventCreate, user_id: int = Depends(get_current_user_id),
                 events: EventManager = Depends(get_event_manager)):
    """Create an event; the caller becomes its organizer."""
    created = events.create_event(
        organizer_id=user_id,
        title=event.title,
        start_time=parse_timestamp(event.start_time, "startTime"),
        description=event.description or "",
        location=event.location or "",
    )
    return created.to_dict()


@app.get("/events/organized", response_model=list, summary="Events the caller organizes")
def list_organized(user_id: int = Depends(get_current_user_id), events: EventManager = Depends(get_event_manager)):
    return [e.to_dict() for e in events.list_organized(user_id)]


@app.get("/events/invited", response_model=list, summary="Events the caller is invited to")
def list_invited(user_id: int = Depends(get_current_user_id), events: EventManager = Depends(get_event_manager)):
    return [e.to_dict() for e in events.list_invited(user_id)]


@app.post("/events/{event_id}/invite", response_model=dict, summary="Invite a user to an event")
def invite(event_id: EventId, invitation: InviteRequest, user_id: int = Depends(get_current_user_id),
           events: EventManager = Depends(get_event_manager)):
    """Invite a user with a role (organizers only)."""
    events.invite(event_id, user_id, invitation.user_id, invitation.role)
    return {"message": "User invited successfully"}


@app.delete("/events/{event_id}", response_model=dict, summary="Delete an event")
def delete_event(event_id: EventId, user_id: int = Depends(get_current_user_id),
                 events: EventManager = Depends(get_event_manager)):
    """Delete an event (organizers only)."""
    events.delete_event(event_id, user_id)
    return {"message": "Event deleted successfully"}


@app.get("/events/{event_id}/attendees", response_model=list, summary="List participants of an event")
def list_attendees(event_id: EventId, user_id: int = Depends(get_current_user_id),
                   events: EventManager = Depends(get_event_manager)):
    """Participants with their role and attendance (organizers only)."""
    return [p.to_dict() for p in events.participants(event_id, user_id)]


@app.put("/events/{event_id}/attendance", response_model=dict, summary="Set attendance for an event")
def set_attendance(event_id: EventId, attendance: AttendanceRequest,
                   user_id: int = Depends(get_current_user_id), events: EventManager = Depends(get_event_manager)):
    events.set_attendance(event_id, user_id, attendance.status, attendance.user_id)
    return {"message": "Attendance updated successfully"}


@app.put("/events/{event_id}/accept", response_model=dict, summary="Accept an invitation")
def accept_invite(event_id: EventId, user_id: int = Depends(get_current_user_id),
                  events: EventManager = Depends(get_event_manager)):
    events.accept(event_id, user_id)
    return {"message": "Invitation accepted successfully"}


@app.post("/events/{event_id}/tasks", response_model=dict, status_code=status.HTTP_201_CREATED,
          summary="Create a task for an event")
def create_task(event_id: EventId, task: TaskCreate, user_id: int = Depends(get_current_user_id),
                events: EventManager = Depends(get_event_manager)):
    """Create a task (organizers only)."""
    due_date = parse_timestamp(task.due_date, "dueDate") if task.due_date else None
    created = events.create_task(event_id, user_id, task.title, task.description or "", due_date, task.assignee_id)
    return created.to_dict()


# -------------------------------
# Search
# -------------------------------
@app.get("/search", response_model=dict, summary="Search events and tasks")
def search(
    query: Optional[str] = Query(None, description="Text searched in title, description, location"),
    q: Optional[str] = Query(None, description="Legacy name for 'query'"),
    start: Optional[str] = Query(None, description="YYYY-MM-DD, 'today', 'tomorrow' or 'nextweek'"),
    from_: Optional[str] = Query(None, alias="from", description="Legacy name for 'start'"),
    end: Optional[str] = Query(None, description="YYYY-MM-DD, 'today', 'tomorrow' or 'nextweek'"),
    to: Optional[str] = Query(None, description="Legacy name for 'end'"),
    user_role: Optional[str] = Query(None, alias="userRole", description="organizer, attendee or collaborator"),
    role: Optional[str] = Query(None, description="Legacy name for 'userRole'"),
    service: SearchService = Depends(get_search_service),
):
    """Public search; no identity scoping is applied."""
    criteria = resolve_criteria(query, q, start, from_, end, to, user_role, role, user_id=ANONYMOUS)
    return present(service.search(criteria), criteria, datetime.now().astimezone())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=HOST, port=PORT)
