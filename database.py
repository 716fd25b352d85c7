import logging
import sqlite3
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.pool import QueuePool

from errors import ConflictError, ForbiddenError, NotFoundError, UnavailableError, UserExistsError
from models import Attendance, Event, Participant, Role, Task, User
from search import SearchCriteria, SearchResult, build_event_query, build_task_query

logger = logging.getLogger(__name__)

# Epoch seconds, same unit as the *_ts columns written from Python.
NOW = "((julianday('now') - 2440587.5) * 86400.0)"

ORGANIZER_CHECK = "SELECT 1 FROM event_participants WHERE event_id = ? AND user_id = ? AND role = 'organizer'"


def _ts(value: Optional[datetime]) -> Optional[float]:
    return value.timestamp() if value is not None else None


def _dt(value: Optional[float]) -> Optional[datetime]:
    return datetime.fromtimestamp(value, UTC) if value is not None else None


def _user(row) -> User:
    return User(
        id=row["id"], name=row["name"], email=row["email"], password_hash=row["password_hash"],
        created_at=_dt(row["created_at"]), updated_at=_dt(row["updated_at"]),
    )


def _event(row) -> Event:
    return Event(
        id=row["id"], title=row["title"], description=row["description"], location=row["location"],
        start_time=_dt(row["start_ts"]), organizer_id=row["organizer_id"],
        created_at=_dt(row["created_at"]), updated_at=_dt(row["updated_at"]),
    )


def _task(row) -> Task:
    return Task(
        id=row["id"], event_id=row["event_id"], title=row["title"], description=row["description"],
        due_date=_dt(row["due_ts"]), assignee_id=row["assignee_id"],
        created_at=_dt(row["created_at"]), updated_at=_dt(row["updated_at"]),
    )


def _participant(row) -> Participant:
    return Participant(
        event_id=row["event_id"], user_id=row["user_id"], user_name=row["name"], user_email=row["email"],
        role=Role(row["role"]),
        attendance=Attendance(row["attendance"]) if row["attendance"] else None,
        invited_by=row["invited_by"],
    )


def _casefold(value):
    return value.casefold() if isinstance(value, str) else value


def _configure_connection(dbapi_conn, connection_record):
    # Transactions are opened explicitly in Database.transaction().
    dbapi_conn.isolation_level = None
    dbapi_conn.row_factory = sqlite3.Row
    dbapi_conn.create_function("casefold", 1, _casefold, deterministic=True)
    dbapi_conn.execute("PRAGMA foreign_keys = ON")
    dbapi_conn.execute("PRAGMA journal_mode = WAL")


def _is_busy(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


class Database:
    def __init__(self, db_name="events.db", pool_size=5, timeout=5.0):
        """
        Pool SQLite connections through a SQLAlchemy engine and make sure the
        schema exists.

        ``timeout`` bounds how long a statement waits on a locked database and
        how long a caller waits for a free connection.
        """
        self.db_name = db_name
        self.timeout = timeout
        self.engine = create_engine(
            f"sqlite:///{db_name}",
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=0,
            pool_timeout=timeout,
            connect_args={"timeout": timeout, "check_same_thread": False},
        )
        event.listen(self.engine, "connect", _configure_connection)
        self.create_tables()

    @contextmanager
    def transaction(self, write=False):
        """
        Borrow a pooled connection; everything inside commits or rolls back
        together.

        Write transactions take the write lock up front (BEGIN IMMEDIATE) so a
        read-then-write sequence waits for competing writers instead of
        failing on lock upgrade. A lock still held after ``timeout`` surfaces
        as UnavailableError.
        """
        try:
            conn = self.engine.raw_connection()
        except PoolTimeoutError:
            raise UnavailableError("no database connection available")
        try:
            conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            conn.commit()
        except sqlite3.OperationalError as exc:
            if not _is_busy(exc):
                raise
            logger.warning(f"Database busy: {exc}")
            raise UnavailableError("database is busy, try again later") from exc
        finally:
            conn.close()

    def create_tables(self):
        """Create database tables with appropriate indexes."""
        with self.transaction(write=True) as conn:
            # Enumerations are lookup tables so new values are plain inserts.
            conn.execute("CREATE TABLE IF NOT EXISTS participant_roles (name TEXT PRIMARY KEY)")
            conn.execute("CREATE TABLE IF NOT EXISTS attendance_statuses (name TEXT PRIMARY KEY)")
            conn.executemany("INSERT OR IGNORE INTO participant_roles (name) VALUES (?)", [(r.value,) for r in Role])
            conn.executemany(
                "INSERT OR IGNORE INTO attendance_statuses (name) VALUES (?)", [(a.value,) for a in Attendance]
            )
            conn.execute(f'''
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    created_at REAL NOT NULL DEFAULT {NOW},
                    updated_at REAL NOT NULL DEFAULT {NOW}
                )
            ''')
            conn.execute(f'''
                CREATE TABLE IF NOT EXISTS events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    location TEXT NOT NULL DEFAULT '',
                    start_ts REAL NOT NULL,
                    organizer_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    created_at REAL NOT NULL DEFAULT {NOW},
                    updated_at REAL NOT NULL DEFAULT {NOW}
                )
            ''')
            conn.execute(f'''
                CREATE TABLE IF NOT EXISTS event_participants (
                    event_id INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    role TEXT NOT NULL REFERENCES participant_roles(name),
                    attendance TEXT REFERENCES attendance_statuses(name),
                    invited_by INTEGER REFERENCES users(id),
                    invited_at REAL NOT NULL DEFAULT {NOW},
                    updated_at REAL NOT NULL DEFAULT {NOW},
                    PRIMARY KEY (event_id, user_id)
                )
            ''')
            conn.execute(f'''
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_id INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    due_ts REAL,
                    assignee_id INTEGER REFERENCES users(id) ON DELETE SET NULL,
                    created_at REAL NOT NULL DEFAULT {NOW},
                    updated_at REAL NOT NULL DEFAULT {NOW}
                )
            ''')
            conn.execute('CREATE UNIQUE INDEX IF NOT EXISTS idx_events_start_ts ON events(start_ts)')
            conn.execute('CREATE INDEX IF NOT EXISTS idx_participants_user ON event_participants(user_id, role)')
            conn.execute('CREATE INDEX IF NOT EXISTS idx_tasks_event_id ON tasks(event_id)')

    # -------------------------------
    # Users
    # -------------------------------
    def add_user(self, name: str, email: str, password_hash: str) -> User:
        """Insert a user; a taken email raises UserExistsError."""
        try:
            with self.transaction(write=True) as conn:
                cursor = conn.execute(
                    'INSERT INTO users (name, email, password_hash) VALUES (?, ?, ?)',
                    (name, email, password_hash),
                )
                row = conn.execute('SELECT * FROM users WHERE id = ?', (cursor.lastrowid,)).fetchone()
        except sqlite3.IntegrityError:
            raise UserExistsError(email)
        return _user(row)

    def get_user_by_email(self, email: str) -> User | None:
        with self.transaction() as conn:
            row = conn.execute('SELECT * FROM users WHERE email = ?', (email,)).fetchone()
        return _user(row) if row else None

    # -------------------------------
    # Events
    # -------------------------------
    def create_event(self, title: str, description: str, location: str, start: datetime, organizer_id: int) -> Event:
        """Insert an event together with its organizer participant row."""
        try:
            with self.transaction(write=True) as conn:
                cursor = conn.execute('''
                    INSERT INTO events (title, description, location, start_ts, organizer_id)
                    VALUES (?, ?, ?, ?, ?)
                ''', (title, description, location, _ts(start), organizer_id))
                event_id = cursor.lastrowid
                conn.execute('''
                    INSERT INTO event_participants (event_id, user_id, role)
                    VALUES (?, ?, 'organizer')
                ''', (event_id, organizer_id))
                row = conn.execute('SELECT * FROM events WHERE id = ?', (event_id,)).fetchone()
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" in str(exc):
                raise ConflictError("an event already exists at this time", {"start_time": start.isoformat()})
            raise NotFoundError("organizer not found", {"user_id": organizer_id})
        return _event(row)

    def get_event(self, event_id: int) -> Event | None:
        with self.transaction(write=True) as conn:
            row = conn.execute('SELECT * FROM events WHERE id = ?', (event_id,)).fetchone()
        return _event(row) if row else None

    def list_events_by_role(self, user_id: int, role: Role) -> list[Event]:
        with self.transaction() as conn:
            rows = conn.execute('''
                SELECT e.* FROM events e
                JOIN event_participants p ON p.event_id = e.id
                WHERE p.user_id = ? AND p.role = ?
                ORDER BY e.start_ts ASC
            ''', (user_id, role.value)).fetchall()
        return [_event(r) for r in rows]

    def delete_event_if_organizer(self, event_id: int, user_id: int):
        """Delete an event with its participants and tasks; only its organizer may."""
        with self.transaction() as conn:
            if conn.execute(ORGANIZER_CHECK, (event_id, user_id)).fetchone() is None:
                raise ForbiddenError("only organizers can delete events", {"event_id": event_id})
            conn.execute('DELETE FROM events WHERE id = ?', (event_id,))

    # -------------------------------
    # Participants
    # -------------------------------
    def get_participant_role(self, event_id: int, user_id: int) -> Role | None:
        with self.transaction() as conn:
            row = conn.execute(
                'SELECT role FROM event_participants WHERE event_id = ? AND user_id = ?', (event_id, user_id)
            ).fetchone()
        return Role(row["role"]) if row else None

    def upsert_invite(self, event_id: int, inviter_id: int, invitee_id: int, role: Role):
        """Give the invitee a role on the event, replacing any role they held."""
        try:
            with self.transaction(write=True) as conn:
                if conn.execute(ORGANIZER_CHECK, (event_id, inviter_id)).fetchone() is None:
                    raise ForbiddenError("only organizers can invite", {"event_id": event_id})
                conn.execute(f'''
                    INSERT INTO event_participants (event_id, user_id, role, invited_by)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT (event_id, user_id) DO UPDATE
                    SET role = excluded.role, invited_by = excluded.invited_by, updated_at = {NOW}
                ''', (event_id, invitee_id, role.value, inviter_id))
        except sqlite3.IntegrityError:
            raise NotFoundError("invited user not found", {"user_id": invitee_id})

    def list_participants(self, event_id: int) -> list[Participant]:
        with self.transaction() as conn:
            rows = conn.execute('''
                SELECT p.event_id, p.user_id, u.name, u.email, p.role, p.attendance, p.invited_by
                FROM event_participants p
                JOIN users u ON u.id = p.user_id
                WHERE p.event_id = ?
                ORDER BY u.name
            ''', (event_id,)).fetchall()
        return [_participant(r) for r in rows]

    def get_participant(self, event_id: int, user_id: int) -> Participant | None:
        with self.transaction() as conn:
            row = conn.execute('''
                SELECT p.event_id, p.user_id, u.name, u.email, p.role, p.attendance, p.invited_by
                FROM event_participants p
                JOIN users u ON u.id = p.user_id
                WHERE p.event_id = ? AND p.user_id = ?
            ''', (event_id, user_id)).fetchone()
        return _participant(row) if row else None

    def upsert_attendance(self, event_id: int, user_id: int, status: Attendance):
        """Record an RSVP. A user with no prior membership joins as attendee."""
        try:
            with self.transaction(write=True) as conn:
                conn.execute(f'''
                    INSERT INTO event_participants (event_id, user_id, role, attendance)
                    VALUES (?, ?, 'attendee', ?)
                    ON CONFLICT (event_id, user_id) DO UPDATE
                    SET attendance = excluded.attendance, updated_at = {NOW}
                ''', (event_id, user_id, status.value))
        except sqlite3.IntegrityError:
            raise NotFoundError("event or user not found", {"event_id": event_id, "user_id": user_id})

    # -------------------------------
    # Tasks
    # -------------------------------
    def create_task(self, event_id: int, title: str, description: str = "",
                    due_date: Optional[datetime] = None, assignee_id: Optional[int] = None) -> Task:
        try:
            with self.transaction(write=True) as conn:
                cursor = conn.execute('''
                    INSERT INTO tasks (event_id, title, description, due_ts, assignee_id)
                    VALUES (?, ?, ?, ?, ?)
                ''', (event_id, title, description, _ts(due_date), assignee_id))
                row = conn.execute('SELECT * FROM tasks WHERE id = ?', (cursor.lastrowid,)).fetchone()
        except sqlite3.IntegrityError:
            raise NotFoundError("event or assignee not found", {"event_id": event_id, "assignee_id": assignee_id})
        return _task(row)

    # -------------------------------
    # Search
    # -------------------------------
    def search(self, criteria: SearchCriteria) -> SearchResult:
        event_sql, event_params = build_event_query(criteria)
        task_sql, task_params = build_task_query(criteria)
        logger.debug("Events query: %s %s", event_sql, event_params)
        logger.debug("Tasks query: %s %s", task_sql, task_params)
        with self.transaction() as conn:
            events = [_event(r) for r in conn.execute(event_sql, event_params).fetchall()]
            tasks = [_task(r) for r in conn.execute(task_sql, task_params).fetchall()]
        return SearchResult(events=events, tasks=tasks)

    def close(self):
        """Close every pooled connection."""
        self.engine.dispose()
