import sqlite3
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime

import pytest

from database import Database
from errors import ConflictError, ForbiddenError, NotFoundError, UnavailableError, UserExistsError
from models import Attendance, Role
from search import SearchCriteria

START = datetime(2030, 1, 1, 10, tzinfo=UTC)


@pytest.fixture
def owner(make_user):
    return make_user("Owner")


@pytest.fixture
def guest(make_user):
    return make_user("Guest")


def count(db, sql, *params):
    with db.transaction() as conn:
        return conn.execute(sql, params).fetchone()[0]


def test_add_user_rejects_duplicate_email(db):
    db.add_user("Ann", "ann@x.com", "hash")
    with pytest.raises(UserExistsError):
        db.add_user("Other Ann", "ann@x.com", "hash")


def test_get_user(db):
    user = db.add_user("Ann", "ann@x.com", "hash")
    assert db.get_user_by_email("ann@x.com") == user
    assert db.get_user_by_email("nobody@x.com") is None
    assert user.created_at.tzinfo is not None


def test_create_event_inserts_single_organizer_row(db, owner):
    event = db.create_event("Launch", "", "", START, owner.id)
    assert event.start_time == START
    participants = db.list_participants(event.id)
    assert [(p.user_id, p.role) for p in participants] == [(owner.id, Role.ORGANIZER)]
    assert participants[0].user_id == event.organizer_id


def test_create_event_conflict_on_same_start(db, owner, guest):
    db.create_event("Launch", "", "", START, owner.id)
    with pytest.raises(ConflictError):
        db.create_event("Clash", "", "", START, guest.id)
    assert count(db, "SELECT COUNT(*) FROM events") == 1
    assert count(db, "SELECT COUNT(*) FROM event_participants") == 1


def test_failed_create_leaves_nothing_behind(db):
    with pytest.raises(NotFoundError):
        db.create_event("Orphan", "", "", START, 424242)
    assert count(db, "SELECT COUNT(*) FROM events") == 0
    assert count(db, "SELECT COUNT(*) FROM event_participants") == 0


def test_list_events_by_role(db, owner, guest):
    first = db.create_event("First", "", "", START, owner.id)
    second = db.create_event("Second", "", "", datetime(2029, 1, 1, tzinfo=UTC), owner.id)
    db.upsert_invite(first.id, owner.id, guest.id, Role.ATTENDEE)
    assert [e.id for e in db.list_events_by_role(owner.id, Role.ORGANIZER)] == [second.id, first.id]
    assert [e.id for e in db.list_events_by_role(guest.id, Role.ATTENDEE)] == [first.id]
    assert db.list_events_by_role(guest.id, Role.ORGANIZER) == []


def test_delete_event_requires_organizer_and_cascades(db, owner, guest):
    event = db.create_event("Launch", "", "", START, owner.id)
    db.upsert_invite(event.id, owner.id, guest.id, Role.ATTENDEE)
    db.create_task(event.id, "Slides")

    with pytest.raises(ForbiddenError):
        db.delete_event_if_organizer(event.id, guest.id)
    assert db.get_event(event.id) is not None

    db.delete_event_if_organizer(event.id, owner.id)
    assert db.get_event(event.id) is None
    assert count(db, "SELECT COUNT(*) FROM event_participants") == 0
    assert count(db, "SELECT COUNT(*) FROM tasks") == 0


def test_delete_missing_event_is_forbidden(db, owner):
    with pytest.raises(ForbiddenError):
        db.delete_event_if_organizer(999, owner.id)


def test_invite_overwrites_role(db, owner, guest):
    event = db.create_event("Launch", "", "", START, owner.id)
    db.upsert_invite(event.id, owner.id, guest.id, Role.ATTENDEE)
    db.upsert_invite(event.id, owner.id, guest.id, Role.COLLABORATOR)
    participant = db.get_participant(event.id, guest.id)
    assert participant.role is Role.COLLABORATOR
    assert participant.invited_by == owner.id
    assert len(db.list_participants(event.id)) == 2


def test_invite_requires_organizer(db, owner, guest, make_user):
    event = db.create_event("Launch", "", "", START, owner.id)
    db.upsert_invite(event.id, owner.id, guest.id, Role.COLLABORATOR)
    third = make_user("Third")
    with pytest.raises(ForbiddenError):
        db.upsert_invite(event.id, guest.id, third.id, Role.ATTENDEE)
    assert db.get_participant(event.id, third.id) is None


def test_attendance_inserts_attendee_then_updates(db, owner, guest):
    event = db.create_event("Launch", "", "", START, owner.id)
    db.upsert_attendance(event.id, guest.id, Attendance.MAYBE)
    db.upsert_attendance(event.id, guest.id, Attendance.MAYBE)
    participant = db.get_participant(event.id, guest.id)
    assert (participant.role, participant.attendance) == (Role.ATTENDEE, Attendance.MAYBE)

    db.upsert_attendance(event.id, owner.id, Attendance.GOING)
    organizer = db.get_participant(event.id, owner.id)
    assert (organizer.role, organizer.attendance) == (Role.ORGANIZER, Attendance.GOING)
    assert count(db, "SELECT COUNT(*) FROM event_participants") == 2


def test_attendance_for_missing_event(db, guest):
    with pytest.raises(NotFoundError):
        db.upsert_attendance(999, guest.id, Attendance.GOING)


def test_tasks(db, owner, guest):
    event = db.create_event("Launch", "", "", START, owner.id)
    undated = db.create_task(event.id, "Someday")
    dated = db.create_task(event.id, "Slides", "deck", datetime(2029, 12, 1, tzinfo=UTC), guest.id)
    assert dated.assignee_id == guest.id
    assert dated.due_date == datetime(2029, 12, 1, tzinfo=UTC)
    assert [t.id for t in db.search(SearchCriteria()).tasks] == [dated.id, undated.id]
    with pytest.raises(NotFoundError):
        db.create_task(event.id, "Ghost", assignee_id=424242)


def test_schema_creation_is_repeatable(db, owner):
    event = db.create_event("Launch", "", "", START, owner.id)
    reopened = Database(db.db_name, pool_size=1)
    try:
        assert reopened.get_event(event.id) == event
        with reopened.transaction() as conn:
            roles = {r[0] for r in conn.execute("SELECT name FROM participant_roles")}
        assert roles == {"organizer", "attendee", "collaborator"}
    finally:
        reopened.close()


def test_unknown_role_rejected_by_store(db, owner, guest):
    event = db.create_event("Launch", "", "", START, owner.id)
    with pytest.raises(sqlite3.IntegrityError):
        with db.transaction() as conn:
            conn.execute(
                "INSERT INTO event_participants (event_id, user_id, role) VALUES (?, ?, 'vip')",
                (event.id, guest.id),
            )
    assert db.get_participant(event.id, guest.id) is None


def test_concurrent_invites_all_succeed(tmp_path):
    db = Database(str(tmp_path / "busy.db"), pool_size=8, timeout=5.0)
    try:
        owner = db.add_user("Owner", "owner@x.com", "hash")
        event = db.create_event("Launch", "", "", START, owner.id)
        guests = [db.add_user(f"Guest {i}", f"guest{i}@x.com", "hash") for i in range(40)]

        with ThreadPoolExecutor(max_workers=8) as pool:
            futures = [pool.submit(db.upsert_invite, event.id, owner.id, g.id, Role.ATTENDEE) for g in guests]
            for future in futures:
                future.result()

        assert len(db.list_participants(event.id)) == 41
    finally:
        db.close()


def test_held_write_lock_surfaces_as_unavailable(tmp_path):
    db = Database(str(tmp_path / "locked.db"), pool_size=2, timeout=0.2)
    try:
        with db.transaction(write=True):
            with pytest.raises(UnavailableError):
                db.add_user("Ann", "ann@x.com", "hash")
        assert db.get_user_by_email("ann@x.com") is None
    finally:
        db.close()


def test_pool_exhaustion_surfaces_as_unavailable(tmp_path):
    db = Database(str(tmp_path / "small.db"), pool_size=1, timeout=0.2)
    try:
        with db.transaction():
            with pytest.raises(UnavailableError):
                db.get_user_by_email("ann@x.com")
    finally:
        db.close()
