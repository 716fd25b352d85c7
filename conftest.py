import os

# Cheap hashes for the test run; read when auth is imported.
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from auth import hash_password
from database import Database
from main import app, get_event_manager, get_search_service, get_user_manager
from manager import EventManager, SearchService, UserManager


@pytest.fixture
def db(tmp_path):
    database = Database(str(tmp_path / "events.db"), pool_size=2, timeout=1.0)
    yield database
    database.close()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(name=None, password="password123"):
        counter["n"] += 1
        name = name or f"User {counter['n']}"
        email = f"{name.lower().replace(' ', '.')}@example.com"
        return db.add_user(name, email, hash_password(password))

    return _make


@pytest.fixture
def client(db):
    users, events, search = UserManager(db), EventManager(db), SearchService(db)
    app.dependency_overrides[get_user_manager] = lambda: users
    app.dependency_overrides[get_event_manager] = lambda: events
    app.dependency_overrides[get_search_service] = lambda: search
    yield TestClient(app)
    app.dependency_overrides.clear()