"""
Pytest configuration.

MongoDB is replaced by an in-memory mongomock database wired through
FastAPI's dependency_overrides, so no server is needed. AnyIO runs the async
tests on asyncio.
"""
import httpx
import mongomock
import pytest
from httpx import ASGITransport

import main
from database import USERS, ensure_indexes, get_db, utcnow
from security import create_access_token, get_password_hash

PASSWORD = "password"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session")
def password_hash():
    # bcrypt is slow; hash once per run.
    return get_password_hash(PASSWORD)


@pytest.fixture
def db():
    database = mongomock.MongoClient(tz_aware=True)["parent_portal_test"]
    ensure_indexes(database)
    main.app.dependency_overrides[get_db] = lambda: database
    yield database
    main.app.dependency_overrides.clear()


@pytest.fixture
async def client(db, anyio_backend):
    async with httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test") as c:
        yield c


@pytest.fixture
def make_user(db, password_hash):
    counter = {"n": 0}

    def _make(role="parent", name=None, email=None, phone="5551234567"):
        counter["n"] += 1
        n = counter["n"]
        doc = {
            "name": name or f"{role.title()} {n}",
            "email": email or f"{role}{n}@school.org",
            "password_hash": password_hash,
            "phone": phone,
            "role": role,
            "created_at": utcnow(),
            "updated_at": utcnow(),
        }
        doc["_id"] = db[USERS].insert_one(doc).inserted_id
        return doc

    return _make


@pytest.fixture
def auth():
    """Authorization header for a user document."""
    def _auth(user):
        return {"Authorization": f"Bearer {create_access_token(user)}"}
    return _auth
