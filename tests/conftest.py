"""
Shared pytest fixtures for the Civic Issue Desk test suite.

Provides an in-memory MongoDB (mongomock), an httpx AsyncClient bound to the
FastAPI app through ASGITransport, and pre-authenticated admin headers.
"""

import itertools
import os
import tempfile
from datetime import timedelta

# Settings are read at import time
os.environ.setdefault("JWT_SECRET", "test-secret-for-civicdesk-suite-0123456789abcdef")
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="civicdesk-uploads-")

import httpx
import mongomock
import pytest
import pytest_asyncio

from civicdesk.admins import create_admin
from civicdesk.api import app, limiter
from civicdesk.database import ensure_indexes, get_db, utcnow
from civicdesk.issues import create_issue, validate_submission

ADMIN_EMAIL = "admin@civic.gov"
ADMIN_PASSWORD = "admin123"


@pytest.fixture
def db():
    """A fresh in-memory database per test."""
    database = mongomock.MongoClient().civic_issues
    ensure_indexes(database)
    return database


@pytest_asyncio.fixture
async def client(db):
    """In-process httpx AsyncClient with the app's database swapped for mongomock."""
    # Disable rate limiting so repeated logins aren't throttled
    limiter.enabled = False
    app.dependency_overrides[get_db] = lambda: db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def admin(db):
    return create_admin(db, "Test Admin", ADMIN_EMAIL, ADMIN_PASSWORD)


@pytest_asyncio.fixture
async def admin_headers(client, admin):
    resp = await client.post("/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert resp.status_code == 200, f"Login failed: {resp.text}"
    return {"Authorization": f"Bearer {resp.json()['token']}"}


def issue_payload(**overrides) -> dict:
    """A valid raw submission with nested objects, as the core expects them."""
    payload = {
        "title": "Pothole",
        "description": "Large pothole",
        "category": "Road",
        "location": {"address": "Main St"},
        "reporterInfo": {"name": "A", "email": "a@x.com", "phone": "555-0100"},
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def seed_issue(db):
    """Insert issues directly through the core, one second apart in creation order."""
    base = utcnow() - timedelta(days=1)
    counter = itertools.count()

    def _seed(created=None, images=(), **overrides):
        n = next(counter)
        submission = validate_submission(issue_payload(**overrides))
        ack = create_issue(db, submission, images=images,
                           now=created or base + timedelta(seconds=n))
        return ack.id
    return _seed
