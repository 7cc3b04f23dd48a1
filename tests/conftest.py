"""
Shared fixtures: an in-memory Mongo (mongomock-motor) and helpers to seed it.
"""

import asyncio
import uuid

import pytest
from mongomock_motor import AsyncMongoMockClient

from leadcrm.config import now_iso
from leadcrm.services.permissions import AccessControl
from leadcrm.services.tenant_store import ensure_indexes

TENANT_A = "tenant-a"
TENANT_B = "tenant-b"


def _db_op(coro):
    """Run async DB operation in a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def make_user(tenant_id=TENANT_A, role="admin", is_active=True, **extra):
    access = AccessControl()
    now = now_iso()
    user = {
        "id": str(uuid.uuid4()),
        "google_id": f"g-{uuid.uuid4().hex[:12]}",
        "tenant_id": tenant_id,
        "email": f"{uuid.uuid4().hex[:8]}@example.com",
        "name": "Test User",
        "first_name": "Test",
        "last_name": "User",
        "avatar_url": None,
        "role": role,
        "permissions": sorted(access.permissions_for(role)),
        "is_active": is_active,
        "preferences": {"theme": "system", "notifications": True, "default_view": "pipeline"},
        "login_count": 0,
        "last_login": None,
        "created_at": now,
        "updated_at": now,
    }
    user.update(extra)
    return user


def seed_user(db, **kwargs):
    user = make_user(**kwargs)
    _db_op(db.users.insert_one(dict(user)))
    return user


class RecordingAudit:
    """Stand-in for AuditChannel that keeps emitted events in memory."""

    def __init__(self):
        self.events = []

    def emit(self, event):
        self.events.append(event)
        return True

    def types(self):
        return [e.event_type for e in self.events]


@pytest.fixture
def db():
    client = AsyncMongoMockClient()
    database = client[f"leadcrm_test_{uuid.uuid4().hex[:8]}"]
    _db_op(ensure_indexes(database))
    return database


@pytest.fixture
def audit():
    return RecordingAudit()
