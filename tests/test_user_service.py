"""
Lead CRM - Users, sign-in upsert and sessions
"""

import pytest

from leadcrm.errors import NotFoundError, ValidationError
from leadcrm.services.permissions import AccessControl
from leadcrm.services.user_service import UserService

from .conftest import TENANT_A, TENANT_B, _db_op, seed_user


def _profile(**overrides):
    data = {
        "google_id": "google-123",
        "email": "Agent@Realty.com",
        "tenant_id": TENANT_A,
        "name": "Alex Agent",
        "first_name": "Alex",
        "last_name": "Agent",
    }
    data.update(overrides)
    return data


@pytest.fixture
def users(db, audit):
    return UserService(db, AccessControl(), audit)


class TestOAuthUpsert:
    def test_first_sign_in_creates_rep(self, users, audit):
        user = _db_op(users.upsert_from_oauth(_profile()))
        assert user["role"] == "acquisition_rep"
        assert user["email"] == "agent@realty.com"
        assert user["tenant_id"] == TENANT_A
        assert user["is_active"] is True
        assert user["login_count"] == 1
        assert "leads:create" in user["permissions"]
        assert "users:delete" not in user["permissions"]
        assert user["preferences"] == {"theme": "system", "notifications": True, "default_view": "pipeline"}
        assert audit.types() == ["user_created", "login_success"]

    def test_second_sign_in_refreshes_profile(self, users):
        first = _db_op(users.upsert_from_oauth(_profile()))
        second = _db_op(users.upsert_from_oauth(_profile(name="Alex A.")))
        assert second["id"] == first["id"]
        assert second["name"] == "Alex A."
        assert second["login_count"] == 2
        assert "_id" not in second

    def test_tenant_is_fixed(self, users):
        first = _db_op(users.upsert_from_oauth(_profile()))
        again = _db_op(users.upsert_from_oauth(_profile(tenant_id=TENANT_B)))
        assert again["tenant_id"] == first["tenant_id"] == TENANT_A

    def test_missing_tenant_rejected(self, users):
        with pytest.raises(ValidationError):
            _db_op(users.upsert_from_oauth(_profile(tenant_id="  ")))


class TestSessions:
    def test_resolve_and_end(self, users):
        user = _db_op(users.upsert_from_oauth(_profile()))
        session = _db_op(users.create_session(user))
        assert _db_op(users.resolve_session(session["token"]))["id"] == user["id"]
        _db_op(users.end_session(session["token"]))
        assert _db_op(users.resolve_session(session["token"])) is None

    def test_expired_session(self, db, users):
        user = _db_op(users.upsert_from_oauth(_profile()))
        session = _db_op(users.create_session(user))
        _db_op(db.sessions.update_one(
            {"token": session["token"]}, {"$set": {"expires_at": "2000-01-01T00:00:00+00:00"}}
        ))
        assert _db_op(users.resolve_session(session["token"])) is None

    def test_deactivation_ends_sessions(self, db, users):
        user = _db_op(users.upsert_from_oauth(_profile()))
        session = _db_op(users.create_session(user))
        _db_op(users.set_active(user["id"], TENANT_A, False))
        assert _db_op(users.resolve_session(session["token"])) is None


class TestUserCrud:
    def test_role_change_refreshes_snapshot(self, db, users, audit):
        rep = seed_user(db, role="acquisition_rep")
        updated = _db_op(users.update(rep["id"], TENANT_A, {"role": "disposition_manager"}))
        assert updated["role"] == "disposition_manager"
        assert "leads:assign" in updated["permissions"]
        assert "leads:create" not in updated["permissions"]
        assert audit.events[-1].event_type == "role_assigned"

    def test_invalid_role(self, db, users):
        rep = seed_user(db, role="acquisition_rep")
        with pytest.raises(ValidationError):
            _db_op(users.update(rep["id"], TENANT_A, {"role": "superuser"}))

    def test_null_name_rejected(self, db, users):
        rep = seed_user(db)
        for field in ("name", "first_name", "last_name"):
            with pytest.raises(ValidationError):
                _db_op(users.update(rep["id"], TENANT_A, {field: None}))
        assert _db_op(users.get(rep["id"], TENANT_A))["name"] == "Test User"

    def test_other_tenant_not_found(self, db, users):
        outsider = seed_user(db, tenant_id=TENANT_B)
        with pytest.raises(NotFoundError):
            _db_op(users.get(outsider["id"], TENANT_A))
        with pytest.raises(NotFoundError):
            _db_op(users.delete(outsider["id"], TENANT_A))

    def test_list(self, db, users):
        seed_user(db)
        seed_user(db, is_active=False)
        seed_user(db, tenant_id=TENANT_B)
        assert len(_db_op(users.list(TENANT_A))) == 2
        assert len(_db_op(users.list(TENANT_A, include_inactive=False))) == 1

    def test_delete(self, db, users):
        user = seed_user(db)
        _db_op(users.delete(user["id"], TENANT_A))
        with pytest.raises(NotFoundError):
            _db_op(users.get(user["id"], TENANT_A))

    def test_get_permissions(self, db, users):
        user = seed_user(db, role="admin")
        assert "audit:manage" in _db_op(users.get_permissions(user["id"], TENANT_A))

    def test_update_preferences(self, db, users):
        user = seed_user(db)
        updated = _db_op(users.update_preferences(user["id"], TENANT_A, {"theme": "dark"}))
        assert updated["preferences"] == {"theme": "dark", "notifications": True, "default_view": "pipeline"}

    def test_invalid_preference(self, db, users):
        user = seed_user(db)
        with pytest.raises(ValidationError):
            _db_op(users.update_preferences(user["id"], TENANT_A, {"default_view": "kanban"}))
