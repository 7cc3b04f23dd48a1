"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Lead CRM - Audit side channel                                               ║
║                                                                              ║
║  1. Risk score and retention tables                                          ║
║  2. AuditChannel: bounded, never raises, drains on stop                      ║
║  3. AuditLogService: tenant-scoped listing, statistics, anonymization        ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from datetime import datetime, timedelta, timezone

import pytest

from leadcrm.errors import NotFoundError
from leadcrm.models.audit import AuditEvent, AuditFilters
from leadcrm.services.audit import (
    AuditChannel,
    AuditLogService,
    anonymize_document,
    build_audit_document,
    build_audit_query,
    compute_retention_date,
    compute_risk_score,
    event_category,
    is_high_risk,
    requires_immediate_attention,
)

from .conftest import TENANT_A, TENANT_B, _db_op

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _event(tenant_id=TENANT_A, **overrides):
    data = {"tenant_id": tenant_id, "event_type": "data_modified", "resource": "leads", "action": "update"}
    data.update(overrides)
    return AuditEvent(**data)


class TestRiskScore:
    def test_capped_at_100(self):
        risk = compute_risk_score("data_deleted", "medium", True, ["gdpr"])
        assert risk["score"] == 100
        assert risk["threshold"] == 50
        assert "Sensitive data involved" in risk["factors"]
        assert "Compliance frameworks involved" in risk["factors"]

    def test_permission_denied_medium(self):
        risk = compute_risk_score("permission_denied", "medium")
        assert risk["score"] == 45
        assert risk["factors"] == ["Event type: permission_denied", "Severity: medium"]

    def test_unscored_event(self):
        assert compute_risk_score("login_success", "low")["score"] == 0

    def test_sensitive_bonus_without_base(self):
        assert compute_risk_score("data_modified", "high", True)["score"] == 20

    def test_brute_force_threshold(self):
        risk = compute_risk_score("brute_force_attempt", "critical")
        assert risk["score"] == 100
        assert risk["threshold"] == 70


class TestRetention:
    def test_default_seven_years(self):
        assert compute_retention_date(["gdpr"], "low", NOW) == NOW + timedelta(days=2555)

    def test_hipaa_ten_years(self):
        assert compute_retention_date(["hipaa"], "medium", NOW) == NOW + timedelta(days=3650)

    def test_critical_adds_a_year(self):
        assert compute_retention_date([], "critical", NOW) == NOW + timedelta(days=2920)
        assert compute_retention_date(["hipaa"], "critical", NOW) == NOW + timedelta(days=4015)


class TestClassification:
    def test_categories(self):
        assert event_category("login_failed") == "authentication"
        assert event_category("permission_denied") == "authorization"
        assert event_category("data_created") == "data_access"
        assert event_category("user_created") == "other"

    def test_attention(self):
        assert requires_immediate_attention({"severity": "critical", "event_type": "logout"})
        assert requires_immediate_attention({"severity": "low", "event_type": "suspicious_activity"})
        assert not requires_immediate_attention({"severity": "high", "event_type": "data_deleted"})

    def test_high_risk(self):
        assert is_high_risk({"risk_score": {"score": 75, "threshold": 70}})
        assert not is_high_risk({"risk_score": {"score": 45, "threshold": 50}})


class TestDocument:
    def test_enrichment(self):
        doc = build_audit_document(_event(event_type="data_deleted", severity="medium", is_sensitive=True,
                                          compliance_frameworks=["gdpr"]), NOW)
        assert doc["id"]
        assert doc["timestamp"] == NOW.isoformat()
        assert doc["category"] == "other"
        assert doc["is_anonymized"] is False
        assert doc["risk_score"]["score"] == 100
        assert doc["retention_date"] == NOW + timedelta(days=2555)
        assert doc["compliance_frameworks"] == ["gdpr"]

    def test_anonymize_sensitive(self):
        doc = {"is_sensitive": True, "ip_address": "192.168.1.10", "user_agent": "Mozilla",
               "request_data": {"phone": "555"}}
        changes = anonymize_document(doc)
        assert changes == {
            "is_anonymized": True,
            "ip_address": "192.168.*.*",
            "user_agent": "ANONYMIZED",
            "request_data": {"anonymized": True},
        }

    def test_anonymize_skips_non_sensitive(self):
        assert anonymize_document({"is_sensitive": False, "ip_address": "10.0.0.1"}) == {}
        assert anonymize_document({"is_sensitive": True, "is_anonymized": True}) == {}


class BrokenCollection:
    async def insert_one(self, doc):
        raise RuntimeError("disk full")


class BrokenDb:
    audit_logs = BrokenCollection()


class TestAuditChannel:
    def test_drain_writes_enriched_events(self, db):
        channel = AuditChannel(db, maxsize=10)
        assert channel.emit(_event()) is True
        assert channel.emit(_event(event_type="permission_denied", severity="medium")) is True
        assert channel.pending == 2
        assert _db_op(channel.drain()) == 2
        assert channel.written == 2
        docs = _db_op(db.audit_logs.find({}, {"_id": 0}).to_list(10))
        assert {d["event_type"] for d in docs} == {"data_modified", "permission_denied"}
        assert all("risk_score" in d and "retention_date" in d for d in docs)

    def test_full_queue_drops(self, db):
        channel = AuditChannel(db, maxsize=1)
        assert channel.emit(_event()) is True
        assert channel.emit(_event()) is False
        assert channel.dropped == 1

    def test_write_failure_is_swallowed(self):
        channel = AuditChannel(BrokenDb(), maxsize=10)
        channel.emit(_event())
        _db_op(channel.drain())
        assert channel.written == 0
        assert channel.pending == 0

    def test_stop_flushes_worker(self, db):
        async def scenario():
            channel = AuditChannel(db, maxsize=10)
            channel.start()
            for _ in range(3):
                channel.emit(_event())
            await channel.stop()
            return channel

        channel = _db_op(scenario())
        assert channel.written == 3
        assert _db_op(db.audit_logs.count_documents({})) == 3


class TestAuditLogService:
    def _seed(self, db):
        docs = [
            build_audit_document(_event(event_type="data_created")),
            build_audit_document(_event(event_type="data_deleted", severity="medium", is_sensitive=True,
                                        compliance_frameworks=["gdpr"], ip_address="10.1.2.3")),
            build_audit_document(_event(event_type="permission_denied", severity="medium")),
            build_audit_document(_event(TENANT_B, event_type="data_created")),
        ]
        for doc in docs:
            _db_op(db.audit_logs.insert_one(dict(doc)))
        return docs

    def test_list_is_tenant_scoped(self, db):
        self._seed(db)
        result = _db_op(AuditLogService(db).list(TENANT_A))
        assert result["total"] == 3
        assert all(e["tenant_id"] == TENANT_A for e in result["events"])

    def test_list_filters(self, db):
        self._seed(db)
        logs = AuditLogService(db)
        assert _db_op(logs.list(TENANT_A, AuditFilters(event_type="data_created")))["total"] == 1
        assert _db_op(logs.list(TENANT_A, AuditFilters(is_sensitive=True)))["total"] == 1
        assert _db_op(logs.list(TENANT_A, AuditFilters(framework="gdpr")))["total"] == 1

    def test_statistics(self, db):
        self._seed(db)
        stats = _db_op(AuditLogService(db).statistics(TENANT_A))
        assert stats["total_events"] == 3
        assert stats["events_by_type"] == {"data_created": 1, "data_deleted": 1, "permission_denied": 1}
        assert stats["events_by_severity"] == {"low": 1, "medium": 2}
        assert stats["high_risk_events"] == 1
        assert stats["sensitive_events"] == 1
        assert stats["average_risk_score"] == round((0 + 100 + 45) / 3, 2)

    def test_get_other_tenant(self, db):
        docs = self._seed(db)
        with pytest.raises(NotFoundError):
            _db_op(AuditLogService(db).get(docs[3]["id"], TENANT_A))

    def test_anonymize(self, db):
        docs = self._seed(db)
        event = _db_op(AuditLogService(db).anonymize(docs[1]["id"], TENANT_A))
        assert event["is_anonymized"] is True
        assert event["ip_address"] == "10.1.*.*"

    def test_anonymize_non_sensitive_unchanged(self, db):
        docs = self._seed(db)
        event = _db_op(AuditLogService(db).anonymize(docs[0]["id"], TENANT_A))
        assert event["is_anonymized"] is False


class TestTimeWindow:
    """start/end are compared against stored UTC isoformat strings"""

    def test_offset_start_normalized(self):
        start = datetime(2026, 1, 1, 11, 30, tzinfo=timezone(timedelta(hours=2)))
        query = build_audit_query(AuditFilters(start=start))
        assert query == {"timestamp": {"$gte": "2026-01-01T09:30:00+00:00"}}

    def test_naive_end_taken_as_utc(self):
        query = build_audit_query(AuditFilters(end=datetime(2026, 1, 1, 12, 0)))
        assert query["timestamp"]["$lte"] == "2026-01-01T12:00:00+00:00"

    def test_stored_timestamp_is_utc(self):
        local = datetime(2026, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        assert build_audit_document(_event(timestamp=local))["timestamp"] == "2026-01-01T10:00:00+00:00"

    def test_window_with_offset(self, db):
        inside = build_audit_document(_event(timestamp=datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc)))
        before = build_audit_document(_event(timestamp=datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)))
        for doc in (inside, before):
            _db_op(db.audit_logs.insert_one(dict(doc)))
        start = datetime(2026, 1, 1, 11, 30, tzinfo=timezone(timedelta(hours=2)))
        result = _db_op(AuditLogService(db).list(TENANT_A, AuditFilters(start=start)))
        assert [e["id"] for e in result["events"]] == [inside["id"]]
