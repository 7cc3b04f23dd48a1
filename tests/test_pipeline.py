"""
Lead CRM - Pipeline board aggregation
Run: pytest tests/test_pipeline.py -v
"""

from leadcrm.models.lead import VALID_LEAD_STATUSES, LeadFilters
from leadcrm.services.lead_service import LeadService
from leadcrm.services.pipeline import get_pipeline

from .conftest import TENANT_A, TENANT_B, _db_op


def _seed(db):
    service = LeadService(db)
    ids = []
    for i, status in enumerate(["new", "contacted", "contacted", "closed", "lost"]):
        lead = _db_op(service.create(
            {"name": f"Lead {i}", "phone": f"55500000{i:02d}", "tags": ["hot"] if i % 2 else []},
            TENANT_A,
        ))
        if status != "new":
            _db_op(service.set_status(lead["id"], TENANT_A, status))
        ids.append(lead["id"])
    _db_op(service.create({"name": "Other", "phone": "5550000000"}, TENANT_B))
    return ids


class TestPipeline:
    def test_empty_board_has_all_buckets(self, db):
        board = _db_op(get_pipeline(db, TENANT_A))
        assert list(board["pipeline"].keys()) == VALID_LEAD_STATUSES
        assert board["total"] == 0
        assert all(count == 0 for count in board["stats"].values())

    def test_partition(self, db):
        """Each lead lands in exactly one bucket, counts add up."""
        ids = _seed(db)
        board = _db_op(get_pipeline(db, TENANT_A))
        assert board["total"] == 5
        assert sum(board["stats"].values()) == board["total"]
        assert board["stats"]["contacted"] == 2
        assert board["stats"]["under_contract"] == 0
        seen = [lead["id"] for bucket in board["pipeline"].values() for lead in bucket]
        assert sorted(seen) == sorted(ids)
        for status, bucket in board["pipeline"].items():
            assert all(lead["status"] == status for lead in bucket)

    def test_insertion_order_within_bucket(self, db):
        ids = _seed(db)
        contacted = [lead["id"] for lead in _db_op(get_pipeline(db, TENANT_A))["pipeline"]["contacted"]]
        assert contacted == [ids[1], ids[2]]

    def test_status_filter_ignored(self, db):
        _seed(db)
        board = _db_op(get_pipeline(db, TENANT_A, LeadFilters(status="closed")))
        assert board["total"] == 5
        assert board["stats"]["new"] == 1

    def test_other_filters_apply(self, db):
        _seed(db)
        board = _db_op(get_pipeline(db, TENANT_A, LeadFilters(tags=["hot"])))
        assert board["total"] == 2
        assert sum(board["stats"].values()) == 2

    def test_unknown_status_skipped(self, db):
        _seed(db)
        _db_op(db.leads.insert_one({"id": "legacy", "tenant_id": TENANT_A, "phone": "5559999999", "status": "archived"}))
        board = _db_op(get_pipeline(db, TENANT_A))
        assert board["total"] == 5
