"""
Lead CRM - Pipeline board aggregation

Reads every lead of the tenant matching the filters and buckets them by
status. All five columns are always returned. The `status` filter is not
applied here: a board always spans every column. No pagination, sized for
boards of a few hundred leads.
"""

import logging
from typing import Optional

from ..models.lead import VALID_LEAD_STATUSES, LeadFilters
from .lead_service import build_lead_query
from .tenant_store import scoped

logger = logging.getLogger("pipeline")


async def get_pipeline(db, tenant_id: str, filters: Optional[LeadFilters] = None) -> dict:
    query = build_lead_query(filters, include_status=False)
    # _id order == insertion order
    leads = await scoped(db, "leads", tenant_id).find(query, sort=[("_id", 1)])

    pipeline = {status: [] for status in VALID_LEAD_STATUSES}
    for lead in leads:
        bucket = pipeline.get(lead.get("status"))
        if bucket is None:
            logger.warning(f"[PIPELINE] lead {lead.get('id')} has unknown status {lead.get('status')!r}")
            continue
        bucket.append(lead)

    stats = {status: len(items) for status, items in pipeline.items()}
    return {
        "pipeline": pipeline,
        "total": sum(stats.values()),
        "stats": stats,
    }
