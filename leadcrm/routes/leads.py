"""
Lead CRM - Routes Leads
Thin mapping onto LeadService; the tenant always comes from the session.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ..models.lead import (
    Assignment,
    BulkAssignment,
    BulkLeadCreate,
    BulkLeadIds,
    BulkLeadUpdate,
    BulkStatusChange,
    LeadCreate,
    LeadFilters,
    LeadPriority,
    LeadStatus,
    LeadUpdate,
    StatusChange,
    TagPayload,
)
from ..services.lead_service import LeadService
from ..services.permissions import require_permission
from ..services.pipeline import get_pipeline
from .deps import get_db, get_lead_service

router = APIRouter(prefix="/leads", tags=["Leads"])


def lead_filters(
    status: Optional[LeadStatus] = None,
    assigned_to: Optional[str] = None,
    source: Optional[str] = None,
    priority: Optional[LeadPriority] = None,
    tags: Optional[List[str]] = Query(None),
    search: Optional[str] = None,
) -> LeadFilters:
    return LeadFilters(
        status=status, assigned_to=assigned_to, source=source, priority=priority, tags=tags, search=search,
    )


@router.get("")
async def list_leads(
    filters: LeadFilters = Depends(lead_filters),
    limit: int = 100,
    skip: int = 0,
    user: dict = Depends(require_permission("leads:read")),
    leads: LeadService = Depends(get_lead_service),
):
    return await leads.list(user["tenant_id"], filters, limit=limit, skip=skip)


@router.post("", status_code=201)
async def create_lead(
    data: LeadCreate,
    user: dict = Depends(require_permission("leads:create")),
    leads: LeadService = Depends(get_lead_service),
):
    return await leads.create(data, user["tenant_id"], actor=user)


@router.get("/pipeline")
async def pipeline_board(
    filters: LeadFilters = Depends(lead_filters),
    user: dict = Depends(require_permission("pipeline:read")),
    db=Depends(get_db),
):
    """Board view: five status columns. The status filter is ignored here."""
    return await get_pipeline(db, user["tenant_id"], filters)


@router.get("/stats")
async def lead_stats(
    user: dict = Depends(require_permission("leads:read")),
    leads: LeadService = Depends(get_lead_service),
):
    return await leads.stats(user["tenant_id"])


# ==================== BULK (declared before /{lead_id}) ====================

@router.post("/bulk", status_code=201)
async def bulk_create_leads(
    data: BulkLeadCreate,
    user: dict = Depends(require_permission("leads:create")),
    leads: LeadService = Depends(get_lead_service),
):
    created = await leads.bulk_create(data.leads, user["tenant_id"], actor=user)
    return {"leads": created, "count": len(created)}


@router.patch("/bulk")
async def bulk_update_leads(
    data: BulkLeadUpdate,
    user: dict = Depends(require_permission("leads:update")),
    leads: LeadService = Depends(get_lead_service),
):
    return await leads.bulk_update(data.lead_ids, user["tenant_id"], data.patch, actor=user)


@router.patch("/bulk/status")
async def bulk_change_status(
    data: BulkStatusChange,
    user: dict = Depends(require_permission("leads:update")),
    leads: LeadService = Depends(get_lead_service),
):
    return await leads.bulk_set_status(data.lead_ids, user["tenant_id"], data.status, actor=user)


@router.patch("/bulk/assign")
async def bulk_assign_leads(
    data: BulkAssignment,
    user: dict = Depends(require_permission("leads:assign")),
    leads: LeadService = Depends(get_lead_service),
):
    return await leads.bulk_assign(data.lead_ids, user["tenant_id"], data.user_id, actor=user)


@router.post("/bulk/delete")
async def bulk_delete_leads(
    data: BulkLeadIds,
    user: dict = Depends(require_permission("leads:delete")),
    leads: LeadService = Depends(get_lead_service),
):
    return await leads.bulk_delete(data.lead_ids, user["tenant_id"], actor=user)


@router.get("/{lead_id}")
async def get_lead(
    lead_id: str,
    user: dict = Depends(require_permission("leads:read")),
    leads: LeadService = Depends(get_lead_service),
):
    return await leads.get(lead_id, user["tenant_id"])


@router.patch("/{lead_id}")
async def update_lead(
    lead_id: str,
    patch: LeadUpdate,
    user: dict = Depends(require_permission("leads:update")),
    leads: LeadService = Depends(get_lead_service),
):
    return await leads.update(lead_id, user["tenant_id"], patch, actor=user)


@router.delete("/{lead_id}")
async def delete_lead(
    lead_id: str,
    user: dict = Depends(require_permission("leads:delete")),
    leads: LeadService = Depends(get_lead_service),
):
    await leads.delete(lead_id, user["tenant_id"], actor=user)
    return {"success": True}


@router.patch("/{lead_id}/status")
async def change_status(
    lead_id: str,
    data: StatusChange,
    user: dict = Depends(require_permission("leads:update")),
    leads: LeadService = Depends(get_lead_service),
):
    """Also the drop target of the pipeline board."""
    return await leads.move_in_pipeline(lead_id, user["tenant_id"], data.status, actor=user)


@router.patch("/{lead_id}/assign")
async def assign_lead(
    lead_id: str,
    data: Assignment,
    user: dict = Depends(require_permission("leads:assign")),
    leads: LeadService = Depends(get_lead_service),
):
    return await leads.assign(lead_id, user["tenant_id"], data.user_id, actor=user)


@router.post("/{lead_id}/tags")
async def add_tag(
    lead_id: str,
    data: TagPayload,
    user: dict = Depends(require_permission("leads:update")),
    leads: LeadService = Depends(get_lead_service),
):
    return await leads.add_tag(lead_id, user["tenant_id"], data.tag, actor=user)


@router.delete("/{lead_id}/tags/{tag}")
async def remove_tag(
    lead_id: str,
    tag: str,
    user: dict = Depends(require_permission("leads:update")),
    leads: LeadService = Depends(get_lead_service),
):
    return await leads.remove_tag(lead_id, user["tenant_id"], tag, actor=user)


@router.post("/{lead_id}/contact")
async def record_contact(
    lead_id: str,
    user: dict = Depends(require_permission("leads:update")),
    leads: LeadService = Depends(get_lead_service),
):
    return await leads.record_contact(lead_id, user["tenant_id"], actor=user)
