"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Lead CRM - Lead lifecycle service                                           ║
║                                                                              ║
║  - Every query is tenant-scoped through TenantScopedCollection               ║
║  - A lead of another tenant is reported as NotFound, never as Forbidden      ║
║  - Duplicate phone: pre-check for a clean error, unique index as the guard   ║
║  - Every mutation stamps updated_at and emits an audit event (no await)      ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import re
import uuid
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import DuplicateKeyError

from ..config import now_iso
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models.audit import AuditEvent, AuditEventType, AuditSeverity, ComplianceFramework
from ..models.lead import (
    MAX_BULK_SIZE,
    VALID_LEAD_STATUSES,
    LeadCreate,
    LeadFilters,
    LeadPriority,
    LeadStatus,
    LeadUpdate,
)
from .tenant_store import scoped

logger = logging.getLogger("lead_service")

DEFAULT_LIST_LIMIT = 100
MAX_LIST_LIMIT = 1000


def parse_model(model, data):
    """Validate `data` against a pydantic model, raising our ValidationError."""
    if isinstance(data, model):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    try:
        return model.model_validate(data or {})
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e)


def build_lead_query(filters: Optional[LeadFilters], include_status: bool = True) -> dict:
    """Mongo filter for list/pipeline views. The tenant clause is added by the store."""
    query: Dict[str, Any] = {}
    if filters is None:
        return query
    if include_status and filters.status:
        query["status"] = filters.status
    if filters.assigned_to:
        query["assigned_to"] = filters.assigned_to
    if filters.source:
        query["source"] = filters.source
    if filters.priority:
        query["priority"] = filters.priority
    if filters.tags:
        query["tags"] = {"$in": list(filters.tags)}
    if filters.search and filters.search.strip():
        pattern = re.escape(filters.search.strip())
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"email": {"$regex": pattern, "$options": "i"}},
            {"phone": {"$regex": pattern, "$options": "i"}},
        ]
    return query


class LeadService:
    def __init__(self, db, audit=None):
        self.db = db
        self.audit = audit

    def _leads(self, tenant_id: str):
        return scoped(self.db, "leads", tenant_id)

    def _emit(
        self,
        tenant_id: str,
        event_type: AuditEventType,
        action: str,
        lead_id: str,
        actor: Optional[dict] = None,
        severity: AuditSeverity = AuditSeverity.LOW,
        metadata: Optional[dict] = None,
        sensitive: bool = False,
    ):
        if self.audit is None:
            return
        actor = actor or {}
        self.audit.emit(AuditEvent(
            tenant_id=tenant_id,
            event_type=event_type,
            severity=severity,
            resource="leads",
            action=action,
            resource_id=lead_id,
            description=f"lead {action}",
            user_id=actor.get("id"),
            user_roles=[actor["role"]] if actor.get("role") else [],
            metadata=metadata or {},
            is_sensitive=sensitive,
            compliance_frameworks=[ComplianceFramework.GDPR] if sensitive else [],
        ))

    async def _check_assignee(self, user_id: Optional[str], tenant_id: str):
        if user_id is None:
            return
        users = scoped(self.db, "users", tenant_id)
        if not await users.exists({"id": user_id, "is_active": True}):
            raise ValidationError(
                "Assignee must be an active user of the same tenant",
                [{"field": "assigned_to", "message": f"Unknown user: {user_id}"}],
            )

    async def _apply(self, lead_id: str, tenant_id: str, update: dict, query: Optional[dict] = None) -> Optional[dict]:
        update.setdefault("$set", {})["updated_at"] = now_iso()
        return await self._leads(tenant_id).find_one_and_update({"id": lead_id, **(query or {})}, update)

    # ==================== READ ====================

    async def check_duplicate(self, phone: str, tenant_id: str, exclude_id: Optional[str] = None) -> bool:
        query: Dict[str, Any] = {"phone": phone}
        if exclude_id:
            query["id"] = {"$ne": exclude_id}
        return await self._leads(tenant_id).exists(query)

    async def get(self, lead_id: str, tenant_id: str) -> dict:
        lead = await self._leads(tenant_id).find_one({"id": lead_id})
        if not lead:
            raise NotFoundError("Lead not found")
        return lead

    async def list(
        self,
        tenant_id: str,
        filters: Optional[LeadFilters] = None,
        limit: int = DEFAULT_LIST_LIMIT,
        skip: int = 0,
    ) -> dict:
        leads = self._leads(tenant_id)
        query = build_lead_query(filters)
        limit = max(1, min(limit, MAX_LIST_LIMIT))
        items = await leads.find(query, sort=[("created_at", -1)], skip=max(skip, 0), limit=limit)
        total = await leads.count(query)
        return {"leads": items, "count": len(items), "total": total}

    async def stats(self, tenant_id: str) -> dict:
        rows = await self._leads(tenant_id).aggregate([
            {"$group": {"_id": "$status", "count": {"$sum": 1}}}
        ])
        counts = {status: 0 for status in VALID_LEAD_STATUSES}
        for row in rows:
            if row["_id"] in counts:
                counts[row["_id"]] = row["count"]
        return {"total": sum(row["count"] for row in rows), **counts}

    # ==================== WRITE ====================

    async def create(self, data: Union[LeadCreate, dict], tenant_id: str, actor: Optional[dict] = None) -> dict:
        payload = parse_model(LeadCreate, data)
        fields = payload.model_dump(mode="json")

        if await self.check_duplicate(fields["phone"], tenant_id):
            logger.info(f"[LEAD_CONFLICT] tenant={tenant_id} phone={fields['phone']}")
            raise ConflictError("A lead with this phone already exists")
        await self._check_assignee(fields.get("assigned_to"), tenant_id)

        try:
            lead = await self._leads(tenant_id).insert_one(_new_lead_doc(fields))
        except DuplicateKeyError:
            # lost the race against a concurrent create
            logger.info(f"[LEAD_CONFLICT] tenant={tenant_id} phone={fields['phone']} (index)")
            raise ConflictError("A lead with this phone already exists")

        logger.info(f"[LEAD_CREATED] tenant={tenant_id} id={lead['id']}")
        self._emit(tenant_id, AuditEventType.DATA_CREATED, "create", lead["id"], actor)
        return lead

    async def update(self, lead_id: str, tenant_id: str, patch: Union[LeadUpdate, dict], actor: Optional[dict] = None) -> dict:
        changes = parse_model(LeadUpdate, patch).model_dump(mode="json", exclude_unset=True)
        current = await self.get(lead_id, tenant_id)
        if not changes:
            return current

        if "phone" in changes and await self.check_duplicate(changes["phone"], tenant_id, exclude_id=lead_id):
            logger.info(f"[LEAD_CONFLICT] tenant={tenant_id} phone={changes['phone']}")
            raise ConflictError("A lead with this phone already exists")
        if "assigned_to" in changes:
            await self._check_assignee(changes["assigned_to"], tenant_id)

        try:
            lead = await self._apply(lead_id, tenant_id, {"$set": dict(changes)})
        except DuplicateKeyError:
            raise ConflictError("A lead with this phone already exists")
        if lead is None:
            raise NotFoundError("Lead not found")

        self._emit(
            tenant_id, AuditEventType.DATA_MODIFIED, "update", lead_id, actor,
            metadata={"fields": sorted(changes.keys())},
        )
        return lead

    async def delete(self, lead_id: str, tenant_id: str, actor: Optional[dict] = None) -> None:
        deleted = await self._leads(tenant_id).delete_one({"id": lead_id})
        if not deleted:
            raise NotFoundError("Lead not found")
        logger.info(f"[LEAD_DELETED] tenant={tenant_id} id={lead_id}")
        self._emit(
            tenant_id, AuditEventType.DATA_DELETED, "delete", lead_id, actor,
            severity=AuditSeverity.MEDIUM, sensitive=True,
        )

    async def set_status(self, lead_id: str, tenant_id: str, status: str, actor: Optional[dict] = None) -> dict:
        status = _check_status(status)
        current = await self.get(lead_id, tenant_id)
        lead = await self._apply(lead_id, tenant_id, {"$set": {"status": status}})
        if lead is None:
            raise NotFoundError("Lead not found")
        self._emit(
            tenant_id, AuditEventType.DATA_MODIFIED, "status_change", lead_id, actor,
            metadata={"old_value": current.get("status"), "new_value": status},
        )
        return lead

    async def move_in_pipeline(self, lead_id: str, tenant_id: str, status: str, actor: Optional[dict] = None) -> dict:
        """Drag-and-drop on the board. Only the status is persisted, not the position."""
        return await self.set_status(lead_id, tenant_id, status, actor)

    async def assign(self, lead_id: str, tenant_id: str, user_id: Optional[str], actor: Optional[dict] = None) -> dict:
        await self.get(lead_id, tenant_id)
        await self._check_assignee(user_id, tenant_id)
        lead = await self._apply(lead_id, tenant_id, {"$set": {"assigned_to": user_id}})
        if lead is None:
            raise NotFoundError("Lead not found")
        self._emit(
            tenant_id, AuditEventType.DATA_MODIFIED, "assign", lead_id, actor,
            metadata={"assigned_to": user_id},
        )
        return lead

    async def unassign(self, lead_id: str, tenant_id: str, actor: Optional[dict] = None) -> dict:
        return await self.assign(lead_id, tenant_id, None, actor)

    async def add_tag(self, lead_id: str, tenant_id: str, tag: str, actor: Optional[dict] = None) -> dict:
        tag = _clean_tag(tag)
        lead = await self._apply(
            lead_id, tenant_id, {"$addToSet": {"tags": tag}}, query={"tags": {"$ne": tag}}
        )
        if lead is None:
            # already tagged (no-op) or missing
            return await self.get(lead_id, tenant_id)
        self._emit(tenant_id, AuditEventType.DATA_MODIFIED, "add_tag", lead_id, actor, metadata={"tag": tag})
        return lead

    async def remove_tag(self, lead_id: str, tenant_id: str, tag: str, actor: Optional[dict] = None) -> dict:
        tag = _clean_tag(tag)
        lead = await self._apply(lead_id, tenant_id, {"$pull": {"tags": tag}}, query={"tags": tag})
        if lead is None:
            return await self.get(lead_id, tenant_id)
        self._emit(tenant_id, AuditEventType.DATA_MODIFIED, "remove_tag", lead_id, actor, metadata={"tag": tag})
        return lead

    async def record_contact(self, lead_id: str, tenant_id: str, actor: Optional[dict] = None) -> dict:
        now = now_iso()
        lead = await self._leads(tenant_id).find_one_and_update(
            {"id": lead_id},
            {"$inc": {"communication_count": 1}, "$set": {"last_contacted": now, "updated_at": now}},
        )
        if lead is None:
            raise NotFoundError("Lead not found")
        self._emit(tenant_id, AuditEventType.DATA_MODIFIED, "record_contact", lead_id, actor)
        return lead

    # ==================== BULK ====================
    # All-or-nothing on ownership: one unknown or foreign id rejects the call.

    async def _require_all(self, lead_ids: List[str], tenant_id: str) -> List[str]:
        ids = list(dict.fromkeys(i for i in lead_ids or [] if i))
        if not ids:
            raise ValidationError("No leads selected", [{"field": "lead_ids", "message": "At least one id is required"}])
        if len(ids) > MAX_BULK_SIZE:
            raise ValidationError(
                f"Too many leads: {len(ids)}",
                [{"field": "lead_ids", "message": f"At most {MAX_BULK_SIZE} ids per call"}],
            )
        found = await self._leads(tenant_id).find({"id": {"$in": ids}})
        found_ids = {lead["id"] for lead in found}
        missing = [i for i in ids if i not in found_ids]
        if missing:
            logger.info(f"[LEAD_BULK_REJECTED] tenant={tenant_id} requested={len(ids)} missing={len(missing)}")
            raise ValidationError(
                "Some leads not found or do not belong to this tenant",
                [{"field": "lead_ids", "message": f"Unknown lead: {i}"} for i in missing],
            )
        return ids

    async def _bulk_set(self, ids: List[str], tenant_id: str, changes: dict, action: str,
                        actor: Optional[dict] = None) -> dict:
        fields = sorted(changes.keys())
        matched = await self._leads(tenant_id).update_many(
            {"id": {"$in": ids}}, {"$set": {**changes, "updated_at": now_iso()}}
        )
        logger.info(f"[LEAD_BULK] tenant={tenant_id} action={action} leads={matched}")
        for lead_id in ids:
            self._emit(tenant_id, AuditEventType.DATA_MODIFIED, action, lead_id, actor, metadata={"fields": fields})
        return {"updated": matched, "lead_ids": ids}

    async def bulk_update(self, lead_ids: List[str], tenant_id: str, patch: Union[LeadUpdate, dict],
                          actor: Optional[dict] = None) -> dict:
        changes = parse_model(LeadUpdate, patch).model_dump(mode="json", exclude_unset=True)
        if "phone" in changes:
            raise ValidationError(
                "Phone cannot be bulk-updated",
                [{"field": "phone", "message": "Phone is unique per lead"}],
            )
        ids = await self._require_all(lead_ids, tenant_id)
        if not changes:
            return {"updated": 0, "lead_ids": ids}
        if "assigned_to" in changes:
            await self._check_assignee(changes["assigned_to"], tenant_id)
        return await self._bulk_set(ids, tenant_id, changes, "bulk_update", actor)

    async def bulk_set_status(self, lead_ids: List[str], tenant_id: str, status: str,
                              actor: Optional[dict] = None) -> dict:
        status = _check_status(status)
        ids = await self._require_all(lead_ids, tenant_id)
        return await self._bulk_set(ids, tenant_id, {"status": status}, "bulk_status_change", actor)

    async def bulk_assign(self, lead_ids: List[str], tenant_id: str, user_id: Optional[str],
                          actor: Optional[dict] = None) -> dict:
        ids = await self._require_all(lead_ids, tenant_id)
        await self._check_assignee(user_id, tenant_id)
        return await self._bulk_set(ids, tenant_id, {"assigned_to": user_id}, "bulk_assign", actor)

    async def bulk_delete(self, lead_ids: List[str], tenant_id: str, actor: Optional[dict] = None) -> dict:
        ids = await self._require_all(lead_ids, tenant_id)
        deleted = await self._leads(tenant_id).delete_many({"id": {"$in": ids}})
        logger.info(f"[LEAD_BULK] tenant={tenant_id} action=bulk_delete leads={deleted}")
        for lead_id in ids:
            self._emit(
                tenant_id, AuditEventType.DATA_DELETED, "bulk_delete", lead_id, actor,
                severity=AuditSeverity.MEDIUM, sensitive=True,
            )
        return {"deleted": deleted, "lead_ids": ids}

    async def bulk_create(self, rows: List[Union[LeadCreate, dict]], tenant_id: str,
                          actor: Optional[dict] = None) -> List[dict]:
        """
        Validate every row and check every phone (against the store and within
        the batch) before inserting anything.
        """
        if not rows:
            raise ValidationError("No leads given", [{"field": "leads", "message": "At least one lead is required"}])
        if len(rows) > MAX_BULK_SIZE:
            raise ValidationError(
                f"Too many leads: {len(rows)}",
                [{"field": "leads", "message": f"At most {MAX_BULK_SIZE} leads per call"}],
            )

        payloads, errors = [], []
        for index, row in enumerate(rows):
            try:
                payloads.append(parse_model(LeadCreate, row).model_dump(mode="json"))
            except ValidationError as e:
                errors.extend(
                    {"field": f"leads.{index}.{err['field']}", "message": err["message"]} for err in e.errors
                )
        if errors:
            raise ValidationError(f"Invalid leads in batch ({len(errors)} errors)", errors)

        first_row: Dict[str, int] = {}
        duplicate_rows = []
        for index, fields in enumerate(payloads):
            phone = fields["phone"]
            if phone in first_row or await self.check_duplicate(phone, tenant_id):
                duplicate_rows.append(index)
            first_row.setdefault(phone, index)
        if duplicate_rows:
            logger.info(f"[LEAD_CONFLICT] tenant={tenant_id} bulk rows={duplicate_rows}")
            raise ConflictError(f"A lead with this phone already exists (rows {duplicate_rows})")

        for assignee in {f["assigned_to"] for f in payloads if f.get("assigned_to")}:
            await self._check_assignee(assignee, tenant_id)

        leads = self._leads(tenant_id)
        created = []
        for fields in payloads:
            try:
                lead = await leads.insert_one(_new_lead_doc(fields))
            except DuplicateKeyError:
                logger.warning(
                    f"[LEAD_CONFLICT] tenant={tenant_id} bulk stopped after {len(created)} of {len(payloads)}"
                )
                raise ConflictError(f"A lead with this phone already exists: {fields['phone']}")
            created.append(lead)
            self._emit(tenant_id, AuditEventType.DATA_CREATED, "bulk_create", lead["id"], actor)

        logger.info(f"[LEAD_BULK] tenant={tenant_id} action=bulk_create leads={len(created)}")
        return created


def _new_lead_doc(fields: dict) -> dict:
    now = now_iso()
    return {
        "id": str(uuid.uuid4()),
        **fields,
        "status": LeadStatus.NEW.value,
        "priority": LeadPriority.MEDIUM.value,
        "communication_count": 0,
        "last_contacted": None,
        "custom_fields": fields.get("custom_fields") or {},
        "created_at": now,
        "updated_at": now,
    }


def _check_status(status) -> str:
    status = getattr(status, "value", status)
    if status not in VALID_LEAD_STATUSES:
        raise ValidationError(
            f"Invalid status: {status}",
            [{"field": "status", "message": f"Must be one of {VALID_LEAD_STATUSES}"}],
        )
    return status


def _clean_tag(tag: Optional[str]) -> str:
    tag = (tag or "").strip()
    if not tag:
        raise ValidationError("Tag cannot be empty", [{"field": "tag", "message": "Tag cannot be empty"}])
    return tag
