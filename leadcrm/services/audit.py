"""
Lead CRM - Audit channel

Services emit events onto a bounded in-process queue; a single writer task
enriches them (risk score, retention date) and inserts them into
`audit_logs`. Emitting never blocks and never raises, and a failed write is
logged and dropped: the action being audited is never affected.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from ..config import now_iso, utc_now
from ..errors import NotFoundError
from ..models.audit import (
    AuditEvent,
    AuditEventType,
    AuditFilters,
    AuditSeverity,
    ComplianceFramework,
)
from .tenant_store import scoped

logger = logging.getLogger("audit")

# ════════════════════════════════════════════════════════════════════════
# RISK SCORE / RETENTION
# ════════════════════════════════════════════════════════════════════════

EVENT_TYPE_SCORES = {
    AuditEventType.LOGIN_FAILED.value: 20,
    AuditEventType.BRUTE_FORCE_ATTEMPT.value: 80,
    AuditEventType.SUSPICIOUS_ACTIVITY.value: 70,
    AuditEventType.ACCOUNT_LOCKED.value: 60,
    AuditEventType.DATA_DELETED.value: 50,
    AuditEventType.PERMISSION_DENIED.value: 30,
    AuditEventType.GDPR_DELETION.value: 40,
}

SEVERITY_MULTIPLIERS = {
    AuditSeverity.LOW.value: 1,
    AuditSeverity.MEDIUM.value: 1.5,
    AuditSeverity.HIGH.value: 2,
    AuditSeverity.CRITICAL.value: 3,
}

DEFAULT_RISK_THRESHOLD = 50
BRUTE_FORCE_RISK_THRESHOLD = 70
HIGH_RISK_SCORE = 70
MAX_RISK_SCORE = 100

DEFAULT_RETENTION_DAYS = 2555   # 7 years
HIPAA_RETENTION_DAYS = 3650     # 10 years
CRITICAL_EXTRA_DAYS = 365

EVENT_CATEGORIES = {
    "authentication": (
        AuditEventType.LOGIN_SUCCESS.value,
        AuditEventType.LOGIN_FAILED.value,
        AuditEventType.LOGOUT.value,
    ),
    "authorization": (
        AuditEventType.PERMISSION_GRANTED.value,
        AuditEventType.PERMISSION_DENIED.value,
    ),
    "data_access": (
        AuditEventType.DATA_ACCESSED.value,
        AuditEventType.DATA_CREATED.value,
        AuditEventType.DATA_MODIFIED.value,
    ),
    "security": (
        AuditEventType.SUSPICIOUS_ACTIVITY.value,
        AuditEventType.BRUTE_FORCE_ATTEMPT.value,
    ),
    "compliance": (
        AuditEventType.GDPR_REQUEST.value,
        AuditEventType.GDPR_DELETION.value,
    ),
}


def _value(v):
    return getattr(v, "value", v)


def compute_risk_score(
    event_type: str,
    severity: str,
    is_sensitive: bool = False,
    frameworks: Iterable[str] = (),
) -> Dict[str, Any]:
    """
    score = base(event_type) x multiplier(severity)
            + 20 if sensitive + 10 if any compliance framework, capped at 100
    """
    event_type = _value(event_type)
    severity = _value(severity)
    frameworks = [_value(f) for f in frameworks or ()]

    score = 0
    factors: List[str] = []

    base = EVENT_TYPE_SCORES.get(event_type)
    if base:
        score += base
        factors.append(f"Event type: {event_type}")

    score *= SEVERITY_MULTIPLIERS.get(severity, 1)
    factors.append(f"Severity: {severity}")

    if is_sensitive:
        score += 20
        factors.append("Sensitive data involved")

    if frameworks:
        score += 10
        factors.append("Compliance frameworks involved")

    threshold = DEFAULT_RISK_THRESHOLD
    if event_type == AuditEventType.BRUTE_FORCE_ATTEMPT.value:
        threshold = BRUTE_FORCE_RISK_THRESHOLD

    return {
        "score": int(min(score, MAX_RISK_SCORE)),
        "factors": factors,
        "threshold": threshold,
    }


def compute_retention_date(
    frameworks: Iterable[str],
    severity: str,
    now: Optional[datetime] = None,
) -> datetime:
    frameworks = [_value(f) for f in frameworks or ()]
    days = DEFAULT_RETENTION_DAYS
    if ComplianceFramework.HIPAA.value in frameworks:
        days = HIPAA_RETENTION_DAYS
    if _value(severity) == AuditSeverity.CRITICAL.value:
        days += CRITICAL_EXTRA_DAYS
    return (now or utc_now()) + timedelta(days=days)


def event_category(event_type: str) -> str:
    event_type = _value(event_type)
    for category, types in EVENT_CATEGORIES.items():
        if event_type in types:
            return category
    return "other"


def is_high_risk(doc: dict) -> bool:
    risk = doc.get("risk_score") or {}
    return risk.get("score", 0) >= risk.get("threshold", DEFAULT_RISK_THRESHOLD)


def requires_immediate_attention(doc: dict) -> bool:
    return (
        doc.get("severity") == AuditSeverity.CRITICAL.value
        or doc.get("event_type") in (
            AuditEventType.BRUTE_FORCE_ATTEMPT.value,
            AuditEventType.SUSPICIOUS_ACTIVITY.value,
        )
    )


def anonymize_document(doc: dict) -> dict:
    """Fields to $set to anonymize a sensitive event. Empty if nothing to do."""
    if not doc.get("is_sensitive") or doc.get("is_anonymized"):
        return {}
    changes: Dict[str, Any] = {"is_anonymized": True}
    ip = doc.get("ip_address") or ""
    if ip:
        parts = ip.split(".")
        changes["ip_address"] = f"{parts[0]}.{parts[1]}.*.*" if len(parts) == 4 else "ANONYMIZED"
    if doc.get("user_agent"):
        changes["user_agent"] = "ANONYMIZED"
    for key in ("request_data", "response_data", "location_data", "device_data"):
        if doc.get(key):
            changes[key] = {"anonymized": True}
    return changes


def build_audit_document(event: AuditEvent, now: Optional[datetime] = None) -> dict:
    """Enrich an emitted event into the stored audit_logs document."""
    now = now or utc_now()
    data = event.model_dump()
    timestamp = data.pop("timestamp") or now
    doc = {
        "id": str(uuid.uuid4()),
        **data,
        "timestamp": _utc_iso(timestamp),
        "category": event_category(data["event_type"]),
        "is_anonymized": False,
        "risk_score": compute_risk_score(
            data["event_type"], data["severity"], data["is_sensitive"], data["compliance_frameworks"]
        ),
        "retention_date": compute_retention_date(data["compliance_frameworks"], data["severity"], now),
        "created_at": now_iso(),
    }
    return doc


# ════════════════════════════════════════════════════════════════════════
# ONE-WAY CHANNEL
# ════════════════════════════════════════════════════════════════════════

class AuditChannel:
    """Bounded outbound queue + background writer for audit events."""

    def __init__(self, db, maxsize: int = 1000):
        self.db = db
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._task: Optional[asyncio.Task] = None
        self.dropped = 0
        self.written = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def emit(self, event: AuditEvent) -> bool:
        """Queue an event. Returns False if it had to be dropped."""
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"[AUDIT] queue full, dropping {event.event_type} tenant={event.tenant_id}")
            return False

    async def _write(self, event: AuditEvent) -> None:
        try:
            doc = build_audit_document(event)
            await self.db.audit_logs.insert_one(doc)
            self.written += 1
            if requires_immediate_attention(doc) or is_high_risk(doc):
                logger.warning(
                    f"[AUDIT] high risk event={doc['event_type']} tenant={doc['tenant_id']} "
                    f"score={doc['risk_score']['score']}"
                )
        except Exception:
            logger.exception(f"[AUDIT] write failed for {event.event_type} tenant={event.tenant_id}")

    async def _worker(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._write(event)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._worker())
            logger.info("[AUDIT] writer started")

    async def drain(self) -> int:
        """Write everything currently queued, in this task. Returns the count."""
        count = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            try:
                await self._write(event)
                count += 1
            finally:
                self._queue.task_done()
        return count

    async def stop(self) -> None:
        if self._task is not None:
            if not self._task.done():
                await self._queue.join()
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.drain()
        logger.info(f"[AUDIT] writer stopped written={self.written} dropped={self.dropped}")


# ════════════════════════════════════════════════════════════════════════
# QUERIES
# ════════════════════════════════════════════════════════════════════════

def _utc_iso(value: datetime) -> str:
    """Stored timestamps are UTC isoformat strings; naive input is taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc).isoformat()
    return value.astimezone(timezone.utc).isoformat()


def build_audit_query(filters: Optional[AuditFilters]) -> dict:
    query: Dict[str, Any] = {}
    if filters is None:
        return query
    if filters.event_type:
        query["event_type"] = filters.event_type
    if filters.severity:
        query["severity"] = filters.severity
    if filters.user_id:
        query["user_id"] = filters.user_id
    if filters.resource:
        query["resource"] = filters.resource
    if filters.action:
        query["action"] = filters.action
    if filters.is_sensitive is not None:
        query["is_sensitive"] = filters.is_sensitive
    if filters.framework:
        query["compliance_frameworks"] = filters.framework
    if filters.start or filters.end:
        ts = {}
        if filters.start:
            ts["$gte"] = _utc_iso(filters.start)
        if filters.end:
            ts["$lte"] = _utc_iso(filters.end)
        query["timestamp"] = ts
    return query


class AuditLogService:
    def __init__(self, db):
        self.db = db

    def _logs(self, tenant_id: str):
        return scoped(self.db, "audit_logs", tenant_id)

    async def list(
        self,
        tenant_id: str,
        filters: Optional[AuditFilters] = None,
        limit: int = 100,
        skip: int = 0,
    ) -> dict:
        logs = self._logs(tenant_id)
        query = build_audit_query(filters)
        events = await logs.find(query, sort=[("timestamp", -1)], skip=skip, limit=limit)
        total = await logs.count(query)
        return {"events": events, "count": len(events), "total": total}

    async def get(self, event_id: str, tenant_id: str) -> dict:
        event = await self._logs(tenant_id).find_one({"id": event_id})
        if not event:
            raise NotFoundError("Audit event not found")
        return event

    async def statistics(
        self,
        tenant_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> dict:
        logs = self._logs(tenant_id)
        query = build_audit_query(AuditFilters(start=start, end=end))
        match = [{"$match": query}] if query else []

        by_type = await logs.aggregate(match + [{"$group": {"_id": "$event_type", "count": {"$sum": 1}}}])
        by_severity = await logs.aggregate(match + [{"$group": {"_id": "$severity", "count": {"$sum": 1}}}])
        avg = await logs.aggregate(match + [{"$group": {"_id": None, "avg": {"$avg": "$risk_score.score"}}}])

        total = await logs.count(query)
        high_risk = await logs.count({**query, "risk_score.score": {"$gte": HIGH_RISK_SCORE}})
        sensitive = await logs.count({**query, "is_sensitive": True})

        average = avg[0]["avg"] if avg and avg[0].get("avg") is not None else 0
        return {
            "total_events": total,
            "events_by_type": {row["_id"]: row["count"] for row in by_type},
            "events_by_severity": {row["_id"]: row["count"] for row in by_severity},
            "average_risk_score": round(average, 2),
            "high_risk_events": high_risk,
            "sensitive_events": sensitive,
        }

    async def anonymize(self, event_id: str, tenant_id: str) -> dict:
        logs = self._logs(tenant_id)
        event = await self.get(event_id, tenant_id)
        changes = anonymize_document(event)
        if not changes:
            return event
        changes["updated_at"] = now_iso()
        logger.info(f"[AUDIT] anonymized event={event_id} tenant={tenant_id}")
        return await logs.find_one_and_update({"id": event_id}, {"$set": changes})
