"""
Lead CRM - Tenant-scoped collection access

Every read and write goes through TenantScopedCollection, which injects the
tenant filter itself. Call sites never build a tenant filter by hand.
"""

import logging
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument

logger = logging.getLogger("tenant_store")

TENANT_FIELD = "tenant_id"
NO_MONGO_ID = {"_id": 0}


def build_tenant_filter(tenant_id: str, query: Optional[dict] = None, field: str = TENANT_FIELD) -> dict:
    """
    Merge the tenant clause into a Mongo filter.
    A tenant clause already present in `query` is overridden.
    """
    if not tenant_id:
        raise ValueError("tenant_id is required")
    merged = dict(query or {})
    merged[field] = tenant_id
    return merged


class TenantScopedCollection:
    """A Motor collection bound to one tenant."""

    def __init__(self, collection, tenant_id: str, field: str = TENANT_FIELD):
        if not tenant_id:
            raise ValueError("tenant_id is required")
        self.collection = collection
        self.tenant_id = str(tenant_id)
        self.field = field

    def _filter(self, query: Optional[dict] = None) -> dict:
        return build_tenant_filter(self.tenant_id, query, self.field)

    def _guard_update(self, update: dict) -> dict:
        for op, fields in update.items():
            if isinstance(fields, dict) and self.field in fields:
                raise ValueError(f"{self.field} cannot be modified ({op})")
        return update

    async def find_one(self, query: Optional[dict] = None) -> Optional[dict]:
        return await self.collection.find_one(self._filter(query), NO_MONGO_ID)

    async def find(
        self,
        query: Optional[dict] = None,
        sort: Optional[List[tuple]] = None,
        skip: int = 0,
        limit: int = 0,
    ) -> List[dict]:
        cursor = self.collection.find(self._filter(query), NO_MONGO_ID)
        if sort:
            cursor = cursor.sort(sort)
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return await cursor.to_list(length=limit or None)

    async def count(self, query: Optional[dict] = None) -> int:
        return await self.collection.count_documents(self._filter(query))

    async def exists(self, query: Optional[dict] = None) -> bool:
        doc = await self.collection.find_one(self._filter(query), {"_id": 1})
        return doc is not None

    async def insert_one(self, document: dict) -> dict:
        doc = dict(document)
        doc[self.field] = self.tenant_id
        await self.collection.insert_one(doc)
        doc.pop("_id", None)
        return doc

    async def find_one_and_update(self, query: dict, update: dict) -> Optional[dict]:
        """Apply `update` and return the document after it, or None on a miss."""
        return await self.collection.find_one_and_update(
            self._filter(query),
            self._guard_update(update),
            projection=NO_MONGO_ID,
            return_document=ReturnDocument.AFTER,
        )

    async def update_one(self, query: dict, update: dict) -> int:
        result = await self.collection.update_one(self._filter(query), self._guard_update(update))
        return result.matched_count

    async def update_many(self, query: dict, update: dict) -> int:
        result = await self.collection.update_many(self._filter(query), self._guard_update(update))
        return result.matched_count

    async def delete_one(self, query: dict) -> int:
        result = await self.collection.delete_one(self._filter(query))
        return result.deleted_count

    async def delete_many(self, query: dict) -> int:
        result = await self.collection.delete_many(self._filter(query))
        return result.deleted_count

    async def aggregate(self, pipeline: List[dict]) -> List[dict]:
        """Run an aggregation with the tenant $match prepended."""
        stages = [{"$match": self._filter()}] + list(pipeline)
        return await self.collection.aggregate(stages).to_list(length=None)


def scoped(db, collection_name: str, tenant_id: str) -> TenantScopedCollection:
    return TenantScopedCollection(db[collection_name], tenant_id)


async def ensure_indexes(db) -> Dict[str, Any]:
    """
    Create indexes at startup.
    leads(tenant_id, phone) is unique: it is the authoritative duplicate
    guard, the service-level pre-check only produces a friendlier error.
    """
    created = {}
    created["leads_id"] = await db.leads.create_index("id", unique=True)
    created["leads_phone"] = await db.leads.create_index(
        [(TENANT_FIELD, ASCENDING), ("phone", ASCENDING)], unique=True
    )
    created["leads_status"] = await db.leads.create_index(
        [(TENANT_FIELD, ASCENDING), ("status", ASCENDING)]
    )
    created["users_id"] = await db.users.create_index("id", unique=True)
    created["users_google"] = await db.users.create_index("google_id", unique=True)
    created["users_tenant"] = await db.users.create_index(TENANT_FIELD)
    created["sessions_token"] = await db.sessions.create_index("token", unique=True)
    created["audit_id"] = await db.audit_logs.create_index("id", unique=True)
    created["audit_tenant_ts"] = await db.audit_logs.create_index(
        [(TENANT_FIELD, ASCENDING), ("timestamp", DESCENDING)]
    )
    created["audit_tenant_type"] = await db.audit_logs.create_index(
        [(TENANT_FIELD, ASCENDING), ("event_type", ASCENDING)]
    )
    created["audit_retention"] = await db.audit_logs.create_index("retention_date", expireAfterSeconds=0)
    logger.info(f"[INDEXES] ensured {len(created)} indexes")
    return created
