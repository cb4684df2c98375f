"""
Gateway audit trail (activity_logs collection)

Actions: login, logout, create, update, delete, assign, status, export
Entity types: session, lead, user
"""

import uuid
from typing import Optional

from dmhca_crm.config import db, now_iso
from dmhca_crm.models.auth import User


def _actor(user: Optional[User]) -> dict:
    if user is None:
        return {"user_id": "system", "user_email": "system", "user_role": None, "branch": None}
    return {
        "user_id": user.id,
        "user_email": user.email,
        "user_role": user.role.value,
        "branch": user.branch.value,
    }


async def log_activity(
    user: Optional[User],
    action: str,
    entity_type: str,
    entity_id: str = None,
    entity_name: str = None,
    details: dict = None,
    ip_address: str = None
) -> dict:
    """Stores one entry and returns it (without the Mongo _id)."""
    entry = {
        "id": str(uuid.uuid4()),
        **_actor(user),
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "entity_name": entity_name,
        "details": details or {},
        "ip_address": ip_address,
        "created_at": now_iso(),
    }

    # insert_one adds _id to the document it is given
    await db.activity_logs.insert_one(dict(entry))
    return entry


def build_log_query(
    user_id: str = None,
    entity_type: str = None,
    action: str = None,
    branch: str = None,
    since: str = None,
) -> dict:
    filters = {
        "user_id": user_id,
        "entity_type": entity_type,
        "action": action,
        "branch": branch,
    }
    query = {k: v for k, v in filters.items() if v}
    if since:
        query["created_at"] = {"$gte": since}
    return query


async def get_activity_logs(
    user_id: str = None,
    entity_type: str = None,
    action: str = None,
    branch: str = None,
    since: str = None,
    limit: int = 100,
    skip: int = 0
) -> dict:
    """Newest first."""
    query = build_log_query(user_id, entity_type, action, branch, since)

    cursor = db.activity_logs.find(query, {"_id": 0}).sort("created_at", -1).skip(skip).limit(limit)
    logs = await cursor.to_list(limit)
    total = await db.activity_logs.count_documents(query)

    return {"logs": logs, "total": total, "limit": limit, "skip": skip}
