import math
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from fastapi import HTTPException

import database

SUMMARY_FIELDS = ("username", "first_name", "last_name", "avatar", "pronouns", "stats", "role")


def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid id format")


def get_db():
    if database.db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return database.db


def serialize(doc: Optional[dict]) -> Optional[dict]:
    """Make a Mongo document JSON friendly: `_id` becomes `id`, nested ObjectIds become strings."""
    if doc is None:
        return None
    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = str(v)
        elif k == "password_hash":
            continue
        else:
            out[k] = _clean(v)
    return out


def _clean(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: _clean(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_clean(v) for v in value]
    return value


def ok(data: Any = None, message: Optional[str] = None, **extra) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    body.update(extra)
    return body


def pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if limit else 0,
    }


def get_user_by_id(user_id: str) -> Optional[dict]:
    if not ObjectId.is_valid(user_id):
        return None
    return get_db()["user"].find_one({"_id": ObjectId(user_id)})


def user_summary(u: Optional[dict]) -> Optional[dict]:
    if not u:
        return None
    summary = {"id": str(u["_id"])}
    for field in SUMMARY_FIELDS:
        summary[field] = u.get(field)
    return summary


def user_summaries(ids: Iterable[str]) -> Dict[str, dict]:
    """Fetch summaries for many users in one query, keyed by id string."""
    object_ids = [ObjectId(i) for i in set(ids) if i and ObjectId.is_valid(i)]
    if not object_ids:
        return {}
    users = get_db()["user"].find({"_id": {"$in": object_ids}})
    return {str(u["_id"]): user_summary(u) for u in users}


def split_param(value: Optional[str]) -> List[str]:
    """Comma separated query parameter -> list."""
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]
