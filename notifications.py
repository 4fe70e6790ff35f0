"""
Notification fan-out.

Every social, booking and moderation event lands here: one `notification`
document per recipient, written with the same timestamps as any other
collection.
"""
import logging
from typing import Iterable, Optional

from database import now_utc
from helpers import get_db
from schemas import Notification, NotificationMetadata

logger = logging.getLogger(__name__)


def notify(
    user_id: str,
    type: str,
    title: str,
    message: str,
    category: str,
    priority: str = "medium",
    related_id: Optional[str] = None,
    action_url: Optional[str] = None,
    metadata: Optional[NotificationMetadata] = None,
) -> str:
    return notify_many(
        [user_id],
        type=type,
        title=title,
        message=message,
        category=category,
        priority=priority,
        related_id=related_id,
        action_url=action_url,
        metadata=metadata,
    )[0]


def notify_many(
    user_ids: Iterable[str],
    type: str,
    title: str,
    message: str,
    category: str,
    priority: str = "medium",
    related_id: Optional[str] = None,
    action_url: Optional[str] = None,
    metadata: Optional[NotificationMetadata] = None,
) -> list:
    """Create one notification per distinct recipient. Returns the inserted ids."""
    recipients = list(dict.fromkeys(str(u) for u in user_ids if u))
    if not recipients:
        return []

    stamp = now_utc()
    docs = []
    for user_id in recipients:
        doc = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            category=category,
            priority=priority,
            related_id=related_id,
            action_url=action_url,
            metadata=metadata,
        ).model_dump()
        doc["created_at"] = stamp
        doc["updated_at"] = stamp
        docs.append(doc)

    result = get_db()["notification"].insert_many(docs)
    if len(docs) > 1:
        logger.info("Fanned out %s notification to %d users", type, len(docs))
    return [str(i) for i in result.inserted_ids]
