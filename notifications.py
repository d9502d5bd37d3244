"""
Admin notifications

Lead submissions and status changes drop a short notification into the
"notification" collection for the back office to pick up.
"""

import logging
from datetime import timedelta
from typing import Optional

from pymongo import ReturnDocument

from database import serialize_doc, to_object_id, utcnow
from filters import FieldKind, FilterField, ListSpec, sort_allow_list
from schemas import Notification
from services import RecordService

logger = logging.getLogger(__name__)

NOTIFICATION_LIST = ListSpec(
    name="notifications",
    fields={
        "type": FilterField(FieldKind.EXACT, "type"),
        "read": FilterField(FieldKind.BOOLEAN, "read"),
    },
    search_fields=("title", "message"),
    sort_fields=sort_allow_list("read", "type", "title"),
)


class NotificationService(RecordService):
    collection_name = "notification"
    label = "Notification"
    list_spec = NOTIFICATION_LIST

    def notify(self, title: str, message: str, type: str = "info", link: Optional[str] = None,
               related_id: Optional[str] = None) -> dict:
        notification = Notification(
            title=title,
            message=message,
            type=type,
            link=link,
            relatedId=related_id if to_object_id(related_id) is not None else None,
        )
        record = self.create(notification)
        logger.info('New notification created: "%s" (Type: %s)', title, type)
        return record

    def set_read(self, notification_id, read: bool) -> Optional[dict]:
        oid = to_object_id(notification_id)
        if oid is None:
            return None
        doc = self.collection.find_one_and_update(
            {"_id": oid},
            {"$set": {"read": read, "updatedAt": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            logger.warning("Notification not found for status update: %s", notification_id)
        return serialize_doc(doc)

    def mark_all_read(self) -> int:
        result = self.collection.update_many({"read": False}, {"$set": {"read": True, "updatedAt": utcnow()}})
        logger.info("Marked %d notification(s) as read", result.modified_count)
        return result.modified_count

    def delete_older_than(self, days: int) -> int:
        threshold = utcnow() - timedelta(days=days)
        result = self.collection.delete_many({"createdAt": {"$lt": threshold}})
        logger.info("Deleted %d notifications older than %d days.", result.deleted_count, days)
        return result.deleted_count
