"""
Order event notifications for admins and vendors.

Every event produces one notification per audience: the admin team and the
order's vendor. Ids are derived from the event so re-observing it writes
nothing new:
  <order>_NEW_ORDER_<audience>
  <order>_STATUS_<status>_<audience>
  <order>_UPDATED_<token>_<audience>   (token is fresh per update)
"""

import logging
from typing import List, Optional, Tuple
from uuid import uuid4

from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import utc_now
from invoice_store import write_if_absent
from schemas import CANCELLED_STATUSES, Notification

logger = logging.getLogger(__name__)

NOTIFICATIONS = "notification"
ADMIN_AUDIENCE = "ADMIN"

PendingNotification = Tuple[str, Notification]


def short_ref(order_id: str) -> str:
    return order_id[-8:].upper()


def _for_both_audiences(order_id: str, vendor_id: str, key: str, **fields) -> List[PendingNotification]:
    return [
        (
            f"{order_id}_{key}_{ADMIN_AUDIENCE}",
            Notification(order_id=order_id, role="ADMIN", **fields),
        ),
        (
            f"{order_id}_{key}_{vendor_id}",
            Notification(order_id=order_id, role="VENDOR", vendor_id=vendor_id, **fields),
        ),
    ]


def new_order(order_id: str, vendor_id: str, restaurant_id: Optional[str]) -> List[PendingNotification]:
    return _for_both_audiences(
        order_id,
        vendor_id,
        "NEW_ORDER",
        type="NEW_ORDER",
        title=f"New Order: {short_ref(order_id)}",
        message=f"A new order has been placed by {restaurant_id or 'a customer'}.",
    )


def status_changed(order_id: str, vendor_id: str, status: str) -> List[PendingNotification]:
    cancelled = status in CANCELLED_STATUSES
    return _for_both_audiences(
        order_id,
        vendor_id,
        f"STATUS_{status}",
        type="ORDER_CANCELLED" if cancelled else "STATUS_CHANGED",
        title="Order Cancelled" if cancelled else "Order Status Updated",
        message=f"Order {short_ref(order_id)} is now {status.replace('_', ' ')}.",
    )


def order_updated(order_id: str, vendor_id: str, token: Optional[str] = None) -> List[PendingNotification]:
    return _for_both_audiences(
        order_id,
        vendor_id,
        f"UPDATED_{token or uuid4().hex}",
        type="ORDER_UPDATED",
        title="Order Updated",
        message=f"Order {short_ref(order_id)} has been modified (items or totals changed).",
    )


def emit(database: Database, pending: List[PendingNotification]) -> int:
    """Write notifications that do not exist yet; returns how many were created."""
    created = 0
    collection = database[NOTIFICATIONS]
    for notification_id, notification in pending:
        try:
            if write_if_absent(collection, notification_id, notification.model_dump()):
                created += 1
        except PyMongoError:
            logger.exception("Failed to create notification %s", notification_id)
    return created


def list_notifications(
    database: Database,
    role: Optional[str] = None,
    vendor_id: Optional[str] = None,
    unread_only: bool = False,
    limit: int = 100,
) -> List[dict]:
    query = {}
    if role:
        query["role"] = role
    if vendor_id:
        query["vendor_id"] = vendor_id
    if unread_only:
        query["is_read"] = False
    return list(database[NOTIFICATIONS].find(query).sort("created_at", -1).limit(limit))


def mark_read(database: Database, notification_id: str) -> bool:
    result = database[NOTIFICATIONS].update_one(
        {"_id": notification_id},
        {"$set": {"is_read": True, "updated_at": utc_now()}},
    )
    return result.matched_count > 0
