"""
Create-once writes keyed by deterministic ids.

Invoices are stored under `_id = order id`, notifications under an id derived
from (order, event, audience). Creation is a single `insert_one`; the unique
`_id` index makes it atomic, so concurrent writers cannot both succeed.
"""

import logging

from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import utc_now

logger = logging.getLogger(__name__)


def write_if_absent(collection: Collection, deterministic_id: str, payload: dict) -> bool:
    """Insert `payload` at `deterministic_id`; False if a document is already there."""
    doc = dict(payload)
    doc["_id"] = deterministic_id
    now = utc_now()
    doc.setdefault("created_at", now)
    doc.setdefault("updated_at", now)
    try:
        collection.insert_one(doc)
    except DuplicateKeyError:
        logger.debug("%s/%s already exists, skipping", collection.name, deterministic_id)
        return False
    return True


def invoice_exists(collection: Collection, order_id: str) -> bool:
    return collection.find_one({"_id": order_id}, {"_id": 1}) is not None


def purge_legacy_duplicates(collection: Collection, order_id: str) -> int:
    """Remove invoices for `order_id` that were stored under random ids."""
    try:
        result = collection.delete_many({"order_id": order_id, "_id": {"$ne": order_id}})
    except PyMongoError:
        logger.exception("Cleanup of stale %s for order %s failed", collection.name, order_id)
        return 0
    if result.deleted_count:
        logger.info("Removed %d stale %s for order %s", result.deleted_count, collection.name, order_id)
    return result.deleted_count
