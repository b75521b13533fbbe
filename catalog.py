"""Vendor catalog change reviews (edits and deletions proposed by vendors)."""

import logging
from typing import List, Optional

from pymongo.database import Database

from database import find_by_id, id_query, utc_now

logger = logging.getLogger(__name__)

REVIEWS = "pendingreview"
ITEMS = "item"

# Fields a vendor may change through an edit review
EDITABLE_FIELDS = {"name", "brand", "category", "unit", "pack_qty", "price", "taxable", "sku"}


class ReviewNotFound(LookupError):
    pass


class ReviewClosed(ValueError):
    pass


def list_reviews(database: Database, status: Optional[str] = None) -> List[dict]:
    query = {"status": status} if status else {}
    return list(database[REVIEWS].find(query).sort("created_at", -1))


def _open_review(database: Database, review_id: str) -> dict:
    review = find_by_id(database, REVIEWS, review_id)
    if review is None:
        raise ReviewNotFound(review_id)
    if review.get("status") != "pending":
        raise ReviewClosed(f"Review {review_id} is already {review.get('status')}")
    return review


def approve_review(database: Database, review_id: str, reviewer: Optional[str] = None) -> dict:
    review = _open_review(database, review_id)
    now = utc_now()
    item_filter = id_query(review["item_id"])

    if review["change_type"] == "edit":
        changes = {k: v for k, v in (review.get("proposed_data") or {}).items() if k in EDITABLE_FIELDS}
        database[ITEMS].update_one(
            item_filter,
            {"$set": {**changes, "status": "active", "updated_at": now}, "$unset": {"rejection_comment": ""}},
        )
    elif review["change_type"] == "delete":
        database[ITEMS].delete_one(item_filter)

    database[REVIEWS].update_one(
        {"_id": review["_id"]},
        {"$set": {"status": "approved", "reviewed_by": reviewer, "reviewed_at": now, "updated_at": now}},
    )
    logger.info("Approved %s review %s for item %s", review["change_type"], review_id, review["item_id"])
    return find_by_id(database, REVIEWS, review_id)


def reject_review(database: Database, review_id: str, comment: str, reviewer: Optional[str] = None) -> dict:
    review = _open_review(database, review_id)
    now = utc_now()
    comment = comment.strip()

    database[REVIEWS].update_one(
        {"_id": review["_id"]},
        {"$set": {
            "status": "rejected",
            "rejection_comment": comment,
            "reviewed_by": reviewer,
            "reviewed_at": now,
            "updated_at": now,
        }},
    )
    database[ITEMS].update_one(
        id_query(review["item_id"]),
        {"$set": {"status": "rejected", "rejection_comment": comment, "updated_at": now}},
    )
    logger.info("Rejected review %s for item %s", review_id, review["item_id"])
    return find_by_id(database, REVIEWS, review_id)
