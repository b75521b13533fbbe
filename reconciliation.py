"""
Admin-triggered reconciliation.

- scan_and_generate_missing: fulfilled orders without an invoice get one
- run_integrity_check: flag orders whose stored total no longer matches
  their lines (flags only, amounts are never rewritten)
- mark_invoice_paid: the one-way PENDING -> PAID transition
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from database import id_query, utc_now
from invoices import INVOICE_COLLECTIONS, generate_invoices_for_order, order_id_of
from line_items import explicit_taxable, quantity, unit_price
from money import round2, to_amount
from schemas import FULFILLED

logger = logging.getLogger(__name__)

INTEGRITY_TOLERANCE = 0.01


@dataclass
class ScanResult:
    kind: str
    eligible: int = 0
    missing: int = 0
    created: int = 0
    failed: int = 0


def scan_and_generate_missing(database: Database, kind: str, now: Optional[datetime] = None) -> ScanResult:
    """Create the `kind` invoice for every fulfilled order that has none.

    Store errors while listing orders or invoices propagate to the caller;
    a failure on one order, from the store or from malformed order data,
    is logged and counted in `failed` and the scan moves on.
    """
    collection = database[INVOICE_COLLECTIONS[kind]]
    fulfilled = list(database["order"].find({"status": FULFILLED}))
    invoiced = {str(order_id) for order_id in collection.distinct("order_id")}
    missing = [order for order in fulfilled if order_id_of(order) not in invoiced]

    result = ScanResult(kind=kind, eligible=len(fulfilled), missing=len(missing))
    now = now or utc_now()
    for sequence, order in enumerate(missing):
        try:
            generated = generate_invoices_for_order(
                database, order, kinds=(kind,), source="manual", now=now, sequence=sequence
            )
        except Exception:
            logger.exception("Invoice generation failed for order %s", order_id_of(order))
            result.failed += 1
            continue
        if kind in generated.created:
            result.created += 1
        elif kind in generated.failed:
            result.failed += 1

    logger.info(
        "%s invoice scan: %d fulfilled, %d missing, %d created, %d failed",
        kind, result.eligible, result.missing, result.created, result.failed,
    )
    return result


def _line_rate(line: dict, order: dict) -> float:
    if line.get("tax_rate") is not None:
        return to_amount(line["tax_rate"])
    return to_amount(order.get("tax_rate"))


def recompute_total(order: dict) -> float:
    """Order total rebuilt from its lines, rounding at each line."""
    subtotal = 0.0
    tax = 0.0
    for line in order.get("items") or []:
        line_subtotal = round2(unit_price(line) * quantity(line))
        subtotal += line_subtotal
        if explicit_taxable(line):
            tax += round2(line_subtotal * _line_rate(line, order) / 100)
    return round2(subtotal + tax)


def stored_total(order: dict) -> Optional[float]:
    for key in ("grand_total_after_tax", "total"):
        if order.get(key) is not None:
            return to_amount(order[key])
    return None


@dataclass
class IntegrityReport:
    checked: int = 0
    mismatched: int = 0
    cleared: int = 0


def run_integrity_check(database: Database) -> IntegrityReport:
    report = IntegrityReport()
    orders = database["order"]
    for order in orders.find({}):
        report.checked += 1
        calculated = recompute_total(order)
        stored = stored_total(order)
        if stored is None or abs(calculated - stored) > INTEGRITY_TOLERANCE:
            report.mismatched += 1
            orders.update_one(
                {"_id": order["_id"]},
                {"$set": {
                    "tax_integrity_status": "MISMATCH",
                    "tax_mismatch_reason": f"Stored: {stored}, Calc: {calculated}",
                }},
            )
        elif order.get("tax_integrity_status") == "MISMATCH":
            report.cleared += 1
            orders.update_one({"_id": order["_id"]}, {"$set": {"tax_integrity_status": "OK"}})

    if report.mismatched:
        logger.warning("Integrity check flagged %d of %d orders", report.mismatched, report.checked)
    return report


class InvoiceNotFound(LookupError):
    pass


class InvoiceAlreadyPaid(ValueError):
    pass


def mark_invoice_paid(database: Database, kind: str, invoice_id: str, paid_by: Optional[str] = None) -> dict:
    collection = database[INVOICE_COLLECTIONS[kind]]
    now = utc_now()
    updated = collection.find_one_and_update(
        {"payment_status": "PENDING", **id_query(invoice_id)},
        {"$set": {
            "payment_status": "PAID",
            "paid_at": now,
            "updated_at": now,
            "paid_by_admin_name": paid_by or "Admin",
        }},
        return_document=ReturnDocument.AFTER,
    )
    if updated is not None:
        logger.info("%s invoice %s marked PAID by %s", kind, invoice_id, paid_by or "Admin")
        return updated
    if collection.find_one(id_query(invoice_id), {"_id": 1}) is None:
        raise InvoiceNotFound(invoice_id)
    raise InvoiceAlreadyPaid(invoice_id)
