"""
Invoice synthesis for fulfilled orders.

One fulfilled order yields two invoices, both keyed by the order id:
  - a vendor invoice: what the platform owes the vendor, net of commission
  - a restaurant invoice: what the buyer owes, at full price

Both are built from the same normalized lines, so subtotal and tax always
agree between the two documents.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from pydantic import ValidationError
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import DEFAULT_COMMISSION_PERCENT, INVOICE_DUE_DAYS
from database import find_by_id, utc_now
from invoice_store import invoice_exists, purge_legacy_duplicates, write_if_absent
from line_items import CatalogLookup, catalog_lookup, normalize_order_lines
from money import round2, to_amount
from schemas import RestaurantInvoice, VendorInvoice
from tax_rates import rate_for

logger = logging.getLogger(__name__)

VENDOR = "vendor"
RESTAURANT = "restaurant"
INVOICE_KINDS = (VENDOR, RESTAURANT)
INVOICE_COLLECTIONS = {
    VENDOR: "vendorinvoice",
    RESTAURANT: "restaurantinvoice",
}


def order_id_of(order: dict) -> str:
    return str(order.get("_id") or order.get("id"))


def order_group_id(order: dict) -> str:
    if order.get("order_group_id"):
        return str(order["order_group_id"])
    return order_id_of(order)[-8:].upper()


def invoice_suffix(now: datetime, sequence: Optional[int] = None) -> str:
    """`<yyyy>-<mm>-<last 5 digits of epoch ms>[sequence]`, shared by both invoice numbers."""
    millis = str(int(now.timestamp() * 1000))[-5:]
    suffix = f"{now.year}-{now.month:02d}-{millis}"
    if sequence is not None:
        suffix += str(sequence)
    return suffix


def vendor_terms(vendor: Optional[dict]) -> Tuple[float, float]:
    """(commission percent, tax rate percent) for a vendor record, with defaults."""
    vendor = vendor or {}
    commission_percent = to_amount(vendor.get("commission_percent"), DEFAULT_COMMISSION_PERCENT)
    tax_rate = rate_for(vendor.get("country") or "Canada", vendor.get("province"))
    return commission_percent, tax_rate


@dataclass
class InvoicePair:
    vendor: VendorInvoice
    restaurant: RestaurantInvoice

    def for_kind(self, kind: str):
        return self.vendor if kind == VENDOR else self.restaurant


def synthesize_invoices(
    order: dict,
    vendor: Optional[dict],
    catalog: Optional[CatalogLookup] = None,
    now: Optional[datetime] = None,
    sequence: Optional[int] = None,
    source: str = "auto",
) -> InvoicePair:
    now = now or utc_now()
    commission_percent, tax_rate = vendor_terms(vendor)
    normalized = normalize_order_lines(order, tax_rate, catalog)

    gross = round2(normalized.subtotal)
    total_tax = round2(normalized.total_tax)
    commission_amount = round2(gross * commission_percent / 100)
    net_payable = round2(gross - commission_amount)

    suffix = invoice_suffix(now, sequence)
    due_date = now + timedelta(days=INVOICE_DUE_DAYS)
    order_id = order_id_of(order)
    group_id = order_group_id(order)
    vendor_id = str(order["vendor_id"]) if order.get("vendor_id") else None
    restaurant_id = str(order.get("restaurant_id") or "Unknown Restaurant")
    vendor_name = order.get("vendor_name") or (vendor or {}).get("name") or "Unknown Vendor"
    verb = "Auto-generated" if source == "auto" else "Manually generated"
    path = "Snapshot" if normalized.from_snapshot else "Dynamic Fallback"

    vendor_invoice = VendorInvoice(
        order_id=order_id,
        order_group_id=group_id,
        vendor_id=vendor_id,
        restaurant_id=restaurant_id,
        invoice_number=f"INV-V-{suffix}",
        invoice_date=now,
        due_date=due_date,
        subtotal_vendor_amount=gross,
        total_tax_amount=total_tax,
        total_vendor_amount=round2(gross + total_tax),
        gross_vendor_amount=gross,
        commission_percent=commission_percent,
        commission_amount=commission_amount,
        net_vendor_payable=net_payable,
        items=normalized.lines,
        admin_notes=f"{verb} ({path})",
    )

    restaurant_invoice = RestaurantInvoice(
        order_id=order_id,
        order_group_id=group_id,
        vendor_id=vendor_id,
        vendor_name=str(vendor_name),
        restaurant_id=restaurant_id,
        invoice_number=f"INV-C-{suffix}",
        invoice_date=now,
        due_date=due_date,
        subtotal=gross,
        total_tax=total_tax,
        grand_total=round2(gross + total_tax),
        items=normalized.lines,
        admin_notes=f"{verb} for restaurant",
    )

    return InvoicePair(vendor=vendor_invoice, restaurant=restaurant_invoice)


@dataclass
class GenerationResult:
    order_id: str
    created: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


def generate_invoices_for_order(
    database: Database,
    order: dict,
    kinds: Iterable[str] = INVOICE_KINDS,
    source: str = "auto",
    now: Optional[datetime] = None,
    sequence: Optional[int] = None,
) -> GenerationResult:
    """Synthesize and persist the invoices of one fulfilled order.

    Each invoice kind is written independently: a failure writing one does
    not prevent the other. Store errors are logged and reported in the
    result, never raised.
    """
    order_id = order_id_of(order)
    result = GenerationResult(order_id=order_id)

    pending = []
    for kind in kinds:
        collection = database[INVOICE_COLLECTIONS[kind]]
        try:
            if invoice_exists(collection, order_id):
                result.skipped.append(kind)
                continue
        except PyMongoError:
            logger.exception("Could not check %s invoice for order %s", kind, order_id)
            result.failed.append(kind)
            continue
        pending.append(kind)

    if not pending:
        return result

    vendor_id = order.get("vendor_id")
    try:
        vendor = find_by_id(database, "vendor", vendor_id)
    except PyMongoError:
        logger.exception("Vendor lookup failed for order %s", order_id)
        result.failed.extend(pending)
        return result
    if vendor is None:
        logger.warning("Vendor %s not found for order %s, using default terms", vendor_id, order_id)

    try:
        pair = synthesize_invoices(
            order, vendor, catalog_lookup(database, vendor_id), now=now, sequence=sequence, source=source
        )
    except PyMongoError:
        logger.exception("Catalog lookup failed for order %s", order_id)
        result.failed.extend(pending)
        return result
    except (ValidationError, ArithmeticError, ValueError, TypeError, AttributeError):
        logger.exception("Order %s has malformed line data, no invoice synthesized", order_id)
        result.failed.extend(pending)
        return result

    for kind in pending:
        collection = database[INVOICE_COLLECTIONS[kind]]
        try:
            created = write_if_absent(collection, order_id, pair.for_kind(kind).model_dump())
        except PyMongoError:
            logger.exception("Failed to write %s invoice for order %s", kind, order_id)
            result.failed.append(kind)
            continue
        if created:
            result.created.append(kind)
            logger.info("Created %s invoice %s for order %s", kind, pair.for_kind(kind).invoice_number, order_id)
            purge_legacy_duplicates(collection, order_id)
        else:
            result.skipped.append(kind)

    return result
